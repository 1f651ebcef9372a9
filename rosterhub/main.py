from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rosterhub.api.admin import router as admin_router
from rosterhub.api.health import router as health_router
from rosterhub.api.imports import router as imports_router
from rosterhub.api.root import router as root_router
from rosterhub.core.config import settings
from rosterhub.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL)

app = FastAPI(title="RosterHub")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(root_router)
app.include_router(health_router)
app.include_router(admin_router)
app.include_router(imports_router)
