from fastapi import APIRouter

router = APIRouter()


@router.get("/")
def root():
    return {
        "name": "RosterHub Backend",
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "imports": "/admin/imports",
    }
