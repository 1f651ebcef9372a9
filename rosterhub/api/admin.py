from fastapi import APIRouter, Depends

from rosterhub.core.rbac import require_admin
from rosterhub.models.user import User

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/ping")
def admin_ping(current_user: User = Depends(require_admin)):
    return {"status": "ok", "admin": current_user.email}
