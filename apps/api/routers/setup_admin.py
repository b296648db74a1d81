"""
Admin bootstrap.

Assigns the first admin role. The route sits inside the admin namespace but
is exempt from the edge middleware (listed in SELF_AUTHENTICATED_PATHS):
the deployment's ADMIN_SETUP_SECRET authorizes it instead of a bearer token.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from core.auth import get_container
from core.container import ServiceContainer
from schemas import AdminSetupRequest

router = APIRouter(prefix="/api/admin", tags=["admin-setup"])


@router.post("/setup-admin")
def setup_admin(body: AdminSetupRequest, container: ServiceContainer = Depends(get_container)):
    user = container.roles.bootstrap_admin(body.uid, body.email, body.secret_key)
    return {"success": True, "message": "Admin role assigned successfully", "user": user}


@router.get("/setup-admin")
def admin_status(
    uid: str = Query(...),
    setup_secret: Optional[str] = Header(None, alias="X-Admin-Setup-Secret"),
    container: ServiceContainer = Depends(get_container),
):
    container.roles.check_setup_secret(setup_secret)
    return {"success": True, "user": container.roles.get_role_status(uid)}
