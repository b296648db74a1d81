"""
Admin API Router

Form template management and role assignment. Admin role only: the edge
middleware enforces it for the whole namespace and every handler checks
again through require_admin.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status

from core.auth import get_container, require_admin
from core.container import ServiceContainer
from core.identity import Identity
from schemas import RoleAssignment, TemplateActivate, TemplateClone, TemplateCreate, TemplateUpdate
from services.form_schema import FormTemplate, template_to_document, validate_template

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ==================== FORM TEMPLATES ====================

@router.get("/form-templates")
def list_templates(
    is_active: Optional[bool] = Query(None),
    is_archived: Optional[bool] = Query(None),
    sport: Optional[str] = Query(None),
    created_by: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    templates = container.templates.list_templates(
        is_active=is_active, is_archived=is_archived, created_by=created_by, sport=sport, limit=limit
    )
    return [template_to_document(t) for t in templates]


@router.post("/form-templates", status_code=status.HTTP_201_CREATED)
def create_template(
    body: TemplateCreate,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    template = FormTemplate.model_validate(body.model_dump())
    created = container.templates.create_template(template, created_by=admin.id)
    return template_to_document(created)


@router.post("/form-templates/validate")
def validate_template_endpoint(
    template: FormTemplate,
    admin: Identity = Depends(require_admin),
):
    """Dry-run structural validation without saving."""
    return validate_template(template)


@router.get("/form-templates/{template_id}")
def get_template(
    template_id: str,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    return template_to_document(container.templates.get_template(template_id))


@router.put("/form-templates/{template_id}")
def update_template(
    template_id: str,
    body: TemplateUpdate,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    updated = container.templates.update_template(
        template_id, body.model_dump(exclude_unset=True), modified_by=admin.id
    )
    return template_to_document(updated)


@router.delete("/form-templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(
    template_id: str,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    container.templates.delete_template(template_id)
    logger.info(f"Template {template_id} deleted by {admin.id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/form-templates/{template_id}/activate")
def activate_template(
    template_id: str,
    body: Optional[TemplateActivate] = Body(None),
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    sport = body.sport if body else None
    return template_to_document(container.templates.activate_template(template_id, sport=sport))


@router.post("/form-templates/{template_id}/archive")
def archive_template(
    template_id: str,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    return template_to_document(container.templates.archive_template(template_id))


@router.post("/form-templates/{template_id}/restore")
def restore_template(
    template_id: str,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    return template_to_document(container.templates.restore_template(template_id))


@router.post("/form-templates/{template_id}/clone", status_code=status.HTTP_201_CREATED)
def clone_template(
    template_id: str,
    body: TemplateClone,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    clone = container.templates.clone_template(template_id, body.name, created_by=admin.id)
    return template_to_document(clone)


# ==================== USERS ====================

@router.post("/users/{uid}/role")
def assign_role(
    uid: str,
    body: RoleAssignment,
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Set a user's role. Takes effect when the user's token next refreshes."""
    claims = container.roles.assign_role(uid, body.role, assigned_by=admin.id)
    return {"success": True, "uid": uid, "role": body.role.value, "claims": claims}
