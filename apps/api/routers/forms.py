"""
Forms API Router

Student-facing form endpoints: read templates, submit and list entries.
Entry submission honours an Idempotency-Key header so a retried POST
replays the first response instead of storing a duplicate.
"""
import logging
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from core.auth import get_container, get_trusted_identity
from core.authorizer import can_access_resource
from core.cache import cache_key
from core.container import ServiceContainer
from core.exceptions import ForbiddenError, NotFoundError
from core.identity import Identity
from schemas import EntryResponse, EntrySubmit
from services.form_schema import template_to_document

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/protected/forms", tags=["forms"])


def _resolve_student(identity: Identity, student_id: Optional[str]) -> str:
    """The caller's own id, or another student's when the caller may act for them."""
    target = student_id or identity.id
    if not can_access_resource(identity, target):
        raise ForbiddenError("You can only access your own form entries")
    return target


@router.get("/templates/active")
def get_active_template(
    sport: Optional[str] = Query(None),
    identity: Identity = Depends(get_trusted_identity),
    container: ServiceContainer = Depends(get_container),
):
    template = container.templates.get_active_template(sport=sport)
    if template is None:
        raise NotFoundError("Active form template", sport or "any sport")
    return template_to_document(template)


@router.get("/templates/{template_id}")
def get_template(
    template_id: str,
    identity: Identity = Depends(get_trusted_identity),
    container: ServiceContainer = Depends(get_container),
):
    return template_to_document(container.templates.get_template(template_id))


@router.post("/entries", status_code=status.HTTP_201_CREATED, response_model=EntryResponse)
def submit_entry(
    body: EntrySubmit,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    identity: Identity = Depends(get_trusted_identity),
    container: ServiceContainer = Depends(get_container),
):
    replay_key = cache_key("idempotency", "form_entry", identity.id, idempotency_key) if idempotency_key else None
    if replay_key:
        previous = container.cache.get(replay_key)
        if previous is not None:
            logger.info(f"Replaying idempotent entry submission for {identity.id}")
            return JSONResponse(
                status_code=previous["status_code"],
                content=previous["body"],
                headers={"Idempotent-Replay": "true"},
            )

    student_id = _resolve_student(identity, body.student_id)
    entry = container.entries.submit_entry(
        student_id=student_id,
        template_id=body.form_template_id,
        responses=body.responses,
        submitted_by=identity.id,
        submitter_role=identity.role.value,
        session_id=body.session_id,
    )
    payload = jsonable_encoder(EntryResponse(**asdict(entry)))

    if replay_key:
        container.cache.set(
            replay_key,
            {"status_code": status.HTTP_201_CREATED, "body": payload},
            ttl=container.idempotency_ttl,
        )
    return payload


@router.get("/entries", response_model=List[EntryResponse])
def list_entries(
    template_id: Optional[str] = Query(None),
    student_id: Optional[str] = Query(None),
    identity: Identity = Depends(get_trusted_identity),
    container: ServiceContainer = Depends(get_container),
):
    target = _resolve_student(identity, student_id)
    entries = container.entries.list_entries_for_student(target, template_id)
    return [EntryResponse(**asdict(e)) for e in entries]
