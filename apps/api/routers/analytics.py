"""
Analytics API Router

Per-student dynamic form analytics, computed from live entries on every
request. Students read their own; admins can read any student's.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder

from core.auth import get_container, get_trusted_identity, require_admin
from core.container import ServiceContainer
from core.identity import Identity

router = APIRouter(tags=["analytics"])


def _analytics_response(container: ServiceContainer, student_id: str, template_id: str,
                        date_from, date_to, include_partial):
    analytics = container.analytics.student_analytics(
        student_id,
        template_id,
        date_from=date_from,
        date_to=date_to,
        include_partial=include_partial,
    )
    return jsonable_encoder(analytics)


@router.get("/api/protected/analytics/{template_id}")
def get_my_analytics(
    template_id: str,
    date_from: Optional[datetime] = Query(None, description="Only entries submitted at or after"),
    date_to: Optional[datetime] = Query(None, description="Only entries submitted at or before"),
    include_partial: bool = Query(False, description="Include incomplete entries"),
    identity: Identity = Depends(get_trusted_identity),
    container: ServiceContainer = Depends(get_container),
):
    """
    Analytics for the calling student on one template.

    Fields with no data have value null (render as N/A). `warnings` counts
    stored entries or sections that could not be read and were skipped.
    """
    return _analytics_response(container, identity.id, template_id, date_from, date_to, include_partial)


@router.get("/api/admin/analytics/students/{student_id}/templates/{template_id}")
def get_student_analytics(
    student_id: str,
    template_id: str,
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    include_partial: bool = Query(False),
    admin: Identity = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    return _analytics_response(container, student_id, template_id, date_from, date_to, include_partial)
