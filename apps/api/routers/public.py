"""
Public API Router

Endpoints under /api/public/ never require a credential.
"""
from datetime import datetime, timezone

from fastapi import APIRouter

from schemas import HealthResponse

router = APIRouter(prefix="/api/public", tags=["public"])

API_VERSION = "3.0.0"


@router.get("/health", response_model=HealthResponse)
def public_health():
    """Health check that must stay reachable without authentication."""
    return HealthResponse(
        message="Public API is healthy",
        status="operational",
        timestamp=datetime.now(timezone.utc),
        version=API_VERSION,
    )
