"""
Profile API Router

Echoes the identity forwarded by the edge middleware. The x-user-* headers
read here are trustworthy only because the middleware strips client copies
and writes its own. Values are percent-encoded.
"""
import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from core.auth import get_trusted_identity
from core.exceptions import MalformedBodyError
from core.identity import USER_EMAIL_HEADER, USER_ID_HEADER, USER_ROLE_HEADER, Identity, decode_header_value
from schemas import ProfileResponse, ProfileUpdateResponse, UserInfo

router = APIRouter(prefix="/api/protected", tags=["profile"])


@router.get("/profile", response_model=ProfileResponse)
def get_profile(request: Request, identity: Identity = Depends(get_trusted_identity)):
    return ProfileResponse(
        message="Protected endpoint accessed successfully",
        user=UserInfo(
            id=decode_header_value(request.headers.get(USER_ID_HEADER)),
            role=request.headers.get(USER_ROLE_HEADER),
            email=decode_header_value(request.headers.get(USER_EMAIL_HEADER)),
        ),
        timestamp=datetime.now(timezone.utc),
    )


@router.put("/profile", response_model=ProfileUpdateResponse)
async def update_profile(request: Request, identity: Identity = Depends(get_trusted_identity)):
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedBodyError()
    if not isinstance(body, dict):
        raise MalformedBodyError("Request body must be a JSON object")

    now = datetime.now(timezone.utc)
    return ProfileUpdateResponse(
        message="Profile updated successfully",
        data={**body, "updatedBy": identity.id, "updatedAt": now.isoformat()},
        user=UserInfo(id=identity.id, role=identity.role),
        timestamp=now,
    )
