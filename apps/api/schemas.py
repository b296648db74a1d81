from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.identity import Role
from services.form_schema import FormSection


class UserInfo(BaseModel):
    id: str
    role: Role
    email: Optional[str] = None


class ProfileResponse(BaseModel):
    success: bool = True
    message: str
    user: UserInfo
    timestamp: datetime


class ProfileUpdateResponse(BaseModel):
    success: bool = True
    message: str
    data: Dict[str, Any]
    user: UserInfo
    timestamp: datetime


class HealthResponse(BaseModel):
    success: bool = True
    message: str
    status: str
    timestamp: datetime
    version: str


# ==================== FORM TEMPLATES ====================

class TemplateCreate(BaseModel):
    """Admin request to create a template. Accepts camelCase or snake_case keys."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: Optional[str] = None
    sport: Optional[str] = None
    is_active: bool = Field(default=False, alias="isActive")
    allow_partial_submission: bool = Field(default=False, alias="allowPartialSubmission")
    sections: List[FormSection] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    """Partial update; only fields present in the request are applied."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    sport: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    allow_partial_submission: Optional[bool] = Field(default=None, alias="allowPartialSubmission")
    sections: Optional[List[FormSection]] = None


class TemplateClone(BaseModel):
    name: str


class TemplateActivate(BaseModel):
    sport: Optional[str] = None


# ==================== FORM ENTRIES ====================

class EntrySubmit(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    form_template_id: str = Field(alias="formTemplateId")
    responses: Dict[str, Any]
    # Admins may submit on behalf of a student
    student_id: Optional[str] = Field(default=None, alias="studentId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class EntryResponse(BaseModel):
    id: str
    student_id: str
    form_template_id: str
    form_template_version: int
    submitted_at: datetime
    responses: Dict[str, Any]
    is_complete: bool
    completion_percentage: int
    submitted_by: Optional[str] = None
    session_id: Optional[str] = None


# ==================== ROLES ====================

class RoleAssignment(BaseModel):
    role: Role


class AdminSetupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    email: str
    secret_key: str = Field(alias="secretKey")


# ==================== CONTENT ====================

class GenerateContentRequest(BaseModel):
    description: str = Field(min_length=1)
    constraints: Dict[str, Any] = Field(default_factory=dict)


class GradeAnswerRequest(BaseModel):
    question: str = Field(min_length=1)
    answer: str
    rubric: Optional[str] = None


class ContentResponse(BaseModel):
    success: bool
    content: Optional[Any] = None
    error: Optional[str] = None
    retryable: bool = False
