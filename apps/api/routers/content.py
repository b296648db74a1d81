"""
AI content API Router

Proxies content generation and answer grading to the external content
service. An unsuccessful generation is returned with 200 and
success=false, plus `retryable` so the client can offer a retry.
"""
from dataclasses import asdict

from fastapi import APIRouter, Depends

from core.auth import get_container, get_trusted_identity
from core.container import ServiceContainer
from core.identity import Identity
from schemas import ContentResponse, GenerateContentRequest, GradeAnswerRequest

router = APIRouter(prefix="/api/protected/ai", tags=["ai"])


@router.post("/generate-content", response_model=ContentResponse)
def generate_content(
    body: GenerateContentRequest,
    identity: Identity = Depends(get_trusted_identity),
    container: ServiceContainer = Depends(get_container),
):
    result = container.content.generate_content(body.description, body.constraints)
    return ContentResponse(**asdict(result))


@router.post("/grade-answer", response_model=ContentResponse)
def grade_answer(
    body: GradeAnswerRequest,
    identity: Identity = Depends(get_trusted_identity),
    container: ServiceContainer = Depends(get_container),
):
    result = container.content.grade_answer(body.question, body.answer, body.rubric)
    return ContentResponse(**asdict(result))
