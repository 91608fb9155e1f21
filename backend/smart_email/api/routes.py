"""API routes for the smart email engine."""
from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from smart_email.agents import EmailReviewer
from smart_email.models import EmailDraft, ReviewVerdict, SessionResponse, utcnow
from smart_email.services import (
    ContinueResult,
    EmailGenerationService,
    GenerationBatch,
    SessionState,
    SmartEmailGenerationService,
    StartSessionResult,
    get_email_generation_service,
    get_email_reviewer,
    get_smart_email_service,
)

router = APIRouter()


class Caller(BaseModel):
    """Identity of the caller, asserted by the upstream auth layer."""
    organization_id: str
    user_id: str


def get_caller(
    x_organization_id: str = Header(..., min_length=1),
    x_user_id: str = Header(..., min_length=1),
) -> Caller:
    return Caller(organization_id=x_organization_id, user_id=x_user_id)


# Request models
class StartSessionRequest(BaseModel):
    """Request to start a new conversation."""
    donor_ids: list[int] = Field(min_length=1)
    initial_instruction: str = Field(min_length=1)


class ContinueRequest(BaseModel):
    """A user message for an existing conversation."""
    message: str = Field(min_length=1)


class ReviewRequest(BaseModel):
    """Request to review a generated email against the conversation's instructions."""
    instruction: str = ""
    system_prompt: str = ""
    donor_context: str = ""
    chat_history: list[dict] = Field(default_factory=list)
    email: EmailDraft


class SessionListResponse(BaseModel):
    items: list[SessionResponse]
    total: int


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": utcnow().isoformat()}


@router.post("/api/sessions", response_model=StartSessionResult)
async def start_session(
    request: StartSessionRequest,
    caller: Caller = Depends(get_caller),
    service: SmartEmailGenerationService = Depends(get_smart_email_service),
):
    """Start a conversation; the assistant's first reply is returned with the new session id."""
    return await service.start_session(
        caller.organization_id,
        caller.user_id,
        request.donor_ids,
        request.initial_instruction,
    )


@router.get("/api/sessions", response_model=SessionListResponse)
async def list_sessions(
    caller: Caller = Depends(get_caller),
    service: SmartEmailGenerationService = Depends(get_smart_email_service),
):
    """Active sessions of the caller."""
    items = service.list_active_sessions(caller.organization_id, caller.user_id)
    return SessionListResponse(items=items, total=len(items))


@router.get("/api/sessions/{session_id}", response_model=SessionState)
async def get_session_state(
    session_id: str,
    caller: Caller = Depends(get_caller),
    service: SmartEmailGenerationService = Depends(get_smart_email_service),
):
    return service.get_state(session_id, caller.organization_id, caller.user_id)


@router.post("/api/sessions/{session_id}/messages", response_model=ContinueResult)
async def continue_session(
    session_id: str,
    request: ContinueRequest,
    caller: Caller = Depends(get_caller),
    service: SmartEmailGenerationService = Depends(get_smart_email_service),
):
    """Send one user message and get the assistant's reply."""
    return await service.continue_session(session_id, request.message, caller.organization_id, caller.user_id)


@router.post("/api/sessions/{session_id}/abandon", response_model=SessionResponse)
async def abandon_session(
    session_id: str,
    caller: Caller = Depends(get_caller),
    service: SmartEmailGenerationService = Depends(get_smart_email_service),
):
    return await service.abandon(session_id, caller.organization_id, caller.user_id)


@router.post("/api/sessions/{session_id}/resume", response_model=SessionResponse)
async def resume_session(
    session_id: str,
    caller: Caller = Depends(get_caller),
    service: SmartEmailGenerationService = Depends(get_smart_email_service),
):
    return await service.resume(session_id, caller.organization_id, caller.user_id)


@router.post("/api/sessions/{session_id}/emails", response_model=GenerationBatch)
async def generate_emails(
    session_id: str,
    caller: Caller = Depends(get_caller),
    service: EmailGenerationService = Depends(get_email_generation_service),
):
    """Generate and review one email per donor from the finalized instruction."""
    return await service.generate_for_session(session_id, caller.organization_id, caller.user_id)


@router.post("/api/review", response_model=ReviewVerdict)
async def review_email(
    request: ReviewRequest,
    caller: Caller = Depends(get_caller),
    reviewer: EmailReviewer = Depends(get_email_reviewer),
):
    """Check a generated email for instruction compliance."""
    return await reviewer.review(
        request.system_prompt,
        request.donor_context,
        request.chat_history,
        request.email,
        instruction=request.instruction,
    )
