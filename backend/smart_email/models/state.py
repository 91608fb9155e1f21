"""Conversation state, tool exchange and review models."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, TypedDict
from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SessionStatus(str, Enum):
    """Lifecycle status of a conversation session."""
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class SessionStep(str, Enum):
    """Dialogue step of a conversation session."""
    ANALYZING = "analyzing"
    QUESTIONING = "questioning"
    REFINING = "refining"
    COMPLETE = "complete"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ReviewResult(str, Enum):
    OK = "OK"
    NEEDS_IMPROVEMENT = "NEEDS_IMPROVEMENT"


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of one tool call: a result or an error, never both."""
    tool_call_id: str
    result: Any = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "ToolResult":
        if (self.result is None) == (self.error is None):
            raise ValueError("ToolResult needs exactly one of result or error")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None


class ConversationMessage(BaseModel):
    """One entry of the replayed message log."""
    role: MessageRole
    content: str
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)


class ConversationContext(BaseModel):
    """Everything the orchestrator needs to run one conversational step."""
    session_id: str
    organization_id: str
    user_id: str
    donor_ids: list[int]
    current_step: SessionStep = SessionStep.ANALYZING
    initial_instruction: str = ""
    history: list[ConversationMessage] = Field(default_factory=list)
    donor_analysis: Optional[dict[str, Any]] = None
    org_analysis: Optional[dict[str, Any]] = None


class AgentResponse(BaseModel):
    """Result of one orchestrator step."""
    content: str
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    next_step: SessionStep
    should_continue: bool = True


class EmailDraft(BaseModel):
    """A generated email for one donor."""
    donor_id: int
    subject: str
    content: str


class ReviewVerdict(BaseModel):
    """Instruction-compliance verdict on a draft. Never persisted."""
    result: ReviewResult
    feedback: Optional[str] = None

    @model_validator(mode="after")
    def _feedback_when_rejected(self) -> "ReviewVerdict":
        if self.result == ReviewResult.NEEDS_IMPROVEMENT and not (self.feedback or "").strip():
            self.feedback = "The email does not fully follow the instruction. Re-read it and address every requirement."
        return self

    @property
    def approved(self) -> bool:
        return self.result == ReviewResult.OK


class ReviewedEmail(BaseModel):
    """Outcome of the review loop for one donor."""
    donor_id: int
    subject: str = ""
    content: str = ""
    verified: bool = False
    attempts: int = 0
    feedback: Optional[str] = None
    error: Optional[str] = None


class Note(BaseModel):
    """Progress note recorded by a review-loop node."""
    agent: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class ReviewLoopState(TypedDict):
    """
    State passed between the drafter and reviewer nodes.
    One instance per donor; nothing in it is persisted.
    """
    donor_id: int
    instruction: str
    system_prompt: str
    donor_context: str
    chat_history: list[dict]

    current_draft: Optional[dict]  # EmailDraft dict
    attempt: int
    max_attempts: int
    verdict: Optional[str]  # ReviewResult value
    feedback: str
    verified: bool
    error: str

    notes: list[dict]  # List of Note dicts


def create_review_state(
    donor_id: int,
    instruction: str,
    system_prompt: str,
    donor_context: str,
    chat_history: list[dict],
    max_attempts: int,
) -> ReviewLoopState:
    """Create the initial review-loop state for one donor."""
    return ReviewLoopState(
        donor_id=donor_id,
        instruction=instruction,
        system_prompt=system_prompt,
        donor_context=donor_context,
        chat_history=chat_history,
        current_draft=None,
        attempt=0,
        max_attempts=max_attempts,
        verdict=None,
        feedback="",
        verified=False,
        error="",
        notes=[],
    )


def add_note(state: ReviewLoopState, agent: str, message: str) -> list[dict]:
    """Append a note and return the updated list."""
    note = Note(agent=agent, message=message)
    return state["notes"] + [note.model_dump()]
