"""Session and message models for database persistence."""
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4
from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from .state import SessionStatus, SessionStep, utcnow


def new_session_id() -> str:
    """Opaque external identifier handed to callers."""
    return f"smart_email_{uuid4().hex}"


class SmartEmailSession(SQLModel, table=True):
    """Database model for a conversation session."""

    __tablename__ = "smart_email_sessions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    session_id: str = Field(default_factory=new_session_id, index=True, unique=True)
    organization_id: str = Field(index=True)
    user_id: str = Field(index=True)
    donor_ids: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    initial_instruction: str
    final_instruction: Optional[str] = None
    donor_analysis: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    org_analysis: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    status: str = Field(default=SessionStatus.ACTIVE.value, index=True)
    current_step: str = Field(default=SessionStep.ANALYZING.value)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(index=True)
    # Lease held while a turn, abandon or resume is in flight
    locked_until: Optional[datetime] = None
    lease_holder: Optional[str] = None


class SmartEmailMessage(SQLModel, table=True):
    """Database model for one entry of a session's message log."""

    __tablename__ = "smart_email_messages"
    __table_args__ = (UniqueConstraint("session_pk", "message_index"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    session_pk: str = Field(foreign_key="smart_email_sessions.id", index=True, ondelete="CASCADE")
    message_index: int
    role: str
    content: str
    tool_calls: Optional[list[dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    tool_results: Optional[list[dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class SessionCreate(SQLModel):
    """Schema for creating a new session."""
    organization_id: str
    user_id: str
    donor_ids: list[int]
    initial_instruction: str


class SessionUpdate(SQLModel):
    """Schema for updating a session."""
    status: Optional[str] = None
    current_step: Optional[str] = None
    final_instruction: Optional[str] = None
    donor_analysis: Optional[dict[str, Any]] = None
    org_analysis: Optional[dict[str, Any]] = None
    expires_at: Optional[datetime] = None


class MessageCreate(SQLModel):
    """Schema for appending one message; the store assigns the index."""
    role: str
    content: str
    tool_calls: Optional[list[dict[str, Any]]] = None
    tool_results: Optional[list[dict[str, Any]]] = None


class SessionResponse(SQLModel):
    """Schema for session API response."""
    session_id: str
    organization_id: str
    user_id: str
    donor_ids: list[int]
    initial_instruction: str
    final_instruction: Optional[str]
    status: str
    current_step: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime


class MessageResponse(SQLModel):
    """Schema for message API response."""
    message_index: int
    role: str
    content: str
    tool_calls: Optional[list[dict[str, Any]]]
    tool_results: Optional[list[dict[str, Any]]]
    created_at: datetime
