"""Models package."""
from .state import (
    AgentResponse,
    ConversationContext,
    ConversationMessage,
    EmailDraft,
    MessageRole,
    Note,
    ReviewedEmail,
    ReviewLoopState,
    ReviewResult,
    ReviewVerdict,
    SessionStatus,
    SessionStep,
    ToolCall,
    ToolResult,
    add_note,
    create_review_state,
    utcnow,
)
from .session import (
    MessageCreate,
    MessageResponse,
    SessionCreate,
    SessionResponse,
    SessionUpdate,
    SmartEmailMessage,
    SmartEmailSession,
    new_session_id,
)

__all__ = [
    "AgentResponse",
    "ConversationContext",
    "ConversationMessage",
    "EmailDraft",
    "MessageCreate",
    "MessageResponse",
    "MessageRole",
    "Note",
    "ReviewedEmail",
    "ReviewLoopState",
    "ReviewResult",
    "ReviewVerdict",
    "SessionCreate",
    "SessionResponse",
    "SessionStatus",
    "SessionStep",
    "SessionUpdate",
    "SmartEmailMessage",
    "SmartEmailSession",
    "ToolCall",
    "ToolResult",
    "add_note",
    "create_review_state",
    "new_session_id",
    "utcnow",
]
