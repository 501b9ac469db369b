# Models module - Pydantic models for chat sessions, messages and mentions
from models.chat import (
    ChatMessage,
    ChatRequest,
    ChatSession,
    SenderType,
    SessionCreate,
    SessionStatus,
    SessionUpdate,
)
from models.mention import (
    EntityType,
    MentionCandidate,
    MentionState,
    MentionToken,
    UnknownEntityTypeError,
)
from models.user import CurrentUser

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatSession",
    "SenderType",
    "SessionCreate",
    "SessionStatus",
    "SessionUpdate",
    "EntityType",
    "MentionCandidate",
    "MentionState",
    "MentionToken",
    "UnknownEntityTypeError",
    "CurrentUser",
]
