"""
Chat models for the support assistant.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


class SenderType(str, Enum):
    USER = "user"
    AI = "llm"


class ChatSession(BaseModel):
    """Conversation owned by a single supporter"""
    id: str
    supporter_id: str
    title: str = "New Chat"
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime

    class Config:
        from_attributes = True


class ChatMessage(BaseModel):
    """Single chat message. Immutable once persisted."""
    id: str
    chat_session_id: str
    sender_type: SenderType
    content: str = ""
    created_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    # Client-side only, never persisted
    is_streaming: bool = Field(default=False, exclude=True)
    error: Optional[str] = Field(default=None, exclude=True)

    class Config:
        from_attributes = True

    @property
    def is_user(self) -> bool:
        return self.sender_type == SenderType.USER


class ChatRequest(BaseModel):
    """Body of the chat completion endpoint"""
    message: str
    session_id: str = Field(alias="sessionId")
    supporter_id: str = Field(alias="supporterId")
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SessionCreate(BaseModel):
    supporter_id: str
    title: Optional[str] = None


class SessionUpdate(BaseModel):
    supporter_id: str
    title: Optional[str] = None
    status: Optional[SessionStatus] = None
