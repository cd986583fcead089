"""Domain models for the chat application."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

DEFAULT_TITLE = "New Chat"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Who authored a message."""

    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """One immutable turn in a conversation."""

    model_config = {"frozen": True}

    id: UUID = Field(default_factory=uuid4)
    conversation_id: UUID
    role: Role
    content: str
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Conversation(BaseModel):
    """Conversation model, owned by exactly one user."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    title: str = DEFAULT_TITLE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class HistoryTurn(BaseModel):
    """Provider-neutral context entry handed to a text provider."""

    role: Role
    content: str


class GenerationRequest(BaseModel):
    """Inbound send-message request. Never persisted."""

    conversation_id: UUID
    content: str
    is_image_request: bool = False


class GenerationResult(BaseModel):
    """Provider output, or the apology that replaced it."""

    content: str
    image_url: Optional[str] = None
