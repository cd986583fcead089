"""Base repository interface."""

from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from ..domain.models import Conversation, Message, Role


class Repository(ABC):
    """Abstract conversation store."""

    @abstractmethod
    async def get_owner(self, conversation_id: UUID) -> Optional[str]:
        """Return the owning user id, or None if the conversation is absent."""
        pass

    @abstractmethod
    async def create_conversation(self, user_id: str, title: str) -> Conversation:
        """Create a new conversation owned by ``user_id``."""
        pass

    @abstractmethod
    async def list_conversations(
        self, user_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> List[Conversation]:
        """List a user's conversations, most recently active first. No limit returns all."""
        pass

    @abstractmethod
    async def append_message(
        self,
        conversation_id: UUID,
        role: Role,
        content: str,
        image_url: Optional[str] = None,
    ) -> Message:
        """Append a message after every message already in the conversation.

        Raises ConversationNotFound if the conversation does not exist.
        """
        pass

    @abstractmethod
    async def list_messages(
        self, conversation_id: UUID, limit: Optional[int] = None, offset: int = 0
    ) -> List[Message]:
        """Get messages for a conversation, oldest first. No limit returns all."""
        pass

    @abstractmethod
    async def list_recent_messages(self, conversation_id: UUID, limit: int) -> List[Message]:
        """Get the last ``limit`` messages, oldest first."""
        pass

    @abstractmethod
    async def get_message(self, message_id: UUID) -> Optional[Message]:
        """Retrieve a single message by ID."""
        pass

    @abstractmethod
    async def touch_activity(self, conversation_id: UUID) -> None:
        """Refresh the conversation's last-activity timestamp."""
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: UUID, user_id: str) -> bool:
        """Delete a conversation and its messages if ``user_id`` owns it."""
        pass
