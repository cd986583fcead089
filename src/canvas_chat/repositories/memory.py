"""In-memory repository implementation."""

import asyncio
import itertools
from typing import Dict, List, Optional
from uuid import UUID

import structlog

from ..domain.errors import ConversationNotFound
from ..domain.models import Conversation, Message, Role, utcnow
from .base import Repository

logger = structlog.get_logger()


def _page(items: list, limit: Optional[int], offset: int) -> list:
    end = None if limit is None else offset + limit
    return items[offset:end]


class InMemoryRepository(Repository):
    """Async-safe in-memory repository.

    Messages live in one list per conversation, so append order is storage
    order. Conversation recency is tracked with a monotonically increasing
    counter alongside ``updated_at`` so that two touches within the same clock
    tick still sort deterministically.
    """

    def __init__(self) -> None:
        self._conversations: Dict[UUID, Conversation] = {}
        self._messages: Dict[UUID, List[Message]] = {}
        self._message_index: Dict[UUID, Message] = {}
        self._activity: Dict[UUID, int] = {}
        self._ticks = itertools.count()
        self._lock = asyncio.Lock()
        logger.info("repository_initialized")

    async def get_owner(self, conversation_id: UUID) -> Optional[str]:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            return conversation.user_id if conversation else None

    async def create_conversation(self, user_id: str, title: str) -> Conversation:
        conversation = Conversation(user_id=user_id, title=title)
        async with self._lock:
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
            self._activity[conversation.id] = next(self._ticks)
            logger.info("conversation_created", conversation_id=str(conversation.id), user_id=user_id)
        return conversation.model_copy()

    async def list_conversations(
        self, user_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> List[Conversation]:
        async with self._lock:
            owned = [c for c in self._conversations.values() if c.user_id == user_id]
            owned.sort(key=lambda c: (c.updated_at, self._activity[c.id]), reverse=True)
            return [c.model_copy() for c in _page(owned, limit, offset)]

    async def append_message(
        self,
        conversation_id: UUID,
        role: Role,
        content: str,
        image_url: Optional[str] = None,
    ) -> Message:
        async with self._lock:
            if conversation_id not in self._conversations:
                logger.error("conversation_not_found_for_message", conversation_id=str(conversation_id))
                raise ConversationNotFound(conversation_id)

            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                image_url=image_url,
            )
            self._messages[conversation_id].append(message)
            self._message_index[message.id] = message
            logger.info("message_added", conversation_id=str(conversation_id), message_role=role.value)
            return message

    async def list_messages(
        self, conversation_id: UUID, limit: Optional[int] = None, offset: int = 0
    ) -> List[Message]:
        async with self._lock:
            messages = self._messages.get(conversation_id, [])
            return _page(messages, limit, offset)

    async def list_recent_messages(self, conversation_id: UUID, limit: int) -> List[Message]:
        async with self._lock:
            if limit <= 0:
                return []
            return self._messages.get(conversation_id, [])[-limit:]

    async def get_message(self, message_id: UUID) -> Optional[Message]:
        async with self._lock:
            return self._message_index.get(message_id)

    async def touch_activity(self, conversation_id: UUID) -> None:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise ConversationNotFound(conversation_id)
            conversation.updated_at = utcnow()
            self._activity[conversation_id] = next(self._ticks)

    async def delete_conversation(self, conversation_id: UUID, user_id: str) -> bool:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None or conversation.user_id != user_id:
                logger.warning("conversation_delete_refused", conversation_id=str(conversation_id))
                return False

            del self._conversations[conversation_id]
            del self._activity[conversation_id]
            for message in self._messages.pop(conversation_id, []):
                self._message_index.pop(message.id, None)
            logger.info("conversation_deleted", conversation_id=str(conversation_id))
            return True
