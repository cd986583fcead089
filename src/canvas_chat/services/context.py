"""Context window construction for history-aware text generation."""

from typing import List
from uuid import UUID

from ..domain.models import HistoryTurn
from ..repositories.base import Repository

DEFAULT_CONTEXT_WINDOW = 10


class ContextBuilder:
    """Reads the most recent messages of a conversation, oldest first.

    Roles stay in the internal vocabulary; providers translate them.
    """

    def __init__(self, repository: Repository, limit: int = DEFAULT_CONTEXT_WINDOW) -> None:
        self.repository = repository
        self.limit = limit

    async def build(self, conversation_id: UUID) -> List[HistoryTurn]:
        messages = await self.repository.list_recent_messages(conversation_id, self.limit)
        return [HistoryTurn(role=m.role, content=m.content) for m in messages]
