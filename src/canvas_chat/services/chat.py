"""Chat service: conversation lifecycle and the send-message exchange.

A send runs through a fixed sequence of states::

    VALIDATING -> PERSISTING_USER_MESSAGE -> BUILDING_CONTEXT -> GENERATING
        -> PERSISTING_ASSISTANT_MESSAGE -> TOUCHING_ACTIVITY -> DONE

The user's message is stored before any provider is called, and provider
failures are turned into an apology reply, so every attempt that gets past
ownership validation leaves a user/assistant pair behind. Ownership is checked
with a read and the writes that follow are not isolated from a concurrent
delete; a repository that refuses writes to a deleted conversation turns that
race into a StoreWriteFailure.
"""

from enum import Enum
from typing import List, Optional
from uuid import UUID

import structlog

from ..domain.errors import (
    NotAuthorized,
    StoreWriteFailure,
    Unauthenticated,
)
from ..domain.models import (
    DEFAULT_TITLE,
    Conversation,
    GenerationRequest,
    GenerationResult,
    HistoryTurn,
    Message,
    Role,
)
from ..metrics import EXCHANGES, PROVIDER_FAILURES
from ..repositories.base import Repository
from .context import DEFAULT_CONTEXT_WINDOW, ContextBuilder
from .image import ImageProvider
from .llm import TextProvider

logger = structlog.get_logger()

TEXT_APOLOGY = (
    "I'm sorry, I'm having trouble generating a response right now. "
    "Please check the API configuration and try again."
)
IMAGE_APOLOGY = "Sorry, I couldn't generate an image right now. Please try again later."
IMAGE_REPLY_TEMPLATE = 'I\'ve generated an image based on: "{prompt}"'


class ExchangeState(str, Enum):
    VALIDATING = "validating"
    PERSISTING_USER_MESSAGE = "persisting_user_message"
    BUILDING_CONTEXT = "building_context"
    GENERATING = "generating"
    PERSISTING_ASSISTANT_MESSAGE = "persisting_assistant_message"
    TOUCHING_ACTIVITY = "touching_activity"
    DONE = "done"
    ERRORED = "errored"


class ChatService:
    """Owner-scoped conversation operations over a repository and two providers."""

    def __init__(
        self,
        repository: Repository,
        text_provider: TextProvider,
        image_provider: ImageProvider,
        context_window: int = DEFAULT_CONTEXT_WINDOW,
    ) -> None:
        self.repository = repository
        self.text_provider = text_provider
        self.image_provider = image_provider
        self.context_builder = ContextBuilder(repository, limit=context_window)

    @staticmethod
    def _require_user(user_id: Optional[str]) -> str:
        if not user_id:
            raise Unauthenticated("Authentication required")
        return user_id

    async def _check_owner(self, user_id: str, conversation_id: UUID) -> None:
        owner = await self.repository.get_owner(conversation_id)
        if owner is None or owner != user_id:
            logger.warning("conversation_access_denied", conversation_id=str(conversation_id), user_id=user_id)
            raise NotAuthorized(conversation_id)

    async def create_conversation(self, user_id: Optional[str], title: Optional[str] = None) -> Conversation:
        user_id = self._require_user(user_id)
        return await self.repository.create_conversation(user_id, title or DEFAULT_TITLE)

    async def list_conversations(
        self, user_id: Optional[str], limit: Optional[int] = None, offset: int = 0
    ) -> List[Conversation]:
        user_id = self._require_user(user_id)
        return await self.repository.list_conversations(user_id, limit=limit, offset=offset)

    async def get_messages(
        self, user_id: Optional[str], conversation_id: UUID, limit: Optional[int] = None, offset: int = 0
    ) -> List[Message]:
        user_id = self._require_user(user_id)
        await self._check_owner(user_id, conversation_id)
        return await self.repository.list_messages(conversation_id, limit=limit, offset=offset)

    async def get_message(self, user_id: Optional[str], message_id: UUID) -> Message:
        user_id = self._require_user(user_id)
        message = await self.repository.get_message(message_id)
        if message is None:
            logger.warning("message_not_found", message_id=str(message_id))
            raise NotAuthorized(message_id)
        await self._check_owner(user_id, message.conversation_id)
        return message

    async def delete_conversation(self, user_id: Optional[str], conversation_id: UUID) -> bool:
        """Delete an owned conversation. Returns False when there was nothing to delete."""
        user_id = self._require_user(user_id)
        return await self.repository.delete_conversation(conversation_id, user_id)

    async def send_message(
        self,
        user_id: Optional[str],
        conversation_id: UUID,
        content: str,
        is_image_request: bool = False,
    ) -> Message:
        """Run one exchange and return the stored assistant message.

        Raises Unauthenticated, NotAuthorized or StoreWriteFailure. Provider
        failures never escape; they become an apology reply.
        """
        user_id = self._require_user(user_id)
        request = GenerationRequest(
            conversation_id=conversation_id,
            content=content,
            is_image_request=is_image_request,
        )
        mode = "image" if request.is_image_request else "text"
        log = logger.bind(conversation_id=str(conversation_id), mode=mode)

        log.debug("exchange_state", state=ExchangeState.VALIDATING.value)
        try:
            await self._check_owner(user_id, conversation_id)
        except NotAuthorized:
            log.debug("exchange_state", state=ExchangeState.ERRORED.value)
            raise

        log.debug("exchange_state", state=ExchangeState.PERSISTING_USER_MESSAGE.value)
        await self._append(log, conversation_id, Role.USER, request.content)

        history: List[HistoryTurn] = []
        if not request.is_image_request:
            log.debug("exchange_state", state=ExchangeState.BUILDING_CONTEXT.value)
            history = await self.context_builder.build(conversation_id)

        log.debug("exchange_state", state=ExchangeState.GENERATING.value)
        result = await self._generate(request, history)

        log.debug("exchange_state", state=ExchangeState.PERSISTING_ASSISTANT_MESSAGE.value)
        reply = await self._append(log, conversation_id, Role.ASSISTANT, result.content, result.image_url)

        log.debug("exchange_state", state=ExchangeState.TOUCHING_ACTIVITY.value)
        try:
            await self.repository.touch_activity(conversation_id)
        except Exception as e:
            log.warning("touch_activity_failed", error=str(e))

        EXCHANGES.labels(mode=mode).inc()
        log.info(
            "message_processed",
            user_message_length=len(request.content),
            ai_response_length=len(result.content),
            has_image=result.image_url is not None,
        )
        log.debug("exchange_state", state=ExchangeState.DONE.value)
        return reply

    async def _append(
        self,
        log,
        conversation_id: UUID,
        role: Role,
        content: str,
        image_url: Optional[str] = None,
    ) -> Message:
        try:
            return await self.repository.append_message(conversation_id, role, content, image_url)
        except Exception as e:
            log.error("message_write_failed", message_role=role.value, error=str(e))
            log.debug("exchange_state", state=ExchangeState.ERRORED.value)
            raise StoreWriteFailure(f"Failed to save {role.value} message") from e

    async def _generate(self, request: GenerationRequest, history: List[HistoryTurn]) -> GenerationResult:
        if request.is_image_request:
            try:
                image_url = await self.image_provider.generate_image(request.content)
            except Exception as e:
                self._record_provider_failure(self.image_provider.name, e)
                return GenerationResult(content=IMAGE_APOLOGY)
            return GenerationResult(
                content=IMAGE_REPLY_TEMPLATE.format(prompt=request.content),
                image_url=image_url,
            )

        try:
            text = await self.text_provider.generate_text(request.content, history)
        except Exception as e:
            self._record_provider_failure(self.text_provider.name, e)
            return GenerationResult(content=TEXT_APOLOGY)
        return GenerationResult(content=text)

    @staticmethod
    def _record_provider_failure(provider: str, error: Exception) -> None:
        PROVIDER_FAILURES.labels(provider=provider).inc()
        logger.error("generation_failed", provider=provider, error=str(error))
