"""Test suite for the message exchange and conversation lifecycle."""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from canvas_chat.domain.errors import NotAuthorized, StoreWriteFailure, Unauthenticated
from canvas_chat.domain.models import Role
from canvas_chat.repositories.base import Repository
from canvas_chat.repositories.memory import InMemoryRepository
from canvas_chat.services.chat import IMAGE_APOLOGY, TEXT_APOLOGY, ChatService

from conftest import StubImageProvider, StubTextProvider


class FlakyTouchRepository(InMemoryRepository):
    async def touch_activity(self, conversation_id):
        raise RuntimeError("store unavailable")


class ReadOnlyRepository(InMemoryRepository):
    async def append_message(self, conversation_id, role, content, image_url=None):
        raise RuntimeError("disk full")


class AssistantWriteFailsRepository(InMemoryRepository):
    async def append_message(self, conversation_id, role, content, image_url=None):
        if role == Role.ASSISTANT:
            raise RuntimeError("disk full")
        return await super().append_message(conversation_id, role, content, image_url)


def _pairs(messages):
    return [(m.role, m.content) for m in messages]


@pytest.mark.asyncio
async def test_text_exchange_stores_user_then_assistant(service, repository):
    conversation = await service.create_conversation("U1")

    reply = await service.send_message("U1", conversation.id, "hello")

    assert reply.role == Role.ASSISTANT
    assert reply.content == "hi there"
    assert reply.image_url is None
    messages = await service.get_messages("U1", conversation.id)
    assert _pairs(messages) == [(Role.USER, "hello"), (Role.ASSISTANT, "hi there")]
    assert messages[1].id == reply.id


@pytest.mark.asyncio
async def test_text_provider_failure_becomes_apology(repository, failing_text_provider, image_provider):
    service = ChatService(repository, failing_text_provider, image_provider)
    conversation = await service.create_conversation("U1")

    reply = await service.send_message("U1", conversation.id, "hello")

    assert reply.content == TEXT_APOLOGY
    assert reply.image_url is None
    messages = await service.get_messages("U1", conversation.id)
    assert _pairs(messages) == [(Role.USER, "hello"), (Role.ASSISTANT, TEXT_APOLOGY)]


@pytest.mark.asyncio
async def test_unexpected_provider_error_is_absorbed(repository, image_provider):
    service = ChatService(repository, StubTextProvider(error=TimeoutError()), image_provider)
    conversation = await service.create_conversation("U1")

    reply = await service.send_message("U1", conversation.id, "hello")

    assert reply.content == TEXT_APOLOGY


@pytest.mark.asyncio
async def test_image_exchange(service, text_provider, image_provider):
    conversation = await service.create_conversation("U1")

    reply = await service.send_message("U1", conversation.id, "draw a cat", is_image_request=True)

    assert "draw a cat" in reply.content
    assert reply.image_url == "https://img/abc"
    assert image_provider.calls == ["draw a cat"]
    assert text_provider.calls == []


@pytest.mark.asyncio
async def test_image_provider_failure_becomes_apology(repository, text_provider):
    service = ChatService(repository, text_provider, StubImageProvider(error=RuntimeError("down")))
    conversation = await service.create_conversation("U1")

    reply = await service.send_message("U1", conversation.id, "draw a cat", is_image_request=True)

    assert reply.content == IMAGE_APOLOGY
    assert reply.image_url is None


@pytest.mark.asyncio
async def test_text_provider_receives_context_including_new_message(service, repository, text_provider):
    conversation = await service.create_conversation("U1")
    for i in range(6):
        await service.send_message("U1", conversation.id, f"question {i}")

    prompt, history = text_provider.calls[-1]
    assert prompt == "question 5"
    assert len(history) == 10
    assert history[-1].role == Role.USER
    assert history[-1].content == "question 5"
    assert history[0].content == "hi there"
    assert history[1].content == "question 1"


@pytest.mark.asyncio
async def test_context_window_is_configurable(repository, text_provider, image_provider):
    service = ChatService(repository, text_provider, image_provider, context_window=3)
    conversation = await service.create_conversation("U1")
    for i in range(4):
        await service.send_message("U1", conversation.id, f"q{i}")

    _, history = text_provider.calls[-1]
    assert [h.content for h in history] == ["q2", "hi there", "q3"]


@pytest.mark.asyncio
async def test_send_to_foreign_conversation_writes_nothing(service, repository, text_provider):
    conversation = await service.create_conversation("U1")

    with pytest.raises(NotAuthorized):
        await service.send_message("U2", conversation.id, "hello")

    assert await repository.list_messages(conversation.id) == []
    assert text_provider.calls == []


@pytest.mark.asyncio
async def test_send_to_missing_conversation_is_not_authorized(service):
    with pytest.raises(NotAuthorized):
        await service.send_message("U1", uuid4(), "hello")


@pytest.mark.asyncio
async def test_every_operation_requires_a_caller(text_provider, image_provider):
    repository = AsyncMock(spec=Repository)
    service = ChatService(repository, text_provider, image_provider)
    conversation_id = uuid4()

    with pytest.raises(Unauthenticated):
        await service.send_message(None, conversation_id, "hello")
    with pytest.raises(Unauthenticated):
        await service.get_messages("", conversation_id)
    with pytest.raises(Unauthenticated):
        await service.create_conversation(None)
    with pytest.raises(Unauthenticated):
        await service.list_conversations(None)
    with pytest.raises(Unauthenticated):
        await service.delete_conversation(None, conversation_id)
    with pytest.raises(Unauthenticated):
        await service.get_message(None, uuid4())

    assert repository.mock_calls == []
    assert text_provider.calls == []


@pytest.mark.asyncio
async def test_touch_failure_does_not_fail_exchange(text_provider, image_provider):
    repository = FlakyTouchRepository()
    service = ChatService(repository, text_provider, image_provider)
    conversation = await service.create_conversation("U1")

    reply = await service.send_message("U1", conversation.id, "hello")

    assert reply.content == "hi there"
    assert len(await repository.list_messages(conversation.id)) == 2


@pytest.mark.asyncio
async def test_user_message_write_failure_is_fatal(text_provider, image_provider):
    repository = ReadOnlyRepository()
    service = ChatService(repository, text_provider, image_provider)
    conversation = await service.create_conversation("U1")

    with pytest.raises(StoreWriteFailure):
        await service.send_message("U1", conversation.id, "hello")

    assert text_provider.calls == []


@pytest.mark.asyncio
async def test_assistant_message_write_failure_is_surfaced(text_provider, image_provider):
    repository = AssistantWriteFailsRepository()
    service = ChatService(repository, text_provider, image_provider)
    conversation = await service.create_conversation("U1")

    with pytest.raises(StoreWriteFailure):
        await service.send_message("U1", conversation.id, "hello")

    # The user's input survives
    assert _pairs(await repository.list_messages(conversation.id)) == [(Role.USER, "hello")]


@pytest.mark.asyncio
async def test_send_refreshes_conversation_activity(service):
    first = await service.create_conversation("U1", "first")
    second = await service.create_conversation("U1", "second")

    await service.send_message("U1", first.id, "hello")

    listed = await service.list_conversations("U1")
    assert [c.id for c in listed] == [first.id, second.id]


@pytest.mark.asyncio
async def test_create_conversation_defaults_title(service):
    conversation = await service.create_conversation("U1")
    assert conversation.title == "New Chat"
    assert conversation.user_id == "U1"

    titled = await service.create_conversation("U1", "Trip planning")
    assert titled.title == "Trip planning"


@pytest.mark.asyncio
async def test_delete_by_non_owner_leaves_conversation_intact(service):
    conversation = await service.create_conversation("U1")
    await service.send_message("U1", conversation.id, "hello")

    assert await service.delete_conversation("U2", conversation.id) is False

    messages = await service.get_messages("U1", conversation.id)
    assert len(messages) == 2


@pytest.mark.asyncio
async def test_delete_is_idempotent(service):
    conversation = await service.create_conversation("U1")

    assert await service.delete_conversation("U1", conversation.id) is True
    assert await service.delete_conversation("U1", conversation.id) is False
    with pytest.raises(NotAuthorized):
        await service.get_messages("U1", conversation.id)


@pytest.mark.asyncio
async def test_get_message_checks_owner(service):
    conversation = await service.create_conversation("U1")
    reply = await service.send_message("U1", conversation.id, "hello")

    assert (await service.get_message("U1", reply.id)).content == "hi there"
    with pytest.raises(NotAuthorized):
        await service.get_message("U2", reply.id)
    with pytest.raises(NotAuthorized):
        await service.get_message("U1", uuid4())


@pytest.mark.asyncio
async def test_long_conversation_listed_in_full(service):
    conversation = await service.create_conversation("U1")
    for i in range(60):
        await service.send_message("U1", conversation.id, f"question {i}")

    messages = await service.get_messages("U1", conversation.id)

    assert len(messages) == 120
    assert messages[0].content == "question 0"
    assert messages[-2].content == "question 59"


@pytest.mark.asyncio
async def test_all_conversations_listed(service):
    for _ in range(105):
        await service.create_conversation("U1")

    assert len(await service.list_conversations("U1")) == 105
