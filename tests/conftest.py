"""Shared fixtures: an in-memory store, stub providers and an app wired to them."""

from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from canvas_chat.api.app import create_app
from canvas_chat.config import Settings
from canvas_chat.domain.errors import ProviderFailure
from canvas_chat.domain.models import HistoryTurn
from canvas_chat.repositories.memory import InMemoryRepository
from canvas_chat.services.chat import ChatService
from canvas_chat.services.image import ImageProvider
from canvas_chat.services.llm import TextProvider


class StubTextProvider(TextProvider):
    name = "stub-text"

    def __init__(self, reply: str = "hi there", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[tuple] = []

    async def generate_text(self, prompt: str, history: List[HistoryTurn]) -> str:
        self.calls.append((prompt, list(history)))
        if self.error is not None:
            raise self.error
        return self.reply


class StubImageProvider(ImageProvider):
    name = "stub-image"

    def __init__(self, url: str = "https://img/abc", error: Optional[Exception] = None):
        self.url = url
        self.error = error
        self.calls: List[str] = []

    async def generate_image(self, prompt: str) -> str:
        self.calls.append(prompt)
        if self.error is not None:
            raise self.error
        return self.url


@pytest.fixture
def settings() -> Settings:
    return Settings(gemini_api_key="test-key", rate_limit=1000)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def text_provider() -> StubTextProvider:
    return StubTextProvider()


@pytest.fixture
def image_provider() -> StubImageProvider:
    return StubImageProvider()


@pytest.fixture
def failing_text_provider() -> StubTextProvider:
    return StubTextProvider(error=ProviderFailure("quota exhausted"))


@pytest.fixture
def service(repository, text_provider, image_provider) -> ChatService:
    return ChatService(repository, text_provider, image_provider)


@pytest.fixture
def app(settings, repository, text_provider, image_provider):
    return create_app(
        settings=settings,
        repository=repository,
        text_provider=text_provider,
        image_provider=image_provider,
    )


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-Id": "U1"},
    ) as client:
        yield client
    await app.state.rate_limiter.stop()
