"""Text generation providers."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import google.generativeai as genai
import structlog

from ..config import Settings
from ..domain.errors import ProviderFailure
from ..domain.models import HistoryTurn, Role

logger = structlog.get_logger()

# Gemini calls the assistant side of a chat "model".
GEMINI_ROLES = {Role.USER: "user", Role.ASSISTANT: "model"}


class TextProvider(ABC):
    """Produces a text reply for a prompt."""

    name = "text"

    @abstractmethod
    async def generate_text(self, prompt: str, history: List[HistoryTurn]) -> str:
        """Generate a reply, raising ProviderFailure when no attempt succeeds."""
        pass


def to_gemini_history(prompt: str, history: List[HistoryTurn]) -> List[Dict[str, Any]]:
    """Convert context turns into Gemini chat history.

    The chat session sends ``prompt`` itself, so a trailing user turn carrying
    the same text is dropped to avoid sending it twice. Gemini history must
    open with a user turn, so leading assistant turns are dropped too.
    """
    turns = list(history)
    if turns and turns[-1].role == Role.USER and turns[-1].content == prompt:
        turns = turns[:-1]
    while turns and turns[0].role != Role.USER:
        turns = turns[1:]
    return [{"role": GEMINI_ROLES[t.role], "parts": [t.content]} for t in turns]


class GeminiTextProvider(TextProvider):
    """Text provider backed by Google's Gemini models.

    Generation is a two-step attempt sequence: a chat session seeded with the
    conversation history, then a plain single-prompt call. Only the second
    failure is reported to the caller.
    """

    name = "gemini"

    def __init__(self, settings: Settings, model: Optional[Any] = None) -> None:
        self.timeout = settings.provider_timeout
        if model is None:
            genai.configure(api_key=settings.gemini_api_key)
            model = genai.GenerativeModel(
                settings.text_model,
                generation_config={
                    "temperature": settings.temperature,
                    "max_output_tokens": settings.max_output_tokens,
                },
            )
        self.model = model
        logger.info("llm_service_init", model=settings.text_model)

    async def _generate_with_history(self, prompt: str, history: List[HistoryTurn]) -> str:
        chat = self.model.start_chat(history=to_gemini_history(prompt, history))
        response = await asyncio.wait_for(chat.send_message_async(prompt), timeout=self.timeout)
        return response.text

    async def _generate_plain(self, prompt: str) -> str:
        response = await asyncio.wait_for(self.model.generate_content_async(prompt), timeout=self.timeout)
        return response.text

    async def generate_text(self, prompt: str, history: List[HistoryTurn]) -> str:
        if history:
            try:
                return await self._generate_with_history(prompt, history)
            except Exception as e:
                logger.warning("chat_generation_failed", fallback="plain_prompt", error=str(e) or type(e).__name__)

        try:
            return await self._generate_plain(prompt)
        except Exception as e:
            logger.error("text_generation_error", error=str(e) or type(e).__name__)
            raise ProviderFailure("Failed to generate text response") from e
