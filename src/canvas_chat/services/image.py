"""Image generation providers."""

import random
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import quote, urlencode

import structlog

from ..config import Settings
from ..domain.errors import ProviderFailure

logger = structlog.get_logger()

MAX_SEED = 1_000_000


class ImageProvider(ABC):
    """Turns a prompt into a referenceable image location."""

    name = "image"

    @abstractmethod
    async def generate_image(self, prompt: str) -> str:
        """Return an image URL, raising ProviderFailure on error."""
        pass


class PollinationsImageProvider(ImageProvider):
    """Pollinations renders an image on first fetch of a prompt URL.

    Generating an image is therefore building that URL; nothing is sent over
    the network here.
    """

    name = "pollinations"

    def __init__(self, settings: Settings) -> None:
        self.base_url = settings.image_base_url.rstrip("/")
        self.width = settings.image_width
        self.height = settings.image_height
        self.model = settings.image_model

    def build_url(
        self,
        prompt: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
        model: Optional[str] = None,
        seed: Optional[int] = None,
    ) -> str:
        cleaned = prompt.strip()
        if not cleaned:
            raise ProviderFailure("Cannot generate an image from an empty prompt")

        params = {"width": width or self.width, "height": height or self.height}
        model = model or self.model
        if model:
            params["model"] = model
            params["seed"] = seed if seed is not None else random.randrange(MAX_SEED)
        elif seed is not None:
            params["seed"] = seed
        return f"{self.base_url}/{quote(cleaned, safe='')}?{urlencode(params)}"

    async def generate_image(self, prompt: str) -> str:
        url = self.build_url(prompt)
        logger.info("image_url_generated", prompt_length=len(prompt))
        return url

