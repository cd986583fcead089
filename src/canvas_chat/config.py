"""Application settings.

Everything the providers and the API need is read from the environment once,
validated, and passed around explicitly as a ``Settings`` instance.
"""

import os
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from .domain.errors import ConfigurationError

logger = structlog.get_logger()

DEFAULT_TEXT_MODEL = "gemini-1.5-flash"
DEFAULT_IMAGE_BASE_URL = "https://image.pollinations.ai/prompt"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Validated runtime configuration."""

    gemini_api_key: str = Field(min_length=1)
    text_model: str = DEFAULT_TEXT_MODEL
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=1024, gt=0)
    provider_timeout: float = Field(default=30.0, gt=0)
    context_window: int = Field(default=10, gt=0)

    image_base_url: str = DEFAULT_IMAGE_BASE_URL
    image_width: int = Field(default=1024, gt=0)
    image_height: int = Field(default=1024, gt=0)
    image_model: Optional[str] = None

    rate_limit: int = Field(default=50, gt=0)
    rate_window: int = Field(default=60, gt=0)
    serialize_exchanges: bool = False
    max_concurrent_exchanges: int = Field(default=10, gt=0)
    cors_origins: List[str] = ["*"]

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        values = {
            "gemini_api_key": os.getenv("GEMINI_API_KEY", ""),
            "text_model": os.getenv("GEMINI_MODEL", DEFAULT_TEXT_MODEL),
            "image_base_url": os.getenv("IMAGE_BASE_URL", DEFAULT_IMAGE_BASE_URL),
            "image_model": os.getenv("IMAGE_MODEL") or None,
            "serialize_exchanges": os.getenv("SERIALIZE_EXCHANGES", "").lower() in _TRUE_VALUES,
        }
        numeric = {
            "provider_timeout": "PROVIDER_TIMEOUT",
            "context_window": "CONTEXT_WINDOW",
            "image_width": "IMAGE_WIDTH",
            "image_height": "IMAGE_HEIGHT",
            "rate_limit": "RATE_LIMIT",
            "rate_window": "RATE_WINDOW",
            "max_concurrent_exchanges": "MAX_CONCURRENT_EXCHANGES",
        }
        for field, env_name in numeric.items():
            raw = os.getenv(env_name)
            if raw:
                values[field] = raw
        origins = os.getenv("CORS_ORIGINS")
        if origins:
            values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

        try:
            settings = cls(**values)
        except ValidationError as e:
            fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            logger.error("settings_invalid", fields=fields)
            raise ConfigurationError(f"Invalid settings: {', '.join(fields)}") from e

        logger.info(
            "settings_loaded",
            text_model=settings.text_model,
            context_window=settings.context_window,
            serialize_exchanges=settings.serialize_exchanges,
        )
        return settings

    def available_services(self) -> dict:
        """Report which generation backends are usable."""
        return {
            "gemini": bool(self.gemini_api_key),
            "pollinations": bool(self.image_base_url),
        }
