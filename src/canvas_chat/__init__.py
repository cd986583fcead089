"""Multi-conversation AI chat with text replies and image generation."""

__version__ = "0.1.0"
