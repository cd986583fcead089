"""Exceptions raised by the chat domain."""

from uuid import UUID


class ChatError(Exception):
    """Base class for chat errors."""


class Unauthenticated(ChatError):
    """No caller identity was supplied."""


class NotAuthorized(ChatError):
    """The conversation does not exist or belongs to someone else.

    Both cases raise this so callers cannot probe for other users'
    conversations.
    """

    def __init__(self, resource_id: UUID):
        super().__init__(f"{resource_id} not found")
        self.resource_id = resource_id


class ConversationNotFound(ChatError):
    """Raised by a repository asked to write into a missing conversation."""

    def __init__(self, conversation_id: UUID):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class StoreWriteFailure(ChatError):
    """A message could not be persisted."""


class ProviderFailure(ChatError):
    """A generation provider could not produce a result."""


class ConfigurationError(ChatError):
    """Settings are missing or invalid."""
