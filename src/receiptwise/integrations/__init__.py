"""Receiptwise integrations module."""

from receiptwise.integrations.anthropic_chat import (
    AnthropicConversation,
    ConversationError,
)
from receiptwise.integrations.anthropic_extractor import (
    AnthropicExtractor,
    ExtractionError,
    ExtractionIncompleteError,
    ExtractionRefusedError,
)
from receiptwise.integrations.image_store import LocalImageStore
from receiptwise.integrations.support import (
    GenerativeSupportProvider,
    SerperSupportProvider,
    SupportLookup,
)

__all__ = [
    "AnthropicConversation",
    "AnthropicExtractor",
    "ConversationError",
    "ExtractionError",
    "ExtractionRefusedError",
    "ExtractionIncompleteError",
    "GenerativeSupportProvider",
    "LocalImageStore",
    "SerperSupportProvider",
    "SupportLookup",
]
