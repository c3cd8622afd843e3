"""Receipt-aware chat assistant."""

from receiptwise.assistant.context import ContextAssembler, is_support_request
from receiptwise.assistant.orchestrator import ChatOrchestrator

__all__ = ["ChatOrchestrator", "ContextAssembler", "is_support_request"]
