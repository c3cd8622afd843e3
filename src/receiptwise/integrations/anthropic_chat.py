"""Anthropic API integration for assistant replies."""

import asyncio
from collections.abc import Sequence

from anthropic import APIError, AsyncAnthropic
from anthropic.types import MessageParam

from receiptwise.errors import ExternalServiceError
from receiptwise.models import ChatTurn


class ConversationError(ExternalServiceError):
    """Raised when the conversational model fails to produce a reply."""


class AnthropicConversation:
    """Conversational service backed by the Anthropic Messages API.

    Prior turns are replayed as-is and the instruction is sent as the final
    user turn. There is no retry; a failed call surfaces as ConversationError.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-haiku-4-5",
        max_tokens: int = 1000,
        timeout: float = 20.0,
    ) -> None:
        self.client = AsyncAnthropic(api_key=api_key, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def reply(
        self,
        history: Sequence[ChatTurn],
        instruction: str,
        max_tokens: int | None = None,
    ) -> str:
        """
        Generate the next assistant turn.

        Args:
            history: Prior turns, oldest first
            instruction: Text of the final user turn
            max_tokens: Override default max_tokens if specified

        Returns:
            The reply text

        Raises:
            ConversationError: On API errors, timeouts and refusals
        """
        messages: list[MessageParam] = [
            {"role": turn.role, "content": turn.content} for turn in history
        ]
        messages.append({"role": "user", "content": instruction})

        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=self.model,
                    max_tokens=max_tokens or self.max_tokens,
                    messages=messages,
                ),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            raise ConversationError(f"Assistant timed out after {self.timeout:g}s") from e
        except APIError as e:
            raise ConversationError(str(e)) from e

        if response.stop_reason == "refusal":
            raise ConversationError("Model refused to answer")

        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
