"""Chat turns and quick actions for the receipt assistant."""

from collections.abc import Mapping, Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any, Protocol, assert_never

from pydantic import ValidationError

from receiptwise.assistant.context import ContextAssembler
from receiptwise.dates import Clock, start_of_month, utc_now
from receiptwise.errors import ExternalServiceError, RequestValidationError
from receiptwise.models import (
    WARRANTY_ALERT_DAYS,
    ChatReply,
    ChatTurn,
    ContextPayload,
    QuickAction,
    QuickActionResult,
)
from receiptwise.store import ReceiptQuery, ReceiptStore
from receiptwise.templates import prompt_environment

RECENT_ACTION_LIMIT = 10


class Conversation(Protocol):
    async def reply(
        self,
        history: Sequence[ChatTurn],
        instruction: str,
        max_tokens: int | None = None,
    ) -> str: ...


def _coerce_history(history: Sequence[ChatTurn | Mapping[str, Any]]) -> list[ChatTurn]:
    try:
        return [
            turn if isinstance(turn, ChatTurn) else ChatTurn.model_validate(turn)
            for turn in history
        ]
    except ValidationError as e:
        raise RequestValidationError(f"Invalid conversation history: {e}") from e


class ChatOrchestrator:
    """Turns a user message into an assistant reply.

    The server keeps no conversation state: whatever history the caller sends
    is replayed in order before the new message.
    """

    def __init__(
        self,
        assembler: ContextAssembler,
        conversation: Conversation | None,
        store: ReceiptStore,
        clock: Clock = utc_now,
        max_tokens: int = 1000,
        prompts_dir: str | Path | None = None,
    ) -> None:
        self.assembler = assembler
        self.conversation = conversation
        self.store = store
        self.clock = clock
        self.max_tokens = max_tokens
        self.jinja_env = prompt_environment(prompts_dir)

    def build_preamble(self, payload: ContextPayload | None) -> str:
        """Render the persona, today's date and the serialized context."""
        context = payload.model_dump_json(indent=2, exclude_none=True) if payload else None
        template = self.jinja_env.get_template("chat_system.jinja2")
        return template.render(
            CURRENT_DATE=self.clock().date().isoformat(),
            CONTEXT=context,
        ).strip()

    async def chat(
        self,
        message: str,
        receipt_id: str | None = None,
        conversation_history: Sequence[ChatTurn | Mapping[str, Any]] = (),
    ) -> ChatReply:
        """
        Answer one user message.

        Args:
            message: The user's message
            receipt_id: Receipt the conversation is about, if any
            conversation_history: Prior turns, oldest first

        Returns:
            ChatReply with the reply text and whether receipt context was used

        Raises:
            RequestValidationError: If the message is blank or history is malformed
            ExternalServiceError: If the conversational service is missing or fails
        """
        if not message or not message.strip():
            raise RequestValidationError("Message is required")
        history = _coerce_history(conversation_history)
        if self.conversation is None:
            raise ExternalServiceError(
                "The assistant is not configured (ANTHROPIC_API_KEY is not set)"
            )

        payload = await self.assembler.assemble(message, receipt_id)
        instruction = f"{self.build_preamble(payload)}\n\nUser: {message}"
        reply = await self.conversation.reply(history, instruction, max_tokens=self.max_tokens)
        return ChatReply(message=reply, context_used=payload is not None)

    def quick_action(self, name: str | QuickAction) -> QuickActionResult:
        """
        Run one of the predefined receipt queries.

        Raises:
            RequestValidationError: If ``name`` is not a known quick action
        """
        try:
            action = QuickAction(name)
        except ValueError as e:
            raise RequestValidationError(f"Invalid action: {name}") from e

        today = self.clock().date()
        match action:
            case QuickAction.EXPIRING_WARRANTIES:
                receipts = self.store.find(
                    ReceiptQuery(
                        warranty_from=today,
                        warranty_to=today + timedelta(days=WARRANTY_ALERT_DAYS),
                    ),
                    sort="warranty_expiry_date",
                )
                data = [r.view(today) for r in receipts]
            case QuickAction.THIS_MONTH_SPENDING:
                data = self.store.sum_amounts(
                    ReceiptQuery(purchased_from=start_of_month(today))
                )
            case QuickAction.RECURRING_BILLS:
                receipts = self.store.find(ReceiptQuery(is_recurring=True), sort="-purchase_date")
                data = [r.view(today) for r in receipts]
            case QuickAction.RECENT:
                receipts = self.store.find(sort="-created_at", limit=RECENT_ACTION_LIMIT)
                data = [r.view(today) for r in receipts]
            case _:
                assert_never(action)

        return QuickActionResult(action=action, data=data)
