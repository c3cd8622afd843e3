"""Assembly of the receipt context handed to the assistant for one chat turn."""

import asyncio
from datetime import timedelta
from typing import Protocol

from receiptwise.dates import Clock, utc_now
from receiptwise.errors import SupportLookupError
from receiptwise.logging import get_logger
from receiptwise.models import (
    WARRANTY_ALERT_DAYS,
    ContextPayload,
    PrimaryContext,
    RecentReceiptsContext,
    ReceiptContext,
    ReceiptSummary,
    RelevantReceiptsContext,
    SupportResult,
    WarrantySummary,
)
from receiptwise.store import ReceiptQuery, ReceiptStore

LOG = get_logger("assistant.context")

SUPPORT_KEYWORDS = (
    "support",
    "help",
    "contact",
    "customer service",
    "complaint",
    "return",
    "refund",
)

SEARCH_LIMIT = 3
RECENT_LIMIT = 5


class SupportFinder(Protocol):
    async def lookup(self, product_name: str) -> SupportResult: ...


def is_support_request(message: str) -> bool:
    """True if the message asks for support, refunds, returns and the like."""
    lowered = message.lower()
    return any(keyword in lowered for keyword in SUPPORT_KEYWORDS)


class ContextAssembler:
    """Builds the smallest context payload that grounds a reply.

    Primary context comes from exactly one source: the receipt named by id,
    else receipts matching the message text, else a summary of the most
    recent purchases. Warranties expiring within 30 days are always added
    alongside. Nothing here writes to the store, and store reads run in the
    default executor so the event loop is free while SQLite works.
    """

    def __init__(
        self,
        store: ReceiptStore,
        support: SupportFinder | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.support = support
        self.clock = clock

    async def assemble(
        self, message: str, receipt_id: str | None = None
    ) -> ContextPayload | None:
        """
        Build the context payload for one user message.

        Args:
            message: The user's message
            receipt_id: Receipt the user is asking about, if any

        Returns:
            The payload, or None when there is neither receipt context nor
            an expiring warranty to mention
        """
        loop = asyncio.get_running_loop()
        if receipt_id:
            primary = await self._receipt_context(message, receipt_id)
        else:
            primary = await loop.run_in_executor(None, self._search_context, message)
        warranties = await loop.run_in_executor(None, self._expiring_warranties)

        payload = ContextPayload(primary=primary, expiring_warranties=warranties or None)
        if payload.is_empty:
            return None
        return payload

    async def _receipt_context(self, message: str, receipt_id: str) -> ReceiptContext | None:
        loop = asyncio.get_running_loop()
        receipt = await loop.run_in_executor(None, self.store.get, receipt_id)
        if receipt is None:
            LOG.debug("Chat receipt %s not found; continuing without it", receipt_id)
            return None

        context = ReceiptContext(
            receipt=receipt,
            warranty_status=receipt.warranty_status_on(self.clock().date()),
        )
        if self.support is not None and is_support_request(message):
            try:
                context.support_info = await self.support.lookup(receipt.store_name)
            except SupportLookupError as e:
                LOG.warning("No support info for %s: %s", receipt.store_name, e)
        return context

    def _search_context(self, message: str) -> PrimaryContext | None:
        relevant = self.store.search(message, limit=SEARCH_LIMIT)
        if relevant:
            today = self.clock().date()
            return RelevantReceiptsContext(relevant_receipts=[r.view(today) for r in relevant])

        recent = self.store.find(sort="-purchase_date", limit=RECENT_LIMIT)
        if recent:
            return RecentReceiptsContext(
                recent_receipts=[ReceiptSummary.from_receipt(r) for r in recent]
            )
        return None

    def _expiring_warranties(self) -> list[WarrantySummary]:
        today = self.clock().date()
        expiring = self.store.find(
            ReceiptQuery(
                warranty_from=today,
                warranty_to=today + timedelta(days=WARRANTY_ALERT_DAYS),
            ),
            sort="warranty_expiry_date",
        )
        return [WarrantySummary.from_receipt(r) for r in expiring]
