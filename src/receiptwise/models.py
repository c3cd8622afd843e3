"""Data models for receipts, chat turns and assistant context."""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field

WARRANTY_ALERT_DAYS = 30


class WarrantyStatus(str, Enum):
    NONE = "none"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring-soon"
    ACTIVE = "active"


class RecurringFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


def warranty_status(expiry: date | None, today: date) -> WarrantyStatus:
    """Derive the warranty status of a purchase from its expiry date.

    Args:
        expiry: Warranty expiry date, or None when the purchase has no warranty
        today: The current date

    Returns:
        ``none`` without an expiry, ``expired`` once the expiry has passed,
        ``expiring-soon`` within the next 30 days (inclusive), else ``active``
    """
    if expiry is None:
        return WarrantyStatus.NONE
    days_left = (expiry - today).days
    if days_left < 0:
        return WarrantyStatus.EXPIRED
    if days_left <= WARRANTY_ALERT_DAYS:
        return WarrantyStatus.EXPIRING_SOON
    return WarrantyStatus.ACTIVE


class LineItem(BaseModel):
    """Individual line item on a receipt."""

    name: str
    quantity: float = 1
    price: float | None = None
    category: str | None = None


class ReceiptFields(BaseModel):
    """Receipt fields a user may edit."""

    store_name: str
    purchase_date: date
    total_amount: float
    currency: str = "INR"
    warranty_expiry_date: date | None = None
    is_recurring: bool = False
    recurring_frequency: RecurringFrequency | None = None
    items: list[LineItem] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None


class ExtractedReceipt(ReceiptFields):
    """Structured receipt data read from a receipt image."""

    raw_text: str = ""


class Receipt(ReceiptFields):
    """A stored purchase record."""

    id: str
    image_url: str | None = None
    raw_text: str = ""
    created_at: datetime
    updated_at: datetime

    def warranty_status_on(self, today: date) -> WarrantyStatus:
        return warranty_status(self.warranty_expiry_date, today)

    def view(self, today: date) -> "ReceiptView":
        return ReceiptView(
            **self.model_dump(exclude={"warranty_status"}),
            warranty_status=self.warranty_status_on(today),
        )

    @property
    def item_names(self) -> list[str]:
        return [item.name for item in self.items]


class ReceiptView(Receipt):
    """A receipt as shown to callers, with its warranty status as of today.

    The status is derived on every read and never stored.
    """

    warranty_status: WarrantyStatus


class ExtractionResult(BaseModel):
    """Wrapper for extraction result with metadata."""

    receipt: ExtractedReceipt
    input_tokens: int
    output_tokens: int
    processing_time: float  # in seconds
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatReply(BaseModel):
    message: str
    context_used: bool


class ReceiptSummary(BaseModel):
    """Narrow projection of a receipt used as fallback chat context."""

    store_name: str
    purchase_date: date
    total_amount: float
    warranty_expiry_date: date | None = None
    items: list[str] = Field(default_factory=list)

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> "ReceiptSummary":
        return cls(
            store_name=receipt.store_name,
            purchase_date=receipt.purchase_date,
            total_amount=receipt.total_amount,
            warranty_expiry_date=receipt.warranty_expiry_date,
            items=receipt.item_names,
        )


class WarrantySummary(BaseModel):
    store_name: str
    warranty_expiry_date: date
    items: list[str] = Field(default_factory=list)

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> "WarrantySummary":
        if receipt.warranty_expiry_date is None:
            raise ValueError(f"Receipt {receipt.id} has no warranty expiry date")
        return cls(
            store_name=receipt.store_name,
            warranty_expiry_date=receipt.warranty_expiry_date,
            items=receipt.item_names,
        )


class SearchSnippet(BaseModel):
    """One organic web-search result."""

    title: str = ""
    link: str = ""
    snippet: str = ""


class SupportResult(BaseModel):
    """Support information for a store or product.

    Either ``results`` (ranked web-search snippets) or ``message`` (a free-text
    summary from the generative fallback) is populated.
    """

    provider: str
    results: list[SearchSnippet] = Field(default_factory=list)
    message: str | None = None


class ReceiptContext(BaseModel):
    kind: Literal["receipt"] = "receipt"
    receipt: Receipt
    warranty_status: WarrantyStatus
    support_info: SupportResult | None = None


class RelevantReceiptsContext(BaseModel):
    kind: Literal["relevant"] = "relevant"
    relevant_receipts: list[ReceiptView]


class RecentReceiptsContext(BaseModel):
    kind: Literal["recent"] = "recent"
    recent_receipts: list[ReceiptSummary]


PrimaryContext = Annotated[
    ReceiptContext | RelevantReceiptsContext | RecentReceiptsContext,
    Field(discriminator="kind"),
]


class ContextPayload(BaseModel):
    """Bounded data bundle grounding one assistant reply.

    ``primary`` holds at most one kind of receipt context; the expiring
    warranty list is carried alongside it and never replaces it. Either part
    is None when there is nothing to report, so it is left out of the
    serialized context.
    """

    primary: PrimaryContext | None = None
    expiring_warranties: list[WarrantySummary] | None = None

    @property
    def is_empty(self) -> bool:
        return self.primary is None and not self.expiring_warranties


class QuickAction(str, Enum):
    EXPIRING_WARRANTIES = "expiring-warranties"
    THIS_MONTH_SPENDING = "this-month-spending"
    RECURRING_BILLS = "recurring-bills"
    RECENT = "recent"


class SpendingTotal(BaseModel):
    total: float = 0.0
    count: int = 0


class QuickActionResult(BaseModel):
    action: QuickAction
    data: list[ReceiptView] | SpendingTotal


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ReceiptPage(BaseModel):
    receipts: list[ReceiptView]
    pagination: Pagination


class DashboardStats(BaseModel):
    total_receipts: int
    warranty_expiring_soon: int
    recurring_count: int
    this_month_spending: float
    last_month_spending: float
    recent_receipts: list[ReceiptView]
