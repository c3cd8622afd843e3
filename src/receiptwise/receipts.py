"""Receipt management: upload, listing, editing, deletion and dashboard stats."""

import math
import uuid
from datetime import timedelta
from typing import Protocol

from receiptwise.dates import Clock, previous_month_bounds, start_of_month, utc_now
from receiptwise.errors import ExternalServiceError, NotFoundError, RequestValidationError
from receiptwise.integrations.anthropic_extractor import ExtractionError
from receiptwise.integrations.image_store import LocalImageStore
from receiptwise.logging import get_logger
from receiptwise.models import (
    WARRANTY_ALERT_DAYS,
    DashboardStats,
    ExtractionResult,
    Pagination,
    Receipt,
    ReceiptFields,
    ReceiptPage,
    ReceiptView,
)
from receiptwise.store import ReceiptQuery, ReceiptStore

LOG = get_logger("receipts")

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_IMAGE_BYTES = 10 * 1024 * 1024
DASHBOARD_RECENT_LIMIT = 5


class ReceiptExtractor(Protocol):
    async def extract_receipt_data(self, image: bytes, mime_type: str) -> ExtractionResult: ...


class ReceiptService:
    """Operations on stored receipts.

    Every failure a caller should see is raised as a ReceiptwiseError;
    cleaning up a receipt's image is best effort and never masks the
    original failure. Receipts are returned as views carrying their
    warranty status as of today.
    """

    def __init__(
        self,
        store: ReceiptStore,
        images: LocalImageStore,
        extractor: ReceiptExtractor | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.images = images
        self.extractor = extractor
        self.clock = clock

    async def process_receipt(self, image: bytes, mime_type: str) -> ReceiptView:
        """
        Read a receipt photo and store the extracted receipt.

        Args:
            image: Raw image bytes
            mime_type: MIME type of the image

        Returns:
            The stored receipt with its current warranty status

        Raises:
            RequestValidationError: If the image is empty, too large or of an
                unsupported type
            ExternalServiceError: If extraction is unavailable or fails
        """
        if not image:
            raise RequestValidationError("No image file provided")
        if mime_type not in ALLOWED_MIME_TYPES:
            raise RequestValidationError(
                "Invalid file type. Only JPEG, PNG, and WebP are allowed."
            )
        if len(image) > MAX_IMAGE_BYTES:
            raise RequestValidationError("Image is larger than the 10 MB limit")
        if self.extractor is None:
            raise ExternalServiceError(
                "Receipt extraction is not configured (ANTHROPIC_API_KEY is not set)"
            )

        try:
            result = await self.extractor.extract_receipt_data(image, mime_type)
        except ExtractionError as e:
            raise ExternalServiceError(f"Failed to analyze receipt: {e}") from e

        extracted = result.receipt
        image_url = self.images.save(image, mime_type)
        now = self.clock()
        receipt = Receipt(
            **extracted.model_dump(),
            id=uuid.uuid4().hex,
            image_url=image_url,
            created_at=now,
            updated_at=now,
        )
        try:
            self.store.insert(receipt)
        except Exception:
            self._discard_image(image_url)
            raise
        LOG.info(
            "Receipt saved: %s (%s, %.2f %s)",
            receipt.id,
            receipt.store_name,
            receipt.total_amount,
            receipt.currency,
        )
        return receipt.view(now.date())

    def list_receipts(
        self,
        page: int = 1,
        limit: int = 20,
        sort: str = "-purchase_date",
        warranty_expiring: bool = False,
        is_recurring: bool | None = None,
        search: str | None = None,
    ) -> ReceiptPage:
        """List receipts one page at a time.

        Raises:
            RequestValidationError: On a non-positive page/limit or unknown sort field
        """
        if page < 1 or limit < 1:
            raise RequestValidationError("page and limit must be positive")

        today = self.clock().date()
        warranty_from = warranty_to = None
        if warranty_expiring:
            warranty_from = today
            warranty_to = today + timedelta(days=WARRANTY_ALERT_DAYS)
        query = ReceiptQuery(
            warranty_from=warranty_from,
            warranty_to=warranty_to,
            is_recurring=is_recurring,
            text=search or None,
        )

        receipts = self.store.find(query, sort=sort, skip=(page - 1) * limit, limit=limit)
        total = self.store.count(query)
        return ReceiptPage(
            receipts=[r.view(today) for r in receipts],
            pagination=Pagination(
                page=page, limit=limit, total=total, pages=math.ceil(total / limit)
            ),
        )

    def get_receipt(self, receipt_id: str) -> ReceiptView:
        return self._stored(receipt_id).view(self.clock().date())

    def update_receipt(self, receipt_id: str, fields: ReceiptFields) -> ReceiptView:
        """Replace the editable fields of a receipt.

        Identity, image, raw text and creation time are kept as stored.
        """
        current = self._stored(receipt_id)
        now = self.clock()
        updated = Receipt.model_validate(
            {
                **current.model_dump(),
                **fields.model_dump(include=set(ReceiptFields.model_fields)),
                "updated_at": now,
            }
        )
        if not self.store.replace(updated):
            raise NotFoundError("Receipt not found")
        return updated.view(now.date())

    def delete_receipt(self, receipt_id: str) -> None:
        receipt = self.store.delete(receipt_id)
        if receipt is None:
            raise NotFoundError("Receipt not found")

        if receipt.image_url:
            self._discard_image(receipt.image_url)

    def dashboard_stats(self) -> DashboardStats:
        today = self.clock().date()
        last_month_start, last_month_end = previous_month_bounds(today)
        return DashboardStats(
            total_receipts=self.store.count(),
            warranty_expiring_soon=self.store.count(
                ReceiptQuery(
                    warranty_from=today,
                    warranty_to=today + timedelta(days=WARRANTY_ALERT_DAYS),
                )
            ),
            recurring_count=self.store.count(ReceiptQuery(is_recurring=True)),
            this_month_spending=self.store.sum_amounts(
                ReceiptQuery(purchased_from=start_of_month(today))
            ).total,
            last_month_spending=self.store.sum_amounts(
                ReceiptQuery(purchased_from=last_month_start, purchased_to=last_month_end)
            ).total,
            recent_receipts=[
                r.view(today)
                for r in self.store.find(sort="-created_at", limit=DASHBOARD_RECENT_LIMIT)
            ],
        )

    def expiring_warranties(self, days: int = WARRANTY_ALERT_DAYS) -> list[ReceiptView]:
        """Receipts whose warranty ends within ``days`` days, soonest first."""
        if days < 0:
            raise RequestValidationError("days must not be negative")
        today = self.clock().date()
        expiring = self.store.find(
            ReceiptQuery(warranty_from=today, warranty_to=today + timedelta(days=days)),
            sort="warranty_expiry_date",
        )
        return [r.view(today) for r in expiring]

    def _stored(self, receipt_id: str) -> Receipt:
        receipt = self.store.get(receipt_id)
        if receipt is None:
            raise NotFoundError("Receipt not found")
        return receipt

    def _discard_image(self, image_url: str) -> None:
        try:
            self.images.delete(image_url)
        except OSError as e:
            LOG.warning("Could not remove image %s: %s", image_url, e)
