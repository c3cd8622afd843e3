"""Unit tests for receipt upload, listing, editing and dashboard stats."""

import sqlite3
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from receiptwise.assistant import ContextAssembler
from receiptwise.errors import ExternalServiceError, NotFoundError, RequestValidationError
from receiptwise.integrations.anthropic_extractor import ExtractionError
from receiptwise.integrations.image_store import LocalImageStore
from receiptwise.models import (
    ExtractedReceipt,
    ExtractionResult,
    LineItem,
    Receipt,
    ReceiptFields,
    WarrantyStatus,
)
from receiptwise.receipts import MAX_IMAGE_BYTES, ReceiptService
from tests.utils import NOW, TODAY, fixed_clock, make_receipt

pytestmark = pytest.mark.unit

IMAGE = b"\xff\xd8\xff\xe0 fake jpeg bytes"


@pytest.fixture
def extracted():
    return ExtractedReceipt(
        store_name="Acme",
        purchase_date=date(2024, 1, 1),
        total_amount=499.99,
        warranty_expiry_date=date(2025, 1, 1),
        items=[LineItem(name="Widget", quantity=1, price=499.99)],
        raw_text="ACME Widget 499.99",
    )


@pytest.fixture
def extractor(extracted):
    mock = AsyncMock()
    mock.extract_receipt_data.return_value = ExtractionResult(
        receipt=extracted, input_tokens=1500, output_tokens=300, processing_time=1.2
    )
    return mock


@pytest.fixture
def images(tmp_path):
    return LocalImageStore(tmp_path / "uploads")


@pytest.fixture
def service(store, images, extractor):
    return ReceiptService(store, images, extractor=extractor, clock=fixed_clock())


class TestProcessReceipt:
    """Test cases for uploading a receipt photo."""

    @pytest.mark.asyncio
    async def test_upload_then_chat_reports_expired_warranty(
        self, store, images, extractor, extracted
    ):
        upload_time = datetime(2024, 1, 2, 10, 0, tzinfo=NOW.tzinfo)
        service = ReceiptService(store, images, extractor=extractor, clock=fixed_clock(upload_time))

        receipt = await service.process_receipt(IMAGE, "image/jpeg")

        assert receipt.store_name == "Acme"
        assert receipt.items == [LineItem(name="Widget", quantity=1, price=499.99)]
        assert receipt.total_amount == 499.99
        assert receipt.raw_text == extracted.raw_text
        assert receipt.created_at == upload_time
        assert receipt.updated_at == upload_time
        assert receipt.warranty_status is WarrantyStatus.ACTIVE
        assert store.get(receipt.id) == Receipt(**receipt.model_dump(exclude={"warranty_status"}))
        assert images.path_for(receipt.image_url).read_bytes() == IMAGE
        extractor.extract_receipt_data.assert_awaited_once_with(IMAGE, "image/jpeg")

        a_year_later = datetime(2025, 1, 2, 10, 0, tzinfo=NOW.tzinfo)
        assert receipt.warranty_status_on(a_year_later.date()) is WarrantyStatus.EXPIRED
        assembler = ContextAssembler(store, clock=fixed_clock(a_year_later))
        payload = await assembler.assemble("is my widget still covered?", receipt.id)
        assert payload.primary.warranty_status is WarrantyStatus.EXPIRED
        assert payload.expiring_warranties is None

    @pytest.mark.asyncio
    async def test_each_upload_gets_its_own_id(self, service):
        first = await service.process_receipt(IMAGE, "image/png")
        second = await service.process_receipt(IMAGE, "image/png")

        assert first.id != second.id
        assert first.image_url.endswith(".png")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mime_type", ["image/heic", "application/pdf", "text/plain"])
    async def test_unsupported_type_is_rejected(self, service, extractor, mime_type):
        with pytest.raises(RequestValidationError) as exc_info:
            await service.process_receipt(IMAGE, mime_type)

        assert "Only JPEG, PNG, and WebP" in str(exc_info.value)
        extractor.extract_receipt_data.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_image_is_rejected(self, service):
        with pytest.raises(RequestValidationError) as exc_info:
            await service.process_receipt(b"", "image/jpeg")

        assert str(exc_info.value) == "No image file provided"

    @pytest.mark.asyncio
    async def test_oversized_image_is_rejected(self, service, store):
        with pytest.raises(RequestValidationError):
            await service.process_receipt(b"x" * (MAX_IMAGE_BYTES + 1), "image/webp")

        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_extraction_failure_stores_nothing(self, service, store, extractor, images):
        extractor.extract_receipt_data.side_effect = ExtractionError("Model refused")

        with pytest.raises(ExternalServiceError) as exc_info:
            await service.process_receipt(IMAGE, "image/jpeg")

        assert str(exc_info.value) == "Failed to analyze receipt: Model refused"
        assert store.count() == 0
        assert not images.root.exists()

    @pytest.mark.asyncio
    async def test_failed_insert_removes_saved_image(self, service, store, images, mocker):
        mocker.patch.object(store, "insert", side_effect=sqlite3.OperationalError("disk I/O error"))

        with pytest.raises(sqlite3.OperationalError):
            await service.process_receipt(IMAGE, "image/jpeg")

        assert list(images.root.iterdir()) == []
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_failed_insert_error_survives_image_cleanup_failure(
        self, service, store, images, mocker, caplog
    ):
        mocker.patch.object(store, "insert", side_effect=sqlite3.IntegrityError("duplicate id"))
        mocker.patch.object(images, "delete", side_effect=PermissionError("read-only"))

        with pytest.raises(sqlite3.IntegrityError):
            await service.process_receipt(IMAGE, "image/jpeg")

        assert "Could not remove image" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_extractor(self, store, images):
        service = ReceiptService(store, images)

        with pytest.raises(ExternalServiceError) as exc_info:
            await service.process_receipt(IMAGE, "image/jpeg")

        assert "ANTHROPIC_API_KEY" in str(exc_info.value)


class TestListReceipts:
    """Test cases for paged listing."""

    def test_pagination(self, store, service):
        for day in range(1, 26):
            store.insert(make_receipt(purchase_date=date(2026, 1, day)))

        first = service.list_receipts(page=1, limit=10)
        last = service.list_receipts(page=3, limit=10)

        assert first.pagination.model_dump() == {"page": 1, "limit": 10, "total": 25, "pages": 3}
        assert first.receipts[0].purchase_date == date(2026, 1, 25)
        assert len(last.receipts) == 5
        assert last.receipts[-1].purchase_date == date(2026, 1, 1)

    def test_listed_receipts_carry_warranty_status(self, store, service):
        store.insert(make_receipt(store_name="soon", warranty_expiry_date=TODAY))
        store.insert(
            make_receipt(store_name="gone", warranty_expiry_date=TODAY - timedelta(days=1))
        )
        store.insert(make_receipt(store_name="none"))

        page = service.list_receipts()
        shown = service.get_receipt(page.receipts[0].id)

        assert {r.store_name: r.warranty_status for r in page.receipts} == {
            "soon": WarrantyStatus.EXPIRING_SOON,
            "gone": WarrantyStatus.EXPIRED,
            "none": WarrantyStatus.NONE,
        }
        assert shown.warranty_status is page.receipts[0].warranty_status

    def test_empty_store(self, service):
        page = service.list_receipts()

        assert page.receipts == []
        assert page.pagination.total == 0
        assert page.pagination.pages == 0

    def test_filters(self, store, service):
        store.insert(
            make_receipt(store_name="Expiring", warranty_expiry_date=TODAY + timedelta(days=3))
        )
        store.insert(make_receipt(store_name="Netflix", is_recurring=True, raw_text="", items=[]))

        assert [r.store_name for r in service.list_receipts(warranty_expiring=True).receipts] == [
            "Expiring"
        ]
        assert [r.store_name for r in service.list_receipts(is_recurring=True).receipts] == [
            "Netflix"
        ]
        assert [r.store_name for r in service.list_receipts(search="netflix").receipts] == [
            "Netflix"
        ]

    @pytest.mark.parametrize(("page", "limit"), [(0, 20), (1, 0), (-1, 5)])
    def test_invalid_paging(self, service, page, limit):
        with pytest.raises(RequestValidationError):
            service.list_receipts(page=page, limit=limit)

    def test_invalid_sort(self, service):
        with pytest.raises(RequestValidationError):
            service.list_receipts(sort="raw_text")


class TestEditing:
    """Test cases for reading, updating and deleting receipts."""

    def test_get_missing_receipt(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.get_receipt("missing")

        assert str(exc_info.value) == "Receipt not found"
        assert exc_info.value.kind == "not_found"

    def test_update_keeps_identity_and_creation_time(self, store):
        created = datetime(2026, 1, 1, tzinfo=NOW.tzinfo)
        receipt = make_receipt(created_at=created, updated_at=created, image_url="/uploads/a.jpg")
        store.insert(receipt)
        service = ReceiptService(store, LocalImageStore("unused"), clock=fixed_clock())
        fields = ReceiptFields(
            store_name="Acme Corp",
            purchase_date=date(2026, 1, 5),
            total_amount=120.5,
            warranty_expiry_date=date(2027, 1, 5),
            tags=["edited"],
        )

        updated = service.update_receipt(receipt.id, fields)

        assert updated.id == receipt.id
        assert updated.created_at == created
        assert updated.updated_at == NOW
        assert updated.image_url == "/uploads/a.jpg"
        assert updated.raw_text == receipt.raw_text
        assert updated.store_name == "Acme Corp"
        assert updated.items == []
        assert updated.warranty_status is WarrantyStatus.ACTIVE
        assert store.get(receipt.id).model_dump() == updated.model_dump(exclude={"warranty_status"})

    def test_update_missing_receipt(self, service):
        fields = ReceiptFields(store_name="x", purchase_date=TODAY, total_amount=1)
        with pytest.raises(NotFoundError):
            service.update_receipt("missing", fields)

    @pytest.mark.asyncio
    async def test_delete_removes_record_and_image(self, service, store, images):
        receipt = await service.process_receipt(IMAGE, "image/jpeg")
        path = images.path_for(receipt.image_url)

        service.delete_receipt(receipt.id)

        assert store.get(receipt.id) is None
        assert not path.exists()

    def test_delete_with_missing_image_still_succeeds(self, service, store, caplog):
        receipt = make_receipt(image_url="/uploads/gone.jpg")
        store.insert(receipt)

        service.delete_receipt(receipt.id)

        assert store.get(receipt.id) is None
        assert "Could not remove image /uploads/gone.jpg" in caplog.text

    def test_delete_missing_receipt(self, service):
        with pytest.raises(NotFoundError):
            service.delete_receipt("missing")


class TestDashboard:
    """Test cases for dashboard statistics."""

    def test_dashboard_stats(self, store, service):
        store.insert(make_receipt(total_amount=100, purchase_date=date(2026, 3, 2)))
        store.insert(
            make_receipt(
                total_amount=50,
                purchase_date=date(2026, 3, 10),
                is_recurring=True,
                warranty_expiry_date=TODAY + timedelta(days=10),
            )
        )
        store.insert(make_receipt(total_amount=70, purchase_date=date(2026, 2, 1)))
        store.insert(make_receipt(total_amount=30, purchase_date=date(2026, 2, 28)))
        store.insert(make_receipt(total_amount=999, purchase_date=date(2026, 1, 31)))

        stats = service.dashboard_stats()

        assert stats.total_receipts == 5
        assert stats.warranty_expiring_soon == 1
        assert stats.recurring_count == 1
        assert stats.this_month_spending == 150
        assert stats.last_month_spending == 100
        assert len(stats.recent_receipts) == 5
        assert {r.warranty_status for r in stats.recent_receipts} == {
            WarrantyStatus.NONE,
            WarrantyStatus.EXPIRING_SOON,
        }

    def test_dashboard_stats_empty(self, service):
        stats = service.dashboard_stats()

        assert stats.total_receipts == 0
        assert stats.this_month_spending == 0
        assert stats.recent_receipts == []

    def test_expiring_warranties_window(self, store, service):
        for days in (5, 50):
            store.insert(
                make_receipt(
                    store_name=f"in {days}", warranty_expiry_date=TODAY + timedelta(days=days)
                )
            )

        assert [r.store_name for r in service.expiring_warranties()] == ["in 5"]
        assert service.expiring_warranties()[0].warranty_status is WarrantyStatus.EXPIRING_SOON
        assert [r.store_name for r in service.expiring_warranties(days=60)] == ["in 5", "in 50"]
        assert service.expiring_warranties(days=0) == []

    def test_expiring_warranties_rejects_negative_window(self, service):
        with pytest.raises(RequestValidationError):
            service.expiring_warranties(days=-1)
