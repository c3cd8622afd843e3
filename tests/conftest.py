import pytest

from receiptwise.logging import configure_logging
from receiptwise.store import SQLiteReceiptStore


@pytest.fixture(autouse=True, scope="session")
def receiptwise_logging():
    """Configure package logging once, before any CLI run captures stderr."""
    configure_logging()


@pytest.fixture
def store():
    """An empty in-memory receipt store."""
    with SQLiteReceiptStore() as s:
        yield s
