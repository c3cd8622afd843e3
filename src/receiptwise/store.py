"""Record store for receipts.

Receipts are kept as JSON documents in SQLite, with the fields used for
filtering and sorting copied into indexed columns and the searchable text
(store name, raw text, item names) mirrored into an FTS5 table.
"""

import re
import sqlite3
import threading
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Protocol

from receiptwise.errors import RequestValidationError
from receiptwise.logging import get_logger
from receiptwise.models import Receipt, SpendingTotal

LOG = get_logger("store")

SORTABLE_FIELDS = frozenset(
    {
        "purchase_date",
        "warranty_expiry_date",
        "created_at",
        "updated_at",
        "total_amount",
        "store_name",
    }
)

# Words too common to say anything about which receipt a message is about
STOP_WORDS = frozenset(
    """
    a about all am an and any are as at be been but by can could did do does
    for from had has have how i if in is it its me my of on or our over so
    than that the their them then there these they this to was we were what
    when where which who why will with would you your
    """.split()
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS receipts (
  id                    TEXT PRIMARY KEY,
  store_name            TEXT NOT NULL,
  purchase_date         TEXT NOT NULL,   -- YYYY-MM-DD
  warranty_expiry_date  TEXT,            -- YYYY-MM-DD
  total_amount          REAL NOT NULL,
  is_recurring          INTEGER NOT NULL DEFAULT 0,
  created_at            TEXT NOT NULL,   -- ISO 8601
  updated_at            TEXT NOT NULL,
  document              TEXT NOT NULL    -- full receipt as JSON
);

CREATE INDEX IF NOT EXISTS idx_receipts_store_name    ON receipts(store_name);
CREATE INDEX IF NOT EXISTS idx_receipts_purchase_date ON receipts(purchase_date);
CREATE INDEX IF NOT EXISTS idx_receipts_warranty      ON receipts(warranty_expiry_date);
CREATE INDEX IF NOT EXISTS idx_receipts_created_at    ON receipts(created_at);

CREATE VIRTUAL TABLE IF NOT EXISTS receipts_fts USING fts5(
  receipt_id UNINDEXED,
  store_name,
  raw_text,
  item_names,
  tokenize = 'porter unicode61'
);
"""


@dataclass(frozen=True)
class ReceiptQuery:
    """Filter over stored receipts. Unset fields do not constrain."""

    purchased_from: date | None = None
    purchased_to: date | None = None
    warranty_from: date | None = None
    warranty_to: date | None = None
    is_recurring: bool | None = None
    text: str | None = None


class ReceiptStore(Protocol):
    def get(self, receipt_id: str) -> Receipt | None: ...

    def find(
        self,
        query: ReceiptQuery | None = None,
        sort: str = "-purchase_date",
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Receipt]: ...

    def search(self, text: str, limit: int) -> list[Receipt]: ...

    def count(self, query: ReceiptQuery | None = None) -> int: ...

    def sum_amounts(self, query: ReceiptQuery | None = None) -> SpendingTotal: ...

    def insert(self, receipt: Receipt) -> None: ...

    def replace(self, receipt: Receipt) -> bool: ...

    def delete(self, receipt_id: str) -> Receipt | None: ...


def search_terms(text: str) -> list[str]:
    """Split free text into distinct lowercase search terms, minus stop words."""
    terms: list[str] = []
    for word in re.findall(r"\w+", text.lower()):
        if len(word) < 2 or word in STOP_WORDS or word in terms:
            continue
        terms.append(word)
    return terms


def _match_expression(text: str) -> str | None:
    terms = search_terms(text)
    if not terms:
        return None
    return " OR ".join(f'"{term}"' for term in terms)


def _order_by(sort: str) -> str:
    descending = sort.startswith("-")
    field = sort.lstrip("+-")
    if field not in SORTABLE_FIELDS:
        raise RequestValidationError(f"Unsupported sort field: {field}")
    direction = "DESC" if descending else "ASC"
    return f"{field} {direction}, rowid {direction}"


def _where(query: ReceiptQuery | None) -> tuple[str, list[Any]]:
    if query is None:
        return "", []

    clauses: list[str] = []
    params: list[Any] = []
    if query.purchased_from is not None:
        clauses.append("purchase_date >= ?")
        params.append(query.purchased_from.isoformat())
    if query.purchased_to is not None:
        clauses.append("purchase_date <= ?")
        params.append(query.purchased_to.isoformat())
    if query.warranty_from is not None:
        clauses.append("warranty_expiry_date >= ?")
        params.append(query.warranty_from.isoformat())
    if query.warranty_to is not None:
        clauses.append("warranty_expiry_date <= ?")
        params.append(query.warranty_to.isoformat())
    if query.is_recurring is not None:
        clauses.append("is_recurring = ?")
        params.append(int(query.is_recurring))
    if query.text is not None:
        expression = _match_expression(query.text)
        if expression is None:
            clauses.append("0")
        else:
            clauses.append(
                "id IN (SELECT receipt_id FROM receipts_fts WHERE receipts_fts MATCH ?)"
            )
            params.append(expression)

    if not clauses:
        return "", []
    return " WHERE " + " AND ".join(clauses), params


class SQLiteReceiptStore:
    """SQLite-backed receipt store.

    One connection is shared by all callers and guarded by a lock; each write
    runs in its own transaction, so single-receipt writes are atomic.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._lock:
            if self.path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()
        LOG.debug("Receipt store ready at %s", self.path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SQLiteReceiptStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _select(self, sql: str, params: list[Any]) -> list[Receipt]:
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [Receipt.model_validate_json(row["document"]) for row in rows]

    def get(self, receipt_id: str) -> Receipt | None:
        found = self._select("SELECT document FROM receipts WHERE id = ?", [receipt_id])
        return found[0] if found else None

    def find(
        self,
        query: ReceiptQuery | None = None,
        sort: str = "-purchase_date",
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Receipt]:
        where, params = _where(query)
        sql = (
            f"SELECT document FROM receipts{where} "
            f"ORDER BY {_order_by(sort)} LIMIT ? OFFSET ?"
        )
        return self._select(sql, [*params, -1 if limit is None else limit, skip])

    def search(self, text: str, limit: int) -> list[Receipt]:
        """Return receipts matching ``text``, best match first."""
        expression = _match_expression(text)
        if expression is None:
            return []
        sql = (
            "SELECT receipts.document FROM receipts_fts "
            "JOIN receipts ON receipts.id = receipts_fts.receipt_id "
            "WHERE receipts_fts MATCH ? "
            "ORDER BY bm25(receipts_fts), receipts.rowid LIMIT ?"
        )
        return self._select(sql, [expression, limit])

    def count(self, query: ReceiptQuery | None = None) -> int:
        where, params = _where(query)
        with self._lock:
            row = self._conn.execute(f"SELECT COUNT(*) FROM receipts{where}", params).fetchone()
        return int(row[0])

    def sum_amounts(self, query: ReceiptQuery | None = None) -> SpendingTotal:
        where, params = _where(query)
        sql = f"SELECT COALESCE(SUM(total_amount), 0), COUNT(*) FROM receipts{where}"
        with self._lock:
            total, count = self._conn.execute(sql, params).fetchone()
        return SpendingTotal(total=float(total), count=int(count))

    def insert(self, receipt: Receipt) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO receipts (id, store_name, purchase_date, warranty_expiry_date, "
                "total_amount, is_recurring, created_at, updated_at, document) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [receipt.id, *self._columns(receipt)],
            )
            self._index(receipt)

    def replace(self, receipt: Receipt) -> bool:
        """Overwrite a stored receipt. Returns False if it does not exist."""
        with self._lock, self._conn:
            cur = self._conn.execute(
                "UPDATE receipts SET store_name = ?, purchase_date = ?, "
                "warranty_expiry_date = ?, total_amount = ?, is_recurring = ?, "
                "created_at = ?, updated_at = ?, document = ? WHERE id = ?",
                [*self._columns(receipt), receipt.id],
            )
            if cur.rowcount == 0:
                return False
            self._conn.execute("DELETE FROM receipts_fts WHERE receipt_id = ?", [receipt.id])
            self._index(receipt)
        return True

    def delete(self, receipt_id: str) -> Receipt | None:
        """Remove a receipt and return what was stored, or None if absent."""
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT document FROM receipts WHERE id = ?", [receipt_id]
            ).fetchone()
            if row is None:
                return None
            self._conn.execute("DELETE FROM receipts WHERE id = ?", [receipt_id])
            self._conn.execute("DELETE FROM receipts_fts WHERE receipt_id = ?", [receipt_id])
        return Receipt.model_validate_json(row["document"])

    @staticmethod
    def _columns(receipt: Receipt) -> list[Any]:
        expiry = receipt.warranty_expiry_date
        return [
            receipt.store_name,
            receipt.purchase_date.isoformat(),
            expiry.isoformat() if expiry else None,
            receipt.total_amount,
            int(receipt.is_recurring),
            receipt.created_at.isoformat(),
            receipt.updated_at.isoformat(),
            receipt.model_dump_json(include=set(Receipt.model_fields)),
        ]

    def _index(self, receipt: Receipt) -> None:
        self._conn.execute(
            "INSERT INTO receipts_fts (receipt_id, store_name, raw_text, item_names) "
            "VALUES (?, ?, ?, ?)",
            [receipt.id, receipt.store_name, receipt.raw_text, " ".join(receipt.item_names)],
        )
