import re
import uuid
from datetime import UTC, date, datetime

from receiptwise.models import LineItem, Receipt

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
TODAY = NOW.date()


def fixed_clock(moment: datetime = NOW):
    """Return a clock that always reads ``moment``."""
    return lambda: moment


def make_receipt(**overrides) -> Receipt:
    """Build a stored receipt with sensible defaults."""
    values = {
        "id": uuid.uuid4().hex,
        "store_name": "Acme Electronics",
        "purchase_date": date(2026, 3, 1),
        "total_amount": 100.0,
        "items": [LineItem(name="Widget", price=100.0)],
        "raw_text": "ACME ELECTRONICS widget 100.00",
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return Receipt(**values)


def clean_cli_output(output: str) -> str:
    """
    Remove ANSI escape codes, Rich formatting characters, whitespace, and newlines
    from CLI output to make assertions robust against terminal wrapping.
    """
    # 1. Remove ANSI escape codes
    ansi_escape = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
    output = ansi_escape.sub("", output)

    # 2. Remove:
    # \s - all whitespace (space, tab, newline, etc.)
    # │, ╭, ╮, ╰, ╯, ─ - Rich box characters
    return re.sub(r"[\s│╭╮╰╯─]", "", output)
