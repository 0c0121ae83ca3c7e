"""
Parsers for the values found in raw stock rows.

These handle the messy reality of the store tables:
- Timestamps written by different terminals in different formats
- Server-created rows stamped in UTC while synced rows are already local
- Quantities arriving as strings, floats, NaN or None
"""

from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

import pandas as pd

from .config import LedgerSettings, settings as default_settings
from .errors import InvalidRangeError
from .models import TimeWindow


class TimestampParser:
    """
    Parses timestamps in the formats the terminals and exports produce.

    To extend: add patterns to TIMESTAMP_FORMATS or pass custom_formats.
    """

    TIMESTAMP_FORMATS = [
        "%Y-%m-%d %H:%M:%S",    # MySQL DATETIME: 2026-02-16 06:05:30
        "%Y-%m-%dT%H:%M:%S",    # ISO without zone
        "%Y-%m-%d %H:%M",
        "%Y-%m-%d",             # date only (start of day)
        "%d/%m/%Y %H:%M:%S",
        "%d/%m/%Y %H:%M",
        "%d/%m/%Y",
        "%m/%d/%Y",
    ]

    def __init__(self, custom_formats: list[str] | None = None):
        self.formats = (custom_formats or []) + self.TIMESTAMP_FORMATS
        self._cache: dict[str, datetime | None] = {}

    def parse(self, value: Any) -> datetime | None:
        """Parse a timestamp, returning None when it can't be resolved."""
        if value is pd.NaT:
            return None
        if isinstance(value, pd.Timestamp):
            return None if pd.isna(value) else value.to_pydatetime()
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if value is None or pd.isna(value):
            return None

        text = str(value).strip()
        if not text:
            return None
        if text in self._cache:
            return self._cache[text]

        result = None
        for fmt in self.formats:
            try:
                result = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if result is None:
            try:
                result = datetime.fromisoformat(text)
            except ValueError:
                result = None

        self._cache[text] = result
        return result

    def resolve(self, value: Any, label: str = "timestamp") -> datetime:
        """Parse a timestamp that must exist (window bounds)."""
        result = self.parse(value)
        if result is None:
            raise InvalidRangeError(f"Cannot resolve {label}: {value!r}")
        return result

    def window(self, start: Any, end: Any) -> TimeWindow:
        """Resolve both bounds into an inclusive TimeWindow."""
        return TimeWindow(self.resolve(start, "window start"), self.resolve(end, "window end"))

    def parse_series(self, series: pd.Series) -> pd.Series:
        """Parse an entire pandas Series of timestamps (None where unparseable)."""
        return pd.Series([self.parse(v) for v in series], index=series.index, dtype=object)


class ServerClockShift:
    """
    Moves server-stamped timestamps onto the stores' local clock.

    Rows created on the server (adjustments, stock-op side effects, web
    orders) carry UTC; rows synced from terminals already carry local time.
    The row code tells them apart. A missing code means a server row.
    """

    def __init__(self, settings: LedgerSettings | None = None):
        self.settings = settings or default_settings
        self.offset = timedelta(minutes=self.settings.server_time_offset_minutes)

    def is_server_stamped(self, code: str | None) -> bool:
        if code is None or pd.isna(code) or not str(code).strip():
            return True
        code = str(code)
        if any(code.startswith(p) for p in self.settings.server_time_prefixes):
            return True
        return any(infix in code for infix in self.settings.server_time_infixes)

    def to_local(self, timestamp: datetime, code: str | None) -> datetime:
        if self.is_server_stamped(code):
            return timestamp + self.offset
        return timestamp


def to_kg(value: Any) -> Decimal | None:
    """Convert a raw quantity to a Decimal kg amount (None when absent)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float) and pd.isna(value):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        # str() first so 0.1 stays 0.1 instead of its binary expansion
        result = Decimal(text)
    except InvalidOperation:
        return None
    if not result.is_finite():
        return None
    return result


def to_store_no(value: Any) -> int | None:
    """Convert a raw store number; missing values stay None."""
    if value is None or pd.isna(value):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
