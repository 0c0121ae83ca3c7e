"""
Event-type classification.

Maps the raw TYPE / OP_TYPE codes found in storage to EventType, and knows
which way each type moves stock. The original tables mostly store unsigned
quantities and rely on the type for the sign; applying the sign here makes
signed and unsigned rows normalize the same way.
"""

from decimal import Decimal
from typing import Any

from .config import LedgerSettings, settings as default_settings
from .errors import UnknownEventType
from .models import EventType

INFLOW = 1
OUTFLOW = -1
AS_RECORDED = 0

DIRECTION: dict[EventType, int] = {
    EventType.BUYING: INFLOW,
    EventType.ADJ_IN: INFLOW,
    EventType.OPENING: INFLOW,
    EventType.TRANSFER_IN: INFLOW,
    EventType.STOCK_TAKE: INFLOW,
    EventType.STOCK_RETURN: INFLOW,
    EventType.SELLING: OUTFLOW,
    EventType.ADJ_OUT: OUTFLOW,
    EventType.TRANSFER_OUT: OUTFLOW,
    EventType.STOCK_CLEAR: OUTFLOW,
    EventType.FULL_CLEAR: OUTFLOW,
    EventType.PARTIAL_CLEAR: OUTFLOW,
    EventType.CLEAR_WITH_SALES: OUTFLOW,
    EventType.CLEAR_WITH_LORRY: OUTFLOW,
    EventType.WASTAGE: OUTFLOW,
    EventType.CONVERSION: OUTFLOW,
    EventType.UNKNOWN: AS_RECORDED,
}


def normalize_code(code: Any) -> str | None:
    """Canonical string form of a raw code (5, 5.0 and ' 5 ' all become '5')."""
    if code is None:
        return None
    if isinstance(code, float):
        if code != code:  # NaN
            return None
        if code.is_integer():
            code = int(code)
    text = str(code).strip()
    return text or None


class EventClassifier:
    """Looks raw codes up in the configured classification table."""

    def __init__(self, settings: LedgerSettings | None = None):
        self.settings = settings or default_settings
        table = self.settings.classification
        self._table = {normalize_code(k): EventType(v) for k, v in table.items()}
        self._folded = {k.lower(): v for k, v in self._table.items()}

    def classify(self, code: Any) -> EventType:
        """Return the EventType for a code, or raise UnknownEventType."""
        key = normalize_code(code)
        if key is None:
            raise UnknownEventType(code, "empty code")
        if key in self._table:
            return self._table[key]
        if key.lower() in self._folded:
            return self._folded[key.lower()]
        raise UnknownEventType(code)

    @staticmethod
    def signed(event_type: EventType, quantity: Decimal) -> Decimal:
        """Apply the type's direction to a quantity."""
        direction = DIRECTION.get(event_type, AS_RECORDED)
        if direction == INFLOW:
            return abs(quantity)
        if direction == OUTFLOW:
            return -abs(quantity)
        return quantity
