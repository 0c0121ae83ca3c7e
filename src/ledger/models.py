"""
Data model for the stock ledger.

Raw records (transactions, stock operations, snapshots) come from storage.
The normalizer turns them into LedgerEvents, the builder replays those into
LedgerPoints. All quantities are kilogram amounts held as Decimal.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from .errors import InvalidRangeError

ZERO = Decimal("0")


class EventSource(str, Enum):
    """Where a ledger event came from."""

    TRANSACTION = "transaction"
    STOCK_OPERATION = "stock_operation"
    SNAPSHOT = "snapshot"


class EventType(str, Enum):
    """Classification of a stock-affecting event."""

    BUYING = "Buying"
    SELLING = "Selling"
    ADJ_IN = "AdjIn"
    ADJ_OUT = "AdjOut"
    OPENING = "Opening"
    TRANSFER_IN = "TransferIn"
    TRANSFER_OUT = "TransferOut"
    STOCK_TAKE = "StockTake"
    STOCK_CLEAR = "StockClear"
    FULL_CLEAR = "Full Clear"
    PARTIAL_CLEAR = "Partial Clear"
    CLEAR_WITH_SALES = "Clear + Sales"
    CLEAR_WITH_LORRY = "Clear + Lorry"
    WASTAGE = "Wastage"
    CONVERSION = "Conversion"
    STOCK_RETURN = "Stock Return"
    TRANSFER = "Transfer"  # direction resolved by the normalizer
    TRANSFER_S1_S2 = "Transfer S1→S2"
    TRANSFER_S2_S1 = "Transfer S2→S1"
    SNAPSHOT = "Snapshot"
    UNKNOWN = "Unknown"

    @property
    def is_transfer(self) -> bool:
        return self in (
            EventType.TRANSFER,
            EventType.TRANSFER_S1_S2,
            EventType.TRANSFER_S2_S1,
        )


@dataclass(frozen=True)
class StoreLevels:
    """Stock held in each of the two stores."""

    store1: Decimal = ZERO
    store2: Decimal = ZERO

    @classmethod
    def for_store(cls, store_no: int, quantity: Decimal) -> "StoreLevels":
        """Levels with `quantity` in one store and nothing in the other."""
        if store_no == 1:
            return cls(store1=quantity)
        if store_no == 2:
            return cls(store2=quantity)
        raise ValueError(f"Unknown store number: {store_no}")

    @property
    def total(self) -> Decimal:
        return self.store1 + self.store2

    def get(self, store_no: int) -> Decimal:
        return self.store1 if store_no == 1 else self.store2

    def __add__(self, other: "StoreLevels") -> "StoreLevels":
        return StoreLevels(self.store1 + other.store1, self.store2 + other.store2)

    def __sub__(self, other: "StoreLevels") -> "StoreLevels":
        return StoreLevels(self.store1 - other.store1, self.store2 - other.store2)

    def within(self, other: "StoreLevels", epsilon: Decimal) -> bool:
        """True when both stores agree with `other` to within epsilon."""
        diff = self - other
        return abs(diff.store1) <= epsilon and abs(diff.store2) <= epsilon


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] reporting window."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise InvalidRangeError(
                f"Window start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    def contains(self, when: datetime) -> bool:
        return self.start <= when <= self.end


# --- Raw records, as supplied by storage ---


@dataclass
class TransactionLine:
    item_id: Any
    quantity: Decimal | None
    price: Decimal | None = None
    total: Decimal | None = None
    active: bool = True


@dataclass
class Transaction:
    """A buy/sell (or other store-transaction) row with its item lines."""

    id: Any
    type: str
    timestamp: datetime
    store_no: int
    lines: list[TransactionLine] = field(default_factory=list)
    active: bool = True
    code: str | None = None
    bill_code: str | None = None
    customer: str | None = None
    comments: str | None = None


@dataclass
class OperationLine:
    item_id: Any
    quantity: Decimal | None
    store_no: int | None = None  # None means the operation's own store
    active: bool = True


@dataclass
class ConversionRecord:
    """One source -> destination item conversion inside a stock operation."""

    source_item_id: Any
    dest_item_id: Any
    source_quantity: Decimal | None = None
    dest_quantity: Decimal | None = None
    dest_item_name: str | None = None
    active: bool = True


@dataclass
class StockOperation:
    """A non-trade stock movement: clearance, transfer, conversion, return..."""

    id: Any
    op_type: str
    timestamp: datetime
    store_no: int | None
    lines: list[OperationLine] = field(default_factory=list)
    dest_store_no: int | None = None
    wastage: Decimal = ZERO
    surplus: Decimal = ZERO
    active: bool = True
    code: str | None = None
    lorry: str | None = None
    destination: str | None = None
    bill_code: str | None = None
    customer: str | None = None
    comments: str | None = None
    reference_op_id: Any = None
    conversions: list[ConversionRecord] = field(default_factory=list)


@dataclass
class Snapshot:
    """Independently recorded stock level of one item in both stores."""

    item_id: Any
    timestamp: datetime
    levels: StoreLevels
    reference: str | None = None

    @property
    def marker_id(self) -> str:
        """Ledger id of this stock-take; a reference alone can be reused across counts."""
        stamp = self.timestamp.isoformat()
        return f"snap:{self.reference}@{stamp}" if self.reference else f"snap:{stamp}"


RawEventRecord = Transaction | StockOperation | Snapshot


# --- Normalized events and replay output ---


@dataclass(frozen=True)
class SubLeg:
    """Diagnostic breakdown of a composite event. Never replayed."""

    kind: str
    quantity: Decimal
    store_no: int | None = None
    item_id: Any = None
    note: str = ""


# Boundary roles for snapshot markers, in tie-break order
BOUNDARY_RANK = {"opening": 0, None: 1, "checkpoint": 2, "closing": 2}

SOURCE_ORDER = {
    EventSource.SNAPSHOT: 0,
    EventSource.STOCK_OPERATION: 1,
    EventSource.TRANSACTION: 2,
}


@dataclass(frozen=True)
class LedgerEvent:
    timestamp: datetime
    event_type: EventType
    delta_store1: Decimal
    delta_store2: Decimal
    source: EventSource
    record_id: str = ""
    boundary: str | None = None  # opening/checkpoint/closing for snapshot markers
    meta: dict = field(default_factory=dict, hash=False)

    @property
    def delta(self) -> StoreLevels:
        return StoreLevels(self.delta_store1, self.delta_store2)

    @property
    def net(self) -> Decimal:
        return self.delta_store1 + self.delta_store2

    @property
    def is_marker(self) -> bool:
        return self.source is EventSource.SNAPSHOT

    def sort_key(self) -> tuple:
        """Total order used by the builder. Ties on time go to boundary rank."""
        return (
            self.timestamp,
            BOUNDARY_RANK[self.boundary],
            SOURCE_ORDER[self.source],
            self.record_id,
            self.event_type.value,
            self.delta_store1,
            self.delta_store2,
        )


@dataclass(frozen=True)
class LedgerPoint:
    """One replayed event with the running balance around it."""

    timestamp: datetime
    event_type: EventType
    delta_store1: Decimal
    delta_store2: Decimal
    source: EventSource
    before: StoreLevels
    after: StoreLevels
    record_id: str = ""
    boundary: str | None = None
    meta: dict = field(default_factory=dict, hash=False)
    synthetic: bool = False

    @property
    def is_marker(self) -> bool:
        return self.synthetic or self.source is EventSource.SNAPSHOT

    @classmethod
    def from_event(
        cls, event: LedgerEvent, before: StoreLevels, after: StoreLevels
    ) -> "LedgerPoint":
        return cls(
            timestamp=event.timestamp,
            event_type=event.event_type,
            delta_store1=event.delta_store1,
            delta_store2=event.delta_store2,
            source=event.source,
            before=before,
            after=after,
            record_id=event.record_id,
            boundary=event.boundary,
            meta=event.meta,
        )

    @property
    def before_store1(self) -> Decimal:
        return self.before.store1

    @property
    def before_store2(self) -> Decimal:
        return self.before.store2

    @property
    def before_total(self) -> Decimal:
        return self.before.total

    @property
    def after_store1(self) -> Decimal:
        return self.after.store1

    @property
    def after_store2(self) -> Decimal:
        return self.after.store2

    @property
    def after_total(self) -> Decimal:
        return self.after.total

    @property
    def delta(self) -> StoreLevels:
        return StoreLevels(self.delta_store1, self.delta_store2)
