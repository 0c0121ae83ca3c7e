"""
Event normalizer: raw transactions, stock operations and snapshots in,
uniform LedgerEvents out.

One ledger covers one item, so every record is reduced to its effect on the
queried item. Bad rows never abort the run: an unrecognized code becomes an
Unknown event that carries the recorded quantity and an anomaly note.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any, Iterable

from .classification import EventClassifier
from .config import LedgerSettings, settings as default_settings
from .errors import UnknownEventType
from .models import (
    ZERO,
    EventSource,
    EventType,
    LedgerEvent,
    RawEventRecord,
    Snapshot,
    StockOperation,
    StoreLevels,
    SubLeg,
    TimeWindow,
    Transaction,
)

logger = logging.getLogger(__name__)

STORES = (1, 2)


def same_item(a: Any, b: Any) -> bool:
    return str(a) == str(b)


def _sum_quantities(quantities: Iterable[Decimal | None]) -> Decimal | None:
    present = [q for q in quantities if q is not None]
    if not present:
        return None
    return sum(present, ZERO)


class EventNormalizer:
    """
    Converts raw records for one item into LedgerEvents.

    Usage:
        normalizer = EventNormalizer()
        events = normalizer.normalize(records, item_id=860, window=window)
    """

    def __init__(self, settings: LedgerSettings | None = None):
        self.settings = settings or default_settings
        self.classifier = EventClassifier(self.settings)

    def normalize(
        self,
        records: Iterable[RawEventRecord],
        item_id: Any,
        window: TimeWindow | None = None,
    ) -> list[LedgerEvent]:
        """
        Normalize raw records for `item_id`.

        Args:
            window: When given, snapshots are tagged as opening/checkpoint/
                closing markers relative to it. Without it every snapshot
                is a checkpoint.
        """
        events: list[LedgerEvent] = []
        seen: set[tuple[str, str | None]] = set()
        dropped = 0

        for record in records:
            if isinstance(record, Snapshot):
                event = self._from_snapshot(record, item_id, window)
            elif isinstance(record, Transaction):
                event = self._from_transaction(record, item_id)
            elif isinstance(record, StockOperation):
                event = self._from_operation(record, item_id)
            else:
                raise TypeError(f"Not a raw event record: {type(record).__name__}")

            if event is None:
                dropped += 1
                continue
            # Join exports can repeat a row once per matching line
            key = (event.record_id, event.boundary)
            if key in seen:
                logger.debug("Skipping duplicate record %s", event.record_id)
                continue
            seen.add(key)
            events.append(event)

        logger.debug(
            "Normalized item %s: %d events, %d records dropped",
            item_id,
            len(events),
            dropped,
        )
        return events

    # --- per-record converters ---

    def _from_snapshot(
        self, snapshot: Snapshot, item_id: Any, window: TimeWindow | None
    ) -> LedgerEvent | None:
        if not same_item(snapshot.item_id, item_id):
            return None
        return self.marker(snapshot, self._boundary_role(snapshot, window))

    def marker(self, snapshot: Snapshot, boundary: str) -> LedgerEvent:
        """Zero-delta marker for a stock-take playing a known boundary role."""
        return LedgerEvent(
            timestamp=snapshot.timestamp,
            event_type=EventType.SNAPSHOT,
            delta_store1=ZERO,
            delta_store2=ZERO,
            source=EventSource.SNAPSHOT,
            record_id=snapshot.marker_id,
            boundary=boundary,
            meta={"recorded": snapshot.levels, "reference": snapshot.reference},
        )

    def _from_transaction(self, tx: Transaction, item_id: Any) -> LedgerEvent | None:
        if not tx.active:
            return None
        lines = [l for l in tx.lines if l.active and same_item(l.item_id, item_id)]
        quantity = _sum_quantities(l.quantity for l in lines)
        if quantity is None:
            return None

        meta: dict[str, Any] = {
            "code": tx.code,
            "raw_type": tx.type,
            "bill_code": tx.bill_code,
            "customer": tx.customer,
            "comments": tx.comments,
            "amount": _sum_quantities(l.total for l in lines),
        }
        event_type = self._classify(tx.type, meta, f"transaction {tx.id}")
        if event_type.is_transfer:
            # A single-store row can't say where a transfer went
            self._flag(meta, UnknownEventType(tx.type, "transfer on a single-store row"))
            event_type = EventType.UNKNOWN

        if tx.store_no not in STORES:
            self._flag(meta, f"store {tx.store_no} is not tracked; quantity {quantity} not applied")
            delta = StoreLevels()
            event_type = EventType.UNKNOWN
        else:
            delta = StoreLevels.for_store(tx.store_no, self.classifier.signed(event_type, quantity))

        return self._emit(tx.timestamp, event_type, delta, EventSource.TRANSACTION, f"tx:{tx.id}", meta)

    def _from_operation(self, op: StockOperation, item_id: Any) -> LedgerEvent | None:
        if not op.active:
            return None
        lines = [l for l in op.lines if l.active and same_item(l.item_id, item_id)]

        meta: dict[str, Any] = {
            "code": op.code,
            "raw_type": op.op_type,
            "bill_code": op.bill_code,
            "customer": op.customer,
            "lorry": op.lorry,
            "destination": op.destination,
            "comments": op.comments,
            "reference_op_id": op.reference_op_id,
            "wastage": op.wastage,
            "surplus": op.surplus,
        }
        event_type = self._classify(op.op_type, meta, f"operation {op.id}")
        record_id = f"op:{op.id}"

        if event_type.is_transfer:
            return self._transfer(op, lines, meta, record_id)
        if event_type is EventType.CONVERSION:
            return self._conversion(op, item_id, lines, meta, record_id)

        per_store: dict[int | None, list[Decimal | None]] = defaultdict(list)
        for line in lines:
            per_store[line.store_no or op.store_no].append(line.quantity)
        if _sum_quantities(q for qs in per_store.values() for q in qs) is None:
            return None

        delta = StoreLevels()
        untracked = False
        for store_no, quantities in per_store.items():
            quantity = _sum_quantities(quantities)
            if quantity is None:
                continue
            if store_no not in STORES:
                self._flag(meta, f"store {store_no} is not tracked; quantity {quantity} not applied")
                untracked = True
                continue
            delta = delta + StoreLevels.for_store(
                store_no, self.classifier.signed(event_type, quantity)
            )
        if untracked:
            event_type = EventType.UNKNOWN
        return self._emit(op.timestamp, event_type, delta, EventSource.STOCK_OPERATION, record_id, meta)

    def _transfer(
        self, op: StockOperation, lines: list, meta: dict, record_id: str
    ) -> LedgerEvent | None:
        source = op.store_no
        source_lines = [l for l in lines if l.store_no in (None, source)]
        quantity = _sum_quantities(l.quantity for l in source_lines)
        if quantity is None:
            return None

        dest = op.dest_store_no
        if dest is None:
            dest = next((l.store_no for l in lines if l.store_no not in (None, source)), None)

        if (source, dest) == (1, 2):
            event_type = EventType.TRANSFER_S1_S2
        elif (source, dest) == (2, 1):
            event_type = EventType.TRANSFER_S2_S1
        else:
            self._flag(meta, UnknownEventType(op.op_type, f"transfer from store {source} to {dest}"))
            return self._emit(
                op.timestamp, EventType.UNKNOWN, StoreLevels(), EventSource.STOCK_OPERATION, record_id, meta
            )

        moved = abs(quantity)
        arrived = moved - op.wastage + op.surplus
        delta = StoreLevels.for_store(source, -moved) + StoreLevels.for_store(dest, arrived)

        legs = [
            SubLeg("transfer_out", -moved, store_no=source),
            SubLeg("transfer_in", arrived, store_no=dest),
        ]
        if op.wastage:
            legs.append(SubLeg("wastage", -op.wastage, note="lost in transit"))
        if op.surplus:
            legs.append(SubLeg("surplus", op.surplus, note="gained in transit"))
        legs.extend(self._conversion_legs(op))
        meta["sub_legs"] = legs
        return self._emit(op.timestamp, event_type, delta, EventSource.STOCK_OPERATION, record_id, meta)

    def _conversion(
        self, op: StockOperation, item_id: Any, lines: list, meta: dict, record_id: str
    ) -> LedgerEvent | None:
        conversions = [
            c for c in op.conversions if c.active and same_item(c.source_item_id, item_id)
        ]
        quantity = _sum_quantities(l.quantity for l in lines)
        if quantity is None:
            # SOURCE_QUANTITY is often left empty; fall back to what was produced
            quantity = _sum_quantities(
                c.source_quantity if c.source_quantity else c.dest_quantity for c in conversions
            )
        if quantity is None:
            return None

        produced = _sum_quantities(c.dest_quantity for c in conversions) or ZERO
        source_qty = abs(quantity)
        meta["wastage"] = max(ZERO, source_qty - produced) if conversions else op.wastage
        meta["surplus"] = max(ZERO, produced - source_qty) if conversions else op.surplus
        meta["sub_legs"] = self._conversion_legs(op, item_id)

        if op.store_no not in STORES:
            self._flag(meta, f"store {op.store_no} is not tracked; quantity {quantity} not applied")
            return self._emit(
                op.timestamp, EventType.UNKNOWN, StoreLevels(), EventSource.STOCK_OPERATION, record_id, meta
            )
        delta = StoreLevels.for_store(op.store_no, -source_qty)
        return self._emit(op.timestamp, EventType.CONVERSION, delta, EventSource.STOCK_OPERATION, record_id, meta)

    # --- helpers ---

    def _conversion_legs(self, op: StockOperation, item_id: Any = None) -> list[SubLeg]:
        legs = []
        for c in op.conversions:
            if not c.active:
                continue
            if item_id is not None and not same_item(c.source_item_id, item_id):
                continue
            legs.append(
                SubLeg(
                    "conversion",
                    c.dest_quantity or ZERO,
                    store_no=op.store_no,
                    item_id=c.dest_item_id,
                    note=c.dest_item_name or "",
                )
            )
        return legs

    def _classify(self, code: Any, meta: dict, where: str) -> EventType:
        try:
            return self.classifier.classify(code)
        except UnknownEventType as exc:
            logger.warning("%s in %s; keeping it as Unknown", exc, where)
            self._flag(meta, exc)
            return EventType.UNKNOWN

    @staticmethod
    def _flag(meta: dict, anomaly) -> None:
        meta.setdefault("anomalies", []).append(str(anomaly))

    def _emit(
        self,
        timestamp,
        event_type: EventType,
        delta: StoreLevels,
        source: EventSource,
        record_id: str,
        meta: dict,
    ) -> LedgerEvent | None:
        # No-op rows are noise, unless they carry an anomaly worth showing
        if delta.within(StoreLevels(), self.settings.epsilon) and not meta.get("anomalies"):
            return None
        return LedgerEvent(
            timestamp=timestamp,
            event_type=event_type,
            delta_store1=delta.store1,
            delta_store2=delta.store2,
            source=source,
            record_id=record_id,
            meta=meta,
        )

    @staticmethod
    def _boundary_role(snapshot: Snapshot, window: TimeWindow | None) -> str:
        if window is None:
            return "checkpoint"
        if snapshot.timestamp <= window.start:
            return "opening"
        if snapshot.timestamp >= window.end:
            return "closing"
        return "checkpoint"
