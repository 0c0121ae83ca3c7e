import logging
from decimal import Decimal

import pytest

from factories import ITEM, at, kg, operation, purchase, sale, snapshot, transaction, transfer
from ledger.models import (
    ConversionRecord,
    EventSource,
    EventType,
    OperationLine,
    StockOperation,
    TimeWindow,
    TransactionLine,
)
from ledger.normalizer import EventNormalizer


@pytest.fixture
def normalizer(ledger_settings):
    return EventNormalizer(ledger_settings)


def test_sale_and_purchase_are_signed(normalizer) -> None:
    events = normalizer.normalize([sale(1, at(16), 20), purchase(2, at(17), "12.5", store_no=2)], ITEM)

    assert [(e.event_type, e.delta_store1, e.delta_store2) for e in events] == [
        (EventType.SELLING, kg(-20), kg(0)),
        (EventType.BUYING, kg(0), kg("12.5")),
    ]
    assert events[0].record_id == "tx:1"
    assert events[0].source is EventSource.TRANSACTION


def test_other_items_and_inactive_rows_are_excluded(normalizer) -> None:
    other = sale(1, at(16), 20, item_id="999")
    deleted = sale(2, at(16), 20, active=False)
    deleted_line = sale(3, at(16), 20)
    deleted_line.lines[0].active = False

    assert normalizer.normalize([other, deleted, deleted_line], ITEM) == []


@pytest.mark.parametrize("qty", [None, 0, "0.0000"])
def test_zero_or_missing_quantity_is_dropped(qty, normalizer) -> None:
    assert normalizer.normalize([sale(1, at(16), qty)], ITEM) == []


def test_multiple_lines_for_the_item_are_summed(normalizer) -> None:
    tx = sale(1, at(16), 5)
    tx.lines.append(TransactionLine(item_id=ITEM, quantity=kg("2.5")))
    tx.lines.append(TransactionLine(item_id="999", quantity=kg(100)))

    (event,) = normalizer.normalize([tx], ITEM)
    assert event.delta_store1 == kg("-7.5")


def test_duplicate_records_are_counted_once(normalizer) -> None:
    tx = sale(1, at(16), 20)
    events = normalizer.normalize([tx, tx], ITEM)
    assert len(events) == 1


def test_unknown_code_is_kept_with_anomaly(normalizer, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="ledger.normalizer"):
        (event,) = normalizer.normalize([transaction(1, "Mystery", at(16), "-3")], ITEM)

    assert event.event_type is EventType.UNKNOWN
    assert event.delta_store1 == kg(-3)
    assert "Mystery" in event.meta["anomalies"][0]
    assert "Mystery" in caplog.text


def test_transfer_on_transaction_row_is_unknown(normalizer) -> None:
    (event,) = normalizer.normalize([transaction(1, "Transfer", at(16), 4)], ITEM)
    assert event.event_type is EventType.UNKNOWN
    assert event.meta["anomalies"]


def test_untracked_store_is_flagged_not_applied(normalizer) -> None:
    (event,) = normalizer.normalize([sale(1, at(16), 20, store_no=3)], ITEM)
    assert event.event_type is EventType.UNKNOWN
    assert event.delta_store1 == event.delta_store2 == 0
    assert "store 3" in event.meta["anomalies"][0]


def test_transfer_moves_between_stores(normalizer) -> None:
    (event,) = normalizer.normalize([transfer(7, at(16), 30)], ITEM)

    assert event.event_type is EventType.TRANSFER_S1_S2
    assert event.delta_store1 == kg(-30)
    assert event.delta_store2 == kg(30)
    assert event.net == 0
    assert event.record_id == "op:7"
    kinds = [leg.kind for leg in event.meta["sub_legs"]]
    assert kinds == ["transfer_out", "transfer_in"]


def test_transfer_with_wastage_and_surplus(normalizer) -> None:
    lossy, gainy = normalizer.normalize(
        [
            transfer(7, at(16), 30, wastage="1.5"),
            transfer(8, at(17), 10, source=2, dest=1, surplus="0.25"),
        ],
        ITEM,
    )

    assert (lossy.delta_store1, lossy.delta_store2) == (kg(-30), kg("28.5"))
    assert lossy.meta["wastage"] == kg("1.5")
    assert [leg.kind for leg in lossy.meta["sub_legs"]] == ["transfer_out", "transfer_in", "wastage"]

    assert gainy.event_type is EventType.TRANSFER_S2_S1
    assert (gainy.delta_store1, gainy.delta_store2) == (kg("10.25"), kg(-10))


def test_transfer_destination_from_lines(normalizer) -> None:
    op = StockOperation(
        id=9,
        op_type="6",
        timestamp=at(16),
        store_no=2,
        lines=[
            OperationLine(item_id=ITEM, quantity=kg(12), store_no=2),
            OperationLine(item_id=ITEM, quantity=kg(12), store_no=1),
        ],
    )
    (event,) = normalizer.normalize([op], ITEM)
    assert event.event_type is EventType.TRANSFER_S2_S1
    assert (event.delta_store1, event.delta_store2) == (kg(12), kg(-12))


def test_transfer_without_destination_is_unknown(normalizer) -> None:
    (event,) = normalizer.normalize([transfer(7, at(16), 30, dest=None)], ITEM)
    assert event.event_type is EventType.UNKNOWN
    assert event.delta_store1 == event.delta_store2 == 0
    assert event.meta["anomalies"]


def test_clearance_operations_reduce_stock(normalizer) -> None:
    events = normalizer.normalize(
        [
            operation(1, "1", at(16), 40),
            operation(2, "7", at(17), 10, store_no=2, lorry="LB-1234"),
        ],
        ITEM,
    )
    assert [(e.event_type, e.delta_store1, e.delta_store2) for e in events] == [
        (EventType.FULL_CLEAR, kg(-40), kg(0)),
        (EventType.CLEAR_WITH_LORRY, kg(0), kg(-10)),
    ]
    assert events[1].meta["lorry"] == "LB-1234"


def test_operation_lines_on_both_stores(normalizer) -> None:
    op = StockOperation(
        id=3,
        op_type="2",
        timestamp=at(16),
        store_no=1,
        lines=[
            OperationLine(item_id=ITEM, quantity=kg(5)),
            OperationLine(item_id=ITEM, quantity=kg(2), store_no=2),
        ],
    )
    (event,) = normalizer.normalize([op], ITEM)
    assert (event.delta_store1, event.delta_store2) == (kg(-5), kg(-2))


def test_conversion_reduces_source_item_only(normalizer) -> None:
    op = StockOperation(
        id=11,
        op_type="9",
        timestamp=at(16),
        store_no=1,
        conversions=[
            ConversionRecord(source_item_id=ITEM, dest_item_id="861", source_quantity=kg(50), dest_quantity=kg(47)),
            ConversionRecord(source_item_id="500", dest_item_id="862", source_quantity=kg(9), dest_quantity=kg(9)),
        ],
    )
    (event,) = normalizer.normalize([op], ITEM)

    assert event.event_type is EventType.CONVERSION
    assert (event.delta_store1, event.delta_store2) == (kg(-50), kg(0))
    assert event.meta["wastage"] == kg(3)
    assert event.meta["surplus"] == 0
    (leg,) = event.meta["sub_legs"]
    assert leg.item_id == "861"
    assert leg.quantity == kg(47)


def test_conversion_falls_back_to_produced_quantity(normalizer) -> None:
    op = StockOperation(
        id=12,
        op_type="Conversion",
        timestamp=at(16),
        store_no=2,
        conversions=[ConversionRecord(source_item_id=ITEM, dest_item_id="861", dest_quantity=kg(8))],
    )
    (event,) = normalizer.normalize([op], ITEM)
    assert event.delta_store2 == kg(-8)


def test_snapshots_become_boundary_markers(normalizer) -> None:
    window = TimeWindow(at(16), at(20))
    markers = normalizer.normalize(
        [snapshot(at(15), 100, 50), snapshot(at(18), 90, 50, "ST-2"), snapshot(at(21), 80, 50)],
        ITEM,
        window,
    )

    assert [m.boundary for m in markers] == ["opening", "checkpoint", "closing"]
    assert all(m.delta_store1 == m.delta_store2 == 0 for m in markers)
    assert all(m.is_marker for m in markers)
    assert markers[1].record_id == "snap:ST-2@2026-02-18T12:00:00"
    assert markers[1].meta["recorded"].store1 == Decimal("90")


def test_rejects_non_record_input(normalizer) -> None:
    with pytest.raises(TypeError):
        normalizer.normalize([{"TYPE": "Selling"}], ITEM)


def test_operation_with_missing_header_store(normalizer) -> None:
    op = StockOperation(
        id=4,
        op_type="2",
        timestamp=at(16),
        store_no=None,
        lines=[
            OperationLine(item_id=ITEM, quantity=kg(3), store_no=None),
            OperationLine(item_id=ITEM, quantity=kg(5), store_no=1),
        ],
    )
    (event,) = normalizer.normalize([op], ITEM)

    assert event.event_type is EventType.UNKNOWN
    assert (event.delta_store1, event.delta_store2) == (kg(-5), kg(0))
    assert "store None is not tracked" in event.meta["anomalies"][0]


def test_stock_takes_sharing_a_reference_stay_distinct(normalizer) -> None:
    window = TimeWindow(at(16), at(20))
    markers = normalizer.normalize(
        [snapshot(at(15), 100, 0, "SHEET-A"), snapshot(at(18), 90, 0, "SHEET-A"), snapshot(at(21), 80, 0, "SHEET-A")],
        ITEM,
        window,
    )

    assert [m.boundary for m in markers] == ["opening", "checkpoint", "closing"]
    assert len({m.record_id for m in markers}) == 3


def test_explicit_marker_role(normalizer) -> None:
    count = snapshot(at(16), 8, 0, "count-pm")
    marker = normalizer.marker(count, "closing")

    assert marker.boundary == "closing"
    assert marker.record_id == "snap:count-pm@2026-02-16T12:00:00"
    assert marker.meta["recorded"] == count.levels
