import pytest

from factories import ITEM, at, kg, levels, sale, snapshot, transaction, transfer
from ledger.engine import reconcile, select_boundaries
from ledger.errors import InvalidRangeError, MissingBoundaryError
from ledger.models import EventType, TimeWindow


def test_run_end_to_end(engine) -> None:
    records = [
        snapshot(at(15, 22), 100, 50, "ST-1"),
        snapshot(at(21, 6), 70, "58.5", "ST-2"),
        sale(1, at(16, 9), 20),
        transfer(2, at(17, 9), 10, wastage="1.5"),
        sale(3, at(25, 9), 99),
        sale(4, at(18, 9), 5, item_id="999"),
    ]

    result = engine.run(records, ITEM, "2026-02-16 00:00:00", "2026-02-20 23:59:59")

    assert result.valid
    assert [p.record_id for p in result.points] == [
        "snap:ST-1@2026-02-15T22:00:00",
        "tx:1",
        "op:2",
        "snap:ST-2@2026-02-21T06:00:00",
    ]
    assert result.points[0].before == levels(100, 50)
    assert result.points[-1].after == levels("70", "58.5")
    assert result.report.opening_at == at(15, 22)
    assert result.report.closing_at == at(21, 6)


def test_run_reports_discrepancy(engine) -> None:
    records = [
        snapshot(at(15), 100, 0),
        snapshot(at(21), 70, 30),
        transfer(2, at(17), 30, wastage="1.5"),
    ]
    result = engine.run(records, ITEM, at(16), at(20))

    assert not result.valid
    assert result.report.discrepancy == levels(0, "1.5")
    assert result.report.issues[0].record_id == "op:2"


def test_accepts_integer_item_id(engine) -> None:
    records = [snapshot(at(15), 10, 0), snapshot(at(21), 5, 0), sale(1, at(17), 5)]
    assert engine.run(records, int(ITEM), at(16), at(20)).valid


def test_movements_on_window_edges_are_included(engine) -> None:
    records = [
        snapshot(at(16), 10, 0),
        snapshot(at(20), 4, 0),
        sale(1, at(16), 1),
        sale(2, at(20), 5),
    ]
    result = engine.run(records, ITEM, at(16), at(20))

    assert result.valid
    assert [p.record_id for p in result.points] == ["snap:" + at(16).isoformat(), "tx:1", "tx:2", "snap:" + at(20).isoformat()]


def test_inverted_window_is_rejected(engine) -> None:
    with pytest.raises(InvalidRangeError):
        engine.run([snapshot(at(15), 1, 1)], ITEM, at(20), at(16))


def test_unresolvable_window_is_rejected(engine) -> None:
    with pytest.raises(InvalidRangeError):
        engine.run([], ITEM, "someday", at(16))


def test_missing_opening_snapshot(engine) -> None:
    with pytest.raises(MissingBoundaryError) as info:
        engine.run([snapshot(at(21), 1, 1)], ITEM, at(16), at(20))
    assert info.value.boundary == "opening"
    assert info.value.item_id == ITEM


def test_missing_closing_snapshot(engine) -> None:
    with pytest.raises(MissingBoundaryError) as info:
        engine.run([snapshot(at(15), 1, 1), snapshot(at(18), 1, 1)], ITEM, at(16), at(20))
    assert info.value.boundary == "closing"


def test_snapshots_of_other_items_do_not_count(engine) -> None:
    records = [snapshot(at(15), 1, 1, item_id="999"), snapshot(at(21), 1, 1)]
    with pytest.raises(MissingBoundaryError):
        engine.run(records, ITEM, at(16), at(20))


def test_select_boundaries_picks_nearest_and_checkpoints() -> None:
    snaps = [
        snapshot(at(10), 1, 0, "a"),
        snapshot(at(14), 2, 0, "b"),
        snapshot(at(17), 3, 0, "c"),
        snapshot(at(22), 4, 0, "d"),
        snapshot(at(25), 5, 0, "e"),
    ]
    bounds = select_boundaries(snaps, ITEM, TimeWindow(at(15), at(20)))

    assert bounds.opening.reference == "b"
    assert bounds.closing.reference == "d"
    assert [s.reference for s in bounds.checkpoints] == ["c"]


def test_select_boundaries_single_instant_window() -> None:
    snaps = [snapshot(at(16), 1, 0, "a"), snapshot(at(18), 2, 0, "b")]
    bounds = select_boundaries(snaps, ITEM, TimeWindow(at(16), at(16)))
    assert (bounds.opening.reference, bounds.closing.reference) == ("a", "b")


def test_window_without_movements_has_only_boundary_markers(engine) -> None:
    records = [snapshot(at(15), 7, 3), snapshot(at(21), 7, 3)]
    result = engine.run(records, ITEM, at(16), at(20))

    assert result.valid
    assert result.events and all(e.is_marker for e in result.events)
    assert all(p.delta_store1 == p.delta_store2 == 0 for p in result.points)
    assert result.report.event_count == 0


def test_reconcile_shortcut() -> None:
    records = [
        snapshot(at(15), 10, 0),
        snapshot(at(21), 14, 0),
        transaction(1, "Buying", at(17), 4),
    ]
    result = reconcile(records, ITEM, at(16), at(20))
    assert result.valid
    assert result.report.by_type[0].event_type is EventType.BUYING
    assert result.report.by_type[0].net == kg(4)


def test_movements_between_stock_takes_and_window_are_counted(engine) -> None:
    records = [
        snapshot(at(15, 12), 100, 0),
        sale(1, at(15, 18), 20),
        sale(2, at(18), 5),
        sale(3, at(20, 22), 5),
        snapshot(at(21), 70, 0),
        sale(4, at(22), 99),
    ]
    result = engine.run(records, ITEM, at(16, 0), at(20, 0))

    assert result.valid
    assert result.report.delta_sum == levels(-30, 0)
    assert [p.record_id for p in result.points if not p.is_marker] == ["tx:1", "tx:2", "tx:3"]


def test_single_instant_window_with_counts_before_and_after_a_sale(engine) -> None:
    records = [
        snapshot(at(16), 10, 0, "count-am"),
        sale(1, at(16), 2),
        snapshot(at(16), 8, 0, "count-pm"),
    ]
    result = engine.run(records, ITEM, at(16), at(16))

    assert result.valid
    assert [(p.record_id, p.boundary) for p in result.points] == [
        ("snap:count-am@2026-02-16T12:00:00", "opening"),
        ("tx:1", None),
        ("snap:count-pm@2026-02-16T12:00:00", "closing"),
    ]
    assert result.points[-1].after == levels(8, 0)


def test_single_stock_take_on_single_instant_window(engine) -> None:
    records = [snapshot(at(16), 10, 0, "ST-1"), sale(1, at(16), 2), snapshot(at(17), 8, 0, "ST-2")]
    result = engine.run(records, ITEM, at(16), at(16))

    assert result.valid
    assert result.report.closing_at == at(17)
    assert [p.boundary for p in result.points] == ["opening", None, "closing"]
