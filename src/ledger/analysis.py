"""
Presentation-side analysis of a replayed ledger.

Computes:
- Ledger as a DataFrame
- Stock series per Daily/Weekly/Monthly/Yearly bucket
- Points where stock runs down to zero (clearance candidates)
- Wastage/surplus declared by stock operations

Everything here reads LedgerPoints and returns floats for display; the
reconciliation arithmetic itself stays in Decimal.
"""

from decimal import Decimal

import numpy as np
import pandas as pd

from .config import LedgerSettings, settings as default_settings
from .errors import InvalidRangeError
from .models import ZERO, EventSource, LedgerEvent, LedgerPoint

FREQUENCIES = {
    "Daily": "D",
    "Weekly": "W",
    "Monthly": "MS",
    "Yearly": "YS",
}

LEVEL_COLUMNS = ["after_store1", "after_store2", "after_total"]
FLOW_COLUMNS = ["inflow", "outflow", "delta_total"]


def ledger_frame(points: list[LedgerPoint]) -> pd.DataFrame:
    """One row per ledger point, with quantities as floats."""
    rows = []
    for p in points:
        rows.append(
            {
                "timestamp": p.timestamp,
                "event_type": p.event_type.value,
                "source": p.source.value,
                "record_id": p.record_id,
                "code": p.meta.get("code"),
                "boundary": p.boundary,
                "synthetic": p.synthetic,
                "is_marker": p.is_marker,
                "delta_store1": float(p.delta_store1),
                "delta_store2": float(p.delta_store2),
                "delta_total": float(p.delta_store1 + p.delta_store2),
                "before_store1": float(p.before.store1),
                "before_store2": float(p.before.store2),
                "before_total": float(p.before.total),
                "after_store1": float(p.after.store1),
                "after_store2": float(p.after.store2),
                "after_total": float(p.after.total),
            }
        )
    frame = pd.DataFrame(rows)
    if len(frame) > 0:
        frame["timestamp"] = pd.to_datetime(frame["timestamp"])
    return frame


def stock_series(
    points: list[LedgerPoint],
    period: str = "Daily",
    settings: LedgerSettings | None = None,
) -> pd.DataFrame:
    """
    Closing stock and flows per period bucket.

    The first row is the opening balance (is_initial=True); each following
    row is one bucket with its closing levels, total inflow, total outflow
    and net change. Windows longer than the period's limit are rejected so a
    chart never gets more points than it can show.

    Returns DataFrame with:
    - timestamp (bucket label)
    - store1, store2, total
    - inflow, outflow, net_change
    - is_initial
    """
    settings = settings or default_settings
    if period not in FREQUENCIES:
        raise ValueError(f"Unknown period {period!r}; expected one of {list(FREQUENCIES)}")
    if not points:
        raise ValueError("stock_series needs at least one ledger point")

    frame = ledger_frame(points)
    span_days = (frame["timestamp"].max() - frame["timestamp"].min()).days
    limit = settings.period_limits.get(period)
    if limit is not None and span_days > limit:
        raise InvalidRangeError(
            f"{period} series covers {span_days} days; the limit is {limit}"
        )

    freq = FREQUENCIES[period]
    indexed = frame.set_index("timestamp")
    series = indexed[LEVEL_COLUMNS].resample(freq).last()

    moves = frame[~frame["is_marker"]].copy()
    if len(moves) > 0:
        moves["inflow"] = moves["delta_total"].clip(lower=0)
        moves["outflow"] = (-moves["delta_total"]).clip(lower=0)
        flows = moves.set_index("timestamp")[FLOW_COLUMNS].resample(freq).sum()
        series = series.join(flows, how="left")
    else:
        for col in FLOW_COLUMNS:
            series[col] = 0.0

    # Empty buckets carry the last known level forward
    series[FLOW_COLUMNS] = series[FLOW_COLUMNS].fillna(0.0)
    series[LEVEL_COLUMNS] = series[LEVEL_COLUMNS].ffill()

    series = series.reset_index().rename(
        columns={
            "after_store1": "store1",
            "after_store2": "store2",
            "after_total": "total",
            "delta_total": "net_change",
        }
    )
    series["is_initial"] = False

    opening = points[0].before
    initial = pd.DataFrame(
        [
            {
                "timestamp": frame["timestamp"].min(),
                "store1": float(opening.store1),
                "store2": float(opening.store2),
                "total": float(opening.total),
                "inflow": 0.0,
                "outflow": 0.0,
                "net_change": 0.0,
                "is_initial": True,
            }
        ]
    )
    return pd.concat([initial, series[initial.columns]], ignore_index=True)


def find_zero_points(
    points: list[LedgerPoint],
    epsilon: Decimal | None = None,
) -> pd.DataFrame:
    """
    Find where total stock runs down to zero.

    These "natural zero" points are candidates for reconciliation
    boundaries when no explicit full-clearance operation exists.
    """
    epsilon = float(epsilon if epsilon is not None else default_settings.epsilon)
    frame = ledger_frame(points)
    if len(frame) == 0:
        return frame

    at_zero = np.abs(frame["after_total"]) <= epsilon
    was_zero = np.abs(frame["before_total"]) <= epsilon
    real = ~frame["is_marker"]

    zeros = frame[at_zero & ~was_zero & real].copy()
    return zeros[["timestamp", "event_type", "record_id", "code", "after_total"]].reset_index(drop=True)


def wastage_summary(events: list[LedgerEvent] | list[LedgerPoint]) -> dict:
    """
    Wastage and surplus declared on stock operations.

    Returns dict with totals and the per-operation list (operations with
    neither are left out).
    """
    operations = []
    total_wastage = ZERO
    total_surplus = ZERO
    for e in events:
        if e.source is not EventSource.STOCK_OPERATION:
            continue
        wastage = e.meta.get("wastage") or ZERO
        surplus = e.meta.get("surplus") or ZERO
        if not wastage and not surplus:
            continue
        total_wastage += wastage
        total_surplus += surplus
        operations.append(
            {
                "record_id": e.record_id,
                "code": e.meta.get("code"),
                "event_type": e.event_type.value,
                "timestamp": e.timestamp,
                "wastage": float(wastage),
                "surplus": float(surplus),
            }
        )

    return {
        "total_wastage": round(float(total_wastage), 3),
        "total_surplus": round(float(total_surplus), 3),
        "net_loss": round(float(total_wastage - total_surplus), 3),
        "operations": operations,
    }
