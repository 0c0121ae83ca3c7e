"""
Reconciliation validator.

Checks a replayed ledger against an independently recorded closing snapshot:
opening + sum(deltas) must equal closing, per store, within epsilon. When it
doesn't, ranks the events most likely to be responsible. The ranking is a
heuristic pointer for whoever investigates, not proof of cause.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from .config import LedgerSettings, settings as default_settings
from .models import ZERO, EventType, LedgerPoint, Snapshot, StoreLevels

logger = logging.getLogger(__name__)

ISSUE_NOTE = (
    "Issues are likely candidates ranked by size and type. "
    "They point where to look; they do not prove what caused the gap."
)


class MovementRow(BaseModel):
    """Total movement of one event type in the window."""

    event_type: EventType
    store1: Decimal
    store2: Decimal
    net: Decimal
    count: int = Field(description="Number of events of this type")


class ReconciliationIssue(BaseModel):
    """A candidate explanation for a discrepancy, or a data anomaly."""

    rank: int
    kind: Literal["event", "period", "anomaly"]
    reason: str
    timestamp: datetime | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    event_type: EventType | None = None
    record_id: str | None = None
    code: str | None = None
    delta_store1: Decimal = ZERO
    delta_store2: Decimal = ZERO


class ReconciliationReport(BaseModel):
    """Outcome of reconciling one item's ledger between two snapshots."""

    item_id: Any = None
    opening: StoreLevels
    opening_at: datetime
    closing: StoreLevels
    closing_at: datetime
    by_type: list[MovementRow] = Field(default_factory=list)
    delta_sum: StoreLevels
    expected_closing: StoreLevels
    actual_closing: StoreLevels
    valid: bool
    discrepancy: StoreLevels = Field(description="actual - expected, zero when valid")
    issues: list[ReconciliationIssue] = Field(default_factory=list)
    anomalies: list[ReconciliationIssue] = Field(
        default_factory=list, description="Rows kept as Unknown or otherwise flagged"
    )
    event_count: int = 0
    epsilon: Decimal
    balance_equation: str = ""
    note: str = ISSUE_NOTE

    def summary(self) -> dict:
        return {
            "item": self.item_id,
            "valid": self.valid,
            "events": self.event_count,
            "expected_total": f"{self.expected_closing.total:.3f}",
            "actual_total": f"{self.actual_closing.total:.3f}",
            "discrepancy_total": f"{self.discrepancy.total:.3f}",
            "issues": len(self.issues),
            "anomalies": len(self.anomalies),
        }


def _fmt(value: Decimal) -> str:
    return f"{value:+.3f}"


class ReconciliationValidator:
    """
    Validates a ledger against its bracketing snapshots.

    Usage:
        validator = ReconciliationValidator()
        report = validator.validate(points, opening, closing)
        if not report.valid:
            for issue in report.issues: ...
    """

    def __init__(self, settings: LedgerSettings | None = None):
        self.settings = settings or default_settings

    def validate(
        self,
        ledger: list[LedgerPoint],
        opening: Snapshot,
        closing: Snapshot,
        item_id: Any = None,
    ) -> ReconciliationReport:
        epsilon = self.settings.epsilon
        real = [p for p in ledger if not p.is_marker]

        delta_sum = StoreLevels()
        for point in real:
            delta_sum = delta_sum + point.delta

        expected = opening.levels + delta_sum
        actual = closing.levels
        valid = expected.within(actual, epsilon)
        discrepancy = StoreLevels() if valid else actual - expected

        by_type = self._by_type(real)
        issues = [] if valid else self._explain(ledger, real, opening, discrepancy)

        report = ReconciliationReport(
            item_id=item_id if item_id is not None else opening.item_id,
            opening=opening.levels,
            opening_at=opening.timestamp,
            closing=closing.levels,
            closing_at=closing.timestamp,
            by_type=by_type,
            delta_sum=delta_sum,
            expected_closing=expected,
            actual_closing=actual,
            valid=valid,
            discrepancy=discrepancy,
            issues=issues,
            anomalies=self._anomalies(real),
            event_count=len(real),
            epsilon=epsilon,
            balance_equation=self._equation(opening.levels, by_type, expected, actual),
        )

        if valid:
            logger.info("Item %s balanced over %d events", report.item_id, len(real))
        else:
            logger.info(
                "Item %s unbalanced: discrepancy store1=%s store2=%s, %d candidate issues",
                report.item_id,
                discrepancy.store1,
                discrepancy.store2,
                len(issues),
            )
        return report

    # --- aggregation ---

    @staticmethod
    def _by_type(points: list[LedgerPoint]) -> list[MovementRow]:
        # Rows appear in order of each type's first event
        totals: dict[EventType, list] = {}
        for point in points:
            row = totals.setdefault(point.event_type, [ZERO, ZERO, 0])
            row[0] += point.delta_store1
            row[1] += point.delta_store2
            row[2] += 1
        return [
            MovementRow(event_type=t, store1=s1, store2=s2, net=s1 + s2, count=n)
            for t, (s1, s2, n) in totals.items()
        ]

    @staticmethod
    def _equation(
        opening: StoreLevels,
        by_type: list[MovementRow],
        expected: StoreLevels,
        actual: StoreLevels,
    ) -> str:
        terms = [f"Opening ({opening.total:.3f})"]
        terms += [f"{row.event_type.value} ({_fmt(row.net)})" for row in by_type]
        diff = abs(actual.total - expected.total)
        return (
            f"{' + '.join(terms)} = {expected.total:.3f} expected "
            f"vs {actual.total:.3f} recorded ({diff:.3f} kg diff)"
        )

    # --- explanation ---

    def _anomalies(self, points: list[LedgerPoint]) -> list[ReconciliationIssue]:
        anomalies = []
        for point in points:
            notes = point.meta.get("anomalies")
            if not notes:
                continue
            anomalies.append(
                ReconciliationIssue(
                    rank=len(anomalies) + 1,
                    kind="anomaly",
                    reason=f"{point.timestamp:%Y-%m-%d %H:%M:%S} {point.record_id}: " + "; ".join(notes),
                    timestamp=point.timestamp,
                    event_type=point.event_type,
                    record_id=point.record_id,
                    code=point.meta.get("code"),
                    delta_store1=point.delta_store1,
                    delta_store2=point.delta_store2,
                )
            )
        return anomalies

    def _explain(
        self,
        ledger: list[LedgerPoint],
        real: list[LedgerPoint],
        opening: Snapshot,
        discrepancy: StoreLevels,
    ) -> list[ReconciliationIssue]:
        issues: list[ReconciliationIssue] = []
        candidates = real

        period = self._drift_period(ledger, opening)
        if period is not None:
            start, end, reason = period
            issues.append(
                ReconciliationIssue(
                    rank=0, kind="period", reason=reason, period_start=start, period_end=end
                )
            )
            candidates = [
                p for p in real if p.timestamp > start and (end is None or p.timestamp <= end)
            ]

        suspects = [p for p in candidates if self._is_error_prone(p)]
        suspects.sort(key=lambda p: self._suspect_key(p, discrepancy))

        for point in suspects:
            issues.append(
                ReconciliationIssue(
                    rank=0,
                    kind="event",
                    reason=self._reason(point, discrepancy),
                    timestamp=point.timestamp,
                    event_type=point.event_type,
                    record_id=point.record_id,
                    code=point.meta.get("code"),
                    delta_store1=point.delta_store1,
                    delta_store2=point.delta_store2,
                )
            )

        issues = issues[: self.settings.max_issues]
        for rank, issue in enumerate(issues, start=1):
            issue.rank = rank
        return issues

    def _drift_period(
        self, ledger: list[LedgerPoint], opening: Snapshot
    ) -> tuple[datetime, datetime | None, str] | None:
        """
        Use stock-takes recorded inside the window to narrow down where the
        ledger first departs from reality.
        """
        checkpoints = [p for p in ledger if p.boundary == "checkpoint"]
        if not checkpoints:
            return None

        epsilon = self.settings.epsilon
        last_good = opening.timestamp
        for point in checkpoints:
            recorded = point.meta.get("recorded")
            if recorded is None:
                continue
            if not point.after.within(recorded, epsilon):
                gap = recorded - point.after
                return (
                    last_good,
                    point.timestamp,
                    f"Ledger already disagrees with the stock-take at {point.timestamp:%Y-%m-%d %H:%M:%S} "
                    f"(store1 {_fmt(gap.store1)} kg, store2 {_fmt(gap.store2)} kg); "
                    f"look between {last_good:%Y-%m-%d %H:%M:%S} and then",
                )
            last_good = point.timestamp

        return (
            last_good,
            None,
            f"Ledger matches every stock-take up to {last_good:%Y-%m-%d %H:%M:%S}; "
            f"the gap arises after it",
        )

    def _is_error_prone(self, point: LedgerPoint) -> bool:
        if point.event_type in self.settings.error_prone_types:
            return True
        return bool(point.meta.get("wastage") or point.meta.get("surplus"))

    def _explains(self, point: LedgerPoint, discrepancy: StoreLevels) -> bool:
        """Does a single number on this event match the size of the gap?"""
        epsilon = self.settings.epsilon
        gaps = [abs(g) for g in (discrepancy.store1, discrepancy.store2, discrepancy.total) if abs(g) > epsilon]
        amounts = [abs(point.delta_store1), abs(point.delta_store2)]
        for key in ("wastage", "surplus"):
            value = point.meta.get(key)
            if value:
                amounts.append(abs(value))
        return any(abs(a - g) <= epsilon for a in amounts if a for g in gaps)

    def _suspect_key(self, point: LedgerPoint, discrepancy: StoreLevels) -> tuple:
        touches = any(
            delta and abs(gap) > self.settings.epsilon
            for delta, gap in (
                (point.delta_store1, discrepancy.store1),
                (point.delta_store2, discrepancy.store2),
            )
        )
        magnitude = abs(point.delta_store1) + abs(point.delta_store2)
        return (
            not self._explains(point, discrepancy),
            not touches,
            -magnitude,
            point.timestamp,
            point.record_id,
        )

    def _reason(self, point: LedgerPoint, discrepancy: StoreLevels) -> str:
        label = point.meta.get("code") or point.record_id
        parts = [
            f"{point.event_type.value} {label} at {point.timestamp:%Y-%m-%d %H:%M:%S} "
            f"moved {_fmt(point.delta_store1)} kg in store 1 and {_fmt(point.delta_store2)} kg in store 2"
        ]
        wastage = point.meta.get("wastage")
        surplus = point.meta.get("surplus")
        if wastage:
            parts.append(f"declared wastage {wastage:.3f} kg")
        if surplus:
            parts.append(f"declared surplus {surplus:.3f} kg")
        if point.event_type in (EventType.ADJ_IN, EventType.ADJ_OUT):
            parts.append("manual adjustment")
        elif point.event_type is EventType.CONVERSION:
            parts.append("conversion to another item")
        elif point.event_type is EventType.UNKNOWN:
            parts.append("unrecognized type")
        if self._explains(point, discrepancy):
            parts.append(
                f"an amount on it matches the gap (store1 {_fmt(discrepancy.store1)} kg, "
                f"store2 {_fmt(discrepancy.store2)} kg)"
            )
        return "; ".join(parts) + " (possible cause)"
