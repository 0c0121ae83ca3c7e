"""
End-to-end reconciliation for one item and window.

Pipeline: resolve window -> pick bracketing snapshots -> normalize ->
build -> validate. Stateless; safe to run per request on any worker.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from .builder import LedgerBuilder
from .config import LedgerSettings, settings as default_settings
from .errors import MissingBoundaryError
from .models import LedgerEvent, LedgerPoint, RawEventRecord, Snapshot, TimeWindow
from .normalizer import EventNormalizer, same_item
from .parsers import TimestampParser
from .reconciliation import ReconciliationReport, ReconciliationValidator

logger = logging.getLogger(__name__)


@dataclass
class Boundaries:
    opening: Snapshot
    closing: Snapshot
    checkpoints: list[Snapshot] = field(default_factory=list)

    @property
    def span(self) -> TimeWindow:
        """Stretch of time the opening and closing stock-takes bracket."""
        return TimeWindow(self.opening.timestamp, self.closing.timestamp)

    def roles(self) -> list[tuple[Snapshot, str]]:
        return [
            (self.opening, "opening"),
            *((s, "checkpoint") for s in self.checkpoints),
            (self.closing, "closing"),
        ]


@dataclass
class LedgerResult:
    """Everything one reporting request produces."""

    item_id: Any
    window: TimeWindow
    events: list[LedgerEvent]
    points: list[LedgerPoint]
    report: ReconciliationReport

    @property
    def valid(self) -> bool:
        return self.report.valid


def select_boundaries(
    snapshots: Iterable[Snapshot], item_id: Any, window: TimeWindow
) -> Boundaries:
    """
    Pick the snapshots bracketing the window.

    Opening is the latest snapshot at or before the start, closing the
    earliest at or after the end. Snapshots strictly inside become
    checkpoints. A missing side is an error; zero is never assumed.
    """
    ours = sorted(
        (s for s in snapshots if same_item(s.item_id, item_id)),
        key=lambda s: s.timestamp,
    )
    before = [s for s in ours if s.timestamp <= window.start]
    after = [s for s in ours if s.timestamp >= window.end]
    if not before:
        raise MissingBoundaryError(
            "opening", item_id, f"nothing recorded at or before {window.start.isoformat()}"
        )
    if not after:
        raise MissingBoundaryError(
            "closing", item_id, f"nothing recorded at or after {window.end.isoformat()}"
        )
    # Several counts at one instant: open on the first, close on the last
    opening = next(s for s in before if s.timestamp == before[-1].timestamp)
    closing = [s for s in after if s.timestamp == after[0].timestamp][-1]
    if closing is opening:
        # start == end and a single snapshot sits exactly on it
        later = [s for s in after if s is not opening]
        closing = later[0] if later else opening
    checkpoints = [s for s in ours if window.start < s.timestamp < window.end]
    return Boundaries(opening=opening, closing=closing, checkpoints=checkpoints)


class LedgerEngine:
    """
    Runs the full reconciliation for one item.

    Usage:
        engine = LedgerEngine()
        result = engine.run(records, item_id=860, start="2026-02-16 06:05:30",
                            end="2026-02-21 23:59:59")
        result.points   # for charts
        result.report   # for the validation view
    """

    def __init__(self, settings: LedgerSettings | None = None):
        self.settings = settings or default_settings
        self.timestamps = TimestampParser()
        self.normalizer = EventNormalizer(self.settings)
        self.builder = LedgerBuilder()
        self.validator = ReconciliationValidator(self.settings)

    def run(
        self,
        records: Iterable[RawEventRecord],
        item_id: Any,
        start: Any,
        end: Any,
    ) -> LedgerResult:
        window = self.timestamps.window(start, end)
        records = list(records)

        boundaries = select_boundaries(
            (r for r in records if isinstance(r, Snapshot)), item_id, window
        )
        # Everything after the opening count matters, even if it predates the window
        span = boundaries.span
        movements = [
            r for r in records if not isinstance(r, Snapshot) and span.contains(r.timestamp)
        ]

        events = self.normalizer.normalize(movements, item_id)
        events += [self.normalizer.marker(s, role) for s, role in boundaries.roles()]
        points = self.builder.build(events, boundaries.opening)
        report = self.validator.validate(points, boundaries.opening, boundaries.closing, item_id)

        logger.debug(
            "Item %s window %s..%s: %d records in, %d points out",
            item_id,
            window.start,
            window.end,
            len(movements),
            len(points),
        )
        return LedgerResult(
            item_id=item_id, window=window, events=events, points=points, report=report
        )


def reconcile(
    records: Iterable[RawEventRecord],
    item_id: Any,
    start: Any,
    end: Any,
    settings: LedgerSettings | None = None,
) -> LedgerResult:
    """Shortcut for LedgerEngine(settings).run(...)."""
    return LedgerEngine(settings).run(records, item_id, start, end)
