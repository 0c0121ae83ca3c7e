"""
Ledger builder: orders normalized events and replays them into running
per-store balances.
"""

import logging
from bisect import bisect_right
from datetime import datetime

from .models import ZERO, EventSource, EventType, LedgerEvent, LedgerPoint, Snapshot, StoreLevels

logger = logging.getLogger(__name__)


class LedgerBuilder:
    """
    Replays events on top of an opening snapshot.

    Events are sorted by (timestamp, boundary rank, source, record id), so the
    same set of events always produces the same ledger regardless of the
    order it arrived in. An opening marker sorts before anything at the same
    instant; checkpoint and closing markers sort after.
    """

    def build(self, events: list[LedgerEvent], opening: Snapshot) -> list[LedgerPoint]:
        ordered = sorted(events, key=LedgerEvent.sort_key)

        if not ordered:
            # Charts still need something to draw
            return [self._opening_point(opening)]

        running = opening.levels
        points = []
        for event in ordered:
            before = running
            running = running + event.delta
            points.append(LedgerPoint.from_event(event, before, running))

        logger.debug(
            "Replayed %d events: %s -> %s (total)",
            len(points),
            opening.levels.total,
            running.total,
        )
        return points

    @staticmethod
    def _opening_point(opening: Snapshot) -> LedgerPoint:
        return LedgerPoint(
            timestamp=opening.timestamp,
            event_type=EventType.SNAPSHOT,
            delta_store1=ZERO,
            delta_store2=ZERO,
            source=EventSource.SNAPSHOT,
            before=opening.levels,
            after=opening.levels,
            record_id=opening.marker_id,
            boundary="opening",
            meta={"recorded": opening.levels, "reference": opening.reference},
            synthetic=True,
        )


def level_at(points: list[LedgerPoint], when: datetime) -> StoreLevels:
    """
    Stock in each store as of `when`, inclusive of events at that instant.

    Before the first point this is the opening balance.
    """
    if not points:
        raise ValueError("level_at needs at least one ledger point")
    timestamps = [p.timestamp for p in points]
    idx = bisect_right(timestamps, when)
    if idx == 0:
        return points[0].before
    return points[idx - 1].after
