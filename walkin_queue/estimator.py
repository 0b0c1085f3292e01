"""Position and wait estimation.

Everything here is a pure function of one snapshot of the active set. Views
are recomputed from scratch on every snapshot, never patched, so change
notifications may arrive in any order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .models import EntryStatus, QueueEntry

PROGRESS_STEP = 25


@dataclass(frozen=True)
class PositionEstimate:
    entry: QueueEntry | None
    position: int | None
    estimated_wait_minutes: int
    progress_percent: int

    @property
    def queued(self) -> bool:
        return self.position is not None


NOT_QUEUED = PositionEstimate(entry=None, position=None, estimated_wait_minutes=0, progress_percent=0)


def rank_entries(entries: Iterable[QueueEntry]) -> list[QueueEntry]:
    """Active entries in rank order (joined_at, then id)."""
    return sorted((e for e in entries if e.is_active), key=lambda e: e.rank_key())


def progress_percent(position: int | None) -> int:
    """Cosmetic progress bar value: 100 at the front, 25 points per place."""
    if position is None:
        return 0
    return min(100, max(0, 100 - (position - 1) * PROGRESS_STEP))


def estimate(entries: Iterable[QueueEntry], customer_id: str) -> PositionEstimate:
    """Rank and wait for `customer_id` within one snapshot.

    The wait is the sum of service durations of *waiting* entries strictly
    ahead; in-service entries ahead count as zero since their remaining time
    is unknown.
    """
    wait = 0
    for index, entry in enumerate(rank_entries(entries)):
        if entry.customer_id == customer_id:
            position = index + 1
            return PositionEstimate(
                entry=entry,
                position=position,
                estimated_wait_minutes=wait,
                progress_percent=progress_percent(position),
            )
        if entry.status == EntryStatus.WAITING:
            wait += entry.service_duration_minutes
    return NOT_QUEUED


def estimate_all(entries: Iterable[QueueEntry]) -> dict[str, PositionEstimate]:
    """Estimates for every active customer in one pass, keyed by customer id."""
    out: dict[str, PositionEstimate] = {}
    wait = 0
    for index, entry in enumerate(rank_entries(entries)):
        position = index + 1
        out[entry.customer_id] = PositionEstimate(
            entry=entry,
            position=position,
            estimated_wait_minutes=wait,
            progress_percent=progress_percent(position),
        )
        if entry.status == EntryStatus.WAITING:
            wait += entry.service_duration_minutes
    return out
