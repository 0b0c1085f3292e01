from __future__ import annotations

# Live view fan-out.
#
# The store pushes a full snapshot of the active set on every change. For each
# snapshot we recompute every observer's view (customer status page, staff
# table, kiosk board) and hand it to the observer's `deliver` callable.
#
# - Snapshots older than the newest one already seen are dropped.
# - An observer only receives a view when it differs from the last one it got,
#   so duplicate snapshots are harmless.

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from .estimator import NOT_QUEUED, PositionEstimate, estimate_all, rank_entries
from .models import EntryStatus, Snapshot
from .state_machine import allowed_actions
from .store import QueueStore, Subscription

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustomerStatusView:
    customer_id: str
    estimate: PositionEstimate

    @property
    def in_service(self) -> bool:
        e = self.estimate.entry
        return e is not None and e.status == EntryStatus.IN_SERVICE

    def to_message(self) -> dict[str, Any]:
        e = self.estimate.entry
        return {
            "type": "customer_status",
            "customer_id": self.customer_id,
            "queued": self.estimate.queued,
            "entry": e.to_message() if e is not None else None,
            "status": e.status.value if e is not None else None,
            "position": self.estimate.position,
            "estimated_wait_minutes": self.estimate.estimated_wait_minutes,
            "progress_percent": self.estimate.progress_percent,
        }


@dataclass(frozen=True)
class StaffRow:
    rank: int
    entry_id: str
    sequence_number: int
    customer_name: str
    contact_handle: str
    service_name: str
    status: str
    actions: tuple[str, ...]


@dataclass(frozen=True)
class StaffQueueView:
    rows: tuple[StaffRow, ...] = ()

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "staff_queue",
            "rows": [
                {
                    "rank": r.rank,
                    "entry_id": r.entry_id,
                    "sequence_number": r.sequence_number,
                    "customer_name": r.customer_name,
                    "contact_handle": r.contact_handle,
                    "service_name": r.service_name,
                    "status": r.status,
                    "actions": list(r.actions),
                }
                for r in self.rows
            ],
        }


@dataclass(frozen=True)
class BoardRow:
    rank: int
    sequence_number: int
    first_name: str
    service_name: str
    status: str


@dataclass(frozen=True)
class BoardView:
    """Public kiosk board: no contact details, first names only."""

    rows: tuple[BoardRow, ...] = ()

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "board",
            "rows": [
                {
                    "rank": r.rank,
                    "sequence_number": r.sequence_number,
                    "first_name": r.first_name,
                    "service_name": r.service_name,
                    "status": r.status,
                }
                for r in self.rows
            ],
        }


View = Any
Deliver = Callable[[View], None]


@dataclass
class _Observer:
    observer_id: int
    kind: str
    deliver: Deliver
    customer_id: str | None = None
    last_view: View | None = field(default=None)


# -------------------- view builders --------------------


def build_staff_view(snapshot: Snapshot) -> StaffQueueView:
    rows = []
    for index, e in enumerate(rank_entries(snapshot.entries)):
        rows.append(
            StaffRow(
                rank=index + 1,
                entry_id=e.id,
                sequence_number=e.sequence_number,
                customer_name=e.customer_name,
                contact_handle=e.contact_handle,
                service_name=e.service_name,
                status=e.status.value,
                actions=tuple(a.value for a in allowed_actions(e.status)),
            )
        )
    return StaffQueueView(rows=tuple(rows))


def build_board_view(snapshot: Snapshot) -> BoardView:
    rows = []
    for index, e in enumerate(rank_entries(snapshot.entries)):
        first = e.customer_name.split()[0] if e.customer_name.strip() else "Guest"
        rows.append(
            BoardRow(
                rank=index + 1,
                sequence_number=e.sequence_number,
                first_name=first,
                service_name=e.service_name,
                status=e.status.value,
            )
        )
    return BoardView(rows=tuple(rows))


def build_customer_view(
    snapshot: Snapshot, customer_id: str, estimates: dict[str, PositionEstimate] | None = None
) -> CustomerStatusView:
    if estimates is None:
        estimates = estimate_all(snapshot.entries)
    return CustomerStatusView(customer_id=customer_id, estimate=estimates.get(customer_id, NOT_QUEUED))


class LiveViewFanout:
    """Recomputes and delivers per-observer views from full snapshots."""

    def __init__(self) -> None:
        # Reentrant: a deliver callback may trigger a store write, whose
        # snapshot comes straight back here on the same thread.
        self._lock = threading.RLock()
        self._observers: dict[int, _Observer] = {}
        self._ids = itertools.count(1)
        self._latest: Snapshot | None = None

    @property
    def latest(self) -> Snapshot | None:
        with self._lock:
            return self._latest

    def attach(self, store: QueueStore) -> Subscription:
        """Subscribe to the store's active-entry live query."""
        return store.subscribe_active(self.on_snapshot)

    # -------------------- observers --------------------

    def add_customer_observer(self, customer_id: str, deliver: Deliver) -> int:
        return self._add(_Observer(next(self._ids), "customer", deliver, customer_id=customer_id))

    def add_staff_observer(self, deliver: Deliver) -> int:
        return self._add(_Observer(next(self._ids), "staff", deliver))

    def add_board_observer(self, deliver: Deliver) -> int:
        return self._add(_Observer(next(self._ids), "board", deliver))

    def remove_observer(self, observer_id: int) -> None:
        with self._lock:
            self._observers.pop(observer_id, None)

    def has_customer_observer(self, customer_id: str) -> bool:
        with self._lock:
            return any(o.customer_id == customer_id for o in self._observers.values())

    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def _add(self, observer: _Observer) -> int:
        with self._lock:
            self._observers[observer.observer_id] = observer
            if self._latest is not None:
                self._push(observer, self._view_for(observer, self._latest, None))
        return observer.observer_id

    # -------------------- snapshots --------------------

    def on_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            if self._latest is not None and snapshot.version < self._latest.version:
                log.debug("dropping stale snapshot v%d (have v%d)", snapshot.version, self._latest.version)
                return
            self._latest = snapshot

            estimates = estimate_all(snapshot.entries)
            staff = board = None
            for observer in list(self._observers.values()):
                if observer.kind == "staff":
                    staff = staff or build_staff_view(snapshot)
                    view: View = staff
                elif observer.kind == "board":
                    board = board or build_board_view(snapshot)
                    view = board
                else:
                    view = self._view_for(observer, snapshot, estimates)
                self._push(observer, view)

    def view_for(self, observer_id: int) -> View | None:
        """Last view delivered to an observer."""
        with self._lock:
            o = self._observers.get(observer_id)
            return o.last_view if o else None

    def _view_for(self, observer: _Observer, snapshot: Snapshot, estimates: dict[str, PositionEstimate] | None) -> View:
        if observer.kind == "staff":
            return build_staff_view(snapshot)
        if observer.kind == "board":
            return build_board_view(snapshot)
        return build_customer_view(snapshot, observer.customer_id or "", estimates)

    def _push(self, observer: _Observer, view: View) -> None:
        if view == observer.last_view:
            return
        observer.last_view = view
        try:
            observer.deliver(view)
        except Exception:
            log.exception("observer %d (%s) failed to take its view", observer.observer_id, observer.kind)
