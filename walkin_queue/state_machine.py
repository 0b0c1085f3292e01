from __future__ import annotations

# Entry state machine.
#
#   waiting --start--> in-service --complete--> completed
#   waiting | in-service --remove--> removed
#
# completed and removed are terminal. A transition is a conditional write: it
# only commits if the stored status still equals the status the caller acted
# on, so two staff sessions racing on one entry cannot both win.

import logging

from .errors import IllegalTransition, NotFound, StaleEntry, Unauthorized, ValidationError
from .models import STAFF_ROLES, Ack, Action, EntryStatus, Role
from .store import QueueStore, QueueTransaction

log = logging.getLogger(__name__)

TRANSITIONS: dict[tuple[EntryStatus, Action], EntryStatus] = {
    (EntryStatus.WAITING, Action.START): EntryStatus.IN_SERVICE,
    (EntryStatus.IN_SERVICE, Action.COMPLETE): EntryStatus.COMPLETED,
    (EntryStatus.WAITING, Action.REMOVE): EntryStatus.REMOVED,
    (EntryStatus.IN_SERVICE, Action.REMOVE): EntryStatus.REMOVED,
}


def next_status(status: EntryStatus, action: Action) -> EntryStatus:
    """Target status for `action` from `status`, or IllegalTransition."""
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        raise IllegalTransition(f"cannot {action.value} an entry that is {status.value}") from None


def allowed_actions(status: EntryStatus) -> list[Action]:
    return [a for (s, a) in TRANSITIONS if s == status]


class QueueStateMachine:
    def __init__(self, store: QueueStore) -> None:
        self.store = store

    def transition(
        self,
        entry_id: str,
        action: Action,
        actor_role: Role,
        *,
        expected_status: EntryStatus | None = None,
    ) -> Ack:
        """Apply a staff action to an entry.

        `expected_status` is the status the caller saw (e.g. in the staff
        table). When omitted, the status read at the start of the call is used.
        Either way the write only commits if the entry still has that status;
        legality is judged against the stored status.

        Raises:
            Unauthorized: actor is not staff or owner.
            ValidationError: unknown action.
            NotFound: unknown entry.
            StaleEntry: the entry is no longer in the status the caller acted on.
            IllegalTransition: action not valid from the current status.
        """
        try:
            actor_role = Role(actor_role)
        except ValueError:
            raise Unauthorized(f"role {actor_role!r} may not change queue entries") from None
        if actor_role not in STAFF_ROLES:
            raise Unauthorized(f"role {actor_role.value!r} may not change queue entries")
        try:
            action = Action(action)
        except ValueError:
            raise ValidationError(f"unknown action {action!r}") from None
        if expected_status is not None:
            expected_status = EntryStatus(expected_status)

        observed = expected_status
        if observed is None:
            current = self.store.get_entry(entry_id)
            if current is None:
                raise NotFound(f"entry {entry_id!r} not found")
            observed = current.status

        def body(tx: QueueTransaction) -> Ack:
            entry = tx.get_entry(entry_id)
            if entry is None:
                raise NotFound(f"entry {entry_id!r} not found")
            if entry.status != observed:
                raise StaleEntry(
                    f"entry {entry_id!r} is {entry.status.value}, expected {observed.value}"
                )
            target = next_status(entry.status, action)
            tx.put_entry(entry.with_status(target))
            return Ack(entry_id=entry_id, action=action, previous_status=entry.status, status=target)

        try:
            ack = self.store.run_transaction(body)
        except StaleEntry:
            log.info("stale %s on entry %s (expected %s)", action.value, entry_id, observed.value)
            raise
        log.info("entry %s: %s -> %s (%s)", entry_id, ack.previous_status.value, ack.status.value, actor_role.value)
        return ack
