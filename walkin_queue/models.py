"""Queue records and the small value types that travel between components.

All records are frozen dataclasses: the store hands out immutable copies and
every change goes through a transaction that replaces the stored record.
`to_message()` converts to the JSON shapes used on MQTT.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .errors import ValidationError


class EntryStatus(str, Enum):
    WAITING = "waiting"
    IN_SERVICE = "in-service"
    COMPLETED = "completed"
    REMOVED = "removed"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({EntryStatus.WAITING, EntryStatus.IN_SERVICE})


class Action(str, Enum):
    START = "start"
    COMPLETE = "complete"
    REMOVE = "remove"


class Role(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    OWNER = "owner"


STAFF_ROLES = frozenset({Role.STAFF, Role.OWNER})


@dataclass(frozen=True)
class CustomerProfile:
    """What the identity provider tells us about a signed-in customer."""

    display_name: str
    contact_handle: str = ""


@dataclass(frozen=True)
class Identity:
    """Opaque, trusted output of a successful authentication."""

    customer_id: str
    display_name: str
    contact_handle: str = ""


@dataclass(frozen=True)
class Service:
    id: str
    name: str
    duration_minutes: int
    price: Decimal = Decimal("0")
    description: str | None = None

    def to_message(self) -> dict[str, Any]:
        msg: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "duration_minutes": self.duration_minutes,
            "price": str(self.price),
        }
        if self.description is not None:
            msg["description"] = self.description
        return msg


@dataclass(frozen=True)
class QueueEntry:
    id: str
    customer_id: str
    customer_name: str
    contact_handle: str
    service_id: str
    service_name: str
    service_duration_minutes: int
    status: EntryStatus
    sequence_number: int
    joined_at: float

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def with_status(self, status: EntryStatus) -> QueueEntry:
        return replace(self, status=status)

    def rank_key(self) -> tuple[float, str]:
        """Total order among active entries: joined_at, then id."""
        return (self.joined_at, self.id)

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "contact_handle": self.contact_handle,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "service_duration_minutes": self.service_duration_minutes,
            "status": self.status.value,
            "sequence_number": self.sequence_number,
            "joined_at": self.joined_at,
        }


@dataclass(frozen=True)
class Account:
    id: str
    role: Role
    display_name: str
    contact_handle: str = ""

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "display_name": self.display_name,
            "contact_handle": self.contact_handle,
        }


@dataclass(frozen=True)
class Ack:
    """Successful transition receipt."""

    entry_id: str
    action: Action
    previous_status: EntryStatus
    status: EntryStatus

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "transition_ack",
            "entry_id": self.entry_id,
            "action": self.action.value,
            "previous_status": self.previous_status.value,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Snapshot:
    """A complete result set delivered by a live query.

    `version` is the store version the result set was taken at; a larger
    version always reflects a later committed state.
    """

    version: int
    entries: tuple[QueueEntry, ...] = field(default_factory=tuple)


# -------------------- input parsing --------------------


def parse_duration_minutes(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("duration_minutes must be an integer")
    try:
        minutes = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError("duration_minutes must be an integer") from e
    if minutes != value and not isinstance(value, str):
        raise ValidationError("duration_minutes must be an integer")
    if minutes <= 0:
        raise ValidationError("duration_minutes must be > 0")
    return minutes


def parse_price(value: Any) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError("price must be a decimal number") from e
    if not price.is_finite() or price < 0:
        raise ValidationError("price must be >= 0")
    return price
