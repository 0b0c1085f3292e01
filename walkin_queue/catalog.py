from __future__ import annotations

# Service catalog.
#
# Staff maintain the list of services customers can queue for. Queue entries
# carry their own copy of the service name and duration, so nothing here ever
# touches the queue collection.

import logging
from typing import Any

from .errors import NotFound, Unauthorized, ValidationError
from .models import STAFF_ROLES, Role, Service, parse_duration_minutes, parse_price
from .store import QueueStore, QueueTransaction

log = logging.getLogger(__name__)


def _require_staff(actor_role: Role) -> None:
    if actor_role not in STAFF_ROLES:
        raise Unauthorized("only staff may edit services")


def _clean_name(name: Any) -> str:
    text = str(name or "").strip()
    if not text:
        raise ValidationError("name required")
    return text


class ServiceCatalog:
    def __init__(self, store: QueueStore) -> None:
        self.store = store

    def list_services(self) -> list[Service]:
        return self.store.services()

    def get_service(self, service_id: str) -> Service:
        service = self.store.get_service(service_id)
        if service is None:
            raise NotFound(f"service {service_id!r} not found")
        return service

    def create_service(
        self,
        actor_role: Role,
        *,
        name: str,
        duration_minutes: Any,
        price: Any = 0,
        description: str | None = None,
        service_id: str | None = None,
    ) -> Service:
        _require_staff(actor_role)
        service = Service(
            id=service_id or self.store.new_id(),
            name=_clean_name(name),
            duration_minutes=parse_duration_minutes(duration_minutes),
            price=parse_price(price),
            description=description or None,
        )

        def body(tx: QueueTransaction) -> Service:
            if tx.get_service(service.id) is not None:
                raise ValidationError(f"service {service.id!r} already exists")
            tx.put_service(service)
            return service

        self.store.run_transaction(body)
        log.info("service %s created (%s, %d min)", service.id, service.name, service.duration_minutes)
        return service

    def update_service(self, actor_role: Role, service_id: str, **changes: Any) -> Service:
        """Edit name, duration_minutes, price or description."""
        _require_staff(actor_role)
        unknown = set(changes) - {"name", "duration_minutes", "price", "description"}
        if unknown:
            raise ValidationError(f"unknown fields: {', '.join(sorted(unknown))}")

        def body(tx: QueueTransaction) -> Service:
            current = tx.get_service(service_id)
            if current is None:
                raise NotFound(f"service {service_id!r} not found")
            updated = Service(
                id=current.id,
                name=_clean_name(changes["name"]) if "name" in changes else current.name,
                duration_minutes=(
                    parse_duration_minutes(changes["duration_minutes"])
                    if "duration_minutes" in changes
                    else current.duration_minutes
                ),
                price=parse_price(changes["price"]) if "price" in changes else current.price,
                description=(changes["description"] or None) if "description" in changes else current.description,
            )
            tx.put_service(updated)
            return updated

        updated = self.store.run_transaction(body)
        log.info("service %s updated", service_id)
        return updated

    def delete_service(self, actor_role: Role, service_id: str) -> None:
        _require_staff(actor_role)

        def body(tx: QueueTransaction) -> None:
            if tx.get_service(service_id) is None:
                raise NotFound(f"service {service_id!r} not found")
            tx.delete_service(service_id)

        self.store.run_transaction(body)
        log.info("service %s deleted", service_id)
