from __future__ import annotations

# Admission controller.
#
# Joining is a single store transaction: look for the customer's active entry,
# count the active set, stamp joined_at and insert. Because the existence
# check and the insert commit together, a double-submit or a retry can never
# leave one customer with two active entries.

import logging

from .errors import AlreadyQueued, NotFound, ValidationError
from .models import CustomerProfile, EntryStatus, QueueEntry
from .store import QueueStore, QueueTransaction

log = logging.getLogger(__name__)


class AdmissionController:
    def __init__(self, store: QueueStore) -> None:
        self.store = store

    def join(self, customer_id: str, profile: CustomerProfile, service_id: str) -> QueueEntry:
        """Admit a customer to the queue for one service.

        Raises:
            ValidationError: empty customer id.
            NotFound: `service_id` does not resolve.
            AlreadyQueued: the customer already has a waiting or in-service entry.
        """
        if not customer_id:
            raise ValidationError("customer_id required")

        def body(tx: QueueTransaction) -> QueueEntry:
            service = tx.get_service(service_id)
            if service is None:
                raise NotFound(f"service {service_id!r} not found")

            existing = tx.active_entry_for(customer_id)
            if existing is not None:
                raise AlreadyQueued(f"customer {customer_id!r} is already in the queue")

            entry = QueueEntry(
                id=self.store.new_id(),
                customer_id=customer_id,
                customer_name=profile.display_name or profile.contact_handle,
                contact_handle=profile.contact_handle,
                service_id=service.id,
                # Copied so later catalog edits don't touch in-flight entries.
                service_name=service.name,
                service_duration_minutes=service.duration_minutes,
                status=EntryStatus.WAITING,
                sequence_number=len(tx.active_entries()) + 1,
                joined_at=tx.server_timestamp(),
            )
            tx.put_entry(entry)
            return entry

        entry = self.store.run_transaction(body)
        log.info(
            "customer %s joined for %s (entry=%s, #%d)",
            customer_id,
            entry.service_name,
            entry.id,
            entry.sequence_number,
        )
        return entry
