from __future__ import annotations

# Account registry.
#
# The identity provider hands us a trusted (customer_id, name, contact) triple.
# The first successful sign-in creates a customer account; roles are changed
# only by the owner.

import logging

from .errors import NotFound, Unauthorized, ValidationError
from .models import Account, Identity, Role
from .store import QueueStore, QueueTransaction

log = logging.getLogger(__name__)


class AccountRegistry:
    def __init__(self, store: QueueStore) -> None:
        self.store = store

    def sign_in(self, identity: Identity) -> Account:
        """Return the caller's account, creating a customer account on first sign-in."""
        if not identity.customer_id:
            raise ValidationError("customer_id required")

        def body(tx: QueueTransaction) -> tuple[Account, bool]:
            existing = tx.get_account(identity.customer_id)
            if existing is not None:
                return existing, False
            account = Account(
                id=identity.customer_id,
                role=Role.CUSTOMER,
                display_name=identity.display_name or identity.contact_handle,
                contact_handle=identity.contact_handle,
            )
            tx.put_account(account)
            return account, True

        account, created = self.store.run_transaction(body)
        if created:
            log.info("created customer account %s", account.id)
        return account

    def bootstrap_owner(self, identity: Identity) -> Account:
        """Create (or promote) the shop owner's account at service start."""

        def body(tx: QueueTransaction) -> Account:
            current = tx.get_account(identity.customer_id)
            account = Account(
                id=identity.customer_id,
                role=Role.OWNER,
                display_name=(current.display_name if current else "") or identity.display_name,
                contact_handle=(current.contact_handle if current else "") or identity.contact_handle,
            )
            tx.put_account(account)
            return account

        return self.store.run_transaction(body)

    def role_of(self, account_id: str) -> Role:
        account = self.store.get_account(account_id)
        if account is None:
            raise NotFound(f"account {account_id!r} not found")
        return account.role

    def set_role(self, actor_role: Role, account_id: str, role: Role) -> Account:
        if actor_role != Role.OWNER:
            raise Unauthorized("only the owner may change roles")

        def body(tx: QueueTransaction) -> Account:
            account = tx.get_account(account_id)
            if account is None:
                raise NotFound(f"account {account_id!r} not found")
            updated = Account(
                id=account.id,
                role=Role(role),
                display_name=account.display_name,
                contact_handle=account.contact_handle,
            )
            tx.put_account(updated)
            return updated

        updated = self.store.run_transaction(body)
        log.info("account %s is now %s", account_id, updated.role.value)
        return updated
