from __future__ import annotations

# Queue store adapter.
#
# This file contains two layers:
# 1) `InMemoryDocumentStore`: a small document store with the capabilities the
#    engine needs from the real one (collections, filtered/ordered queries,
#    secondary indexes, serializable transactions, live queries that push full
#    result sets, server-assigned monotonic timestamps).
# 2) `QueueStore`: the typed adapter the rest of the engine talks to.
#
# Only the admission controller and the state machine create entries or write
# `status` / `joined_at`; they do it through `QueueStore.run_transaction`.

import itertools
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, TypeVar

from .errors import StoreUnavailable
from .models import Account, QueueEntry, Service, Snapshot

log = logging.getLogger(__name__)

SERVICES = "services"
QUEUE = "queue"
ACCOUNTS = "accounts"

# Indexes over QUEUE. Archived entries are in neither, so lookups stay
# proportional to the live queue rather than to lifetime traffic.
ACTIVE = "active"
ACTIVE_BY_CUSTOMER = "active_by_customer"

T = TypeVar("T")
Predicate = Callable[[Any], bool]
SortKey = Callable[[Any], Any]
IndexKey = Callable[[Any], Any]
IndexRef = tuple[str, Any]
ResultCallback = Callable[[int, tuple[Any, ...]], None]
SnapshotCallback = Callable[[Snapshot], None]


@dataclass
class _LiveQuery:
    sub_id: int
    collection: str
    where: Predicate | None
    order_by: SortKey | None
    index: IndexRef | None
    callback: ResultCallback


@dataclass
class _Index:
    key: IndexKey
    doc_ids: dict[Any, set[str]]

    def add(self, doc_id: str, doc: Any) -> None:
        value = self.key(doc)
        if value is not None:
            self.doc_ids.setdefault(value, set()).add(doc_id)

    def discard(self, doc_id: str, doc: Any) -> None:
        value = self.key(doc)
        if value is None:
            return
        ids = self.doc_ids.get(value)
        if ids is not None:
            ids.discard(doc_id)
            if not ids:
                del self.doc_ids[value]


class Subscription:
    """Handle returned by `subscribe`; call `cancel()` to stop deliveries."""

    def __init__(self, store: InMemoryDocumentStore, sub_id: int) -> None:
        self._store = store
        self.sub_id = sub_id

    def cancel(self) -> None:
        self._store._unsubscribe(self.sub_id)


class Transaction:
    """Buffered writes over a consistent view of the store.

    Reads see the transaction's own writes. Nothing is visible to other
    callers until the enclosing `transaction()` block exits cleanly.
    """

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self._writes: dict[tuple[str, str], Any | None] = {}

    def get(self, collection: str, doc_id: str) -> Any | None:
        key = (collection, doc_id)
        if key in self._writes:
            return self._writes[key]
        return self._store._docs(collection).get(doc_id)

    def query(self, collection: str, where: Predicate | None = None) -> list[Any]:
        found = {
            doc_id: doc
            for doc_id, doc in self._store._docs(collection).items()
            if (collection, doc_id) not in self._writes and (where is None or where(doc))
        }
        self._overlay(collection, found, where)
        return list(found.values())

    def lookup(self, collection: str, index: str, value: Any) -> list[Any]:
        """Documents whose `index` key equals `value`, including own writes."""
        idx = self._store._index(collection, index)
        docs = self._store._docs(collection)
        found = {
            doc_id: docs[doc_id]
            for doc_id in idx.doc_ids.get(value, ())
            if (collection, doc_id) not in self._writes
        }
        self._overlay(collection, found, lambda d: idx.key(d) == value)
        return list(found.values())

    def _overlay(self, collection: str, found: dict[str, Any], where: Predicate | None) -> None:
        for (coll, doc_id), doc in self._writes.items():
            if coll == collection and doc is not None and (where is None or where(doc)):
                found[doc_id] = doc

    def set(self, collection: str, doc_id: str, doc: Any) -> None:
        self._writes[(collection, doc_id)] = doc

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes[(collection, doc_id)] = None

    def server_timestamp(self) -> float:
        return self._store._next_timestamp()


class InMemoryDocumentStore:
    """Thread-safe in-process document store."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._lock = threading.RLock()
        self._collections: dict[str, dict[str, Any]] = {}
        self._indexes: dict[tuple[str, str], _Index] = {}
        self._version = 0
        self._clock = clock
        self._last_ts = 0.0
        self._queries: dict[int, _LiveQuery] = {}
        self._sub_ids = itertools.count(1)
        self._failures_left = 0

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def inject_failures(self, count: int) -> None:
        """Make the next `count` transactions fail with StoreUnavailable."""
        with self._lock:
            self._failures_left = count

    def add_index(self, collection: str, name: str, key: IndexKey) -> None:
        """Maintain a secondary index; documents whose key is None are left out."""
        with self._lock:
            idx = _Index(key, {})
            for doc_id, doc in self._docs(collection).items():
                idx.add(doc_id, doc)
            self._indexes[(collection, name)] = idx

    # -------------------- reads --------------------

    def get(self, collection: str, doc_id: str) -> Any | None:
        with self._lock:
            return self._docs(collection).get(doc_id)

    def query(
        self,
        collection: str,
        where: Predicate | None = None,
        order_by: SortKey | None = None,
        *,
        index: IndexRef | None = None,
    ) -> list[Any]:
        with self._lock:
            return self._run_query(collection, where, order_by, index)

    def query_versioned(
        self,
        collection: str,
        where: Predicate | None = None,
        order_by: SortKey | None = None,
        *,
        index: IndexRef | None = None,
    ) -> tuple[int, list[Any]]:
        """Like `query`, plus the store version the results were read at."""
        with self._lock:
            return self._version, self._run_query(collection, where, order_by, index)

    # -------------------- writes --------------------

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Serializable read-modify-write.

        The body runs under the store lock; if it raises, no write is applied.
        """
        pending: list[tuple[_LiveQuery, int, tuple[Any, ...]]] = []
        with self._lock:
            if self._failures_left > 0:
                self._failures_left -= 1
                raise StoreUnavailable("document store unavailable")
            tx = Transaction(self)
            yield tx
            if tx._writes:
                touched = {coll for coll, _ in tx._writes}
                for (coll, doc_id), doc in tx._writes.items():
                    self._apply(coll, doc_id, doc)
                self._version += 1
                for q in self._queries.values():
                    if q.collection in touched:
                        pending.append((q, self._version, self._result_for(q)))
        # Deliver outside the lock so observers may read or write the store.
        self._deliver(pending)

    # -------------------- live queries --------------------

    def subscribe(
        self,
        collection: str,
        callback: ResultCallback,
        *,
        where: Predicate | None = None,
        order_by: SortKey | None = None,
        index: IndexRef | None = None,
    ) -> Subscription:
        """Register a live query.

        The callback receives `(version, results)` immediately and again after
        every committed change to `collection`, always with the full result set.
        """
        with self._lock:
            q = _LiveQuery(next(self._sub_ids), collection, where, order_by, index, callback)
            self._queries[q.sub_id] = q
            initial = [(q, self._version, self._result_for(q))]
        self._deliver(initial)
        return Subscription(self, q.sub_id)

    def _unsubscribe(self, sub_id: int) -> None:
        with self._lock:
            self._queries.pop(sub_id, None)

    def _deliver(self, pending: list[tuple[_LiveQuery, int, tuple[Any, ...]]]) -> None:
        for q, version, results in pending:
            with self._lock:
                if q.sub_id not in self._queries:
                    continue
            try:
                q.callback(version, results)
            except Exception:
                log.exception("live query callback failed (collection=%s)", q.collection)

    # -------------------- internals --------------------

    def _docs(self, collection: str) -> dict[str, Any]:
        return self._collections.get(collection, {})

    def _index(self, collection: str, name: str) -> _Index:
        try:
            return self._indexes[(collection, name)]
        except KeyError:
            raise KeyError(f"no index {name!r} on {collection!r}") from None

    def _apply(self, collection: str, doc_id: str, doc: Any | None) -> None:
        docs = self._collections.setdefault(collection, {})
        old = docs.get(doc_id)
        for (coll, _name), idx in self._indexes.items():
            if coll != collection:
                continue
            if old is not None:
                idx.discard(doc_id, old)
            if doc is not None:
                idx.add(doc_id, doc)
        if doc is None:
            docs.pop(doc_id, None)
        else:
            docs[doc_id] = doc

    def _run_query(
        self,
        collection: str,
        where: Predicate | None,
        order_by: SortKey | None,
        index: IndexRef | None = None,
    ) -> list[Any]:
        all_docs = self._docs(collection)
        if index is None:
            candidates = list(all_docs.values())
        else:
            name, value = index
            candidates = [all_docs[i] for i in self._index(collection, name).doc_ids.get(value, ())]
        docs = [d for d in candidates if where is None or where(d)]
        if order_by is not None:
            docs.sort(key=order_by)
        return docs

    def _result_for(self, q: _LiveQuery) -> tuple[Any, ...]:
        return tuple(self._run_query(q.collection, q.where, q.order_by, q.index))

    def _next_timestamp(self) -> float:
        # Strictly increasing even if the wall clock stalls or steps back.
        with self._lock:
            now = float(self._clock())
            if now <= self._last_ts:
                now = self._last_ts + 1e-6
            self._last_ts = now
            return now


def retry_store_call(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    backoff: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call `fn`, retrying StoreUnavailable with exponential backoff.

    Other errors propagate immediately. After `retries` extra attempts the last
    StoreUnavailable is raised to the caller.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except StoreUnavailable:
            if attempt >= retries:
                raise
            delay = backoff * (2**attempt)
            log.warning("store unavailable, retrying in %.2fs (attempt %d/%d)", delay, attempt + 1, retries)
            sleep(delay)
            attempt += 1


class QueueTransaction:
    """Typed view of a store transaction."""

    def __init__(self, tx: Transaction) -> None:
        self._tx = tx

    def get_entry(self, entry_id: str) -> QueueEntry | None:
        return self._tx.get(QUEUE, entry_id)

    def active_entries(self) -> list[QueueEntry]:
        return self._tx.lookup(QUEUE, ACTIVE, True)

    def active_entry_for(self, customer_id: str) -> QueueEntry | None:
        found = self._tx.lookup(QUEUE, ACTIVE_BY_CUSTOMER, customer_id)
        return found[0] if found else None

    def put_entry(self, entry: QueueEntry) -> None:
        self._tx.set(QUEUE, entry.id, entry)

    def get_service(self, service_id: str) -> Service | None:
        return self._tx.get(SERVICES, service_id)

    def put_service(self, service: Service) -> None:
        self._tx.set(SERVICES, service.id, service)

    def delete_service(self, service_id: str) -> None:
        self._tx.delete(SERVICES, service_id)

    def get_account(self, account_id: str) -> Account | None:
        return self._tx.get(ACCOUNTS, account_id)

    def put_account(self, account: Account) -> None:
        self._tx.set(ACCOUNTS, account.id, account)

    def server_timestamp(self) -> float:
        return self._tx.server_timestamp()


def _by_joined_at(entry: QueueEntry) -> tuple[float, str]:
    return entry.rank_key()


def _active_key(entry: QueueEntry) -> bool | None:
    return True if entry.is_active else None


def _active_customer_key(entry: QueueEntry) -> str | None:
    return entry.customer_id if entry.is_active else None


class QueueStore:
    """Typed read/write/subscribe interface for services, entries and accounts."""

    def __init__(
        self,
        docs: InMemoryDocumentStore | None = None,
        *,
        retries: int = 3,
        backoff: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.docs = docs or InMemoryDocumentStore()
        self.retries = retries
        self.backoff = backoff
        self._sleep = sleep
        self.docs.add_index(QUEUE, ACTIVE, _active_key)
        self.docs.add_index(QUEUE, ACTIVE_BY_CUSTOMER, _active_customer_key)

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def run_transaction(self, body: Callable[[QueueTransaction], T]) -> T:
        """Run `body` atomically, retrying transient store failures."""

        def attempt() -> T:
            with self.docs.transaction() as tx:
                return body(QueueTransaction(tx))

        return retry_store_call(attempt, retries=self.retries, backoff=self.backoff, sleep=self._sleep)

    # -------------------- reads --------------------

    def get_entry(self, entry_id: str) -> QueueEntry | None:
        return self.docs.get(QUEUE, entry_id)

    def active_entries(self) -> list[QueueEntry]:
        return self.docs.query(QUEUE, order_by=_by_joined_at, index=(ACTIVE, True))

    def entries_for(self, customer_id: str) -> list[QueueEntry]:
        return self.docs.query(QUEUE, where=lambda e: e.customer_id == customer_id, order_by=_by_joined_at)

    def get_service(self, service_id: str) -> Service | None:
        return self.docs.get(SERVICES, service_id)

    def services(self) -> list[Service]:
        return self.docs.query(SERVICES, order_by=lambda s: (s.name.lower(), s.id))

    def get_account(self, account_id: str) -> Account | None:
        return self.docs.get(ACCOUNTS, account_id)

    def snapshot(self) -> Snapshot:
        version, entries = self.docs.query_versioned(QUEUE, order_by=_by_joined_at, index=(ACTIVE, True))
        return Snapshot(version=version, entries=tuple(entries))

    # -------------------- live queries --------------------

    def subscribe_active(self, callback: SnapshotCallback) -> Subscription:
        """Push every new active-entry set, ordered by joined_at."""
        return self.docs.subscribe(
            QUEUE,
            lambda version, results: callback(Snapshot(version=version, entries=results)),
            order_by=_by_joined_at,
            index=(ACTIVE, True),
        )

    def subscribe_services(self, callback: Callable[[tuple[Service, ...]], None]) -> Subscription:
        return self.docs.subscribe(
            SERVICES,
            lambda _version, results: callback(results),
            order_by=lambda s: (s.name.lower(), s.id),
        )
