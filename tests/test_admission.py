import threading

import pytest

from conftest import profile
from walkin_queue.errors import AlreadyQueued, NotFound, StoreUnavailable, ValidationError
from walkin_queue.models import Action, EntryStatus, Role


def test_join_creates_waiting_entry_with_service_copy(engine):
    entry = engine.join("cust-a", profile("Asha Rao", "+911111111111"), "haircut")

    assert entry.status == EntryStatus.WAITING
    assert entry.customer_name == "Asha Rao"
    assert entry.contact_handle == "+911111111111"
    assert entry.service_name == "Haircut"
    assert entry.service_duration_minutes == 30
    assert entry.sequence_number == 1
    assert engine.store.get_entry(entry.id) == entry


def test_join_unknown_service_is_not_found(engine):
    with pytest.raises(NotFound):
        engine.join("cust-a", profile("A"), "massage")
    assert engine.store.active_entries() == []


def test_join_requires_customer_id(engine):
    with pytest.raises(ValidationError):
        engine.join("", profile("A"), "haircut")


def test_second_join_is_already_queued(engine):
    engine.join("cust-a", profile("A"), "haircut")
    with pytest.raises(AlreadyQueued):
        engine.join("cust-a", profile("A"), "shave")
    assert len(engine.store.active_entries()) == 1


def test_double_submit_creates_exactly_one_entry(engine):
    results = []
    for _ in range(2):
        try:
            results.append(engine.join("cust-x", profile("X", "X"), "haircut"))
        except AlreadyQueued:
            results.append(None)

    assert sum(r is not None for r in results) == 1
    assert len(engine.store.entries_for("cust-x")) == 1


def test_concurrent_joins_for_same_customer_admit_one(engine):
    n = 16
    barrier = threading.Barrier(n)
    successes = []
    rejected = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        try:
            entry = engine.join("cust-race", profile("Racer"), "haircut")
        except AlreadyQueued:
            with lock:
                rejected.append(1)
        else:
            with lock:
                successes.append(entry)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(successes) == 1
    assert len(rejected) == n - 1
    active = [e for e in engine.store.active_entries() if e.customer_id == "cust-race"]
    assert active == successes


def test_concurrent_joins_from_different_customers_get_distinct_timestamps(engine):
    threads = [
        threading.Thread(target=engine.join, args=(f"cust-{i}", profile(f"C{i}"), "shave")) for i in range(20)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    active = engine.store.active_entries()
    assert len(active) == 20
    assert len({e.joined_at for e in active}) == 20
    assert sorted(e.sequence_number for e in active) == list(range(1, 21))


def test_sequence_number_counts_active_entries_only(engine):
    a = engine.join("a", profile("A"), "haircut")
    engine.join("b", profile("B"), "shave")
    engine.transition(a.id, Action.REMOVE, Role.STAFF)

    c = engine.join("c", profile("C"), "shave")
    # Only b was active when c joined; display numbers are never renumbered.
    assert c.sequence_number == 2


def test_customer_can_rejoin_after_completion(engine):
    first = engine.join("a", profile("A"), "haircut")
    engine.transition(first.id, Action.START, Role.STAFF)
    engine.transition(first.id, Action.COMPLETE, Role.STAFF)

    second = engine.join("a", profile("A"), "shave")
    assert second.id != first.id
    assert second.joined_at > first.joined_at


def test_service_edit_does_not_change_in_flight_entry(engine):
    entry = engine.join("a", profile("A"), "haircut")
    engine.catalog.update_service(Role.OWNER, "haircut", name="Deluxe Haircut", duration_minutes=45)

    stored = engine.store.get_entry(entry.id)
    assert stored.service_name == "Haircut"
    assert stored.service_duration_minutes == 30


def test_transient_store_failure_is_retried(engine):
    engine.store.docs.inject_failures(2)
    entry = engine.join("a", profile("A"), "haircut")
    assert engine.store.get_entry(entry.id) is not None


def test_persistent_store_failure_surfaces_and_changes_nothing(engine):
    engine.store.docs.inject_failures(engine.store.retries + 1)
    with pytest.raises(StoreUnavailable):
        engine.join("a", profile("A"), "haircut")
    assert engine.store.active_entries() == []
