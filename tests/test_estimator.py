import random

from conftest import profile
from walkin_queue.estimator import estimate, estimate_all, progress_percent, rank_entries
from walkin_queue.models import Action, EntryStatus, QueueEntry, Role


def _entry(entry_id, customer_id, joined_at, minutes, status=EntryStatus.WAITING):
    return QueueEntry(
        id=entry_id,
        customer_id=customer_id,
        customer_name=customer_id.upper(),
        contact_handle="",
        service_id="svc",
        service_name="Svc",
        service_duration_minutes=minutes,
        status=status,
        sequence_number=1,
        joined_at=joined_at,
    )


def test_rank_orders_by_joined_at_then_id():
    entries = [
        _entry("b", "cb", 10.0, 5),
        _entry("a", "ca", 10.0, 5),
        _entry("c", "cc", 5.0, 5),
        _entry("d", "cd", 1.0, 5, status=EntryStatus.COMPLETED),
    ]
    assert [e.id for e in rank_entries(entries)] == ["c", "a", "b"]


def test_rank_is_independent_of_input_order():
    entries = [_entry(f"e{i}", f"c{i}", float(i % 4), 10) for i in range(12)]
    expected = [e.id for e in rank_entries(entries)]
    for seed in range(5):
        shuffled = entries[:]
        random.Random(seed).shuffle(shuffled)
        assert [e.id for e in rank_entries(shuffled)] == expected


def test_wait_sums_only_waiting_entries_ahead():
    entries = [
        _entry("1", "a", 1.0, 30, status=EntryStatus.IN_SERVICE),
        _entry("2", "b", 2.0, 15),
        _entry("3", "c", 3.0, 20),
        _entry("4", "d", 4.0, 45),
    ]
    est = estimate(entries, "c")
    assert est.position == 3
    assert est.estimated_wait_minutes == 15

    assert estimate(entries, "b").estimated_wait_minutes == 0
    assert estimate(entries, "d").estimated_wait_minutes == 35


def test_not_queued_customer():
    est = estimate([_entry("1", "a", 1.0, 30)], "zzz")
    assert est.position is None
    assert not est.queued
    assert est.estimated_wait_minutes == 0
    assert est.progress_percent == 0


def test_progress_percent_steps_and_clamps():
    assert progress_percent(1) == 100
    assert progress_percent(2) == 75
    assert progress_percent(4) == 25
    assert progress_percent(5) == 0
    assert progress_percent(9) == 0
    assert progress_percent(None) == 0


def test_recompute_is_idempotent():
    entries = [_entry(str(i), f"c{i}", float(i), 10 + i) for i in range(6)]
    assert estimate_all(entries) == estimate_all(list(entries))
    assert estimate(entries, "c3") == estimate(entries, "c3")


def test_estimate_all_matches_single_estimates():
    entries = [
        _entry("1", "a", 1.0, 30, status=EntryStatus.IN_SERVICE),
        _entry("2", "b", 2.0, 15),
        _entry("3", "c", 3.0, 20),
    ]
    everyone = estimate_all(entries)
    for customer_id in ("a", "b", "c"):
        assert everyone[customer_id] == estimate(entries, customer_id)


def test_haircut_and_shave_scenario(engine):
    a = engine.join("A", profile("Customer A"), "haircut")
    engine.join("B", profile("Customer B"), "shave")

    assert (engine.position("A").position, engine.position("A").estimated_wait_minutes) == (1, 0)
    assert (engine.position("B").position, engine.position("B").estimated_wait_minutes) == (2, 30)

    engine.transition(a.id, Action.START, Role.STAFF)
    assert (engine.position("B").position, engine.position("B").estimated_wait_minutes) == (2, 0)

    engine.transition(a.id, Action.COMPLETE, Role.STAFF)
    assert (engine.position("B").position, engine.position("B").estimated_wait_minutes) == (1, 0)
    assert not engine.position("A").queued
