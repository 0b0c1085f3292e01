import itertools

import pytest

from walkin_queue.models import CustomerProfile, Role
from walkin_queue.service import QueueEngine
from walkin_queue.store import InMemoryDocumentStore, QueueStore


class FakeClock:
    """Deterministic clock: each call advances one second."""

    def __init__(self, start: float = 1_000.0) -> None:
        self._ticks = itertools.count()
        self.start = start

    def __call__(self) -> float:
        return self.start + next(self._ticks)


def make_store(**kwargs) -> QueueStore:
    return QueueStore(InMemoryDocumentStore(clock=FakeClock()), sleep=lambda _s: None, **kwargs)


@pytest.fixture
def store():
    return make_store()


@pytest.fixture
def engine(store):
    e = QueueEngine(store)
    e.catalog.create_service(Role.OWNER, service_id="haircut", name="Haircut", duration_minutes=30, price="250")
    e.catalog.create_service(Role.OWNER, service_id="shave", name="Shave", duration_minutes=15, price="100")
    yield e
    e.close()


def profile(name: str, contact: str = "") -> CustomerProfile:
    return CustomerProfile(display_name=name, contact_handle=contact)
