import pytest

from focus_ledger import FocusEngine, MemoryStore

T0 = 1_700_000_000_000


class FakeClock:
    """Settable wall clock in milliseconds."""

    def __init__(self, now_ms: int = T0):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> int:
        self.now_ms += int(seconds * 1000)
        return self.now_ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine(store, clock):
    return FocusEngine(store, clock=clock)
