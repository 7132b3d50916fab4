from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from src.countdown.engine import CountdownEngine
from src.countdown.repositories import InMemoryStore


class FixedClock:
    """Manually advanced clock for deterministic engine tests."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class RecordingStore(InMemoryStore):
    """In-memory store that remembers every write."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: List[tuple] = []

    def set(self, key: str, value: bytes) -> bool:
        self.writes.append((key, value))
        return super().set(key, value)


class FailingStore(InMemoryStore):
    """Store whose reads and/or writes blow up."""

    def __init__(self, fail_get: bool = False, fail_set: bool = True, reject: bool = False) -> None:
        super().__init__()
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.reject = reject

    def get(self, key: str) -> Optional[bytes]:
        if self.fail_get:
            raise OSError("disk unavailable")
        return super().get(key)

    def set(self, key: str, value: bytes) -> bool:
        if self.fail_set:
            raise OSError("disk full")
        if self.reject:
            return False
        return super().set(key, value)


@pytest.fixture
def clock():
    return FixedClock(datetime(2030, 5, 17, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def engine(store, clock):
    """Engine over an empty store, without example countdowns."""
    return CountdownEngine(store, seed_examples=False, clock=clock)


def assert_in_sync(engine: CountdownEngine) -> None:
    active = engine.active_ids
    countdowns = engine.countdowns
    for countdown in countdowns:
        assert countdown.is_active == (countdown.id in active)
    assert active <= {c.id for c in countdowns}
