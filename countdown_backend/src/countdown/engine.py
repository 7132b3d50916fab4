from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock, RLock
from typing import Callable, FrozenSet, Iterable, List, Optional, Set
from uuid import UUID

from .models import CountdownEntity, decode_countdowns, encode_countdowns, utc_now
from .repositories import KeyValueStore, get_store
from .settings import Settings
from .ticker import PeriodicTicker

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "SavedCountdowns"
# ~60 notifications per second while anything is active
TICK_INTERVAL = 1 / 60

Clock = Callable[[], datetime]
Listener = Callable[[], None]


@dataclass(frozen=True)
class CountdownStats:
    total: int
    active: int
    expired: int
    future: int


def example_countdowns(now: datetime) -> List[CountdownEntity]:
    """Countdowns shown on first launch: one long-term, one short-term."""
    new_year = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return [
        CountdownEntity(name=f"New Year {new_year.year}", target_date=new_year, created_date=now),
        CountdownEntity(name="Lunch Break", target_date=now + timedelta(hours=1), created_date=now),
    ]


# PUBLIC_INTERFACE
class CountdownEngine:
    """
    Owner of the countdown collection, the active set and the shared tick loop.

    The active set and each countdown's `is_active` flag always agree once an
    operation returns. Every successful mutation persists the full collection
    and notifies subscribers; unknown ids are silent no-ops. Reads hand out
    copies, so callers change state only through the engine.

    All state access goes through one re-entrant lock, so mutations may come
    from worker threads while the tick loop runs on the event loop. Store I/O
    happens outside that lock.

    Lifecycle:
        engine = CountdownEngine(store)   # loads or seeds
        engine.startup()                  # inside a running event loop
        ...
        await engine.shutdown()
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        storage_key: str = DEFAULT_STORAGE_KEY,
        tick_interval: float = TICK_INTERVAL,
        seed_examples: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._storage_key = storage_key
        self._tick_interval = tick_interval
        self._seed_examples = seed_examples
        self._clock = clock

        self._lock = RLock()
        self._save_lock = Lock()
        self._countdowns: List[CountdownEntity] = []
        self._active_ids: Set[UUID] = set()
        self._listeners: List[Listener] = []
        self._close_listeners: List[Listener] = []
        # Held while listeners run so shutdown can wait out in-flight notifications
        self._dispatch_lock = RLock()
        self._ticker: Optional[PeriodicTicker] = None
        self._closed = False

        self.load()

    @classmethod
    def from_settings(cls, settings: Settings, store: Optional[KeyValueStore] = None) -> "CountdownEngine":
        return cls(
            store if store is not None else get_store(settings),
            storage_key=settings.storage_key,
            tick_interval=settings.tick_interval,
            seed_examples=settings.seed_examples,
        )

    # Reads

    def now(self) -> datetime:
        return self._clock()

    @property
    def countdowns(self) -> List[CountdownEntity]:
        with self._lock:
            return [c.model_copy() for c in self._countdowns]

    @property
    def active_ids(self) -> FrozenSet[UUID]:
        with self._lock:
            return frozenset(self._active_ids)

    @property
    def running(self) -> bool:
        return self._ticker is not None and self._ticker.running

    def get(self, countdown_id: UUID) -> Optional[CountdownEntity]:
        with self._lock:
            countdown = self._find(countdown_id)
            return None if countdown is None else countdown.model_copy()

    def expired_countdowns(self, now: Optional[datetime] = None) -> List[CountdownEntity]:
        now = now or self._clock()
        return [c for c in self.countdowns if c.has_expired(now)]

    def future_countdowns(self, now: Optional[datetime] = None) -> List[CountdownEntity]:
        now = now or self._clock()
        return [c for c in self.countdowns if c.is_in_future(now)]

    def statistics(self, now: Optional[datetime] = None) -> CountdownStats:
        now = now or self._clock()
        with self._lock:
            expired = sum(1 for c in self._countdowns if c.has_expired(now))
            return CountdownStats(
                total=len(self._countdowns),
                active=len(self._active_ids),
                expired=expired,
                future=len(self._countdowns) - expired,
            )

    # Mutations

    def add(self, name: str, target_date: datetime) -> CountdownEntity:
        """
        Append a new countdown and start it when its target is still ahead.

        Raises:
            ValueError (pydantic.ValidationError) for a blank name; nothing is
            stored in that case.
        """
        now = self._clock()
        countdown = CountdownEntity(name=name, target_date=target_date, created_date=now)
        with self._lock:
            self._countdowns.append(countdown)
            if countdown.is_in_future(now):
                self._activate(countdown)
            snapshot = countdown.model_copy()
        logger.debug("Added countdown %s (%r), active=%s", snapshot.id, snapshot.name, snapshot.is_active)
        self._commit()
        return snapshot

    def update(self, countdown: CountdownEntity) -> Optional[CountdownEntity]:
        """
        Replace the stored countdown with the same id, keeping its position.

        The active flag and creation date stay as the engine has them. Returns
        the stored copy, or None if the id is unknown.
        """
        with self._lock:
            index = self._index_of(countdown.id)
            if index is None:
                return None
            existing = self._countdowns[index]
            replacement = countdown.model_copy(
                update={
                    "created_date": existing.created_date,
                    "is_active": countdown.id in self._active_ids,
                }
            )
            self._countdowns[index] = replacement
            snapshot = replacement.model_copy()
        logger.debug("Updated countdown %s", snapshot.id)
        self._commit()
        return snapshot

    def delete(self, countdown_id: UUID) -> bool:
        with self._lock:
            index = self._index_of(countdown_id)
            if index is None:
                return False
            self._active_ids.discard(countdown_id)
            del self._countdowns[index]
        logger.debug("Deleted countdown %s", countdown_id)
        self._commit()
        return True

    def delete_many(self, countdown_ids: Iterable[UUID]) -> int:
        """Delete every known id in one pass and one save. Returns how many were removed."""
        ids = set(countdown_ids)
        with self._lock:
            self._active_ids.difference_update(ids)
            kept = [c for c in self._countdowns if c.id not in ids]
            removed = len(self._countdowns) - len(kept)
            self._countdowns = kept
        if not removed:
            return 0
        logger.debug("Deleted %d countdowns", removed)
        self._commit()
        return removed

    def start(self, countdown_id: UUID) -> bool:
        with self._lock:
            countdown = self._find(countdown_id)
            if countdown is None:
                return False
            self._activate(countdown)
        self._commit()
        return True

    def stop(self, countdown_id: UUID) -> bool:
        with self._lock:
            countdown = self._find(countdown_id)
            if countdown is None:
                return False
            self._active_ids.discard(countdown_id)
            countdown.is_active = False
        self._commit()
        return True

    def stop_all(self) -> None:
        with self._lock:
            self._active_ids.clear()
            for countdown in self._countdowns:
                countdown.is_active = False
        logger.debug("Stopped all countdowns")
        self._commit()

    # Notifications and tick loop

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a zero-argument callback fired after each mutation and on every
        tick while a countdown is active. Returns a function that unsubscribes.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def on_close(self, listener: Listener) -> Callable[[], None]:
        """
        Register a zero-argument callback fired once while the engine shuts down,
        or immediately if it already has. Returns a function that unregisters it.
        """
        with self._lock:
            closed = self._closed
            if not closed:
                self._close_listeners.append(listener)
        if closed:
            self._call(listener)

        def unregister() -> None:
            with self._lock:
                if listener in self._close_listeners:
                    self._close_listeners.remove(listener)

        return unregister

    @property
    def closed(self) -> bool:
        return self._closed

    def startup(self) -> None:
        """Start the tick loop. Must be called once, from a running event loop."""
        with self._lock:
            if self._closed:
                raise RuntimeError("engine has been shut down")
            if self._ticker is not None:
                raise RuntimeError("engine already started")
            self._ticker = PeriodicTicker(self._tick_interval, self._on_tick, name="countdown-ticker")
            total, active = len(self._countdowns), len(self._active_ids)
        self._ticker.start()
        logger.info("Countdown engine started (%d countdowns, %d active)", total, active)

    async def shutdown(self) -> None:
        """
        Stop the tick loop and wait for notifications already being delivered
        on other threads; no notification is delivered once this returns.
        Close callbacks run before it returns.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            close_listeners, self._close_listeners = self._close_listeners, []
        if self._ticker is not None:
            await self._ticker.cancel()
        # Acquiring the dispatch lock off the event loop lets worker-thread
        # listeners that need the loop finish first
        await asyncio.get_running_loop().run_in_executor(None, self._drain_dispatch)
        for listener in close_listeners:
            self._call(listener)
        logger.info("Countdown engine stopped")

    def _drain_dispatch(self) -> None:
        with self._dispatch_lock:
            pass

    def _on_tick(self) -> None:
        with self._lock:
            idle = not self._active_ids
        if not idle:
            # Never block the event loop; a busy dispatch already covers this frame
            self._notify(blocking=False)

    def _notify(self, blocking: bool = True) -> None:
        if not self._dispatch_lock.acquire(blocking=blocking):
            return
        try:
            with self._lock:
                if self._closed:
                    return
                listeners = list(self._listeners)
            for listener in listeners:
                # Shutdown may start while an earlier listener runs
                if self._closed:
                    return
                self._call(listener)
        finally:
            self._dispatch_lock.release()

    @staticmethod
    def _call(listener: Listener) -> None:
        try:
            listener()
        except Exception:
            logger.exception("Engine listener %r failed", listener)

    # Persistence

    def save(self) -> bool:
        """
        Write the full collection under the storage key.

        Never raises: failures are logged and memory stays authoritative until
        the next successful save.
        """
        with self._save_lock:
            try:
                with self._lock:
                    payload = encode_countdowns(self._countdowns)
                ok = self._store.set(self._storage_key, payload)
            except Exception:
                logger.exception("Failed to save countdowns under %r", self._storage_key)
                return False
            if not ok:
                logger.error("Store rejected countdowns under %r", self._storage_key)
            return ok

    def load(self) -> None:
        """
        Replace in-memory state with the stored collection.

        Missing data seeds the example countdowns. Undecodable data is copied
        to the first free '<key>.corrupt[.N]' key and then treated as missing. The active set is
        rebuilt from the stored flags.
        """
        try:
            data = self._store.get(self._storage_key)
        except Exception:
            logger.exception("Failed to read countdowns under %r", self._storage_key)
            data = None

        if data is None:
            logger.info("No saved countdowns under %r", self._storage_key)
            self._reseed()
            return

        try:
            loaded = decode_countdowns(data)
        except ValueError:
            logger.warning(
                "Discarding undecodable countdowns under %r (%d bytes)",
                self._storage_key,
                len(data),
                exc_info=True,
            )
            self._quarantine(data)
            self._reseed()
            return

        countdowns: List[CountdownEntity] = []
        seen: Set[UUID] = set()
        for countdown in loaded:
            if countdown.id in seen:
                logger.warning("Dropping duplicate countdown id %s", countdown.id)
                continue
            seen.add(countdown.id)
            countdowns.append(countdown)

        active_ids = {c.id for c in countdowns if c.is_active}
        with self._lock:
            self._countdowns = countdowns
            self._active_ids = active_ids
        logger.info("Loaded %d countdowns (%d active)", len(countdowns), len(active_ids))
        self._notify()

    def _reseed(self) -> None:
        seeded = example_countdowns(self._clock()) if self._seed_examples else []
        with self._lock:
            self._countdowns = seeded
            self._active_ids = set()
        logger.info("Seeded %d example countdowns", len(seeded))
        self.save()
        self._notify()

    def _quarantine(self, data: bytes) -> None:
        key = f"{self._storage_key}.corrupt"
        try:
            # Earlier copies are kept: '<key>.corrupt', '<key>.corrupt.1', ...
            suffix = 0
            while self._store.get(key) is not None:
                suffix += 1
                key = f"{self._storage_key}.corrupt.{suffix}"
            if not self._store.set(key, data):
                logger.error("Store rejected quarantined data under %r", key)
        except Exception:
            logger.exception("Failed to quarantine corrupt data under %r", key)

    def _commit(self) -> None:
        self.save()
        self._notify()

    # Helpers, called with the lock held

    def _index_of(self, countdown_id: UUID) -> Optional[int]:
        for index, countdown in enumerate(self._countdowns):
            if countdown.id == countdown_id:
                return index
        return None

    def _find(self, countdown_id: UUID) -> Optional[CountdownEntity]:
        index = self._index_of(countdown_id)
        return None if index is None else self._countdowns[index]

    def _activate(self, countdown: CountdownEntity) -> None:
        self._active_ids.add(countdown.id)
        countdown.is_active = True
