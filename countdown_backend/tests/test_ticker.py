import asyncio
import threading
from datetime import timedelta

import pytest

from src.countdown.engine import CountdownEngine
from src.countdown.repositories import InMemoryStore
from src.countdown.ticker import PeriodicTicker


class TestPeriodicTicker:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PeriodicTicker(0, lambda: None)

    def test_start_requires_running_loop(self):
        with pytest.raises(RuntimeError):
            PeriodicTicker(0.01, lambda: None).start()

    async def test_calls_callback_periodically(self):
        calls = []
        ticker = PeriodicTicker(0.01, lambda: calls.append(1))
        ticker.start()
        assert ticker.running
        await asyncio.sleep(0.2)
        await ticker.cancel()
        assert len(calls) >= 5
        assert not ticker.running

    async def test_start_once(self):
        ticker = PeriodicTicker(0.01, lambda: None)
        ticker.start()
        with pytest.raises(RuntimeError):
            ticker.start()
        await ticker.cancel()
        with pytest.raises(RuntimeError):
            ticker.start()

    async def test_cancel_is_idempotent_and_final(self):
        calls = []
        ticker = PeriodicTicker(0.01, lambda: calls.append(1))
        ticker.start()
        await asyncio.sleep(0.05)
        await ticker.cancel()
        await ticker.cancel()
        seen = len(calls)
        await asyncio.sleep(0.05)
        assert len(calls) == seen

    async def test_cancel_before_start(self):
        ticker = PeriodicTicker(0.01, lambda: None)
        await ticker.cancel()
        assert not ticker.running

    async def test_callback_errors_do_not_stop_loop(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) % 2:
                raise RuntimeError("boom")

        ticker = PeriodicTicker(0.01, flaky)
        ticker.start()
        await asyncio.sleep(0.1)
        await ticker.cancel()
        assert len(calls) >= 4


class TestEngineTickLoop:
    async def test_idle_engine_is_silent(self, engine):
        calls = []
        engine.subscribe(lambda: calls.append(1))
        engine.startup()
        assert engine.running
        await asyncio.sleep(1.0)
        await engine.shutdown()
        assert calls == []

    async def test_active_countdown_ticks_about_sixty_times_a_second(self, engine, clock):
        engine.add("Trip", clock() + timedelta(days=2))
        calls = []
        engine.subscribe(lambda: calls.append(1))
        engine.startup()
        await asyncio.sleep(1.0)
        await engine.shutdown()
        assert len(calls) >= 50

    async def test_ticks_stop_when_last_countdown_stops(self, engine, clock):
        created = engine.add("Trip", clock() + timedelta(days=2))
        calls = []
        engine.subscribe(lambda: calls.append(1))
        engine.startup()
        await asyncio.sleep(0.1)
        assert calls
        engine.stop(created.id)
        seen = len(calls)
        await asyncio.sleep(0.2)
        await engine.shutdown()
        assert len(calls) == seen

    async def test_expired_active_countdown_keeps_ticking(self, engine, clock):
        created = engine.add("Soon", clock() + timedelta(seconds=1))
        clock.advance(seconds=10)
        calls = []
        engine.subscribe(lambda: calls.append(1))
        engine.startup()
        await asyncio.sleep(0.2)
        await engine.shutdown()
        assert calls
        assert created.id in engine.active_ids

    async def test_nothing_after_shutdown(self, engine, clock):
        engine.add("Trip", clock() + timedelta(days=2))
        calls = []
        engine.subscribe(lambda: calls.append(1))
        engine.startup()
        await asyncio.sleep(0.1)
        await engine.shutdown()
        await engine.shutdown()
        seen = len(calls)
        engine.add("Late", clock() + timedelta(days=1))
        await asyncio.sleep(0.1)
        assert len(calls) == seen
        assert not engine.running

    async def test_startup_once(self, engine):
        engine.startup()
        with pytest.raises(RuntimeError):
            engine.startup()
        await engine.shutdown()
        with pytest.raises(RuntimeError):
            engine.startup()

    async def test_failed_saves_do_not_stop_ticking(self, clock):
        class BrokenStore(InMemoryStore):
            def set(self, key, value):
                raise OSError("read-only filesystem")

        engine = CountdownEngine(BrokenStore(), seed_examples=False, clock=clock)
        engine.startup()
        engine.add("Trip", clock() + timedelta(days=1))
        calls = []
        engine.subscribe(lambda: calls.append(1))
        await asyncio.sleep(0.2)
        await engine.shutdown()
        assert len(calls) >= 5

    async def test_shutdown_waits_for_notification_in_flight(self, engine, clock):
        loop = asyncio.get_running_loop()
        entered = threading.Event()
        release = threading.Event()
        late = []

        def slow_listener():
            entered.set()
            release.wait(5)

        engine.subscribe(slow_listener)
        engine.subscribe(lambda: late.append(1))
        adding = loop.run_in_executor(None, engine.add, "Trip", clock() + timedelta(days=2))
        assert await loop.run_in_executor(None, entered.wait, 5)

        closing = asyncio.ensure_future(engine.shutdown())
        await asyncio.sleep(0.1)
        assert not closing.done()

        release.set()
        await asyncio.wait_for(closing, 5)
        await adding
        assert late == []

    async def test_close_callbacks_fire_once(self, engine):
        closes = []
        engine.on_close(lambda: closes.append("kept"))
        unregister = engine.on_close(lambda: closes.append("removed"))
        unregister()
        engine.startup()
        assert not engine.closed
        await engine.shutdown()
        await engine.shutdown()
        assert closes == ["kept"]
        assert engine.closed

    async def test_close_callback_after_shutdown_fires_immediately(self, engine):
        await engine.shutdown()
        closes = []
        engine.on_close(lambda: closes.append(1))
        assert closes == [1]
