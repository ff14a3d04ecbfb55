"""Tests for Observer — lifecycle, transformations, and consumption."""

import asyncio
import logging

import pytest

from rxkit import Observer, Source, drain
from rxkit._scheduling import spawn


class TestLifecycle:
    """Idle -> Connected -> Disposed."""

    def test_dispose_runs_once(self):
        disposed = []
        observer = Observer(lambda: disposed.append(True))
        disconnect = observer.connect(lambda v: None)
        assert observer.has_listeners
        disconnect()
        disconnect()  # should not raise
        assert disposed == [True]
        assert observer.disposed

    def test_waits_for_last_listener(self):
        disposed = []
        observer = Observer(lambda: disposed.append(True))
        first = observer.connect(lambda v: None)
        second = observer.connect(lambda v: None)
        first()
        assert disposed == []
        second()
        assert disposed == [True]

    def test_shared_observer_connects_upstream_once(self):
        starts = []
        observer = Source.create_cold(lambda next: starts.append(True)).share()
        observer.connect(lambda v: None)()
        observer.connect(lambda v: None)()
        assert starts == [True]
        assert observer.is_shared
        assert not observer.disposed

    def test_unsubscribe_disposes_shared(self):
        disposed = []
        observer = Observer(lambda: disposed.append(True)).share()
        observer.connect(lambda v: None)
        observer.unsubscribe()
        assert disposed == [True]
        assert not observer.has_listeners

    def test_connect_after_dispose_warns(self, caplog):
        observer = Observer()
        observer.connect(lambda v: None)()
        with caplog.at_level(logging.WARNING, logger="rxkit.observer"):
            observer.connect(lambda v: None)
        assert "disposed" in caplog.text

    def test_chain_is_lazy_and_disposes_upward(self):
        started, stopped = [], []

        def emitter(next):
            started.append(True)
            return lambda: stopped.append(True)

        source = Source.create_cold(emitter)
        chain = source.map(lambda v: v).filter(lambda v: True)
        assert started == []

        disconnect = chain.connect(lambda v: None)
        assert started == [True]

        disconnect()
        assert stopped == [True]
        assert chain.disposed
        assert source.disposed

    def test_sibling_keeps_parent_alive(self):
        parent = Observer()
        first = parent.map(lambda v: v).connect(lambda v: None)
        second = parent.filter(lambda v: True).connect(lambda v: None)
        first()
        assert not parent.disposed
        second()
        assert parent.disposed

    def test_repr(self):
        observer = Observer()
        assert "idle" in repr(observer)
        observer.connect(lambda v: None)
        assert "connected" in repr(observer)


class TestTransformations:
    @pytest.mark.asyncio
    async def test_map(self):
        source = Observer()
        received = []
        source.map(lambda v: v * 2).connect(received.append)
        await source.emit(3)
        await source.emit(5)
        assert received == [6, 10]

    @pytest.mark.asyncio
    async def test_filter(self):
        source = Observer()
        received = []
        source.filter(lambda v: v % 2 == 0).connect(received.append)
        for value in range(5):
            await source.emit(value)
        assert received == [0, 2, 4]

    @pytest.mark.asyncio
    async def test_flat_map(self):
        source = Observer()
        received = []
        source.flat_map(lambda v: [v, v] if v > 1 else v).connect(received.append)
        await source.emit(1)
        await source.emit(2)
        assert received == [1, 2, 2]

    @pytest.mark.asyncio
    async def test_reduce_emits_running_total(self):
        source = Observer()
        received = []
        source.reduce(lambda acc, v: acc + v, 10).connect(received.append)
        await source.emit(1)
        await source.emit(2)
        assert received == [11, 13]

    @pytest.mark.asyncio
    async def test_tap_passes_through(self):
        source = Observer()
        seen, received = [], []
        source.tap(seen.append).map(lambda v: -v).connect(received.append)
        await source.emit(4)
        assert seen == [4]
        assert received == [-4]

    @pytest.mark.asyncio
    async def test_operator_applies_transform(self):
        source = Observer()
        received = []
        source.operator(lambda target: target.map(str)).connect(received.append)
        await source.emit(1)
        assert received == ["1"]


class TestMapAsync:
    @pytest.mark.asyncio
    async def test_preserves_order(self):
        async def double(v):
            await asyncio.sleep(0.02 if v == 1 else 0)
            return v * 2

        source = Observer()
        received = []
        source.map_async(double).connect(received.append)
        await asyncio.gather(source.emit(1), source.emit(2))
        assert received == [2, 4]

    @pytest.mark.asyncio
    async def test_fallback_suppresses_error(self):
        async def fail(v):
            raise ValueError(v)

        source = Observer()
        errors, received = [], []
        source.map_async(fail, errors.append).connect(received.append)
        await source.emit(1)
        assert received == []
        assert isinstance(errors[0], ValueError)

    @pytest.mark.asyncio
    async def test_error_propagates_without_fallback(self):
        async def fail(v):
            raise ValueError(v)

        source = Observer()
        source.map_async(fail).connect(lambda v: None)
        with pytest.raises(ValueError):
            await source.emit(1)


class TestSplit:
    @pytest.mark.asyncio
    async def test_batches_individual_values(self, timer):
        source = Observer(timer=timer)
        batches = []
        source.split().connect(batches.append)
        for value in range(45):
            await source.emit(value)
        assert [len(batch) for batch in batches] == [20, 20]
        timer.advance(0.05)
        assert [len(batch) for batch in batches] == [20, 20]
        timer.advance(0.05)
        await drain()
        assert [len(batch) for batch in batches] == [20, 20, 5]
        assert batches[0] == tuple(range(20))
        assert batches[2] == tuple(range(40, 45))

    @pytest.mark.asyncio
    async def test_flattens_array_values(self, timer):
        source = Observer(timer=timer)
        batches = []
        source.split().connect(batches.append)
        await source.emit([list(range(10)), list(range(10, 25))])
        timer.advance(0.1)
        await drain()
        assert batches == [tuple(range(20)), tuple(range(20, 25))]

    @pytest.mark.asyncio
    async def test_awaited_producer_on_event_loop(self):
        async def produce(next):
            for value in range(45):
                await next(value)

        batches = []
        Source.create(lambda next: spawn(produce(next))).split().connect(batches.append)
        await drain()
        assert [len(batch) for batch in batches] == [20, 20]
        await asyncio.sleep(0.3)
        await drain()
        assert [len(batch) for batch in batches] == [20, 20, 5]

    @pytest.mark.asyncio
    async def test_dispose_drops_partial_batch(self, timer):
        source = Observer(timer=timer)
        batches = []
        disconnect = source.split().connect(batches.append)
        await source.emit(1)
        disconnect()
        timer.advance(1)
        await drain()
        assert batches == []


class TestTiming:
    @pytest.mark.asyncio
    async def test_debounce_keeps_last_of_burst(self, timer):
        source = Observer(timer=timer)
        received = []
        source.debounce(1.0).connect(received.append)
        await source.emit(1)
        await source.emit(2)
        timer.advance(0.5)
        await source.emit(3)
        timer.advance(0.9)
        await drain()
        assert received == []
        timer.advance(0.2)
        await drain()
        assert received == [3]

    @pytest.mark.asyncio
    async def test_delay_shifts_every_value(self, timer):
        source = Observer(timer=timer)
        received = []
        source.delay(1.0).connect(received.append)
        await source.emit(1)
        await source.emit(2)
        timer.advance(0.5)
        await drain()
        assert received == []
        timer.advance(0.5)
        await drain()
        assert received == [1, 2]

    @pytest.mark.asyncio
    async def test_delay_cancelled_on_dispose(self, timer):
        source = Observer(timer=timer)
        received = []
        disconnect = source.delay(1.0).connect(received.append)
        await source.emit(1)
        disconnect()
        assert timer.pending == 0
        timer.advance(2)
        await drain()
        assert received == []

    @pytest.mark.asyncio
    async def test_repeat_reemits_latest(self, timer):
        source = Observer(timer=timer)
        received = []
        disconnect = source.repeat(1.0).connect(received.append)
        await source.emit("a")
        assert received == ["a"]
        timer.advance(1.0)
        await drain()
        timer.advance(1.0)
        await drain()
        assert received == ["a", "a", "a"]
        await source.emit("b")
        timer.advance(1.0)
        await drain()
        assert received == ["a", "a", "a", "b", "b"]
        disconnect()
        timer.advance(5.0)
        await drain()
        assert received == ["a", "a", "a", "b", "b"]


class TestMerge:
    @pytest.mark.asyncio
    async def test_keeps_per_source_order(self):
        a, b = Observer(), Observer()
        received = []
        a.merge(b).connect(received.append)
        await asyncio.gather(a.emit(1), b.emit(3), a.emit(2), b.emit(4))
        assert sorted(received) == [1, 2, 3, 4]
        assert received.index(1) < received.index(2)
        assert received.index(3) < received.index(4)

    def test_dispose_releases_both(self):
        a, b = Observer(), Observer()
        disconnect = a.merge(b).connect(lambda v: None)
        assert a.has_listeners and b.has_listeners
        disconnect()
        assert a.disposed and b.disposed


class TestErrors:
    @pytest.mark.asyncio
    async def test_error_reaches_derived_observers(self):
        source = Observer()
        errors = []
        chain = source.map(lambda v: v).filter(lambda v: True)
        chain.on_error(errors.append)
        chain.connect(lambda v: None)
        await source.emit_error(ValueError("bad"))
        assert [str(error) for error in errors] == ["bad"]

    @pytest.mark.asyncio
    async def test_error_fails_future(self):
        source = Observer()
        future = source.map(lambda v: v).to_future()
        await source.emit_error(KeyError("missing"))
        with pytest.raises(KeyError):
            await future
        await asyncio.sleep(0)
        assert not source.has_listeners

    @pytest.mark.asyncio
    async def test_merge_forwards_errors(self):
        a, b = Observer(), Observer()
        future = a.merge(b).to_future()
        await b.emit_error(RuntimeError("b failed"))
        with pytest.raises(RuntimeError, match="b failed"):
            await future

    @pytest.mark.asyncio
    async def test_unhandled_error_is_logged(self, caplog):
        source = Observer()
        with caplog.at_level(logging.ERROR, logger="rxkit.observer"):
            await source.emit_error(ValueError("nobody listens"))
        assert "Unhandled error" in caplog.text

    @pytest.mark.asyncio
    async def test_error_listener_does_not_connect(self):
        source = Observer()
        source.on_error(lambda error: None)
        assert not source.has_listeners


class TestConsumption:
    @pytest.mark.asyncio
    async def test_connect_returns_disconnect(self):
        source = Observer().share()
        received = []
        disconnect = source.connect(received.append)
        await source.emit(1)
        disconnect()
        await source.emit(2)
        assert received == [1]

    @pytest.mark.asyncio
    async def test_once(self):
        source = Observer().share()
        received = []
        source.once(received.append)
        await source.emit(1)
        await source.emit(2)
        assert received == [1]

    @pytest.mark.asyncio
    async def test_to_future(self):
        source = Observer()
        future = source.to_future()
        await source.emit(7)
        assert await future == 7
        assert not source.has_listeners

    @pytest.mark.asyncio
    async def test_cancelled_future_disconnects(self):
        source = Observer().share()
        future = source.to_future()
        future.cancel()
        await asyncio.sleep(0)
        assert not source.has_listeners

    @pytest.mark.asyncio
    async def test_iterator_context_drains_then_stops(self):
        source = Observer()
        context = source.to_iterator_context()
        await source.emit(1)
        await source.emit(2)
        context.done()
        assert [value async for value in context.iterate()] == [1, 2]
        assert not source.has_listeners

    @pytest.mark.asyncio
    async def test_iterator_context_suspends_until_value(self):
        source = Observer()
        context = source.to_iterator_context()

        async def consume():
            return [value async for value in context.iterate()]

        task = asyncio.ensure_future(consume())
        await asyncio.sleep(0)
        assert not task.done()
        await source.emit("x")
        await asyncio.sleep(0)
        context.done()
        assert await task == ["x"]
