"""Tests for Whispr handles, setters, liveness, wait() and load()."""

import asyncio
import gc
import logging

import pytest

from whispr import STOP, Registry, Whispr, create


class TestCreate:
    def test_end_to_end(self):
        handle, set_value = create(0)
        log = []
        handle.subscribe(log.append)
        assert log == [0]
        assert set_value(5) is True
        assert log == [0, 5]
        assert handle.value == 5

    def test_clone_isolation(self):
        handle, _ = Whispr.create({"a": 1, "nested": {"b": 2}})
        read = handle.value
        read["nested"]["b"] = 42
        assert handle.value == {"a": 1, "nested": {"b": 2}}

    def test_initial_value_is_cloned(self):
        data = [1, 2]
        handle, _ = create(data)
        data.append(3)
        assert handle.value == [1, 2]

    def test_subscribe_not_immediate(self):
        handle, set_value = create("a")
        log = []
        handle.subscribe(log.append, immediate=False)
        assert log == []
        set_value("b")
        assert log == ["b"]

    def test_repr(self):
        handle, _ = create(3)
        assert repr(handle) == "Whispr(3)"


class TestLiveness:
    def test_on_die_when_unreferenced(self):
        died = []
        handle, set_value = create(1, lambda: died.append(True))
        assert set_value.alive
        del handle
        gc.collect()
        assert died == [True]
        assert set_value(2) is False
        assert not set_value.alive

    def test_setter_does_not_keep_handle_alive(self):
        died = []
        set_value = create(1, lambda: died.append(True))[1]
        gc.collect()
        assert died == [True]
        assert set_value(2) is False

    def test_on_die_runs_once(self, registry):
        died = []
        handle, _ = create(1, lambda: died.append(True))
        registry.kill(handle._id)
        registry.kill(handle._id)
        del handle
        gc.collect()
        assert died == [True]

    def test_dead_handle_stops_notifying(self, registry):
        handle, set_value = create(0)
        log = []
        handle.subscribe(log.append)
        registry.kill(handle._id)
        assert not handle.alive
        assert set_value(1) is False
        assert log == [0]
        assert handle.value == 0

    def test_on_die_fault_is_logged(self, caplog):
        def bad():
            raise RuntimeError("cleanup failed")

        handle, _ = create(1, bad)
        with caplog.at_level(logging.ERROR, logger="whispr._anchor"):
            del handle
            gc.collect()
        assert "cleanup failed" in caplog.text

    def test_explicit_registry(self):
        died = []
        with Registry() as scoped:
            handle, set_value = create(1, lambda: died.append(True), registry=scoped)
            assert len(scoped) == 1
        assert died == [True]
        assert not handle.alive
        assert set_value(2) is False


class TestWait:
    @pytest.mark.asyncio
    async def test_resolves_with_first_match(self):
        handle, set_value = create(0)
        waiter = asyncio.ensure_future(handle.wait(lambda v: v * 10 if v >= 2 else None))
        await asyncio.sleep(0)
        set_value(1)
        set_value(2)
        set_value(3)
        assert await waiter == 20

    @pytest.mark.asyncio
    async def test_already_satisfied(self):
        handle, _ = create("ready")
        assert await handle.wait(lambda v: v.upper()) == "READY"

    @pytest.mark.asyncio
    async def test_unsubscribes_after_resolving(self):
        handle, set_value = create(0)
        assert await handle.wait(lambda v: v if v == 0 else None) == 0
        assert handle._cell._subscriptions == []

    @pytest.mark.asyncio
    async def test_falsy_results_resolve(self):
        handle, _ = create(0)
        assert await handle.wait(lambda v: v) == 0

    @pytest.mark.asyncio
    async def test_timeout_cleans_up(self):
        handle, _ = create(None)
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(handle.wait(lambda v: v), timeout=0.01)
        assert handle._cell._subscriptions == []

    @pytest.mark.asyncio
    async def test_waiter_keeps_handle_alive(self):
        died = []
        handle, set_value = create(None, lambda: died.append(True))
        waiter = asyncio.ensure_future(handle.load())
        await asyncio.sleep(0)
        del handle
        gc.collect()
        assert died == []
        assert set_value("loaded") is True
        assert await waiter == "loaded"


class TestLoad:
    @pytest.mark.asyncio
    async def test_waits_for_value(self):
        handle, set_value = create(None)
        waiter = asyncio.ensure_future(handle.load())
        await asyncio.sleep(0)
        assert not waiter.done()
        set_value({"user": "ada"})
        assert await waiter == {"user": "ada"}


class TestTransform:
    def test_transform(self):
        handle, set_value = create(3)
        doubled = handle.transform(lambda v: v * 2)
        assert doubled.value == 6
        set_value(4)
        assert doubled.value == 8

    def test_stop_only_affects_one_listener(self):
        handle, set_value = create(0)
        log = []
        handle.subscribe(lambda v: STOP)
        handle.subscribe(log.append, immediate=False)
        set_value(1)
        assert log == [1]
