"""Tests for the change feed and table watcher."""

import pytest

from caravanhub.backend.changes import DELETE, INSERT, UPDATE, ChangeEvent, EventHub, TableWatcher, diff_snapshots
from caravanhub.errors import BackendError
from caravanhub.services.store import LISTINGS_TABLE
from tests.conftest import make_draft


class TestEventHub:
    @pytest.mark.asyncio
    async def test_sync_and_async_listeners_in_order(self):
        hub = EventHub()
        seen = []

        async def async_listener(payload):
            seen.append(("async", payload))

        hub.subscribe("t", lambda payload: seen.append(("sync", payload)))
        hub.subscribe("t", async_listener)

        await hub.publish("t", 1)

        assert seen == [("sync", 1), ("async", 1)]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self):
        hub = EventHub()
        seen = []

        def broken(payload):
            raise RuntimeError("boom")

        hub.subscribe("t", broken)
        hub.subscribe("t", seen.append)

        await hub.publish("t", "x")

        assert seen == ["x"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        hub = EventHub()
        seen = []
        subscription = hub.subscribe("t", seen.append)
        subscription.unsubscribe()
        subscription.unsubscribe()

        await hub.publish("t", "x")

        assert seen == []
        assert not subscription.active


def test_diff_snapshots():
    events = diff_snapshots("listings", {"a": False, "b": True, "c": False}, {"a": True, "b": True, "d": False})
    kinds = sorted((e.type, e.record_id) for e in events)
    assert kinds == [(DELETE, "c"), (INSERT, "d"), (UPDATE, "a")]


class TestTableWatcher:
    @pytest.mark.asyncio
    async def test_first_poll_is_baseline(self, backend):
        await backend.insert(LISTINGS_TABLE, make_draft().to_row("u", "u@example.com", []))
        watcher = TableWatcher(backend)
        assert await watcher.poll() == []

    @pytest.mark.asyncio
    async def test_detects_and_publishes_changes(self, backend):
        watcher = TableWatcher(backend)
        await watcher.poll()
        row = await backend.insert(LISTINGS_TABLE, make_draft().to_row("u", "u@example.com", []))
        published = []
        backend.subscribe(LISTINGS_TABLE, published.append)

        events = await watcher.poll()

        assert events == [ChangeEvent(LISTINGS_TABLE, INSERT, row["id"])]
        assert published == events

        await backend.set_featured(LISTINGS_TABLE, row["id"])
        assert [e.type for e in await watcher.poll()] == [UPDATE]
        assert await watcher.poll() == []

    @pytest.mark.asyncio
    async def test_poll_error_is_logged(self, backend, monkeypatch):
        async def failing(*args, **kwargs):
            raise BackendError("offline")

        monkeypatch.setattr(backend, "select", failing)
        assert await TableWatcher(backend).poll() == []

    @pytest.mark.asyncio
    async def test_start_schedules_interval_job(self, backend):
        watcher = TableWatcher(backend, interval=30)
        watcher.start()
        try:
            job = watcher.scheduler.get_job("watch_listings")
            assert job is not None
            assert job.trigger.interval.total_seconds() == 30
        finally:
            await watcher.stop()
        assert not watcher.scheduler.running
