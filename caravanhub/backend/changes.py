"""Change notification for backend tables and auth state.

Listeners subscribe to an `EventHub` under a key (a table name, or "auth").
Writes made through this process publish immediately; `TableWatcher` polls
a table on an APScheduler interval and publishes the differences it sees,
which covers writes made by any other client.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from caravanhub.errors import BackendError

if TYPE_CHECKING:
    from caravanhub.backend.base import BaseBackend
    from caravanhub.models.user import Session

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """A row-level change on a table."""

    table: str
    type: str
    record_id: str | None = None
    record: dict | None = None


@dataclass
class AuthEvent:
    """An auth state change; session is None once signed out."""

    type: str
    session: "Session | None" = None
    user_id: str | None = None


Listener = Callable[[Any], Awaitable[None] | None]


class Subscription:
    """Handle returned by `EventHub.subscribe`; call `unsubscribe()` to detach."""

    def __init__(self, hub: "EventHub", key: str, callback: Listener):
        self._hub = hub
        self.key = key
        self.callback = callback

    @property
    def active(self) -> bool:
        return self in self._hub._listeners.get(self.key, [])

    def unsubscribe(self):
        self._hub._remove(self)


class EventHub:
    """Keyed publish/subscribe registry for sync or async callbacks."""

    def __init__(self):
        self._listeners: dict[str, list[Subscription]] = {}

    def subscribe(self, key: str, callback: Listener) -> Subscription:
        subscription = Subscription(self, key, callback)
        self._listeners.setdefault(key, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription):
        listeners = self._listeners.get(subscription.key, [])
        if subscription in listeners:
            listeners.remove(subscription)

    def listener_count(self, key: str) -> int:
        return len(self._listeners.get(key, []))

    async def publish(self, key: str, payload: Any):
        """Deliver payload to every listener of key, in subscription order.

        A failing listener is logged and does not stop delivery to the rest.
        """
        for subscription in list(self._listeners.get(key, [])):
            try:
                result = subscription.callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Listener for '{key}' failed")


def diff_snapshots(table: str, old: dict[str, bool], new: dict[str, bool]) -> list[ChangeEvent]:
    """Compare two {id: is_featured} snapshots and describe the changes."""
    events = []
    for record_id in new.keys() - old.keys():
        events.append(ChangeEvent(table, INSERT, record_id))
    for record_id in old.keys() - new.keys():
        events.append(ChangeEvent(table, DELETE, record_id))
    for record_id in new.keys() & old.keys():
        if new[record_id] != old[record_id]:
            events.append(ChangeEvent(table, UPDATE, record_id))
    return events


class TableWatcher:
    """Poll a table and publish change events for rows added, removed or re-featured."""

    def __init__(
        self,
        backend: "BaseBackend",
        table: str = "listings",
        interval: float = 15.0,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.backend = backend
        self.table = table
        self.interval = interval
        self.scheduler = scheduler or AsyncIOScheduler()
        self._snapshot: dict[str, bool] | None = None

    async def poll(self) -> list[ChangeEvent]:
        """Take a snapshot, publish the differences from the previous one."""
        from caravanhub.backend.base import Query

        try:
            rows = await self.backend.select(Query(self.table, columns="id, is_featured"))
        except BackendError as e:
            logger.error(f"Error polling {self.table}: {e}")
            return []

        snapshot = {str(row["id"]): bool(row.get("is_featured")) for row in rows}
        if self._snapshot is None:
            self._snapshot = snapshot
            return []

        events = diff_snapshots(self.table, self._snapshot, snapshot)
        self._snapshot = snapshot
        for event in events:
            await self.backend.changes.publish(self.table, event)
        if events:
            logger.info(f"Detected {len(events)} change(s) on {self.table}")
        return events

    def start(self):
        self.scheduler.add_job(
            self.poll,
            IntervalTrigger(seconds=self.interval),
            id=f"watch_{self.table}",
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Watching {self.table} every {self.interval:g}s")

    async def stop(self):
        """Shut the scheduler down and let its deferred stop run before returning."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            await asyncio.sleep(0)
