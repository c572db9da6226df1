"""
Stream Correlator - windowed left join of Fleet activities with host activities.

Fleet writes an activity row and, separately, a host_activities row that
links it to the host it happened on. The activity itself carries no host,
so activities are held for up to one join window waiting for their host
activity:

- parent (activity) keyed by after.id
- satellite (host activity) keyed by after.activity_id
- match within the window -> merged activity emitted immediately
- parent older than the window -> emitted unenriched (left outer join)
- satellite older than the window -> discarded

No grace period. State is in memory only and bounded by the window.

Every buffered record carries the delivery it arrived on (anything with
async `ack()` and `reject(error)`). A delivery is acked only once the
record it contributed to has been emitted; when the emit fails it is
rejected, so the source message is redelivered and joined again.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

from .event_schema import CapturedChange, MessageType

logger = logging.getLogger("normalizer.correlator")

Emit = Callable[[CapturedChange, MessageType], Awaitable[Any]]

JOINED_MESSAGE_TYPE = MessageType.FLEET_MDM_EVENT


def merge_host_activity(activity: CapturedChange, host_activity: CapturedChange) -> CapturedChange:
    """Copy of the activity with hostId/agentId taken from the host activity."""
    after = dict(activity.after)
    host_id = host_activity.after.get("host_id")
    if host_id is not None:
        after["hostId"] = host_id
        after["agentId"] = str(host_id)
    return activity.with_after(after)


class ActivityJoiner:
    """In-memory join store, swept periodically by `run`."""

    def __init__(self, emit: Emit, window_seconds: float = 5.0,
                 clock: Callable[[], float] = time.monotonic, metrics=None):
        self.emit = emit
        self.window_seconds = window_seconds
        self._clock = clock
        self.metrics = metrics

        self._parents: Dict[str, Tuple[CapturedChange, float, Any]] = {}
        self._satellites: Dict[str, Tuple[CapturedChange, float, Any]] = {}
        self._running = False

    @staticmethod
    def _key(value: Any) -> Optional[str]:
        return None if value is None else str(value)

    def _within_window(self, arrived: float, now: float) -> bool:
        return now - arrived <= self.window_seconds

    async def _emit(self, record: CapturedChange, matched: bool, deliveries: Iterable[Any]) -> bool:
        deliveries = list(deliveries)
        try:
            await self.emit(record, JOINED_MESSAGE_TYPE)
        except Exception as e:
            logger.error(f"❌ Failed to emit joined activity, rejecting {len(deliveries)} source message(s): {e}")
            if self.metrics:
                self.metrics.record_error("join_emit", str(e))
            for delivery in deliveries:
                await delivery.reject(e)
            return False

        if self.metrics:
            self.metrics.record_join(matched)
        for delivery in deliveries:
            await delivery.ack()
        return True

    @staticmethod
    async def _release(entry: Optional[Tuple[CapturedChange, float, Any]]):
        """Ack a buffered record that is dropped or superseded."""
        if entry is not None:
            await entry[2].ack()

    async def on_parent(self, record: CapturedChange, delivery):
        """Handle one activity record."""
        if not isinstance(record.after, dict):
            logger.debug("Activity without 'after' document, nothing to join")
            await delivery.ack()
            return

        key = self._key(record.after.get("id"))
        if key is None:
            logger.warning("⚠️ Activity without id cannot be joined, emitting unenriched")
            await self._emit(record, False, [delivery])
            return

        now = self._clock()
        satellite = self._satellites.pop(key, None)
        if satellite is not None and self._within_window(satellite[1], now):
            logger.debug(f"Activity {key} joined with buffered host activity")
            await self._emit(merge_host_activity(record, satellite[0]), True, [delivery, satellite[2]])
            return
        await self._release(satellite)

        await self._release(self._parents.get(key))
        self._parents[key] = (record, now, delivery)

    async def on_satellite(self, record: CapturedChange, delivery):
        """Handle one host activity record."""
        if not isinstance(record.after, dict):
            await delivery.ack()
            return

        key = self._key(record.after.get("activity_id"))
        if key is None:
            logger.debug("Host activity without activity_id dropped")
            await delivery.ack()
            return

        now = self._clock()
        parent = self._parents.get(key)
        if parent is not None and self._within_window(parent[1], now):
            del self._parents[key]
            logger.debug(f"Host activity joined with buffered activity {key}")
            await self._emit(merge_host_activity(parent[0], record), True, [parent[2], delivery])
            return

        await self._release(self._satellites.get(key))
        self._satellites[key] = (record, now, delivery)

    async def sweep(self, now: Optional[float] = None) -> int:
        """Emit expired parents unenriched, discard expired satellites. Returns parents emitted."""
        now = self._clock() if now is None else now

        expired_parents = [k for k, (_, arrived, _) in self._parents.items()
                           if not self._within_window(arrived, now)]
        expired_satellites = [k for k, (_, arrived, _) in self._satellites.items()
                              if not self._within_window(arrived, now)]

        for key in expired_satellites:
            await self._release(self._satellites.pop(key))

        entries = [self._parents.pop(key) for key in expired_parents]
        for record, _, delivery in entries:
            await self._emit(record, False, [delivery])

        if entries or expired_satellites:
            logger.debug(f"Join sweep: {len(entries)} activities emitted unenriched, "
                         f"{len(expired_satellites)} host activities discarded")
        return len(entries)

    async def flush(self) -> int:
        """Emit every buffered parent unenriched (shutdown)."""
        entries = list(self._parents.values())
        satellites = list(self._satellites.values())
        self._parents.clear()
        self._satellites.clear()
        for entry in satellites:
            await self._release(entry)
        for record, _, delivery in entries:
            await self._emit(record, False, [delivery])
        return len(entries)

    async def run(self):
        """Sweep every half window until cancelled or stopped."""
        self._running = True
        interval = self.window_seconds / 2
        logger.info(f"✅ Activity joiner started (window={self.window_seconds}s)")
        try:
            while self._running:
                await asyncio.sleep(interval)
                await self.sweep()
        finally:
            self._running = False

    def stop(self):
        self._running = False

    def pending(self) -> Dict[str, int]:
        return {"activities": len(self._parents), "host_activities": len(self._satellites)}
