"""
Analytics Service
Best-effort outbound queue for product analytics events.

Created once in the application lifespan and handed to the scheduling
services. ``track()`` only enqueues; a background task drains the queue into
the sink so a slow or failing analytics store never delays a booking.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..config import ANALYTICS_QUEUE_SIZE
from ..database import session_scope
from ..models import AnalyticsEvent

logger = logging.getLogger(__name__)

Sink = Callable[[Dict[str, Any]], None]


def database_sink(event: Dict[str, Any]) -> None:
    """Write one event to the analytics_events table"""
    with session_scope() as db:
        db.add(
            AnalyticsEvent(
                event_name=event["event_name"],
                dentist_id=event.get("dentist_id"),
                payload={**event.get("payload", {}), "trackedAt": event["tracked_at"]},
            )
        )


class AnalyticsService:
    def __init__(self, sink: Optional[Sink] = None, max_size: int = ANALYTICS_QUEUE_SIZE):
        self.sink = sink or database_sink
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=max_size)
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def track(self, event_name: str, dentist_id: Optional[str], payload: Dict[str, Any]) -> None:
        """Queue an event; never blocks and never raises on a full queue"""
        event = {
            "event_name": event_name,
            "dentist_id": dentist_id,
            "payload": payload or {},
            "tracked_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"⚠️ Analytics queue full, dropped {event_name}")

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._drain())
        logger.info("📊 Analytics queue started")

    async def stop(self) -> None:
        """Flush what is queued, then stop the background task"""
        if self._task is None:
            return
        await self.queue.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"📊 Analytics queue stopped ({self.dropped} event(s) dropped)")

    async def _drain(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await asyncio.to_thread(self.sink, event)
            except Exception as e:
                self.dropped += 1
                logger.error(f"❌ Failed to record analytics event {event['event_name']}: {e}")
            finally:
                self.queue.task_done()
