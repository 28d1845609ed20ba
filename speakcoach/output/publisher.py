"""Realtime snapshot publisher

Consumes ``SnapshotProduced`` messages from the session bus and appends them
to a Redis Stream so an external dashboard can render live metrics. Delivery
is best-effort: a failed write is logged and the next snapshot is tried.
"""

import asyncio
import json
import logging
from typing import Optional

import redis.asyncio as redis

from speakcoach.config.config_loader import config
from speakcoach.session.bus import SessionBus, SnapshotProduced


logger = logging.getLogger(__name__)


class RedisSnapshotPublisher:
    """Forwards realtime snapshots to a Redis Stream

    Attributes:
        bus: Session bus to consume snapshots from
        stream_name: Redis Stream key
        maxlen: Approximate cap on the stream length
        published: Snapshots written successfully
        failed: Snapshots that could not be written
    """

    def __init__(self, bus: SessionBus, redis_url: Optional[str] = None,
                 stream_name: Optional[str] = None, maxlen: Optional[int] = None,
                 client: Optional[redis.Redis] = None):
        self.bus = bus
        self.redis_url = redis_url or config.get('redis.url', 'redis://localhost:6379')
        self.stream_name = stream_name or config.get('redis.snapshot_stream', 'speakcoach_snapshots')
        self.maxlen = maxlen or config.get('redis.maxlen', 1000)
        self.redis_client = client
        self.published = 0
        self.failed = 0
        self._subscription = None
        self._task: Optional[asyncio.Task] = None

    @staticmethod
    def serialize(message: SnapshotProduced) -> dict:
        snapshot = message.snapshot
        return {
            'session_id': message.session_id,
            'source': snapshot.source.value,
            'timestamp': snapshot.timestamp,
            'values': json.dumps(dict(snapshot.values)),
        }

    async def publish(self, message: SnapshotProduced) -> bool:
        try:
            await self.redis_client.xadd(
                self.stream_name,
                self.serialize(message),
                maxlen=self.maxlen
            )
            self.published += 1
            logger.debug(f"Published {message.snapshot.source.value} snapshot "
                         f"at {message.snapshot.timestamp:.2f}s")
            return True
        except Exception as e:
            self.failed += 1
            logger.error(f"Failed to publish snapshot: {e}")
            return False

    async def run(self) -> None:
        """Forward snapshots until the bus closes or the task is cancelled"""
        if self.redis_client is None:
            self.redis_client = redis.from_url(self.redis_url)
        self._subscription = self.bus.subscribe(SnapshotProduced)
        logger.info(f"Publishing snapshots to Redis stream {self.stream_name}")
        try:
            async for message in self._subscription:
                await self.publish(message)
        except asyncio.CancelledError:
            logger.info("Snapshot publisher cancelled")
        finally:
            self._subscription.close()
            self._subscription = None
            logger.info(f"Snapshot publisher stopped: {self.published} published, {self.failed} failed")

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(), name="snapshot_publisher")
        return self._task

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

        if self.redis_client:
            await self.redis_client.close()
            self.redis_client = None
