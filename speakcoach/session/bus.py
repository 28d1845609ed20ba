"""Session message bus

Typed, in-process bus with two topics: ``SnapshotProduced`` for realtime
display and ``SessionStateChanged`` for lifecycle transitions (the transition
to REPORTED carries the report). Each topic has a bounded queue and a single
consumer. Publishing never blocks and never raises into the producer: when a
queue is full the oldest message is dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Type, Union

from speakcoach.models.enums import SessionState
from speakcoach.models.errors import SessionError
from speakcoach.models.results import MetricSnapshot, SessionReport


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotProduced:
    """A realtime metric snapshot for live display"""
    session_id: str
    snapshot: MetricSnapshot


@dataclass(frozen=True)
class SessionStateChanged:
    """A session lifecycle transition"""
    session_id: str
    previous: SessionState
    current: SessionState
    report: Optional[SessionReport] = None
    error: Optional[SessionError] = None


Message = Union[SnapshotProduced, SessionStateChanged]

_CLOSED = object()


class Subscription:
    """Single consumer of one topic"""

    def __init__(self, bus: "SessionBus", topic: Type, queue: asyncio.Queue):
        self._bus = bus
        self.topic = topic
        self._queue = queue
        self._closed = False

    async def get(self) -> Optional[Message]:
        """Wait for the next message, or None once the bus is closed"""
        if self._closed:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._closed = True
            return None
        return item

    def get_nowait(self) -> Optional[Message]:
        """Next queued message, or None if nothing is queued"""
        if self._closed:
            return None
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is _CLOSED:
            self._closed = True
            return None
        return item

    def drain(self) -> list:
        """All queued messages, oldest first"""
        messages = []
        while True:
            item = self.get_nowait()
            if item is None:
                return messages
            messages.append(item)

    def close(self) -> None:
        self._bus.unsubscribe(self.topic)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Message:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


class SessionBus:
    """Bounded, drop-oldest message bus with one consumer per topic

    Attributes:
        maxsize: Queue capacity per topic
        dropped: Number of messages dropped per topic because a queue was full
    """

    TOPICS = (SnapshotProduced, SessionStateChanged)

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._queues: Dict[Type, asyncio.Queue] = {}
        self._subscriptions: Dict[Type, Subscription] = {}
        self.dropped: Dict[Type, int] = {topic: 0 for topic in self.TOPICS}

    def _queue(self, topic: Type) -> asyncio.Queue:
        if topic not in self.TOPICS:
            raise TypeError(f"Unknown bus topic: {topic!r}")
        if topic not in self._queues:
            self._queues[topic] = asyncio.Queue(maxsize=self.maxsize)
        return self._queues[topic]

    def subscribe(self, topic: Type) -> Subscription:
        """Become the consumer of a topic.

        Raises:
            RuntimeError: If the topic already has a consumer
        """
        if topic in self._subscriptions:
            raise RuntimeError(f"Topic {topic.__name__} already has a consumer")
        subscription = Subscription(self, topic, self._queue(topic))
        self._subscriptions[topic] = subscription
        logger.debug(f"Consumer subscribed to {topic.__name__}")
        return subscription

    def unsubscribe(self, topic: Type) -> None:
        self._subscriptions.pop(topic, None)
        self._queues.pop(topic, None)

    def publish(self, message: Message) -> bool:
        """Queue a message for its topic's consumer.

        Messages for a topic with no consumer are discarded.

        Returns:
            True if queued, False if discarded
        """
        topic = type(message)
        queue = self._queue(topic)
        if topic not in self._subscriptions:
            return False
        if queue.full():
            queue.get_nowait()
            self.dropped[topic] += 1
            logger.debug(f"Bus queue for {topic.__name__} full, dropped oldest message")
        queue.put_nowait(message)
        return True

    def close(self) -> None:
        """Signal end-of-stream to every consumer"""
        for topic, queue in self._queues.items():
            if topic not in self._subscriptions:
                continue
            if queue.full():
                queue.get_nowait()
                self.dropped[topic] += 1
            queue.put_nowait(_CLOSED)
