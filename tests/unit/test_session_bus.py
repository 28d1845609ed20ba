"""Unit tests for the session message bus"""

import asyncio

import pytest

from speakcoach.models.enums import MetricSource, SessionState
from speakcoach.models.results import MetricSnapshot
from speakcoach.session.bus import SessionBus, SessionStateChanged, SnapshotProduced


def produced(ts: float) -> SnapshotProduced:
    return SnapshotProduced("s1", MetricSnapshot(ts, MetricSource.VIDEO, {"eye_contact": 80.0}))


class TestSessionBus:
    """Test suite for SessionBus"""

    def test_publish_without_consumer_is_discarded(self):
        bus = SessionBus()
        assert bus.publish(produced(0.0)) is False

    def test_single_consumer_per_topic(self):
        bus = SessionBus()
        bus.subscribe(SnapshotProduced)
        with pytest.raises(RuntimeError):
            bus.subscribe(SnapshotProduced)
        # Other topics are independent
        bus.subscribe(SessionStateChanged)

    def test_unknown_topic_rejected(self):
        bus = SessionBus()
        with pytest.raises(TypeError):
            bus.publish("not a message")

    def test_drop_oldest_when_full(self):
        """Test a full queue drops its oldest message and never blocks"""
        bus = SessionBus(maxsize=3)
        sub = bus.subscribe(SnapshotProduced)
        for ts in range(5):
            assert bus.publish(produced(float(ts))) is True

        messages = sub.drain()
        assert [m.snapshot.timestamp for m in messages] == [2.0, 3.0, 4.0]
        assert bus.dropped[SnapshotProduced] == 2
        assert bus.dropped[SessionStateChanged] == 0

    def test_resubscribe_after_close(self):
        bus = SessionBus()
        sub = bus.subscribe(SnapshotProduced)
        sub.close()
        assert bus.publish(produced(0.0)) is False
        bus.subscribe(SnapshotProduced)
        assert bus.publish(produced(0.0)) is True

    @pytest.mark.asyncio
    async def test_async_iteration_ends_on_close(self):
        bus = SessionBus()
        sub = bus.subscribe(SessionStateChanged)
        bus.publish(SessionStateChanged("s1", SessionState.IDLE, SessionState.REQUESTING_DEVICES))
        bus.publish(SessionStateChanged("s1", SessionState.REQUESTING_DEVICES, SessionState.READY))
        bus.close()

        received = [message async for message in sub]
        assert [m.current for m in received] == [SessionState.REQUESTING_DEVICES, SessionState.READY]
        assert await sub.get() is None

    @pytest.mark.asyncio
    async def test_get_waits_for_message(self):
        bus = SessionBus()
        sub = bus.subscribe(SnapshotProduced)

        async def later():
            await asyncio.sleep(0.01)
            bus.publish(produced(1.0))

        task = asyncio.create_task(later())
        message = await asyncio.wait_for(sub.get(), timeout=1.0)
        await task
        assert message.snapshot.timestamp == 1.0

    def test_get_nowait_on_empty_queue(self):
        bus = SessionBus()
        sub = bus.subscribe(SnapshotProduced)
        assert sub.get_nowait() is None

    def test_snapshot_values_are_read_only(self):
        message = produced(0.0)
        with pytest.raises(TypeError):
            message.snapshot.values["eye_contact"] = 0.0
