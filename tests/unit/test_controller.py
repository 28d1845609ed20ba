"""Unit tests for SessionController"""

import asyncio
import time
from unittest.mock import Mock

import pytest

from fakes import (
    FakeCapture,
    RecordingRewardsSink,
    ScriptedAudioHandle,
    ScriptedTranscriptionProvider,
    ScriptedVideoHandle,
    make_audio_frames,
    make_video_frames,
)
from speakcoach.models.enums import SessionState
from speakcoach.models.errors import (
    DevicePermissionDeniedError,
    DeviceUnavailableError,
    InvalidStateTransitionError,
    SessionError,
)
from speakcoach.session.bus import SessionBus, SessionStateChanged


def live_capture(seconds: float = 1.0, **kwargs) -> FakeCapture:
    return FakeCapture(
        audio=ScriptedAudioHandle(make_audio_frames(seconds)),
        video=ScriptedVideoHandle(make_video_frames(seconds)),
        **kwargs,
    )


async def drained(capture: FakeCapture, timeout: float = 5.0):
    await asyncio.wait_for(
        asyncio.gather(capture.audio.drained.wait(), capture.video.drained.wait()),
        timeout=timeout,
    )


async def wait_for_state(controller, state, timeout: float = 5.0):
    async def _poll():
        while controller.state is not state:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout=timeout)


class GatedCapture(FakeCapture):
    """Holds request_streams open until ``gate`` is set"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gate = asyncio.Event()

    async def request_streams(self):
        self.requests += 1
        await self.gate.wait()
        return self.audio, self.video


class TestSessionController:
    """Test suite for SessionController"""

    def test_initialization(self, make_controller):
        controller = make_controller()

        assert controller.state is SessionState.IDLE
        assert controller.session is None
        assert controller.report is None
        assert controller.analyzers == []

    def test_defaults_from_config(self, provider):
        from speakcoach.session.controller import SessionController

        controller = SessionController(FakeCapture(), provider)
        assert controller.join_timeout == 5.0
        assert controller.max_duration == 300.0
        assert controller.bus.maxsize == 256

    @pytest.mark.asyncio
    async def test_start_session(self, make_controller, provider):
        capture = live_capture()
        controller = make_controller(capture=capture)

        session = await controller.start_session()

        assert controller.state is SessionState.READY
        assert session.state is SessionState.READY
        assert session.started_at == 1000.0
        assert capture.requests == 1
        assert provider.resets == 1

    @pytest.mark.asyncio
    async def test_operations_from_wrong_state(self, make_controller):
        controller = make_controller(capture=live_capture())

        with pytest.raises(InvalidStateTransitionError):
            await controller.start_recording()
        with pytest.raises(InvalidStateTransitionError):
            await controller.stop_recording()

        await controller.start_session()
        with pytest.raises(InvalidStateTransitionError):
            await controller.start_session()
        with pytest.raises(InvalidStateTransitionError):
            await controller.stop_recording()

    @pytest.mark.asyncio
    async def test_permission_denied_moves_to_error(self, make_controller):
        capture = FakeCapture(error=DevicePermissionDeniedError("camera blocked"))
        controller = make_controller(capture=capture)

        with pytest.raises(DevicePermissionDeniedError):
            await controller.start_session()

        assert controller.state is SessionState.ERROR
        assert isinstance(controller.error, DevicePermissionDeniedError)
        assert controller.session.error is controller.error

        # ERROR is left only through reset
        with pytest.raises(InvalidStateTransitionError):
            await controller.start_session()
        controller.reset()
        assert controller.state is SessionState.IDLE
        assert controller.error is None

    @pytest.mark.asyncio
    async def test_dead_handle_at_start_recording(self, make_controller):
        capture = live_capture()
        controller = make_controller(capture=capture)
        await controller.start_session()
        capture.audio.live = False

        with pytest.raises(DeviceUnavailableError) as exc:
            await controller.start_recording()

        assert exc.value.track == "audio"
        assert controller.state is SessionState.ERROR
        assert capture.released == [capture.audio, capture.video]

    @pytest.mark.asyncio
    async def test_record_and_report(self, make_controller):
        capture = live_capture(2.0)
        rewards = RecordingRewardsSink()
        controller = make_controller(capture=capture, rewards=rewards)

        await controller.start_session()
        await controller.start_recording()
        assert controller.state is SessionState.RECORDING
        assert len(controller.analyzers) == 2

        await drained(capture)
        report = await controller.stop_recording()

        assert controller.state is SessionState.REPORTED
        assert controller.report is report
        assert report.session_id == controller.session.session_id
        assert report.partial is False
        assert report.voice.snapshot_count == 20
        assert report.facial.snapshot_count == 60
        assert controller.session.stopped_at == 1000.0

        assert rewards.points == [controller.rewards.experience_points]
        assert rewards.achievements == list(controller.rewards.achievements)

    @pytest.mark.asyncio
    async def test_stop_recording_is_idempotent(self, make_controller):
        capture = live_capture()
        controller = make_controller(capture=capture)
        await controller.start_session()
        await controller.start_recording()
        await drained(capture)

        report = await controller.stop_recording()
        assert report is not None
        assert await controller.stop_recording() is None
        assert controller.report is report

    @pytest.mark.asyncio
    async def test_concurrent_stop_returns_none(self, make_controller):
        capture = live_capture()
        controller = make_controller(capture=capture)
        await controller.start_session()
        await controller.start_recording()
        await drained(capture)

        first, second = await asyncio.gather(controller.stop_recording(), controller.stop_recording())
        assert first is not None
        assert second is None

    @pytest.mark.asyncio
    async def test_devices_held_until_reset(self, make_controller):
        capture = live_capture()
        controller = make_controller(capture=capture)
        await controller.start_session()
        await controller.start_recording()
        await drained(capture)
        await controller.stop_recording()

        assert capture.released == []
        controller.reset()
        assert capture.released == [capture.audio, capture.video]
        assert controller.state is SessionState.IDLE
        assert controller.report is None

    @pytest.mark.asyncio
    async def test_release_failure_still_releases_other_device(self, make_controller):
        capture = live_capture(release_error=RuntimeError("driver hung"))
        controller = make_controller(capture=capture)
        await controller.start_session()

        controller.stop_session()

        assert capture.released == [capture.audio, capture.video]
        assert capture.audio.closed and capture.video.closed
        assert controller.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_stop_session_while_recording(self, make_controller):
        capture = live_capture()
        controller = make_controller(capture=capture)
        await controller.start_session()
        await controller.start_recording()
        voice, facial = controller.analyzers

        controller.stop_session()
        await asyncio.sleep(0.05)

        assert controller.state is SessionState.IDLE
        assert voice.task.done() and facial.task.done()
        assert voice.finalized and facial.finalized
        assert controller.analyzers == []

        # A new session can start right away
        controller.capture = live_capture()
        await controller.start_session()
        assert controller.state is SessionState.READY

    @pytest.mark.asyncio
    async def test_reset_while_requesting_devices(self, make_controller):
        capture = GatedCapture(
            audio=ScriptedAudioHandle(make_audio_frames(1.0)),
            video=ScriptedVideoHandle(make_video_frames(1.0)),
        )
        controller = make_controller(capture=capture)
        starting = asyncio.create_task(controller.start_session())
        await asyncio.sleep(0)
        assert controller.state is SessionState.REQUESTING_DEVICES

        controller.reset()
        capture.gate.set()

        with pytest.raises(InvalidStateTransitionError):
            await starting
        assert controller.state is SessionState.IDLE
        assert capture.released == [capture.audio, capture.video]

    @pytest.mark.asyncio
    async def test_rewards_failure_does_not_affect_report(self, make_controller):
        capture = live_capture()
        controller = make_controller(capture=capture, rewards=RecordingRewardsSink(fail=True))
        await controller.start_session()
        await controller.start_recording()
        await drained(capture)

        report = await controller.stop_recording()
        assert report is not None
        assert controller.state is SessionState.REPORTED

    @pytest.mark.asyncio
    async def test_report_failure_moves_to_error(self, make_controller):
        capture = live_capture()
        aggregator = Mock()
        aggregator.build_report.side_effect = ValueError("bad weights")
        controller = make_controller(capture=capture, aggregator=aggregator)
        await controller.start_session()
        await controller.start_recording()
        await drained(capture)

        with pytest.raises(ValueError):
            await controller.stop_recording()

        assert controller.state is SessionState.ERROR
        assert isinstance(controller.error, SessionError)
        assert capture.released == [capture.audio, capture.video]

    @pytest.mark.asyncio
    async def test_deadline_stops_recording(self, make_controller):
        capture = live_capture(1.0)
        controller = make_controller(capture=capture, max_duration=0.2)
        await controller.start_session()
        await controller.start_recording()

        await wait_for_state(controller, SessionState.REPORTED)
        assert controller.report is not None

    @pytest.mark.asyncio
    async def test_manual_stop_cancels_deadline(self, make_controller):
        capture = live_capture()
        controller = make_controller(capture=capture, max_duration=30.0)
        await controller.start_session()
        await controller.start_recording()
        deadline = controller._deadline_task
        await drained(capture)

        await controller.stop_recording()
        await asyncio.sleep(0)
        assert deadline.cancelled()

    @pytest.mark.asyncio
    async def test_state_changes_published(self, make_controller):
        bus = SessionBus()
        states = bus.subscribe(SessionStateChanged)
        capture = live_capture()
        controller = make_controller(capture=capture, bus=bus)

        await controller.start_session()
        await controller.start_recording()
        await drained(capture)
        report = await controller.stop_recording()
        controller.reset()

        messages = states.drain()
        assert [(m.previous, m.current) for m in messages] == [
            (SessionState.IDLE, SessionState.REQUESTING_DEVICES),
            (SessionState.REQUESTING_DEVICES, SessionState.READY),
            (SessionState.READY, SessionState.RECORDING),
            (SessionState.RECORDING, SessionState.ANALYZING),
            (SessionState.ANALYZING, SessionState.REPORTED),
            (SessionState.REPORTED, SessionState.IDLE),
        ]
        assert messages[4].report is report
        assert all(m.session_id == report.session_id for m in messages[:5])

    @pytest.mark.asyncio
    async def test_start_recording_does_not_wait_for_model_load(self, make_controller):
        capture = live_capture()
        transcriber = ScriptedTranscriptionProvider(load_delay=0.5)
        controller = make_controller(capture=capture, transcriber=transcriber)
        await controller.start_session()

        started = time.monotonic()
        await controller.start_recording()
        assert time.monotonic() - started < 0.25
        assert controller.state is SessionState.RECORDING

        await drained(capture)
        report = await controller.stop_recording()
        assert transcriber.started and transcriber.stopped
        assert report.voice.details["transcription_available"] is True
