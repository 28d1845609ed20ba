"""Session Controller

Owns the lifecycle of one practice session at a time:

    IDLE -> REQUESTING_DEVICES -> READY -> RECORDING -> ANALYZING -> REPORTED -> IDLE

ERROR is reachable from REQUESTING_DEVICES, READY and RECORDING. REPORTED and
ERROR are left only through ``reset()``. Every transition is published on the
session bus as ``SessionStateChanged``; the transition to REPORTED carries the
report.
"""

import asyncio
import logging
from typing import List, Optional

from speakcoach.analysis.facial import VideoSignalAnalyzer
from speakcoach.analysis.voice import AudioSignalAnalyzer
from speakcoach.config.config_loader import config
from speakcoach.models.enums import SessionState
from speakcoach.models.errors import (
    AnalysisJoinTimeoutError,
    DeviceError,
    DeviceUnavailableError,
    InvalidStateTransitionError,
    SessionError,
)
from speakcoach.models.interfaces import (
    AnalysisProvider,
    CaptureProvider,
    Clock,
    MonotonicClock,
    RewardsSink,
    TranscriptionProvider,
)
from speakcoach.models.results import Rewards, SessionReport
from speakcoach.scoring.aggregator import MetricAggregator
from speakcoach.session.bus import SessionBus, SessionStateChanged
from speakcoach.session.context import Session, SessionContext


logger = logging.getLogger(__name__)


class SessionController:
    """Coordinates capture, both analyzers and report generation

    Attributes:
        capture: Acquires and releases the microphone and camera
        analysis_provider: Per-tick and per-frame analysis
        transcription_provider: Speech recognition, optional
        rewards_sink: Receives earned XP and achievements, optional
        bus: Session message bus
        join_timeout: Seconds to wait for analyzers when recording stops
        max_duration: Recording is stopped automatically after this many
            seconds; 0 disables the deadline
    """

    def __init__(
        self,
        capture: CaptureProvider,
        analysis_provider: AnalysisProvider,
        transcription_provider: Optional[TranscriptionProvider] = None,
        rewards_sink: Optional[RewardsSink] = None,
        clock: Optional[Clock] = None,
        bus: Optional[SessionBus] = None,
        aggregator: Optional[MetricAggregator] = None,
        join_timeout: Optional[float] = None,
        max_duration: Optional[float] = None,
    ):
        self.capture = capture
        self.analysis_provider = analysis_provider
        self.transcription_provider = transcription_provider
        self.rewards_sink = rewards_sink
        self.clock = clock or MonotonicClock()
        self.bus = bus or SessionBus(maxsize=config.get('session.bus_queue_size', 256))
        self.aggregator = aggregator or MetricAggregator()
        self.join_timeout = join_timeout if join_timeout is not None else config.get('session.join_timeout', 5.0)
        if max_duration is None:
            max_duration = config.get('session.max_duration', 0) or 0
        self.max_duration = max_duration

        self._state = SessionState.IDLE
        self._context: Optional[SessionContext] = None
        self._voice: Optional[AudioSignalAnalyzer] = None
        self._facial: Optional[VideoSignalAnalyzer] = None
        self._deadline_task: Optional[asyncio.Task] = None
        self._report: Optional[SessionReport] = None
        self._rewards: Optional[Rewards] = None
        self._error: Optional[SessionError] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._context.session if self._context is not None else None

    @property
    def error(self) -> Optional[SessionError]:
        return self._error

    @property
    def report(self) -> Optional[SessionReport]:
        return self._report

    @property
    def rewards(self) -> Optional[Rewards]:
        return self._rewards

    @property
    def analyzers(self) -> List:
        return [a for a in (self._voice, self._facial) if a is not None]

    def _transition(self, new_state: SessionState,
                    report: Optional[SessionReport] = None,
                    error: Optional[SessionError] = None) -> None:
        previous = self._state
        self._state = new_state
        session_id = ""
        if self._context is not None:
            self._context.session.state = new_state
            session_id = self._context.session_id

        logger.info(f"Session {session_id or '-'}: {previous.value} -> {new_state.value}")
        try:
            self.bus.publish(SessionStateChanged(session_id, previous, new_state, report, error))
        except Exception as e:
            logger.warning(f"Failed to publish state change: {e}")

    def _fail(self, error: SessionError) -> None:
        self._error = error
        if self._context is not None:
            self._context.session.error = error
        logger.error(f"Session failed with {error.kind}: {error}")
        self._transition(SessionState.ERROR, error=error)

    def _release_devices(self) -> None:
        """Release every handle the session owns; one failure never blocks the other"""
        if self._context is None:
            return
        for handle in self._context.detach():
            try:
                self.capture.release(handle)
                logger.info(f"Released {handle.track} device")
            except Exception as e:
                logger.error(f"Failed to release {handle.track} device: {e}", exc_info=True)

    async def start_session(self) -> Session:
        """Create a session and acquire the microphone and camera.

        Raises:
            InvalidStateTransitionError: If not IDLE
            DevicePermissionDeniedError: If device access is refused
            DeviceUnavailableError: If a device is missing
        """
        if self._state is not SessionState.IDLE:
            raise InvalidStateTransitionError("start a session", self._state)

        session = Session(started_at=self.clock.now())
        self.analysis_provider.reset()
        context = SessionContext(
            session, self.bus, self.clock, self.analysis_provider, self.transcription_provider
        )
        self._context = context
        self._report = None
        self._rewards = None
        self._error = None
        self._transition(SessionState.REQUESTING_DEVICES)

        try:
            audio_handle, video_handle = await self.capture.request_streams()
        except DeviceError as e:
            if self._context is context:
                self._release_devices()
                self._fail(e)
            raise

        if self._context is not context:
            # Reset while the devices were being requested
            for handle in (audio_handle, video_handle):
                try:
                    self.capture.release(handle)
                except Exception as e:
                    logger.error(f"Failed to release {handle.track} device: {e}", exc_info=True)
            raise InvalidStateTransitionError("finish starting a session", self._state)

        context.attach(audio_handle, video_handle)
        self._transition(SessionState.READY)
        return session

    async def start_recording(self) -> None:
        """Start both analyzers as independent tasks.

        Raises:
            InvalidStateTransitionError: If not READY
            DeviceUnavailableError: If a handle is no longer live
        """
        if self._state is not SessionState.READY:
            raise InvalidStateTransitionError("start recording", self._state)

        context = self._context
        for handle in (context.audio_handle, context.video_handle):
            if not handle.is_live:
                error = DeviceUnavailableError(f"{handle.track} track is no longer live", track=handle.track)
                self._release_devices()
                self._fail(error)
                raise error

        self._voice = AudioSignalAnalyzer(context)
        self._facial = VideoSignalAnalyzer(context)
        self._voice.start()
        self._facial.start()

        if self.max_duration and self.max_duration > 0:
            self._deadline_task = asyncio.create_task(
                self._deadline(self.max_duration), name="recording_deadline"
            )

        self._transition(SessionState.RECORDING)

    async def _deadline(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if self._state is not SessionState.RECORDING:
            return
        logger.info(f"Recording reached the {seconds}s limit, stopping")
        try:
            await self.stop_recording()
        except Exception as e:
            logger.error(f"Automatic stop failed: {e}", exc_info=True)

    def _cancel_deadline(self) -> None:
        task = self._deadline_task
        self._deadline_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def stop_recording(self) -> Optional[SessionReport]:
        """Stop both analyzers and build the session report.

        Returns:
            The report, or None if the session is already stopping or stopped

        Raises:
            InvalidStateTransitionError: If not RECORDING, ANALYZING or REPORTED
        """
        if self._state in (SessionState.ANALYZING, SessionState.REPORTED):
            logger.debug(f"stop_recording ignored in state {self._state.value}")
            return None
        if self._state is not SessionState.RECORDING:
            raise InvalidStateTransitionError("stop recording", self._state)

        context = self._context
        context.session.stopped_at = self.clock.now()
        self._transition(SessionState.ANALYZING)
        self._cancel_deadline()

        analyzers = [self._voice, self._facial]
        for analyzer in analyzers:
            analyzer.request_stop()

        tasks = {a.task for a in analyzers if a.task is not None}
        pending = set()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.join_timeout)

        if self._context is not context:
            logger.info("Session was reset while analyzers were stopping")
            return None

        reasons = []
        for analyzer in analyzers:
            if analyzer.track_lost:
                reasons.append(f"{DeviceUnavailableError.kind}:{analyzer.source.value}")
            if analyzer.task in pending:
                analyzer.task.cancel()
                timeout = AnalysisJoinTimeoutError(
                    f"{analyzer.name} did not finish within {self.join_timeout}s"
                )
                logger.warning(f"{timeout.kind}: {timeout}")
                reasons.append(f"{timeout.kind}:{analyzer.source.value}")

        try:
            voice = self._voice.finalize()
            facial = self._facial.finalize()
            report = self.aggregator.build_report(context.session_id, voice, facial, reasons)
        except Exception as e:
            logger.error(f"Failed to build session report: {e}", exc_info=True)
            self._release_devices()
            self._fail(e if isinstance(e, SessionError) else SessionError(f"Report generation failed: {e}"))
            raise

        self._report = report
        self._transition(SessionState.REPORTED, report=report)
        self._deliver_rewards(report)
        return report

    def _deliver_rewards(self, report: SessionReport) -> None:
        self._rewards = self.aggregator.compute_rewards(report)
        if self.rewards_sink is None:
            return
        try:
            self.rewards_sink.on_experience_gained(self._rewards.experience_points)
            for achievement in self._rewards.achievements:
                self.rewards_sink.on_achievement_unlocked(achievement)
        except Exception as e:
            logger.warning(f"Rewards delivery failed: {e}")

    def stop_session(self) -> None:
        """Abandon the current session from any state and return to IDLE.

        Analyzer and deadline tasks are cancelled without being awaited, and
        anything they produce afterwards is discarded.
        """
        self._cancel_deadline()
        for analyzer in self.analyzers:
            analyzer.cancel()
        self._release_devices()

        if self._state is not SessionState.IDLE:
            self._transition(SessionState.IDLE)

        self._context = None
        self._voice = None
        self._facial = None
        self._report = None
        self._rewards = None
        self._error = None

    def reset(self) -> None:
        self.stop_session()
