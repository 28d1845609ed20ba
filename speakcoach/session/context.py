"""Session-scoped context

Everything that lives for exactly one practice session: the session record,
its device handles, and the collaborators its analyzers share. A context is
created by ``SessionController.start_session`` and dropped on reset, so no
session data outlives its session.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from speakcoach.models.enums import SessionState
from speakcoach.models.errors import SessionError
from speakcoach.models.interfaces import (
    AnalysisProvider,
    AudioHandle,
    Clock,
    TranscriptionProvider,
    VideoHandle,
)
from speakcoach.session.bus import SessionBus, SnapshotProduced
from speakcoach.models.results import MetricSnapshot


logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One bounded practice recording

    Attributes:
        session_id: Unique identifier
        state: Current lifecycle state
        started_at: Clock time the session was created
        stopped_at: Clock time recording stopped
        error: Error that moved the session to ERROR
    """
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.IDLE
    started_at: float = 0.0
    stopped_at: Optional[float] = None
    error: Optional[SessionError] = None


class SessionContext:
    """Collaborators and resources scoped to one session

    Attributes:
        session: The session record
        bus: Message bus shared with the controller
        clock: Monotonic time source
        analysis_provider: Perceptual analysis of ticks and frames
        transcription_provider: Speech recognition, may be None
        audio_handle: Microphone track, owned exclusively by this session
        video_handle: Camera track, owned exclusively by this session
    """

    def __init__(
        self,
        session: Session,
        bus: SessionBus,
        clock: Clock,
        analysis_provider: AnalysisProvider,
        transcription_provider: Optional[TranscriptionProvider] = None,
    ):
        self.session = session
        self.bus = bus
        self.clock = clock
        self.analysis_provider = analysis_provider
        self.transcription_provider = transcription_provider
        self.audio_handle: Optional[AudioHandle] = None
        self.video_handle: Optional[VideoHandle] = None

    @property
    def session_id(self) -> str:
        return self.session.session_id

    def attach(self, audio_handle: AudioHandle, video_handle: VideoHandle) -> None:
        self.audio_handle = audio_handle
        self.video_handle = video_handle

    def detach(self) -> list:
        """Hand back the owned handles and forget them"""
        handles = [h for h in (self.audio_handle, self.video_handle) if h is not None]
        self.audio_handle = None
        self.video_handle = None
        return handles

    def publish_snapshot(self, snapshot: MetricSnapshot) -> None:
        """Best-effort realtime delivery; failures never reach the caller"""
        try:
            self.bus.publish(SnapshotProduced(self.session_id, snapshot))
        except Exception as e:
            logger.warning(f"Snapshot delivery failed: {e}")
