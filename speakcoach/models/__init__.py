"""Data models, errors and interfaces"""

from speakcoach.models.frames import AudioFrame, VideoFrame, TranscriptEvent
from speakcoach.models.features import AudioSample, VideoSample, FaceLandmarks, FACIAL_METRICS
from speakcoach.models.results import (
    MetricSnapshot,
    EmotionTimelineEntry,
    SubReport,
    CombinedScores,
    SessionReport,
    Rewards,
)
from speakcoach.models.enums import SessionState, MetricSource, FeedbackKind, EMOTION_PRIORITY
from speakcoach.models.errors import (
    SessionError,
    DeviceError,
    DevicePermissionDeniedError,
    DeviceUnavailableError,
    TranscriptionUnavailableError,
    AnalysisJoinTimeoutError,
    InvalidStateTransitionError,
)
from speakcoach.models.interfaces import (
    Clock,
    MonotonicClock,
    StreamHandle,
    AudioHandle,
    VideoHandle,
    CaptureProvider,
    TranscriptionProvider,
    AnalysisProvider,
    RewardsSink,
)

__all__ = [
    # Frames
    "AudioFrame",
    "VideoFrame",
    "TranscriptEvent",
    # Features
    "AudioSample",
    "VideoSample",
    "FaceLandmarks",
    "FACIAL_METRICS",
    # Results
    "MetricSnapshot",
    "EmotionTimelineEntry",
    "SubReport",
    "CombinedScores",
    "SessionReport",
    "Rewards",
    # Enums
    "SessionState",
    "MetricSource",
    "FeedbackKind",
    "EMOTION_PRIORITY",
    # Errors
    "SessionError",
    "DeviceError",
    "DevicePermissionDeniedError",
    "DeviceUnavailableError",
    "TranscriptionUnavailableError",
    "AnalysisJoinTimeoutError",
    "InvalidStateTransitionError",
    # Interfaces
    "Clock",
    "MonotonicClock",
    "StreamHandle",
    "AudioHandle",
    "VideoHandle",
    "CaptureProvider",
    "TranscriptionProvider",
    "AnalysisProvider",
    "RewardsSink",
]
