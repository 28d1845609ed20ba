"""Base interfaces for the providers the engine consumes"""

import time
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional, Tuple

from speakcoach.models.frames import AudioFrame, VideoFrame, TranscriptEvent
from speakcoach.models.features import AudioSample, VideoSample


class Clock(ABC):
    """Monotonic time source"""

    @abstractmethod
    def now(self) -> float:
        pass


class MonotonicClock(Clock):
    """Clock backed by time.monotonic"""

    def now(self) -> float:
        return time.monotonic()


class StreamHandle(ABC):
    """A live capture track owned by exactly one session"""

    track = "unknown"

    @property
    @abstractmethod
    def is_live(self) -> bool:
        """Whether the track can still deliver frames"""
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class AudioHandle(StreamHandle):
    """Microphone track"""

    track = "audio"

    @abstractmethod
    async def read(self) -> Optional[AudioFrame]:
        """Wait for the next audio frame

        Returns:
            The next frame, or None once the track has ended

        Raises:
            DeviceUnavailableError: If the track is lost
        """
        pass


class VideoHandle(StreamHandle):
    """Camera track"""

    track = "video"

    @abstractmethod
    async def read(self) -> Optional[VideoFrame]:
        """Wait for the next video frame

        Returns:
            The next frame, or None once the track has ended

        Raises:
            DeviceUnavailableError: If the track is lost
        """
        pass


class CaptureProvider(ABC):
    """Acquires and releases the microphone and camera"""

    @abstractmethod
    async def request_streams(self) -> Tuple[AudioHandle, VideoHandle]:
        """Request audio and video handles

        Raises:
            DevicePermissionDeniedError: If access is refused
            DeviceUnavailableError: If a device is missing
        """
        pass

    @abstractmethod
    def release(self, handle: StreamHandle) -> None:
        pass


class TranscriptionProvider(ABC):
    """Streaming speech recognition

    The audio analyzer is the only reader of the audio handle, so it pushes
    frames in with feed() and pulls recognition results out of events().
    """

    @abstractmethod
    def is_available(self) -> bool:
        """Capability check, must be called before start()"""
        pass

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def feed(self, frame: AudioFrame) -> None:
        """Hand one audio frame to the recognizer without blocking"""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[TranscriptEvent]:
        """Lazy sequence of recognition events, restartable after start()"""
        pass

    @abstractmethod
    def stop(self) -> None:
        pass


class AnalysisProvider(ABC):
    """Perceptual analysis of individual audio ticks and video frames"""

    @abstractmethod
    def sample_audio_tick(self, frame: AudioFrame) -> AudioSample:
        pass

    @abstractmethod
    def sample_video_frame(self, frame: VideoFrame) -> VideoSample:
        pass

    def reset(self) -> None:
        """Drop any per-session state (called when a session starts)"""
        pass


class RewardsSink(ABC):
    """External rewards system notified of earned XP and achievements"""

    @abstractmethod
    def on_experience_gained(self, points: int) -> None:
        pass

    @abstractmethod
    def on_achievement_unlocked(self, name: str) -> None:
        pass


__all__ = [
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
