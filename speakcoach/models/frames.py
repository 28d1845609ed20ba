"""Data models for audio frames, video frames and transcript events"""

from dataclasses import dataclass, field
from typing import Dict
import numpy as np


@dataclass
class AudioFrame:
    """Represents a single chunk of microphone audio

    Attributes:
        samples: Mono PCM audio samples as numpy array
        sample_rate: Sample rate in Hz (e.g., 16000)
        timestamp: Seconds since the track started
        duration: Frame duration in seconds
    """
    samples: np.ndarray  # PCM audio samples
    sample_rate: int     # e.g., 16000 Hz
    timestamp: float     # seconds since track start
    duration: float      # frame duration in seconds

    def __post_init__(self):
        """Validate audio frame data integrity.

        Raises:
            AssertionError: If any validation check fails
        """
        assert self.sample_rate > 0, "Sample rate must be positive"
        assert self.timestamp >= 0, "Timestamp must be non-negative"
        assert self.duration > 0, "Duration must be positive"
        assert isinstance(self.samples, np.ndarray), "Samples must be numpy array"


@dataclass
class VideoFrame:
    """Represents a single camera frame

    Attributes:
        image: RGB image as numpy array (H, W, 3)
        timestamp: Seconds since the track started
        frame_number: Sequential frame number
    """
    image: np.ndarray    # RGB image (H, W, 3)
    timestamp: float     # seconds since track start
    frame_number: int

    def __post_init__(self):
        """Validate video frame data integrity.

        Raises:
            AssertionError: If any validation check fails
        """
        assert self.timestamp >= 0, "Timestamp must be non-negative"
        assert self.frame_number >= 0, "Frame number must be non-negative"
        assert isinstance(self.image, np.ndarray), "Image must be numpy array"
        assert len(self.image.shape) == 3, "Image must be 3D array (H, W, C)"
        assert self.image.shape[2] == 3, "Image must have 3 channels (RGB)"


@dataclass(frozen=True)
class TranscriptEvent:
    """One recognition result from a transcription provider

    Attributes:
        text: Recognized text
        is_final: Whether the utterance is finalized (interim results are ignored)
        timestamp: Seconds since the audio track started
        signals: Per-utterance quality signals in [0, 100], any of
                 "clarity", "enthusiasm", "confidence"
    """
    text: str
    is_final: bool
    timestamp: float
    signals: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        assert self.timestamp >= 0, "Timestamp must be non-negative"
        for name, value in self.signals.items():
            assert 0.0 <= value <= 100.0, f"Signal {name} must be in [0, 100]"
