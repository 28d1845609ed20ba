"""Data models for per-tick features produced by analysis providers"""

from dataclasses import dataclass, field
from typing import Dict, Optional
import numpy as np

from speakcoach.models.enums import EMOTION_PRIORITY


FACIAL_METRICS = (
    "eye_contact",
    "smile_frequency",
    "expression_variety",
    "engagement",
    "confidence",
    "naturalness",
    "head_movement",
    "blink_rate",
)


@dataclass
class AudioSample:
    """Instantaneous voice features for one audio tick

    Attributes:
        volume: Loudness on a 0-100 scale
        pitch: Pitch proxy in Hz (spectral peak in the voice band), 0 if silent
    """
    volume: float
    pitch: float

    def __post_init__(self):
        assert 0.0 <= self.volume <= 100.0, "Volume must be in [0, 100]"
        assert self.pitch >= 0.0, "Pitch must be non-negative"


@dataclass
class VideoSample:
    """Facial/body features for one video frame

    Attributes:
        metrics: Values for FACIAL_METRICS (missing keys are not sampled)
        emotions: 7-class emotion vector, each value in [0, 1]
        face_detected: Whether a face was found in the frame
    """
    metrics: Dict[str, float]
    emotions: Dict[str, float] = field(default_factory=lambda: {"neutral": 1.0})
    face_detected: bool = True

    def __post_init__(self):
        for emotion, score in self.emotions.items():
            assert emotion in EMOTION_PRIORITY, f"Unknown emotion label: {emotion}"
            assert 0.0 <= score <= 1.0, f"Emotion score for {emotion} must be in [0, 1]"


@dataclass
class FaceLandmarks:
    """Facial landmark points

    Attributes:
        points: (N, 2) array of (x, y) coordinates in pixels
        confidence: Detection confidence score [0, 1]
    """
    points: np.ndarray   # (N, 2) array of (x, y) coordinates
    confidence: float

    def __post_init__(self):
        """Validate landmark data"""
        assert 0.0 <= self.confidence <= 1.0, "Confidence must be in [0, 1]"
        assert isinstance(self.points, np.ndarray), "Points must be numpy array"
        if len(self.points) > 0:
            assert len(self.points.shape) == 2, "Points must be 2D array"
            assert self.points.shape[1] == 2, "Points must have 2 coordinates (x, y)"

    def point(self, index: int) -> Optional[np.ndarray]:
        if index < len(self.points):
            return self.points[index]
        return None
