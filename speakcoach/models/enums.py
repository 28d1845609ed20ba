"""Enumerations for session states, metric sources and feedback kinds"""

from enum import Enum


class SessionState(Enum):
    """Lifecycle states of a practice session"""
    IDLE = "idle"
    REQUESTING_DEVICES = "requesting_devices"
    READY = "ready"
    RECORDING = "recording"
    ANALYZING = "analyzing"
    REPORTED = "reported"
    ERROR = "error"


class MetricSource(Enum):
    """Sensor a snapshot was sampled from"""
    AUDIO = "audio"
    VIDEO = "video"


class FeedbackKind(Enum):
    """Classification a feedback band assigns to a metric value"""
    STRENGTH = "strength"
    IMPROVEMENT = "improvement"
    NONE = "none"


# Fixed emotion label set, highest tie-break priority first
EMOTION_PRIORITY = ("joy", "surprise", "neutral", "sadness", "anger", "fear", "disgust")
