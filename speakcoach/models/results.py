"""Data models for snapshots, sub-reports and session reports"""

from dataclasses import dataclass, field, asdict
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from speakcoach.models.enums import MetricSource, EMOTION_PRIORITY


@dataclass(frozen=True)
class MetricSnapshot:
    """One timestamped measurement from one sensor source

    Attributes:
        timestamp: Seconds since the source's track started (monotonic, source-local)
        source: Sensor the values were sampled from
        values: Metric name to value; read-only once created
    """
    timestamp: float
    source: MetricSource
    values: Mapping[str, float]

    def __post_init__(self):
        assert self.timestamp >= 0, "Timestamp must be non-negative"
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))


@dataclass(frozen=True)
class EmotionTimelineEntry:
    """Dominant emotion of one video frame

    Attributes:
        timestamp: Seconds since the video track started
        emotion: One of the seven emotion labels
        intensity: Score of the dominant emotion [0, 1]
    """
    timestamp: float
    emotion: str
    intensity: float

    def __post_init__(self):
        assert self.emotion in EMOTION_PRIORITY, f"Unknown emotion label: {self.emotion}"
        assert 0.0 <= self.intensity <= 1.0, "Intensity must be in [0, 1]"


@dataclass
class SubReport:
    """Finalized per-source score and feedback summary

    Attributes:
        source: AUDIO for the voice report, VIDEO for the facial report
        overall_score: Weighted score [0, 100], None when nothing scorable was measured
        metrics: Named sub-scores and measurements
        suggestions: Actionable suggestions, one per category
        strengths: Strengths, one per category
        improvements: Improvement areas, one per category
        reduced_confidence: True when the score rests on degraded inputs
        omitted_metrics: Metrics that could not be measured (never defaulted)
        snapshot_count: Number of snapshots the report was built from
        first_timestamp: Timestamp of the first snapshot used
        last_timestamp: Timestamp of the last snapshot used
        details: Non-numeric extras (transcript, filler words, emotions)
    """
    source: MetricSource
    overall_score: Optional[int]
    metrics: Dict[str, float]
    suggestions: List[str] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    reduced_confidence: bool = False
    omitted_metrics: Tuple[str, ...] = ()
    snapshot_count: int = 0
    first_timestamp: Optional[float] = None
    last_timestamp: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate sub-report"""
        assert self.overall_score is None or 0 <= self.overall_score <= 100, \
            "Overall score must be in [0, 100]"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        data["omitted_metrics"] = list(self.omitted_metrics)
        return data


@dataclass(frozen=True)
class CombinedScores:
    """Scores combining the voice and facial sub-reports, each in [0, 100]

    A score is None when neither sub-report measured anything it draws on.
    """
    overall_score: Optional[int]
    confidence: Optional[int]
    engagement: Optional[int]
    naturalness: Optional[int]
    effectiveness: Optional[int]

    def __post_init__(self):
        for name, value in asdict(self).items():
            assert value is None or 0 <= value <= 100, f"{name} must be in [0, 100]"


@dataclass
class SessionReport:
    """Combined, final output of one practice session

    Attributes:
        session_id: Session the report belongs to
        voice: Voice sub-report
        facial: Facial sub-report
        combined: Combined scores
        recommendations: Voice then facial suggestions
        strengths: Voice then facial strengths
        improvements: Voice then facial improvements
        partial: True if an analyzer lost its track or missed the join timeout
        partial_reasons: Why the report is partial, e.g. "DeviceUnavailable:video"
    """
    session_id: str
    voice: SubReport
    facial: SubReport
    combined: CombinedScores
    recommendations: List[str] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    partial: bool = False
    partial_reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "voice": self.voice.to_dict(),
            "facial": self.facial.to_dict(),
            "combined": asdict(self.combined),
            "recommendations": list(self.recommendations),
            "strengths": list(self.strengths),
            "improvements": list(self.improvements),
            "partial": self.partial,
            "partial_reasons": list(self.partial_reasons),
        }


@dataclass(frozen=True)
class Rewards:
    """Experience points and achievements earned by a report"""
    experience_points: int
    achievements: Tuple[str, ...] = ()
