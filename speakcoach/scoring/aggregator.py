"""Metric Aggregator

Combines the voice and facial sub-reports into combined scores and the final
session report, and derives the rewards a report earns.

The scoring functions are pure: they accept only data model inputs and return
data model outputs, so identical sub-reports always yield identical scores.
"""

import logging
import math
from typing import Dict, Iterable, Mapping, Optional

from speakcoach.models.results import CombinedScores, Rewards, SessionReport, SubReport
from speakcoach.scoring.feedback import merge_unique
from speakcoach.config.config_loader import config


logger = logging.getLogger(__name__)

DEFAULT_COMBINED_WEIGHTS = {"voice": 0.5, "facial": 0.5}

SPEAKING_MASTER = "Speaking Master"
CONFIDENCE_KING = "Confidence King"


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    if math.isnan(value):
        return low
    return min(max(value, low), high)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive scores"""
    return int(math.floor(value + 0.5))


def weighted_score(components: Mapping[str, Optional[float]],
                   weights: Mapping[str, float]) -> Optional[float]:
    """Weighted mean of the components that are present.

    Each component is clamped to [0, 100] before weighting. Missing (None)
    components drop out and the remaining weights are renormalized.

    Returns:
        Score in [0, 100], or None if no weighted component is present
    """
    total = 0.0
    weight_sum = 0.0
    for name, weight in weights.items():
        value = components.get(name)
        if value is None or weight <= 0:
            continue
        total += clamp(float(value)) * weight
        weight_sum += weight
    if weight_sum <= 0:
        return None
    return clamp(total / weight_sum)


def _mean_available(values: Iterable[Optional[float]]) -> Optional[int]:
    present = [clamp(float(v)) for v in values if v is not None]
    if not present:
        return None
    return round_half_up(sum(present) / len(present))


def combine(voice: SubReport, facial: SubReport,
            weights: Optional[Mapping[str, float]] = None) -> CombinedScores:
    """Combine two sub-reports into combined scores.

    Default weights average the two overall scores. A sub-report without an
    overall score drops out and the other weight is renormalized, and a
    sub-score omitted from a degraded report drops out of its mean. Scores
    with nothing to draw on are None rather than defaulted.

    Args:
        voice: Voice sub-report
        facial: Facial sub-report
        weights: Relative weights of the "voice" and "facial" overall scores

    Returns:
        CombinedScores with every present field in [0, 100]
    """
    weights = weights or DEFAULT_COMBINED_WEIGHTS
    overall = weighted_score(
        {"voice": voice.overall_score, "facial": facial.overall_score}, weights
    )

    vm = voice.metrics
    fm = facial.metrics

    return CombinedScores(
        overall_score=round_half_up(overall) if overall is not None else None,
        confidence=_mean_available([vm.get("confidence"), fm.get("confidence")]),
        engagement=_mean_available([vm.get("enthusiasm"), fm.get("engagement")]),
        naturalness=_mean_available([fm.get("naturalness")]),
        effectiveness=_mean_available([vm.get("clarity"), fm.get("eye_contact")]),
    )


def compute_rewards(report: SessionReport,
                    base_points: int = 25,
                    master_threshold: int = 90,
                    confidence_threshold: int = 85) -> Rewards:
    """Experience points and achievements earned by a report.

    Only computes; delivering them to the rewards system is the caller's job.
    A report without an overall score earns only the base points.
    """
    combined = report.combined
    overall = combined.overall_score
    points = base_points + (overall // 10 if overall is not None else 0)

    achievements = []
    if overall is not None and overall >= master_threshold:
        achievements.append(SPEAKING_MASTER)
    if combined.confidence is not None and combined.confidence >= confidence_threshold:
        achievements.append(CONFIDENCE_KING)

    return Rewards(experience_points=points, achievements=tuple(achievements))


class MetricAggregator:
    """Builds session reports using the configured scoring weights"""

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        self.weights = weights or config.get('scoring.combined_weights', DEFAULT_COMBINED_WEIGHTS)
        self.base_points = config.get('rewards.base_points', 25)
        self.master_threshold = config.get('rewards.achievements.speaking_master', 90)
        self.confidence_threshold = config.get('rewards.achievements.confidence_king', 85)

    def combine(self, voice: SubReport, facial: SubReport) -> CombinedScores:
        return combine(voice, facial, self.weights)

    def build_report(self, session_id: str, voice: SubReport, facial: SubReport,
                     partial_reasons: Iterable[str] = ()) -> SessionReport:
        """Merge both sub-reports into the session report.

        Recommendations, strengths and improvements are the voice entries
        followed by the facial entries.
        """
        reasons = tuple(partial_reasons)
        combined = self.combine(voice, facial)
        report = SessionReport(
            session_id=session_id,
            voice=voice,
            facial=facial,
            combined=combined,
            recommendations=merge_unique(voice.suggestions, facial.suggestions),
            strengths=merge_unique(voice.strengths, facial.strengths),
            improvements=merge_unique(voice.improvements, facial.improvements),
            partial=bool(reasons),
            partial_reasons=reasons,
        )
        logger.info(f"Session {session_id} scored overall={combined.overall_score}, "
                    f"partial={report.partial}")
        return report

    def compute_rewards(self, report: SessionReport) -> Rewards:
        return compute_rewards(
            report,
            base_points=self.base_points,
            master_threshold=self.master_threshold,
            confidence_threshold=self.confidence_threshold,
        )
