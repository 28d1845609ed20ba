"""Scoring, feedback and rewards"""

from speakcoach.scoring.aggregator import MetricAggregator, combine, compute_rewards, weighted_score
from speakcoach.scoring.feedback import FeedbackGenerator, MetricRule, Band, voice_feedback, facial_feedback

__all__ = [
    "MetricAggregator",
    "combine",
    "compute_rewards",
    "weighted_score",
    "FeedbackGenerator",
    "MetricRule",
    "Band",
    "voice_feedback",
    "facial_feedback",
]
