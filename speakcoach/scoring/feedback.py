"""Feedback Generator

Banded threshold rule engine. Every monitored metric has a table of bands
covering its whole domain; a metric value falls in exactly one band, and the
band decides whether the value is reported as a strength, as a suggestion plus
improvement, or not at all.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from speakcoach.models.enums import FeedbackKind


logger = logging.getLogger(__name__)

PERCENT = (0.0, 100.0)
UNBOUNDED = (0.0, math.inf)


def above(threshold: float) -> float:
    """Smallest float strictly greater than ``threshold``.

    Bands are half-open ``[lower, upper)``, so a band for "greater than 85"
    starts at ``above(85)``.
    """
    return math.nextafter(threshold, math.inf)


@dataclass(frozen=True)
class Band:
    """Half-open interval ``[lower, upper)`` of a metric's domain"""
    lower: float
    upper: float
    kind: FeedbackKind
    strength: str = ""
    suggestion: str = ""
    improvement: str = ""

    def __post_init__(self):
        assert self.lower < self.upper, f"Empty band [{self.lower}, {self.upper})"
        if self.kind is FeedbackKind.STRENGTH:
            assert self.strength, "Strength band needs strength text"
        if self.kind is FeedbackKind.IMPROVEMENT:
            assert self.suggestion and self.improvement, "Improvement band needs suggestion and improvement text"


@dataclass(frozen=True)
class FeedbackItem:
    """Classification of one metric value"""
    key: str
    metric: str
    value: float
    kind: FeedbackKind
    strength: str = ""
    suggestion: str = ""
    improvement: str = ""


class MetricRule:
    """Band table for one metric under one category key.

    Raises:
        ValueError: If bands leave a gap, overlap, or do not cover the domain
    """

    def __init__(self, key: str, metric: str, bands: Sequence[Band],
                 domain: Tuple[float, float] = PERCENT):
        self.key = key
        self.metric = metric
        self.domain = domain
        self.bands = tuple(sorted(bands, key=lambda b: b.lower))
        self._validate()

    def _validate(self) -> None:
        low, high = self.domain
        if not self.bands:
            raise ValueError(f"Rule {self.key} has no bands")
        if self.bands[0].lower != low:
            raise ValueError(f"Rule {self.key} does not start at domain lower bound {low}")
        if self.bands[-1].upper != high:
            raise ValueError(f"Rule {self.key} does not end at domain upper bound {high}")
        for prev, nxt in zip(self.bands, self.bands[1:]):
            if prev.upper < nxt.lower:
                raise ValueError(f"Rule {self.key} has a gap between {prev.upper} and {nxt.lower}")
            if prev.upper > nxt.lower:
                raise ValueError(f"Rule {self.key} has overlapping bands at {nxt.lower}")

    def classify(self, value: float) -> Band:
        """Return the single band containing ``value`` (clamped to the domain)"""
        low, high = self.domain
        value = min(max(value, low), high)
        for band in self.bands:
            if band.lower <= value < band.upper:
                return band
        # Only the domain's upper bound falls through the half-open bands
        return self.bands[-1]


@dataclass
class Feedback:
    """Classified feedback for one sub-report"""
    items: List[FeedbackItem] = field(default_factory=list)

    @property
    def strengths(self) -> List[str]:
        return [i.strength for i in self.items if i.kind is FeedbackKind.STRENGTH]

    @property
    def suggestions(self) -> List[str]:
        return [i.suggestion for i in self.items if i.kind is FeedbackKind.IMPROVEMENT]

    @property
    def improvements(self) -> List[str]:
        return [i.improvement for i in self.items if i.kind is FeedbackKind.IMPROVEMENT]

    def keys(self, kind: FeedbackKind) -> List[str]:
        return [i.key for i in self.items if i.kind is kind]


class FeedbackGenerator:
    """Turns metric values into strengths, suggestions and improvements.

    Output carries at most one entry per category key, so a report never holds
    two suggestions for the same metric. Metrics missing from the input are
    skipped rather than classified from a default.
    """

    def __init__(self, rules: Iterable[MetricRule]):
        self.rules = list(rules)

    def evaluate(self, metrics: Dict[str, float]) -> Feedback:
        feedback = Feedback()
        seen = set()
        for rule in self.rules:
            if rule.key in seen:
                logger.debug(f"Skipping duplicate feedback category {rule.key}")
                continue
            value = metrics.get(rule.metric)
            if value is None:
                continue
            band = rule.classify(float(value))
            if band.kind is FeedbackKind.NONE:
                continue
            seen.add(rule.key)
            feedback.items.append(FeedbackItem(
                key=rule.key,
                metric=rule.metric,
                value=float(value),
                kind=band.kind,
                strength=band.strength,
                suggestion=band.suggestion,
                improvement=band.improvement,
            ))
        return feedback


def _strength(lower: float, upper: float, text: str) -> Band:
    return Band(lower, upper, FeedbackKind.STRENGTH, strength=text)


def _improve(lower: float, upper: float, suggestion: str, improvement: str) -> Band:
    return Band(lower, upper, FeedbackKind.IMPROVEMENT, suggestion=suggestion, improvement=improvement)


VOICE_RULES = (
    MetricRule("voice.pace", "words_per_minute", [
        _improve(0.0, 100.0,
                 "Try speaking a bit faster to maintain audience engagement",
                 "Pace - Consider increasing your speaking speed"),
        _strength(100.0, above(180.0), "Excellent speaking pace"),
        _improve(above(180.0), math.inf,
                 "Slow down slightly to improve clarity and comprehension",
                 "Pace - Consider slowing down for better clarity"),
    ], domain=UNBOUNDED),
    MetricRule("voice.filler_words", "filler_word_count", [
        _strength(0.0, above(3.0), "Good control of filler words"),
        _improve(above(3.0), math.inf,
                 'Practice reducing filler words like "um" and "uh"',
                 "Filler words - Practice pausing instead of using filler words"),
    ], domain=UNBOUNDED),
    MetricRule("voice.pauses", "pause_frequency", [
        _improve(0.0, 2.0,
                 "Add more strategic pauses for emphasis and breathing",
                 "Pauses - Use pauses to emphasize key points"),
        _strength(2.0, math.inf, "Good use of pauses"),
    ], domain=UNBOUNDED),
    MetricRule("voice.volume", "volume_level", [
        _improve(0.0, 50.0,
                 "Project your voice more to ensure everyone can hear you",
                 "Volume - Practice projecting your voice"),
        _strength(50.0, 100.0, "Good volume projection"),
    ]),
    MetricRule("voice.confidence", "confidence", [
        _improve(0.0, 70.0,
                 "Work on building confidence through practice and preparation",
                 "Confidence - Practice more to build speaking confidence"),
        _strength(70.0, 100.0, "Confident delivery"),
    ]),
)


FACIAL_RULES = (
    MetricRule("facial.eye_contact", "eye_contact", [
        _improve(0.0, 60.0,
                 "Practice maintaining eye contact with your audience",
                 "Eye Contact - Look directly at your audience more often"),
        _strength(60.0, above(85.0), "Good eye contact"),
        _strength(above(85.0), 100.0, "Excellent eye contact"),
    ]),
    MetricRule("facial.smile", "smile_frequency", [
        _improve(0.0, 20.0,
                 "Try smiling more to appear more approachable and engaging",
                 "Facial Expression - Use more smiles to connect with your audience"),
        _strength(20.0, above(40.0), "Good use of facial expressions"),
        _improve(above(40.0), 100.0,
                 "Balance your expressions - too much smiling can seem forced",
                 "Expression Balance - Vary your facial expressions naturally"),
    ]),
    MetricRule("facial.expression_variety", "expression_variety", [
        _improve(0.0, 50.0,
                 "Vary your facial expressions to keep your audience engaged",
                 "Expression Variety - Use different facial expressions to emphasize points"),
        _strength(50.0, 100.0, "Good variety in facial expressions"),
    ]),
    MetricRule("facial.engagement", "engagement", [
        _improve(0.0, 70.0,
                 "Work on appearing more engaged and enthusiastic",
                 "Engagement - Show more enthusiasm and energy"),
        _strength(70.0, 100.0, "High engagement level"),
    ]),
    MetricRule("facial.confidence", "confidence", [
        _improve(0.0, 70.0,
                 "Practice confident body language and facial expressions",
                 "Confidence - Work on projecting confidence through your expressions"),
        _strength(70.0, 100.0, "Confident facial expressions"),
    ]),
    MetricRule("facial.naturalness", "naturalness", [
        _improve(0.0, 80.0,
                 "Relax and be more natural in your expressions",
                 "Naturalness - Practice being more relaxed and authentic"),
        _strength(80.0, 100.0, "Natural and authentic expressions"),
    ]),
)


def voice_feedback() -> FeedbackGenerator:
    return FeedbackGenerator(VOICE_RULES)


def facial_feedback() -> FeedbackGenerator:
    return FeedbackGenerator(FACIAL_RULES)


def merge_unique(*lists: Optional[List[str]]) -> List[str]:
    """Concatenate lists in order, dropping repeated strings"""
    merged: List[str] = []
    for entries in lists:
        for entry in entries or []:
            if entry not in merged:
                merged.append(entry)
    return merged
