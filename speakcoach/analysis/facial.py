"""Facial analysis

Samples camera frames at a bounded rate, offloading the per-frame inference
to a worker thread, and keeps running means of the facial metrics plus a
rolling timeline of the dominant emotion.
"""

import asyncio
import logging
from typing import Dict, Mapping, Optional

from speakcoach.analysis.base import SignalAnalyzer
from speakcoach.analysis.window import RollingWindow
from speakcoach.config.config_loader import config
from speakcoach.models.enums import EMOTION_PRIORITY, MetricSource
from speakcoach.models.features import FACIAL_METRICS
from speakcoach.models.frames import VideoFrame
from speakcoach.models.interfaces import VideoHandle
from speakcoach.models.results import EmotionTimelineEntry, MetricSnapshot, SubReport
from speakcoach.scoring.aggregator import clamp, round_half_up, weighted_score
from speakcoach.scoring.feedback import facial_feedback
from speakcoach.session.context import SessionContext


logger = logging.getLogger(__name__)


def dominant_emotion(emotions: Mapping[str, float]) -> str:
    """Label with the highest score.

    Ties go to the label listed first in EMOTION_PRIORITY
    (joy > surprise > neutral > sadness > anger > fear > disgust).
    """
    ranked = {label: index for index, label in enumerate(EMOTION_PRIORITY)}
    return max(EMOTION_PRIORITY, key=lambda label: (emotions.get(label, 0.0), -ranked[label]))


class VideoSignalAnalyzer(SignalAnalyzer):
    """Facial metrics for one session

    Attributes:
        timeline: Dominant emotion per sampled frame over the last
            ``video.timeline_horizon`` seconds
        frames_sampled: Frames handed to the analysis provider
        frames_skipped: Frames dropped by the frame-rate limit
        frames_without_face: Sampled frames with no detected face
    """

    source = MetricSource.VIDEO

    def __init__(self, context: SessionContext, horizon: Optional[float] = None):
        timeline_horizon = config.get('video.timeline_horizon', 30.0)
        super().__init__(context, horizon or timeline_horizon)
        self.provider = context.analysis_provider
        self.timeline: RollingWindow[EmotionTimelineEntry] = RollingWindow(timeline_horizon)

        target_fps = config.get('video.target_fps', 60)
        self.min_interval = 1.0 / target_fps
        self.blink_range = tuple(config.get('video.blink_rate_range', [0.0, 60.0]))
        self.weights = config.get('scoring.facial_weights', {
            "eye_contact": 0.2,
            "engagement": 0.2,
            "confidence": 0.2,
            "naturalness": 0.2,
            "head_movement_penalty": 0.2,
        })

        self.frames_sampled = 0
        self.frames_skipped = 0
        self.frames_without_face = 0
        self._last_sampled_ts: Optional[float] = None
        self._metric_sums: Dict[str, float] = {}
        self._metric_counts: Dict[str, int] = {}
        self._emotion_sums: Dict[str, float] = {label: 0.0 for label in EMOTION_PRIORITY}
        self._emotion_frames = 0

    @property
    def handle(self) -> VideoHandle:
        return self.context.video_handle

    def _clamp_metric(self, name: str, value: float) -> float:
        if name == "blink_rate":
            low, high = self.blink_range
            return clamp(float(value), low, high)
        return clamp(float(value))

    async def _tick(self, frame: VideoFrame) -> None:
        if (self._last_sampled_ts is not None
                and frame.timestamp - self._last_sampled_ts < self.min_interval):
            self.frames_skipped += 1
            return
        self._last_sampled_ts = frame.timestamp
        self.frames_sampled += 1

        # Inference runs off the event loop
        sample = await asyncio.to_thread(self.provider.sample_video_frame, frame)

        if not sample.face_detected:
            self.frames_without_face += 1
            self._record(MetricSnapshot(frame.timestamp, self.source, {"face_detected": 0.0}))
            return

        values = {
            name: self._clamp_metric(name, value)
            for name, value in sample.metrics.items()
            if name in FACIAL_METRICS
        }
        emotion = dominant_emotion(sample.emotions)
        intensity = float(sample.emotions.get(emotion, 0.0))

        snapshot = MetricSnapshot(frame.timestamp, self.source, dict(values, face_detected=1.0))
        if not self._record(snapshot):
            return

        for name, value in values.items():
            self._metric_sums[name] = self._metric_sums.get(name, 0.0) + value
            self._metric_counts[name] = self._metric_counts.get(name, 0) + 1
        for label in EMOTION_PRIORITY:
            self._emotion_sums[label] += float(sample.emotions.get(label, 0.0))
        self._emotion_frames += 1

        self.timeline.push(EmotionTimelineEntry(frame.timestamp, emotion, intensity))

    def freeze(self) -> None:
        super().freeze()
        self.timeline.freeze()

    def mean_emotions(self) -> Dict[str, float]:
        if not self._emotion_frames:
            return {}
        return {
            label: round(total / self._emotion_frames, 4)
            for label, total in self._emotion_sums.items()
        }

    def _build_report(self) -> SubReport:
        metrics = {
            name: round(self._metric_sums[name] / self._metric_counts[name], 2)
            for name in FACIAL_METRICS
            if self._metric_counts.get(name)
        }
        omitted = tuple(name for name in FACIAL_METRICS if name not in metrics)

        components = {
            "eye_contact": metrics.get("eye_contact"),
            "engagement": metrics.get("engagement"),
            "confidence": metrics.get("confidence"),
            "naturalness": metrics.get("naturalness"),
            "head_movement_penalty": None,
        }
        if "head_movement" in metrics:
            components["head_movement_penalty"] = clamp(100.0 - 2.0 * metrics["head_movement"])

        score = weighted_score(components, self.weights)
        feedback = facial_feedback().evaluate(metrics)
        emotions = self.mean_emotions()

        return SubReport(
            source=self.source,
            overall_score=round_half_up(score) if score is not None else None,
            metrics=metrics,
            suggestions=feedback.suggestions,
            strengths=feedback.strengths,
            improvements=feedback.improvements,
            reduced_confidence=bool(omitted),
            omitted_metrics=omitted,
            snapshot_count=self.ticks,
            first_timestamp=self.first_timestamp,
            last_timestamp=self.last_timestamp,
            details={
                "emotions": emotions,
                "dominant_emotion": dominant_emotion(emotions) if emotions else None,
                "emotion_timeline": [
                    {"timestamp": e.timestamp, "emotion": e.emotion, "intensity": e.intensity}
                    for e in self.timeline.snapshot()
                ],
                "frames_sampled": self.frames_sampled,
                "frames_skipped": self.frames_skipped,
                "frames_without_face": self.frames_without_face,
            },
        )
