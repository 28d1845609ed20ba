"""Unit tests for VideoSignalAnalyzer"""

import asyncio
import sys
import threading
from unittest.mock import patch

import pytest

from fakes import ConstantAnalysisProvider, ScriptedVideoHandle, make_video_frames
from speakcoach.analysis.facial import VideoSignalAnalyzer, dominant_emotion
from speakcoach.analysis.providers import SignalAnalysisProvider
from speakcoach.models.enums import MetricSource


async def wait_until(event: threading.Event, timeout: float = 5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not event.is_set():
        if loop.time() > deadline:
            raise TimeoutError("event never set")
        await asyncio.sleep(0.005)


async def run_to_end(analyzer):
    analyzer.start()
    await asyncio.wait_for(analyzer.task, timeout=10.0)
    return analyzer.finalize()


class TestDominantEmotion:

    def test_highest_score_wins(self):
        assert dominant_emotion({"anger": 0.7, "joy": 0.2}) == "anger"

    @pytest.mark.parametrize("emotions,expected", [
        ({"joy": 0.5, "surprise": 0.5}, "joy"),
        ({"sadness": 0.3, "neutral": 0.3}, "neutral"),
        ({"fear": 0.2, "anger": 0.2, "disgust": 0.2}, "anger"),
        ({"disgust": 0.4, "surprise": 0.4}, "surprise"),
    ])
    def test_ties_follow_priority(self, emotions, expected):
        assert dominant_emotion(emotions) == expected


class TestVideoSignalAnalyzer:
    """Test suite for VideoSignalAnalyzer"""

    @pytest.mark.asyncio
    async def test_report_from_constant_features(self, make_context):
        video = ScriptedVideoHandle(make_video_frames(2.0), hold_open=False)
        analyzer = VideoSignalAnalyzer(make_context(video=video))
        report = await run_to_end(analyzer)

        assert report.source is MetricSource.VIDEO
        assert report.snapshot_count == 60
        assert report.metrics["eye_contact"] == 80.0
        assert report.metrics["head_movement"] == 10.0
        assert report.overall_score == 82
        assert report.suggestions == []
        assert "Good eye contact" in report.strengths
        assert "Natural and authentic expressions" in report.strengths
        assert report.reduced_confidence is False

        assert report.details["dominant_emotion"] == "joy"
        assert report.details["emotions"]["joy"] == pytest.approx(0.6)
        assert report.details["emotions"]["disgust"] == 0.0
        assert len(report.details["emotion_timeline"]) == 60
        assert report.details["emotion_timeline"][0] == {"timestamp": 0.0, "emotion": "joy", "intensity": 0.6}

    @pytest.mark.asyncio
    async def test_frame_rate_limit(self, make_context, provider):
        """Test frames faster than the target rate are skipped, the first always processed"""
        video = ScriptedVideoHandle(make_video_frames(1.0, fps=120), hold_open=False)
        analyzer = VideoSignalAnalyzer(make_context(video=video))
        await run_to_end(analyzer)

        assert analyzer.frames_sampled == 60
        assert analyzer.frames_skipped == 60
        assert provider.video_calls == 60

    @pytest.mark.asyncio
    async def test_metrics_are_clamped(self, make_context):
        analysis = ConstantAnalysisProvider(metrics={
            "eye_contact": 150.0,
            "blink_rate": 90.0,
            "head_movement": -5.0,
            "naturalness": 50.0,
        })
        video = ScriptedVideoHandle(make_video_frames(0.5), hold_open=False)
        report = await run_to_end(VideoSignalAnalyzer(make_context(video=video, analysis=analysis)))

        assert report.metrics["eye_contact"] == 100.0
        assert report.metrics["blink_rate"] == 60.0
        assert report.metrics["head_movement"] == 0.0
        assert "engagement" in report.omitted_metrics
        assert report.reduced_confidence is True

    @pytest.mark.asyncio
    async def test_timeline_keeps_last_thirty_seconds(self, make_context):
        video = ScriptedVideoHandle(make_video_frames(40.0, fps=5), hold_open=False)
        analyzer = VideoSignalAnalyzer(make_context(video=video))
        report = await run_to_end(analyzer)

        timeline = report.details["emotion_timeline"]
        newest = timeline[-1]["timestamp"]
        assert newest == pytest.approx(39.8)
        assert all(newest - 30.0 <= e["timestamp"] for e in timeline)
        # Session means still cover every sampled frame
        assert report.snapshot_count == 200

    @pytest.mark.asyncio
    async def test_frames_without_face(self, make_context):
        analysis = ConstantAnalysisProvider(face_detected=False)
        video = ScriptedVideoHandle(make_video_frames(0.5), hold_open=False)
        analyzer = VideoSignalAnalyzer(make_context(video=video, analysis=analysis))
        report = await run_to_end(analyzer)

        assert analyzer.frames_without_face == 15
        assert report.metrics == {}
        assert report.overall_score is None
        assert report.reduced_confidence is True
        assert report.details["dominant_emotion"] is None

    @pytest.mark.asyncio
    async def test_model_load_failure_soft_stops(self, make_context):
        video = ScriptedVideoHandle(make_video_frames(1.0))
        analyzer = VideoSignalAnalyzer(make_context(video=video, analysis=SignalAnalysisProvider()))

        with patch.dict(sys.modules, {"mediapipe": None}):
            report = await run_to_end(analyzer)

        assert analyzer.track_lost is True
        assert analyzer.frames_sampled == 1
        assert report.overall_score is None
        assert report.snapshot_count == 0

    @pytest.mark.asyncio
    async def test_track_loss_keeps_data_up_to_loss(self, make_context):
        video = ScriptedVideoHandle(make_video_frames(2.0), fail_at=30)
        analyzer = VideoSignalAnalyzer(make_context(video=video))
        report = await run_to_end(analyzer)

        assert analyzer.track_lost is True
        assert analyzer.ticks == 30
        assert report.last_timestamp == pytest.approx(29 / 30, abs=1e-6)

    @pytest.mark.asyncio
    async def test_in_flight_tick_completes_on_request_stop(self, make_context):
        gate = threading.Event()
        analysis = ConstantAnalysisProvider(gate=gate)
        video = ScriptedVideoHandle(make_video_frames(1.0))
        analyzer = VideoSignalAnalyzer(make_context(video=video, analysis=analysis))
        analyzer.start()
        try:
            await wait_until(analysis.entered)
            analyzer.request_stop()
            assert not analyzer.task.done()
        finally:
            gate.set()

        await asyncio.wait_for(analyzer.task, timeout=5.0)
        assert analyzer.ticks == 1
        assert len(analyzer.timeline) == 1

    @pytest.mark.asyncio
    async def test_tick_finishing_after_cancel_is_discarded(self, make_context):
        gate = threading.Event()
        analysis = ConstantAnalysisProvider(gate=gate)
        video = ScriptedVideoHandle(make_video_frames(1.0))
        analyzer = VideoSignalAnalyzer(make_context(video=video, analysis=analysis))
        analyzer.start()
        try:
            await wait_until(analysis.entered)
            analyzer.cancel()
        finally:
            gate.set()

        await asyncio.wait_for(analyzer.task, timeout=5.0)
        await asyncio.sleep(0.05)
        assert analyzer.ticks == 0
        assert len(analyzer.window) == 0
        assert len(analyzer.timeline) == 0
        assert analyzer.finalize().snapshot_count == 0
