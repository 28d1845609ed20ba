"""Voice analysis

Samples the microphone track on every audio frame (volume and a pitch proxy)
and folds finalized transcription events into word, filler and pause counts.
The analyzer is the only reader of the audio handle; it forwards frames to
the transcription provider and consumes its events in a second coroutine.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from speakcoach.analysis.base import SignalAnalyzer
from speakcoach.config.config_loader import config
from speakcoach.models.enums import MetricSource
from speakcoach.models.errors import TranscriptionUnavailableError
from speakcoach.models.frames import AudioFrame, TranscriptEvent
from speakcoach.models.interfaces import AudioHandle
from speakcoach.models.results import MetricSnapshot, SubReport
from speakcoach.scoring.aggregator import clamp, round_half_up, weighted_score
from speakcoach.scoring.feedback import voice_feedback
from speakcoach.session.context import SessionContext


logger = logging.getLogger(__name__)

DEFAULT_FILLER_WORDS = ("um", "uh", "like", "you know", "so", "well", "actually")

# Metrics that need a working transcription provider
TRANSCRIPT_METRICS = (
    "words_per_minute",
    "pause_frequency",
    "filler_word_count",
    "clarity",
    "enthusiasm",
    "confidence",
)

UTTERANCE_SIGNALS = ("clarity", "enthusiasm", "confidence")


def find_fillers(text: str, filler_words=DEFAULT_FILLER_WORDS) -> List[str]:
    """Filler words occurring in an utterance, each reported once"""
    lowered = text.lower()
    return [filler for filler in filler_words if filler in lowered]


class AudioSignalAnalyzer(SignalAnalyzer):
    """Voice metrics for one session

    Attributes:
        transcription_available: False once transcription is found missing or
            has failed; the report then degrades to volume and pitch only
        word_count: Words in finalized utterances
        filler_words: Every filler occurrence, in order
        pause_count: Gaps between utterances longer than the pause threshold
    """

    source = MetricSource.AUDIO

    def __init__(self, context: SessionContext, horizon: Optional[float] = None):
        super().__init__(context, horizon or config.get('session.max_duration') or 300.0)
        self.provider = context.analysis_provider
        self.transcriber = context.transcription_provider
        self.filler_list = tuple(config.get('audio.filler_words', DEFAULT_FILLER_WORDS))
        self.pause_threshold = config.get('audio.pause_threshold', 2.0)
        self.weights = config.get('scoring.voice_weights', {
            "confidence": 0.2,
            "clarity": 0.2,
            "enthusiasm": 0.2,
            "filler_word_penalty": 0.2,
            "volume_adequacy": 0.2,
        })
        self.drain_timeout = config.get('transcription.drain_timeout', 1.0)

        self.transcription_available = False
        self._transcript_task: Optional[asyncio.Task] = None
        self._transcriber_stopped = False

        self._volume_sum = 0.0
        self._pitch_sum = 0.0
        self._first_frame_ts: Optional[float] = None
        self._last_frame_end: Optional[float] = None

        self.word_count = 0
        self.utterance_count = 0
        self.filler_words: List[str] = []
        self.pause_count = 0
        self.pause_time = 0.0
        self.transcript: List[str] = []
        self._last_utterance_ts: Optional[float] = None
        self._signal_sums: Dict[str, float] = {}
        self._signal_counts: Dict[str, int] = {}

    @property
    def handle(self) -> AudioHandle:
        return self.context.audio_handle

    async def run(self) -> None:
        try:
            await self._start_transcription()
        except asyncio.CancelledError:
            logger.info(f"{self.name} cancelled while starting transcription")
            return
        await super().run()

    async def _start_transcription(self) -> None:
        if self.transcriber is None:
            logger.warning("No transcription provider, voice metrics degrade to volume and pitch")
            return
        try:
            # May load a model on first use
            available = await asyncio.to_thread(self.transcriber.is_available)
            if not available:
                raise TranscriptionUnavailableError("Transcription provider reports unavailable")
            self.transcriber.start()
        except Exception as e:
            logger.warning(f"Transcription unavailable, voice metrics degrade to volume and pitch: {e}")
            return

        self.transcription_available = True
        self._transcript_task = asyncio.create_task(
            self._consume_transcripts(), name="transcript_consumer"
        )

    async def _consume_transcripts(self) -> None:
        try:
            async for event in self.transcriber.events():
                if self._finalized:
                    break
                self.on_transcript(event)
        except asyncio.CancelledError:
            logger.debug("Transcript consumer cancelled")
        except Exception as e:
            self.transcription_available = False
            logger.warning(f"Transcription failed mid-session, degrading voice metrics: {e}")

    async def _tick(self, frame: AudioFrame) -> None:
        sample = self.provider.sample_audio_tick(frame)
        snapshot = MetricSnapshot(
            timestamp=frame.timestamp,
            source=self.source,
            values={"volume": sample.volume, "pitch": sample.pitch},
        )
        if not self._record(snapshot):
            return

        self._volume_sum += sample.volume
        self._pitch_sum += sample.pitch
        if self._first_frame_ts is None:
            self._first_frame_ts = frame.timestamp
        self._last_frame_end = frame.timestamp + frame.duration

        if self.transcription_available:
            try:
                self.transcriber.feed(frame)
            except Exception as e:
                self.transcription_available = False
                logger.warning(f"Transcription feed failed, degrading voice metrics: {e}")

    def on_transcript(self, event: TranscriptEvent) -> None:
        """Fold one transcription event into the running counts"""
        if not event.is_final or self._finalized:
            return

        words = event.text.split()
        self.word_count += len(words)
        self.utterance_count += 1
        if event.text.strip():
            self.transcript.append(event.text.strip())

        fillers = find_fillers(event.text, self.filler_list)
        self.filler_words.extend(fillers)

        reference = self._last_utterance_ts
        if reference is None:
            reference = self._first_frame_ts if self._first_frame_ts is not None else 0.0
        gap = event.timestamp - reference
        if gap > self.pause_threshold:
            self.pause_count += 1
            self.pause_time += gap
        self._last_utterance_ts = event.timestamp

        for name in UTTERANCE_SIGNALS:
            if name in event.signals:
                self._signal_sums[name] = self._signal_sums.get(name, 0.0) + event.signals[name]
                self._signal_counts[name] = self._signal_counts.get(name, 0) + 1

    @property
    def speaking_time(self) -> float:
        if self._first_frame_ts is None or self._last_frame_end is None:
            return 0.0
        return max(self._last_frame_end - self._first_frame_ts, 0.0)

    @property
    def words_per_minute(self) -> float:
        minutes = self.speaking_time / 60.0
        if minutes <= 0:
            return 0.0
        return self.word_count / minutes

    def _stop_transcriber(self) -> None:
        if self._transcript_task is None or self._transcriber_stopped:
            return
        self._transcriber_stopped = True
        try:
            self.transcriber.stop()
        except Exception as e:
            logger.warning(f"Failed to stop transcription: {e}")

    async def _on_loop_exit(self) -> None:
        if self._transcript_task is None:
            return
        self._stop_transcriber()

        # Let already recognized utterances land before the report is built
        done, pending = await asyncio.wait({self._transcript_task}, timeout=self.drain_timeout)
        for task in pending:
            task.cancel()

    def cancel(self) -> None:
        super().cancel()
        self._stop_transcriber()
        if self._transcript_task is not None and not self._transcript_task.done():
            self._transcript_task.cancel()

    def _build_report(self) -> SubReport:
        metrics: Dict[str, float] = {}
        omitted: List[str] = []
        reduced = False

        if self.ticks:
            volume = self._volume_sum / self.ticks
            metrics["volume_level"] = round(volume, 2)
            metrics["average_pitch"] = round(self._pitch_sum / self.ticks, 2)
            metrics["speaking_time"] = round(self.speaking_time, 2)
        else:
            omitted.extend(["volume_level", "average_pitch"])
            reduced = True

        if self.transcription_available:
            metrics["words_per_minute"] = float(round_half_up(self.words_per_minute))
            metrics["pause_frequency"] = float(self.pause_count)
            metrics["filler_word_count"] = float(len(self.filler_words))
            metrics["silence_time"] = round(self.pause_time, 2)
            for name in UTTERANCE_SIGNALS:
                count = self._signal_counts.get(name, 0)
                if count:
                    metrics[name] = round(self._signal_sums[name] / count, 2)
                else:
                    omitted.append(name)
                    reduced = True
        else:
            omitted.extend(TRANSCRIPT_METRICS)
            reduced = True

        components = {
            "confidence": metrics.get("confidence"),
            "clarity": metrics.get("clarity"),
            "enthusiasm": metrics.get("enthusiasm"),
            "filler_word_penalty": None,
            "volume_adequacy": None,
        }
        if "filler_word_count" in metrics:
            components["filler_word_penalty"] = clamp(100.0 - 10.0 * metrics["filler_word_count"])
        if "volume_level" in metrics:
            volume = metrics["volume_level"]
            components["volume_adequacy"] = 100.0 if volume > 50 else clamp(2.0 * volume)

        score = weighted_score(components, self.weights)
        feedback = voice_feedback().evaluate(metrics)

        return SubReport(
            source=self.source,
            overall_score=round_half_up(score) if score is not None else None,
            metrics=metrics,
            suggestions=feedback.suggestions,
            strengths=feedback.strengths,
            improvements=feedback.improvements,
            reduced_confidence=reduced,
            omitted_metrics=tuple(omitted),
            snapshot_count=self.ticks,
            first_timestamp=self.first_timestamp,
            last_timestamp=self.last_timestamp,
            details={
                "filler_words": list(self.filler_words),
                "transcript": " ".join(self.transcript),
                "utterance_count": self.utterance_count,
                "word_count": self.word_count,
                "transcription_available": self.transcription_available,
            },
        )
