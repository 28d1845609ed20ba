"""Whisper transcription provider

Buffers fed audio into fixed-length chunks and transcribes each chunk with
Whisper in a worker thread. Every recognized segment becomes one finalized
``TranscriptEvent`` carrying per-utterance quality signals:

- clarity: ``exp(avg_logprob)`` of the segment, as a percentage
- confidence: ``1 - no_speech_prob``, as a percentage
- enthusiasm: spread of the segment's pitch contour
"""

import asyncio
import logging
import math
from typing import AsyncIterator, List, Optional

import numpy as np
import librosa

from speakcoach.config.config_loader import config
from speakcoach.models.errors import TranscriptionUnavailableError
from speakcoach.models.frames import AudioFrame, TranscriptEvent
from speakcoach.models.interfaces import TranscriptionProvider


logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000

_END = object()


def clarity_signal(avg_logprob: float) -> float:
    return min(max(math.exp(avg_logprob) * 100.0, 0.0), 100.0)


def confidence_signal(no_speech_prob: float) -> float:
    return min(max((1.0 - no_speech_prob) * 100.0, 0.0), 100.0)


def enthusiasm_signal(samples: np.ndarray, sample_rate: int,
                      fmin: float = 65.0, fmax: float = 400.0) -> Optional[float]:
    """Pitch variation of an utterance as a 0-100 score.

    A monotone delivery has a flat pitch contour; the coefficient of variation
    of the YIN f0 track is scaled so that 25% variation scores 100.

    Returns:
        Score, or None when the utterance is too short to track pitch
    """
    frame_length = 2048
    if len(samples) < frame_length:
        return None
    f0 = librosa.yin(samples.astype(np.float32), fmin=fmin, fmax=fmax,
                     sr=sample_rate, frame_length=frame_length)
    f0 = f0[np.isfinite(f0)]
    if f0.size == 0 or np.mean(f0) <= 0:
        return None
    variation = float(np.std(f0) / np.mean(f0))
    return min(max(variation / 0.25 * 100.0, 0.0), 100.0)


class WhisperTranscriptionProvider(TranscriptionProvider):
    """Chunked Whisper speech recognition

    Attributes:
        model_name: Whisper model size (tiny, base, small, ...)
        chunk_seconds: Audio collected before each transcription
        language: Spoken language passed to Whisper
        whisper_model: Loaded model, None until ``is_available()`` succeeds
    """

    def __init__(self, model_name: Optional[str] = None,
                 chunk_seconds: Optional[float] = None,
                 language: Optional[str] = None):
        self.model_name = model_name or config.get('transcription.whisper_model', 'base')
        self.chunk_seconds = chunk_seconds or config.get('transcription.chunk_seconds', 4.0)
        self.language = language or config.get('transcription.language', 'en')
        self.pitch_fmin = config.get('audio.pitch_fmin', 65.0)
        self.pitch_fmax = config.get('audio.pitch_fmax', 400.0)
        self.use_gpu = config.get('performance.use_gpu', False)
        self.device = "cpu"

        self.whisper_model = None
        self._load_error: Optional[Exception] = None

        self._buffer: List[AudioFrame] = []
        self._chunks: Optional[asyncio.Queue] = None
        self._events: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._running = False

    def _load_model(self):
        """Load the Whisper model onto the configured device.

        Raises:
            TranscriptionUnavailableError: If Whisper cannot be imported or loaded
        """
        try:
            import torch
            import whisper

            self.device = "cuda" if self.use_gpu and torch.cuda.is_available() else "cpu"
            logger.info(f"Loading Whisper model: {self.model_name} on {self.device}")
            self.whisper_model = whisper.load_model(self.model_name, device=self.device)
            logger.info("Whisper model loaded successfully")
        except Exception as e:
            logger.error(f"Failed to load Whisper model: {e}", exc_info=True)
            raise TranscriptionUnavailableError(f"Whisper unavailable: {e}") from e

    def is_available(self) -> bool:
        if self.whisper_model is not None:
            return True
        if self._load_error is not None:
            return False
        try:
            self._load_model()
        except TranscriptionUnavailableError as e:
            self._load_error = e
            return False
        return True

    def start(self) -> None:
        if not self.is_available():
            raise TranscriptionUnavailableError(str(self._load_error))
        self._buffer = []
        self._chunks = asyncio.Queue()
        self._events = asyncio.Queue()
        self._running = True
        self._worker = asyncio.create_task(self._work(), name="whisper_worker")
        logger.info("Whisper transcription started")

    def _buffered_seconds(self) -> float:
        return sum(frame.duration for frame in self._buffer)

    def _flush(self) -> None:
        if not self._buffer:
            return
        start_ts = self._buffer[0].timestamp
        sample_rate = self._buffer[0].sample_rate
        samples = np.concatenate([frame.samples.astype(np.float32) for frame in self._buffer])
        self._buffer = []
        self._chunks.put_nowait((samples, sample_rate, start_ts))

    def feed(self, frame: AudioFrame) -> None:
        if not self._running:
            return
        self._buffer.append(frame)
        if self._buffered_seconds() >= self.chunk_seconds:
            self._flush()

    async def _work(self) -> None:
        try:
            while True:
                item = await self._chunks.get()
                if item is None:
                    break
                samples, sample_rate, start_ts = item
                events = await asyncio.to_thread(self._transcribe, samples, sample_rate, start_ts)
                for event in events:
                    self._events.put_nowait(event)
        except asyncio.CancelledError:
            logger.debug("Whisper worker cancelled")
        except Exception as e:
            logger.error(f"Transcription failed: {e}", exc_info=True)
            self._events.put_nowait(e)
        finally:
            self._events.put_nowait(_END)

    def _transcribe(self, samples: np.ndarray, sample_rate: int, start_ts: float) -> List[TranscriptEvent]:
        """Transcribe one chunk into finalized per-segment events"""
        if sample_rate != WHISPER_SAMPLE_RATE:
            samples = librosa.resample(samples, orig_sr=sample_rate, target_sr=WHISPER_SAMPLE_RATE)

        result = self.whisper_model.transcribe(
            samples,
            fp16=(self.device == "cuda"),
            language=self.language
        )

        events = []
        for segment in result.get('segments', []):
            text = segment.get('text', '').strip()
            if not text:
                continue
            seg_start = float(segment.get('start', 0.0))
            seg_end = float(segment.get('end', seg_start))

            signals = {
                "clarity": clarity_signal(segment.get('avg_logprob', -1.0)),
                "confidence": confidence_signal(segment.get('no_speech_prob', 0.5)),
            }
            lo = int(seg_start * WHISPER_SAMPLE_RATE)
            hi = int(seg_end * WHISPER_SAMPLE_RATE)
            enthusiasm = enthusiasm_signal(samples[lo:hi], WHISPER_SAMPLE_RATE,
                                           self.pitch_fmin, self.pitch_fmax)
            if enthusiasm is not None:
                signals["enthusiasm"] = enthusiasm

            events.append(TranscriptEvent(
                text=text,
                is_final=True,
                timestamp=start_ts + seg_start,
                signals=signals,
            ))
            logger.debug(f"Transcribed segment at {start_ts + seg_start:.2f}s: '{text}'")
        return events

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        while self._events is not None:
            item = await self._events.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._flush()
        self._chunks.put_nowait(None)
        logger.info("Whisper transcription stopping, flushing buffered audio")
