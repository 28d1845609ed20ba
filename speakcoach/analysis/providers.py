"""Analysis providers

``SignalAnalysisProvider`` measures real signals: loudness and a pitch proxy
from the audio spectrum, and facial features from MediaPipe face mesh
landmarks. ``RandomizedAnalysisProvider`` produces plausible values without
any model, for demos and for exercising the pipeline.
"""

import logging
from typing import Optional

import numpy as np
import librosa

from speakcoach.analysis.landmarks import FacialFeatureTracker, MESH_SIZE
from speakcoach.config.config_loader import config
from speakcoach.models.enums import EMOTION_PRIORITY
from speakcoach.models.errors import DeviceUnavailableError
from speakcoach.models.features import AudioSample, FaceLandmarks, VideoSample
from speakcoach.models.frames import AudioFrame, VideoFrame
from speakcoach.models.interfaces import AnalysisProvider


logger = logging.getLogger(__name__)


class AnalysisError(DeviceUnavailableError):
    """Exception raised when an analysis model cannot be loaded

    The track the model serves cannot be analyzed, so it counts as unavailable.
    """
    pass


def byte_spectrum(samples: np.ndarray, min_db: float = -100.0, max_db: float = -30.0) -> np.ndarray:
    """Magnitude spectrum mapped onto a 0-255 byte scale.

    Decibel values are mapped linearly from [min_db, max_db] to [0, 255]
    and clipped, the way a browser analyser node reports frequency data.
    """
    window = np.hanning(len(samples))
    spectrum = np.abs(np.fft.rfft(samples * window)) / max(len(samples), 1)
    db = librosa.amplitude_to_db(spectrum, ref=1.0, amin=1e-10, top_db=None)
    scaled = (db - min_db) / (max_db - min_db)
    return np.clip(scaled, 0.0, 1.0) * 255.0


def volume_level(levels: np.ndarray) -> float:
    """Mean byte level scaled to 0-100"""
    if levels.size == 0:
        return 0.0
    return float(np.mean(levels) / 255.0 * 100.0)


def spectral_pitch(levels: np.ndarray, sample_rate: int, n_samples: int,
                   fmin: float = 65.0, fmax: float = 400.0) -> float:
    """Frequency of the strongest bin inside the voice band, 0 if the band is silent"""
    freqs = np.fft.rfftfreq(n_samples, d=1.0 / sample_rate)
    band = (freqs >= fmin) & (freqs <= fmax)
    if not np.any(band):
        return 0.0
    band_levels = levels[band]
    if band_levels.max() <= 0.0:
        return 0.0
    return float(freqs[band][int(np.argmax(band_levels))])


class SignalAnalysisProvider(AnalysisProvider):
    """Measures voice and facial features from the raw signals

    The face mesh model is loaded lazily on the first video frame.

    Attributes:
        tracker: Facial feature state for the current session
        face_mesh: MediaPipe face mesh model, None until loaded
    """

    def __init__(self):
        self.min_db = config.get('audio.min_decibels', -100.0)
        self.max_db = config.get('audio.max_decibels', -30.0)
        self.pitch_fmin = config.get('audio.pitch_fmin', 65.0)
        self.pitch_fmax = config.get('audio.pitch_fmax', 400.0)
        self.confidence_threshold = config.get('video.face_detection_confidence', 0.5)
        self.tracker = FacialFeatureTracker(
            blink_ear_threshold=config.get('video.blink_ear_threshold', 0.2)
        )
        self.face_mesh = None
        self._load_error: Optional[Exception] = None

    def _load_models(self):
        """Load the MediaPipe face mesh model.

        Raises:
            AnalysisError: If mediapipe is missing or the model fails to load.
                The failure is cached and raised again without retrying.
        """
        if self._load_error is not None:
            raise AnalysisError(f"Face mesh unavailable: {self._load_error}", track="video")
        try:
            import mediapipe as mp

            logger.info("Loading MediaPipe face mesh model")
            self.face_mesh = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=False,
                max_num_faces=1,
                refine_landmarks=False,
                min_detection_confidence=self.confidence_threshold,
                min_tracking_confidence=0.5
            )
            logger.info("MediaPipe face mesh loaded successfully")
        except Exception as e:
            self._load_error = e
            logger.error(f"Failed to load MediaPipe face mesh: {e}", exc_info=True)
            raise AnalysisError(f"Face mesh unavailable: {e}", track="video") from e

    def sample_audio_tick(self, frame: AudioFrame) -> AudioSample:
        samples = frame.samples.astype(np.float32)
        if samples.size == 0:
            return AudioSample(volume=0.0, pitch=0.0)

        levels = byte_spectrum(samples, self.min_db, self.max_db)
        volume = min(max(volume_level(levels), 0.0), 100.0)
        pitch = spectral_pitch(levels, frame.sample_rate, samples.size,
                               self.pitch_fmin, self.pitch_fmax)
        return AudioSample(volume=volume, pitch=pitch)

    def _extract_landmarks(self, image: np.ndarray) -> Optional[FaceLandmarks]:
        results = self.face_mesh.process(image)
        if not results.multi_face_landmarks:
            return None

        h, w = image.shape[:2]
        face = results.multi_face_landmarks[0]
        points = np.array([[lm.x * w, lm.y * h] for lm in face.landmark], dtype=np.float32)
        if len(points) < MESH_SIZE:
            return None
        return FaceLandmarks(points=points, confidence=self.confidence_threshold)

    def sample_video_frame(self, frame: VideoFrame) -> VideoSample:
        if self.face_mesh is None:
            self._load_models()

        landmarks = self._extract_landmarks(frame.image)
        if landmarks is None:
            return VideoSample(metrics={}, face_detected=False)

        metrics, emotions = self.tracker.update(landmarks, frame.timestamp)
        return VideoSample(metrics=metrics, emotions=emotions)

    def reset(self) -> None:
        self.tracker.reset()

    def close(self) -> None:
        if self.face_mesh is not None:
            self.face_mesh.close()
            self.face_mesh = None


class RandomizedAnalysisProvider(AnalysisProvider):
    """Plausible random features for demos; seeded runs are reproducible"""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def sample_audio_tick(self, frame: AudioFrame) -> AudioSample:
        return AudioSample(
            volume=float(self.rng.uniform(40, 90)),
            pitch=float(self.rng.uniform(100, 250)),
        )

    def sample_video_frame(self, frame: VideoFrame) -> VideoSample:
        u = self.rng.uniform
        metrics = {
            "eye_contact": u(60, 100),
            "smile_frequency": u(20, 50),
            "expression_variety": u(50, 75),
            "engagement": u(65, 100),
            "confidence": u(70, 100),
            "naturalness": u(80, 100),
            "head_movement": u(5, 20),
            "blink_rate": u(15, 25),
        }
        ceilings = {
            "joy": 0.8,
            "surprise": 0.3,
            "neutral": 0.6,
            "sadness": 0.1,
            "anger": 0.1,
            "fear": 0.1,
            "disgust": 0.05,
        }
        emotions = {label: float(u(0, ceilings[label])) for label in EMOTION_PRIORITY}
        return VideoSample(metrics={k: float(v) for k, v in metrics.items()}, emotions=emotions)

    def reset(self) -> None:
        self.rng = np.random.default_rng(self.seed)
