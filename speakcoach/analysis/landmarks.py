"""Face geometry from MediaPipe face mesh landmarks

Pure functions over a (468, 2) landmark array in pixel coordinates, plus a
small tracker for the features that need frame history (blinks, head
movement, smile frequency, expression variety). Nothing here imports
mediapipe, so the geometry can be exercised with synthetic landmarks.
"""

import math
from collections import deque
from typing import Dict, Optional

import numpy as np

from speakcoach.models.enums import EMOTION_PRIORITY
from speakcoach.models.features import FaceLandmarks


# MediaPipe 468-point face mesh indices
LEFT_EYE = (33, 160, 158, 133, 153, 144)
RIGHT_EYE = (362, 385, 387, 263, 373, 380)
NOSE_TIP = 1
FOREHEAD = 10
CHIN = 152
LEFT_CHEEK = 234
RIGHT_CHEEK = 454
MOUTH_LEFT = 61
MOUTH_RIGHT = 291
LIP_TOP = 13
LIP_BOTTOM = 14
LEFT_BROW = 105
RIGHT_BROW = 334
LEFT_EYE_TOP = 159
RIGHT_EYE_TOP = 386

MESH_SIZE = 468

_EPS = 1e-6


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b))


def eye_aspect_ratio(points: np.ndarray, eye=LEFT_EYE) -> float:
    """Eye aspect ratio (EAR) of one eye; drops towards 0 when the eye closes"""
    p1, p2, p3, p4, p5, p6 = (points[i] for i in eye)
    vertical = _dist(p2, p6) + _dist(p3, p5)
    horizontal = 2.0 * _dist(p1, p4)
    return vertical / max(horizontal, _EPS)


def mean_eye_aspect_ratio(points: np.ndarray) -> float:
    return (eye_aspect_ratio(points, LEFT_EYE) + eye_aspect_ratio(points, RIGHT_EYE)) / 2.0


def face_width(points: np.ndarray) -> float:
    return max(_dist(points[LEFT_CHEEK], points[RIGHT_CHEEK]), _EPS)


def head_yaw(points: np.ndarray) -> float:
    """Yaw in degrees from the nose position between the cheeks, positive when turned right"""
    nose_x = points[NOSE_TIP][0]
    d_left = abs(nose_x - points[LEFT_CHEEK][0])
    d_right = abs(nose_x - points[RIGHT_CHEEK][0])
    total = d_left + d_right
    if total < _EPS:
        return 0.0
    ratio = (d_right - d_left) / total
    return math.degrees(math.asin(max(-1.0, min(1.0, ratio))))


def head_pitch(points: np.ndarray) -> float:
    """Pitch in degrees from the nose position between forehead and chin, positive when looking down"""
    top_y = points[FOREHEAD][1]
    chin_y = points[CHIN][1]
    span = chin_y - top_y
    if abs(span) < _EPS:
        return 0.0
    ratio = (points[NOSE_TIP][1] - top_y) / span
    # A frontal face puts the nose tip a little below mid-face
    offset = (ratio - 0.55) * 2.0
    return math.degrees(math.asin(max(-1.0, min(1.0, offset))))


def eye_contact_score(yaw: float, pitch: float, tolerance: float = 30.0) -> float:
    """0-100, full marks when facing the camera, 0 beyond ``tolerance`` degrees"""
    deviation = math.hypot(yaw, pitch)
    return 100.0 * max(0.0, 1.0 - deviation / tolerance)


def mouth_open_ratio(points: np.ndarray) -> float:
    width = _dist(points[MOUTH_LEFT], points[MOUTH_RIGHT])
    height = _dist(points[LIP_TOP], points[LIP_BOTTOM])
    return height / max(width, _EPS)


def smile_score(points: np.ndarray) -> float:
    """0-1 from how far the mouth corners sit above the lip centre"""
    width = max(_dist(points[MOUTH_LEFT], points[MOUTH_RIGHT]), _EPS)
    centre_y = (points[LIP_TOP][1] + points[LIP_BOTTOM][1]) / 2.0
    corners_y = (points[MOUTH_LEFT][1] + points[MOUTH_RIGHT][1]) / 2.0
    lift = (centre_y - corners_y) / width
    return float(np.clip(lift / 0.1, 0.0, 1.0))


def frown_score(points: np.ndarray) -> float:
    """0-1 from how far the mouth corners sit below the lip centre"""
    width = max(_dist(points[MOUTH_LEFT], points[MOUTH_RIGHT]), _EPS)
    centre_y = (points[LIP_TOP][1] + points[LIP_BOTTOM][1]) / 2.0
    corners_y = (points[MOUTH_LEFT][1] + points[MOUTH_RIGHT][1]) / 2.0
    drop = (corners_y - centre_y) / width
    return float(np.clip(drop / 0.1, 0.0, 1.0))


def brow_raise(points: np.ndarray) -> float:
    """Brow-to-eye distance relative to face height"""
    height = max(abs(points[CHIN][1] - points[FOREHEAD][1]), _EPS)
    left = abs(points[LEFT_EYE_TOP][1] - points[LEFT_BROW][1])
    right = abs(points[RIGHT_EYE_TOP][1] - points[RIGHT_BROW][1])
    return ((left + right) / 2.0) / height


def emotions_from_geometry(smile: float, frown: float, mouth_open: float, brow: float) -> Dict[str, float]:
    """Heuristic 7-class emotion vector, normalized to sum to 1.

    A trained expression classifier would replace this; the geometry only
    separates the broad cases (smiling, raised brows with open mouth,
    turned-down mouth, lowered brows).
    """
    raised = float(np.clip((brow - 0.08) / 0.06, 0.0, 1.0))
    lowered = float(np.clip((0.07 - brow) / 0.03, 0.0, 1.0))
    opened = float(np.clip((mouth_open - 0.15) / 0.35, 0.0, 1.0))

    raw = {
        "joy": smile,
        "surprise": raised * opened,
        "sadness": frown * (1.0 - lowered),
        "anger": lowered * (1.0 - smile),
        "fear": raised * frown,
        "disgust": lowered * frown,
    }
    raw["neutral"] = max(0.0, 1.0 - max(raw.values()))

    total = sum(raw.values())
    if total < _EPS:
        return {"neutral": 1.0}
    return {label: raw[label] / total for label in EMOTION_PRIORITY}


class FacialFeatureTracker:
    """Per-session facial feature state across frames

    Attributes:
        blink_ear_threshold: EAR below which the eyes count as closed
        blinks: Blinks seen so far
    """

    def __init__(self, blink_ear_threshold: float = 0.2, variety_frames: int = 90,
                 smile_threshold: float = 0.5):
        self.blink_ear_threshold = blink_ear_threshold
        self.smile_threshold = smile_threshold
        self._recent_emotions: deque = deque(maxlen=variety_frames)
        self.reset()

    def reset(self) -> None:
        self.blinks = 0
        self._eyes_closed = False
        self._first_ts: Optional[float] = None
        self._prev_nose: Optional[np.ndarray] = None
        self._frames = 0
        self._smiling_frames = 0
        self._recent_emotions.clear()

    def blink_rate(self, timestamp: float) -> float:
        """Blinks per minute since the first tracked frame"""
        if self._first_ts is None:
            return 0.0
        minutes = (timestamp - self._first_ts) / 60.0
        if minutes <= 0:
            return 0.0
        return self.blinks / minutes

    def update(self, landmarks: FaceLandmarks, timestamp: float):
        """Fold one frame's landmarks into the tracker.

        Returns:
            (metrics, emotions) for the frame
        """
        points = landmarks.points
        if self._first_ts is None:
            self._first_ts = timestamp
        self._frames += 1

        ear = mean_eye_aspect_ratio(points)
        closed = ear < self.blink_ear_threshold
        if self._eyes_closed and not closed:
            self.blinks += 1
        self._eyes_closed = closed

        width = face_width(points)
        nose = points[NOSE_TIP]
        if self._prev_nose is None:
            movement = 0.0
        else:
            movement = min(100.0, _dist(nose, self._prev_nose) / width * 500.0)
        self._prev_nose = nose.copy()

        eye_contact = eye_contact_score(head_yaw(points), head_pitch(points))
        smile = smile_score(points)
        if smile >= self.smile_threshold:
            self._smiling_frames += 1

        emotions = emotions_from_geometry(
            smile, frown_score(points), mouth_open_ratio(points), brow_raise(points)
        )
        self._recent_emotions.append(max(emotions, key=emotions.get))
        variety = min(100.0, (len(set(self._recent_emotions)) - 1) * 34.0)

        blink_rate = self.blink_rate(timestamp)
        metrics = {
            "eye_contact": eye_contact,
            "smile_frequency": 100.0 * self._smiling_frames / self._frames,
            "expression_variety": variety,
            "engagement": 0.5 * eye_contact + 0.3 * smile * 100.0 + 0.2 * variety,
            "confidence": 0.7 * eye_contact + 0.3 * (100.0 - movement),
            "naturalness": max(0.0, 100.0 - 2.0 * abs(blink_rate - 17.0) - max(0.0, movement - 30.0)),
            "head_movement": movement,
            "blink_rate": blink_rate,
        }
        return metrics, emotions
