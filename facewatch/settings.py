import threading
from typing import Iterable, List

from .config import (
    CONFIDENCE_MAX,
    CONFIDENCE_MIN,
    CONFIDENCE_STEP,
    DEFAULT_CONFIDENCE,
    START_MUTED,
)
from .face_types import RecognizedFace


def snap_confidence(value: float) -> float:
    value = float(value)
    # Small tolerance so 0.1 and 0.9 typed as floats stay in range.
    if value < CONFIDENCE_MIN - 1e-9 or value > CONFIDENCE_MAX + 1e-9:
        raise ValueError(
            f"Confidence must be between {CONFIDENCE_MIN:.2f} and {CONFIDENCE_MAX:.2f}, got {value}"
        )
    steps = round((value - CONFIDENCE_MIN) / CONFIDENCE_STEP)
    snapped = CONFIDENCE_MIN + steps * CONFIDENCE_STEP
    return round(min(CONFIDENCE_MAX, max(CONFIDENCE_MIN, snapped)), 2)


def filter_by_confidence(faces: Iterable[RecognizedFace], threshold: float) -> List[RecognizedFace]:
    return [face for face in faces if face.score is not None and face.score >= threshold]


class DetectionSettings:
    def __init__(self, confidence: float = DEFAULT_CONFIDENCE, muted: bool = START_MUTED):
        self._lock = threading.Lock()
        self._confidence = snap_confidence(confidence)
        self._muted = bool(muted)

    @property
    def confidence(self) -> float:
        with self._lock:
            return self._confidence

    @property
    def muted(self) -> bool:
        with self._lock:
            return self._muted

    def set_confidence(self, value: float) -> float:
        snapped = snap_confidence(value)
        with self._lock:
            self._confidence = snapped
        return snapped

    def set_muted(self, muted: bool) -> bool:
        with self._lock:
            self._muted = bool(muted)
            return self._muted

    def toggle_mute(self) -> bool:
        with self._lock:
            self._muted = not self._muted
            return self._muted

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "confidence": self._confidence,
                "muted": self._muted,
                "confidence_min": CONFIDENCE_MIN,
                "confidence_max": CONFIDENCE_MAX,
                "confidence_step": CONFIDENCE_STEP,
            }
