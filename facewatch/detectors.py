from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Mapping, Optional, Union

import numpy as np

from .config import PERSON_LABEL
from .face_engine import FaceEngine
from .face_types import BoundingBox
from .matcher import FaceMatcher
from .object_detector import YoloV8Detector


@dataclass(frozen=True)
class RawDetection:
    score: float
    box: BoundingBox
    descriptor: Optional[np.ndarray] = field(default=None, repr=False)


def to_pixel_box(
    box: Mapping[str, float],
    width: int,
    height: int,
    normalized: Optional[bool] = None,
) -> BoundingBox:
    """Convert a detector box into pixel ``x, y, width, height`` on a ``width x height`` frame.

    Accepts either ``{xmin, ymin, xmax, ymax}`` or ``{x, y, width, height}``.
    Coordinates that all fall inside ``[0, 1]`` are treated as normalised
    unless ``normalized`` says otherwise. The result is clamped to the frame.
    """
    if {"xmin", "ymin", "xmax", "ymax"} <= box.keys():
        x1, y1 = float(box["xmin"]), float(box["ymin"])
        x2, y2 = float(box["xmax"]), float(box["ymax"])
    elif {"x", "y", "width", "height"} <= box.keys():
        x1, y1 = float(box["x"]), float(box["y"])
        x2, y2 = x1 + float(box["width"]), y1 + float(box["height"])
    else:
        raise ValueError(f"Unsupported box format: {sorted(box.keys())}")

    if normalized is None:
        normalized = all(0.0 <= v <= 1.0 for v in (x1, y1, x2, y2))
    if normalized:
        x1, x2 = x1 * width, x2 * width
        y1, y2 = y1 * height, y2 * height

    x1 = float(np.clip(x1, 0, width))
    x2 = float(np.clip(x2, 0, width))
    y1 = float(np.clip(y1, 0, height))
    y2 = float(np.clip(y2, 0, height))
    return BoundingBox(x=x1, y=y1, width=max(0.0, x2 - x1), height=max(0.0, y2 - y1))


def _corners_to_box(corners, width: int, height: int) -> BoundingBox:
    x1, y1, x2, y2 = (float(v) for v in corners)
    return to_pixel_box({"xmin": x1, "ymin": y1, "xmax": x2, "ymax": y2}, width, height, normalized=False)


@dataclass(frozen=True)
class FaceRecognitionBackend:
    """Face detection with descriptors, matched against reference identities."""

    engine: FaceEngine
    matcher: FaceMatcher
    kind: Literal["recognition"] = "recognition"

    def detect(self, frame: np.ndarray) -> List[RawDetection]:
        h, w = frame.shape[:2]
        batch = self.engine.extract_embeddings(frame)
        return [
            RawDetection(score=float(conf), box=_corners_to_box(box, w, h), descriptor=emb)
            for emb, box, conf in zip(batch.embeddings, batch.boxes, batch.confidences)
        ]

    def detect_unlabeled(self, frame: np.ndarray) -> List[RawDetection]:
        return FaceDetectionBackend(self.engine).detect(frame)


@dataclass(frozen=True)
class FaceDetectionBackend:
    """Face detection only; used when no reference descriptor could be loaded."""

    engine: FaceEngine
    kind: Literal["detection"] = "detection"

    def detect(self, frame: np.ndarray) -> List[RawDetection]:
        h, w = frame.shape[:2]
        batch = self.engine.detect(frame)
        return [
            RawDetection(score=float(conf), box=_corners_to_box(box, w, h))
            for box, conf in zip(batch.boxes, batch.confidences)
        ]


@dataclass(frozen=True)
class PersonDetectionBackend:
    """Generic object detector with results restricted to people."""

    detector: YoloV8Detector
    label: str = PERSON_LABEL
    kind: Literal["person"] = "person"

    def detect(self, frame: np.ndarray) -> List[RawDetection]:
        h, w = frame.shape[:2]
        return [
            RawDetection(score=float(item.confidence), box=_corners_to_box(item.bbox, w, h))
            for item in self.detector.detect(frame)
            if item.label.lower() == self.label
        ]


DetectorBackend = Union[FaceRecognitionBackend, FaceDetectionBackend, PersonDetectionBackend]
