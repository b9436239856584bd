from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Literal, Optional, Tuple

Category = Literal["user", "celebrity", "unknown"]
BBox = Tuple[int, int, int, int]

UNKNOWN_LABEL = "unknown"


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def corners(self) -> BBox:
        x1 = int(round(self.x))
        y1 = int(round(self.y))
        return x1, y1, int(round(self.x + self.width)), int(round(self.y + self.height))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RecognizedFace:
    id: str
    name: str
    category: Category
    box: BoundingBox
    score: Optional[float] = None

    @property
    def alert_label(self) -> str:
        # Unknown faces get fresh ids every cycle, so they share one label.
        if self.category == "unknown":
            return UNKNOWN_LABEL
        return self.id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "box": self.box.to_dict(),
            "score": None if self.score is None else round(self.score, 4),
        }


@dataclass
class ObjectDetection:
    class_id: int
    label: str
    confidence: float
    bbox: BBox
