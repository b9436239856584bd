import time
from typing import Dict, List, Sequence
from uuid import uuid4

import numpy as np

from .detectors import DetectorBackend, FaceRecognitionBackend, RawDetection
from .exceptions import FaceEngineError
from .face_types import RecognizedFace
from .known_faces import KnownFace
from .logger import setup_logger

FACE_DETECTED_NAME = "Face Detected"
PERSON_DETECTED_NAME = "Person Detected"
UNKNOWN_NAME = "Unknown"


def unknown_face_id() -> str:
    return f"unknown-{int(time.time() * 1000)}-{uuid4().hex[:9]}"


class FaceRecognizer:
    def __init__(self, backend: DetectorBackend, known_faces: Sequence[KnownFace]):
        self.backend = backend
        self.known_by_id: Dict[str, KnownFace] = {face.id: face for face in known_faces}
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def kind(self) -> str:
        return self.backend.kind

    def recognize(self, frame: np.ndarray) -> List[RecognizedFace]:
        """Detect faces in ``frame`` and attach identities where possible.

        Detector failures propagate; a failure of the descriptor stage alone
        degrades this frame to plain detection.
        """
        if isinstance(self.backend, FaceRecognitionBackend):
            try:
                raw = self.backend.detect(frame)
            except FaceEngineError as exc:
                self.logger.error("Error during face recognition, falling back to detection only: %s", exc)
                return [self._unlabeled(item) for item in self.backend.detect_unlabeled(frame)]
            return [self._identify(item) for item in raw]

        return [self._unlabeled(item) for item in self.backend.detect(frame)]

    def _identify(self, raw: RawDetection) -> RecognizedFace:
        if raw.descriptor is None:
            return self._unlabeled(raw)

        match = self.backend.matcher.find_best_match(raw.descriptor)
        known = self.known_by_id.get(match.label)
        if not match.is_unknown and known is not None:
            return RecognizedFace(
                id=known.id,
                name=known.name,
                category=known.category,
                box=raw.box,
                score=match.similarity,
            )

        return RecognizedFace(
            id=unknown_face_id(),
            name=UNKNOWN_NAME,
            category="unknown",
            box=raw.box,
            score=match.similarity,
        )

    def _unlabeled(self, raw: RawDetection) -> RecognizedFace:
        name = PERSON_DETECTED_NAME if self.backend.kind == "person" else FACE_DETECTED_NAME
        return RecognizedFace(
            id=unknown_face_id(),
            name=name,
            category="unknown",
            box=raw.box,
            score=raw.score,
        )
