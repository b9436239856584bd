from pathlib import Path
from typing import List, Optional, Sequence

import cv2
import numpy as np
import requests

from .config import BASE_DIR, REFERENCE_FETCH_TIMEOUT
from .exceptions import FaceWatchError
from .face_engine import FaceEngine
from .known_faces import KnownFace
from .logger import setup_logger
from .matcher import LabeledDescriptor


class ReferenceLoader:
    """Turns reference portraits into labeled descriptors.

    Each identity is processed independently: a portrait that cannot be
    fetched, decoded, or that shows no face is skipped with a log line and
    the remaining identities still load.
    """

    def __init__(
        self,
        engine: FaceEngine,
        fetch_timeout: float = REFERENCE_FETCH_TIMEOUT,
        base_dir: Path = BASE_DIR,
        session: Optional[requests.Session] = None,
    ):
        self.engine = engine
        self.fetch_timeout = fetch_timeout
        self.base_dir = Path(base_dir)
        self.session = session or requests.Session()
        self.logger = setup_logger(self.__class__.__name__)

    def load(self, known_faces: Sequence[KnownFace]) -> List[LabeledDescriptor]:
        labeled: List[LabeledDescriptor] = []
        for face in known_faces:
            try:
                descriptor = self.describe(face)
            except FaceWatchError as exc:
                self.logger.error("Error processing reference face for %s: %s", face.name, exc)
                continue

            if descriptor is None:
                self.logger.warning("No face detected in reference image for: %s", face.name)
                continue

            labeled.append(LabeledDescriptor(label=face.id, descriptor=descriptor))
            self.logger.info("Loaded face data for: %s", face.name)

        if not labeled:
            self.logger.warning(
                "No reference faces could be loaded. Face recognition will be limited to detection only."
            )
        return labeled

    def describe(self, face: KnownFace) -> Optional[np.ndarray]:
        image = self.fetch_image(face.image_url)
        batch = self.engine.extract_embeddings(image)
        if not batch.embeddings:
            return None

        best = int(np.argmax(batch.confidences)) if batch.confidences else 0
        if len(batch.embeddings) > 1:
            self.logger.info(
                "Reference image for %s shows %d faces; using the most confident one.",
                face.name,
                len(batch.embeddings),
            )
        return batch.embeddings[best]

    def fetch_image(self, url: str) -> np.ndarray:
        if url.startswith(("http://", "https://")):
            try:
                response = self.session.get(url, timeout=self.fetch_timeout)
                response.raise_for_status()
            except requests.RequestException as exc:
                raise FaceWatchError(f"Failed to download {url}: {exc}") from exc
            payload = response.content
        else:
            path = Path(url)
            if not path.is_absolute():
                path = self.base_dir / path
            try:
                payload = path.read_bytes()
            except OSError as exc:
                raise FaceWatchError(f"Failed to read {path}: {exc}") from exc

        if not payload:
            raise FaceWatchError(f"Image at {url} is empty")
        try:
            image = cv2.imdecode(np.frombuffer(payload, dtype=np.uint8), cv2.IMREAD_COLOR)
        except cv2.error as exc:
            raise FaceWatchError(f"Unable to decode image from {url}: {exc}") from exc
        if image is None:
            raise FaceWatchError(f"Unable to decode image from {url}")
        return image
