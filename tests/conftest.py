import os
import tempfile
import threading
import time

os.environ.setdefault("FACEWATCH_LOG_DIR", tempfile.mkdtemp(prefix="facewatch-logs-"))
os.environ.setdefault("FACEWATCH_SPEECH_ENABLED", "0")

import numpy as np
import pytest

from facewatch.exceptions import CameraError
from facewatch.face_engine import FaceBatch
from facewatch.face_types import BoundingBox, RecognizedFace
from facewatch.known_faces import KnownFace
from facewatch.matcher import LabeledDescriptor
from facewatch.runtime import FaceWatchRuntime
from facewatch.settings import DetectionSettings


def make_face(face_id="ashal", name="ASHAL", category="user", score=0.9, box=(10, 20, 50, 60)):
    return RecognizedFace(
        id=face_id,
        name=name,
        category=category,
        box=BoundingBox(*box),
        score=score,
    )


def unit(*values):
    vector = np.array(values, dtype=np.float32)
    return vector / np.linalg.norm(vector)


def wait_for(predicate, timeout=3.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeEngine:
    """Returns a fixed batch for every frame."""

    def __init__(self, embeddings=(), boxes=(), confidences=(), fail_descriptors=False):
        self.embeddings = [np.asarray(e, dtype=np.float32) for e in embeddings]
        self.boxes = [np.asarray(b, dtype=np.float32) for b in boxes]
        self.confidences = list(confidences)
        self.fail_descriptors = fail_descriptors

    def detect(self, frame):
        return FaceBatch(embeddings=[], boxes=list(self.boxes), confidences=list(self.confidences))

    def extract_embeddings(self, frame):
        if self.fail_descriptors:
            from facewatch.exceptions import FaceEngineError

            raise FaceEngineError("descriptor model crashed")
        return FaceBatch(
            embeddings=list(self.embeddings),
            boxes=list(self.boxes),
            confidences=list(self.confidences),
        )


class FakeSource:
    def __init__(self, width=64, height=48, fail_open=False):
        self.width = width
        self.height = height
        self.fail_open = fail_open
        self.opened = False
        self.closed = False
        self.reads = 0

    @property
    def frame_size(self):
        return self.width, self.height

    def open(self):
        if self.fail_open:
            raise CameraError("Permission denied")
        self.opened = True

    def read(self):
        if not self.opened or self.closed:
            raise CameraError("Webcam stream is not initialized.")
        self.reads += 1
        return np.full((self.height, self.width, 3), 40, dtype=np.uint8)

    def close(self):
        self.closed = True


class RecordingSpeaker:
    def __init__(self):
        self.spoken = []
        self._lock = threading.Lock()

    def speak(self, text):
        with self._lock:
            self.spoken.append(text)
        return True


@pytest.fixture
def known_faces():
    return [
        KnownFace(id="ashal", name="ASHAL", image_url="ashal.png", category="user"),
        KnownFace(id="tom-cruise", name="Tom Cruise", image_url="tom.png", category="celebrity"),
    ]


@pytest.fixture
def speaker():
    return RecordingSpeaker()


class StubLoader:
    def __init__(self, labeled):
        self.labeled = labeled

    def load(self, known_faces):
        return list(self.labeled)


def build_runtime(known_faces, speaker, labeled=None, engine_factory=None, source=None, **kwargs):
    labeled = [LabeledDescriptor("ashal", unit(1, 0))] if labeled is None else labeled
    source = source or FakeSource()
    return FaceWatchRuntime(
        known_faces=known_faces,
        settings=DetectionSettings(confidence=0.5, muted=False),
        speaker=speaker,
        engine_factory=engine_factory
        or (lambda: FakeEngine(embeddings=[unit(1, 0)], boxes=[[4, 4, 30, 30]], confidences=[0.99])),
        reference_loader_factory=lambda engine: StubLoader(labeled),
        source_factory=lambda: source,
        interval_ms=200,
        **kwargs,
    )
