from __future__ import annotations

import threading
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, List, Optional, Sequence

import numpy as np

from .alerts import AlertDispatcher, Speaker
from .camera import CameraStream
from .config import (
    CAMERA_INDEX,
    DETECTION_INTERVAL_MS,
    DETECTOR_KIND,
    DEVICE,
    JPEG_QUALITY,
    KNOWN_FACES_FILE,
    NOTIFICATION_LIMIT,
    OBJECT_CONFIDENCE,
    OBJECT_IMAGE_SIZE,
    OBJECT_IOU,
    OBJECT_MAX_DETECTIONS,
    OBJECT_MODEL,
    PERSON_LABEL,
    SPEECH_ENABLED,
)
from .detection_loop import DetectionLoop, FrameSource
from .detectors import (
    DetectorBackend,
    FaceDetectionBackend,
    FaceRecognitionBackend,
    PersonDetectionBackend,
)
from .exceptions import CameraError, FaceWatchError
from .face_engine import FaceEngine
from .history import DetectionHistory
from .known_faces import KnownFace, load_known_faces
from .logger import setup_logger
from .matcher import FaceMatcher
from .object_detector import YoloV8Detector
from .overlay import encode_jpeg
from .recognition import FaceRecognizer
from .reference_loader import ReferenceLoader
from .settings import DetectionSettings
from .speech import SpeechSynthesizer

SUPPORTED_DETECTORS = ("face", "person")


class ModelStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def _default_object_detector() -> YoloV8Detector:
    return YoloV8Detector(
        model_path=OBJECT_MODEL,
        prefer_gpu=DEVICE == "cuda",
        conf_threshold=OBJECT_CONFIDENCE,
        iou_threshold=OBJECT_IOU,
        labels=(PERSON_LABEL,),
        img_size=OBJECT_IMAGE_SIZE,
        max_detections=OBJECT_MAX_DETECTIONS,
    )


class FaceWatchRuntime:
    """Wires models, the detection loop, alerts and user settings together.

    Models load once (usually on a background thread at startup). Until that
    finishes the camera cannot start; if it fails the runtime stays in the
    ``failed`` state for the rest of the session.
    """

    def __init__(
        self,
        known_faces: Optional[Sequence[KnownFace]] = None,
        detector_kind: str = DETECTOR_KIND,
        camera_index: int = CAMERA_INDEX,
        settings: Optional[DetectionSettings] = None,
        speaker: Optional[Speaker] = None,
        engine_factory: Optional[Callable[[], FaceEngine]] = None,
        object_detector_factory: Optional[Callable[[], YoloV8Detector]] = None,
        reference_loader_factory: Callable[[FaceEngine], ReferenceLoader] = ReferenceLoader,
        source_factory: Optional[Callable[[], FrameSource]] = None,
        interval_ms: int = DETECTION_INTERVAL_MS,
    ):
        self.logger = setup_logger(self.__class__.__name__)
        self.detector_kind = detector_kind.strip().lower()
        self.camera_index = camera_index
        self.known_faces: List[KnownFace] = (
            list(known_faces) if known_faces is not None else load_known_faces(KNOWN_FACES_FILE)
        )
        self.settings = settings or DetectionSettings()
        if speaker is None and SPEECH_ENABLED:
            speaker = SpeechSynthesizer()
        self.speaker = speaker
        self.dispatcher = AlertDispatcher(self.speaker, on_alert=lambda phrase: self.notify("alert", phrase))
        self.history = DetectionHistory()
        self.interval_ms = interval_ms

        self._engine_factory = engine_factory or (lambda: FaceEngine(device=DEVICE))
        self._object_detector_factory = object_detector_factory or _default_object_detector
        self._reference_loader_factory = reference_loader_factory
        self._source_factory = source_factory or (lambda: CameraStream(self.camera_index))

        self.lock = threading.Lock()
        self.status = ModelStatus.LOADING
        self.status_error: Optional[str] = None
        self.backend: Optional[DetectorBackend] = None
        self.loop: Optional[DetectionLoop] = None
        self.reference_count = 0
        self._loader_thread: Optional[threading.Thread] = None
        self._notifications: Deque[dict] = deque(maxlen=NOTIFICATION_LIMIT)
        self._notification_seq = 0

    def load_models_async(self) -> threading.Thread:
        with self.lock:
            if self._loader_thread is None:
                self._loader_thread = threading.Thread(
                    target=self.load_models, name="facewatch-model-loader", daemon=True
                )
                self._loader_thread.start()
            return self._loader_thread

    def load_models(self) -> ModelStatus:
        self.notify("info", "Loading face recognition models...")
        try:
            backend = self._build_backend()
        except FaceWatchError as exc:
            self.logger.error("Error loading models: %s", exc)
            return self._mark_failed(str(exc))
        except Exception as exc:
            self.logger.exception("Unexpected failure while loading models")
            return self._mark_failed(str(exc))

        recognizer = FaceRecognizer(backend, self.known_faces)
        loop = DetectionLoop(
            recognizer=recognizer,
            settings=self.settings,
            source_factory=self._source_factory,
            dispatcher=self.dispatcher,
            history=self.history,
            interval_ms=self.interval_ms,
            on_error=lambda message: self.notify("error", message),
        )
        with self.lock:
            self.backend = backend
            self.loop = loop
            self.status = ModelStatus.READY
        self.notify("success", "Face recognition ready!")
        return ModelStatus.READY

    def _mark_failed(self, reason: str) -> ModelStatus:
        with self.lock:
            self.status = ModelStatus.FAILED
            self.status_error = reason
        self.notify("error", "Failed to load face recognition models")
        return ModelStatus.FAILED

    def _build_backend(self) -> DetectorBackend:
        if self.detector_kind not in SUPPORTED_DETECTORS:
            raise FaceWatchError(
                f"Unsupported detector '{self.detector_kind}'. Choose one of: {', '.join(SUPPORTED_DETECTORS)}"
            )

        if self.detector_kind == "person":
            return PersonDetectionBackend(self._object_detector_factory())

        engine = self._engine_factory()
        labeled = self._reference_loader_factory(engine).load(self.known_faces)
        self.reference_count = len(labeled)
        if not labeled:
            self.notify(
                "warning",
                "No reference faces could be loaded. Face recognition is limited to detection only.",
            )
            return FaceDetectionBackend(engine)
        return FaceRecognitionBackend(engine, FaceMatcher(labeled))

    @property
    def mode(self) -> Optional[str]:
        backend = self.backend
        return backend.kind if backend is not None else None

    def _require_loop(self) -> DetectionLoop:
        with self.lock:
            status, loop = self.status, self.loop
        if status is ModelStatus.LOADING:
            raise FaceWatchError("Face recognition models are still loading.")
        if status is ModelStatus.FAILED or loop is None:
            raise FaceWatchError("Face recognition models failed to load; the camera cannot start.")
        return loop

    def start_camera(self) -> bool:
        loop = self._require_loop()
        try:
            started = loop.start()
        except CameraError as exc:
            self.logger.error("Error accessing camera: %s", exc)
            self.notify("error", "Failed to access camera. Please check permissions.")
            raise
        if started:
            self.notify("success", "Camera started successfully!")
        return started

    def stop_camera(self) -> bool:
        loop = self.loop
        if loop is None or not loop.stop():
            return False
        self.notify("info", "Camera stopped")
        return True

    def toggle_mute(self) -> bool:
        muted = self.settings.toggle_mute()
        self.notify("info", "Audio alerts muted" if muted else "Audio alerts enabled")
        return muted

    def set_muted(self, muted: bool) -> bool:
        if self.settings.muted == bool(muted):
            return self.settings.muted
        return self.toggle_mute()

    def set_confidence(self, value: float) -> float:
        return self.settings.set_confidence(value)

    def notify(self, level: str, message: str) -> None:
        with self.lock:
            self._notification_seq += 1
            self._notifications.append(
                {"id": self._notification_seq, "level": level, "message": message, "ts": time.time()}
            )

    def notifications_since(self, cursor: int = 0) -> List[dict]:
        """Notifications newer than ``cursor``; reading does not consume them."""
        with self.lock:
            if cursor > self._notification_seq:
                # Cursor from an earlier process.
                cursor = 0
            return [item for item in self._notifications if item["id"] > cursor]

    def get_frame(self) -> Optional[np.ndarray]:
        loop = self.loop
        return loop.last_frame() if loop is not None else None

    def get_jpeg_frame(self) -> Optional[bytes]:
        frame = self.get_frame()
        if frame is None:
            return None
        return encode_jpeg(frame, JPEG_QUALITY)

    def get_state(self, since: int = 0) -> dict:
        loop = self.loop
        running = loop is not None and loop.is_running
        detections = loop.detections() if loop is not None else []
        frame_size = loop.frame_size if loop is not None else None
        notifications = self.notifications_since(since)
        with self.lock:
            status = self.status
            status_error = self.status_error

        return {
            "status": status.value,
            "status_error": status_error,
            "running": running,
            "detector": self.detector_kind,
            "mode": self.mode,
            "known_count": len(self.known_faces),
            "reference_count": self.reference_count,
            "settings": self.settings.to_dict(),
            "detections": [face.to_dict() for face in detections],
            "history": self.history.entries(),
            "notifications": notifications,
            "notification_cursor": notifications[-1]["id"] if notifications else max(since, 0),
            "frame_size": list(frame_size) if frame_size else None,
            "error": loop.last_error if loop is not None else None,
        }

    def shutdown(self) -> None:
        self.stop_camera()
        close = getattr(self.speaker, "close", None)
        if callable(close):
            close()
        self.logger.info("Runtime shut down")
