from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Protocol, Tuple

import numpy as np

from .alerts import AlertDispatcher
from .config import (
    CAMERA_READ_FAIL_THRESHOLD,
    DETECTION_INTERVAL_MS,
    HIGHLIGHT_IDENTITY_ID,
    MAX_DETECTION_INTERVAL_MS,
    MIN_DETECTION_INTERVAL_MS,
)
from .exceptions import CameraError, FaceWatchError
from .face_types import RecognizedFace
from .history import DetectionHistory
from .logger import setup_logger
from .overlay import render_overlay
from .recognition import FaceRecognizer
from .settings import DetectionSettings, filter_by_confidence


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class FrameSource(Protocol):
    @property
    def frame_size(self) -> Tuple[int, int]:
        ...

    def open(self) -> None:
        ...

    def read(self) -> np.ndarray:
        ...

    def close(self) -> None:
        ...


class DetectionLoop:
    """Samples frames from a camera and keeps the latest recognized faces.

    The scheduler thread runs one detection attempt at a time and waits for
    the next period only after the attempt settles, so detector calls never
    overlap. Every run gets a generation number; a result whose generation is
    no longer current (the loop was stopped, or stopped and restarted) is
    dropped before it reaches the overlay, the history or the alerts.
    """

    def __init__(
        self,
        recognizer: FaceRecognizer,
        settings: DetectionSettings,
        source_factory: Callable[[], FrameSource],
        dispatcher: Optional[AlertDispatcher] = None,
        history: Optional[DetectionHistory] = None,
        interval_ms: int = DETECTION_INTERVAL_MS,
        highlight_id: Optional[str] = HIGHLIGHT_IDENTITY_ID,
        read_fail_threshold: int = CAMERA_READ_FAIL_THRESHOLD,
        join_timeout: float = 1.0,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self.recognizer = recognizer
        self.settings = settings
        self.source_factory = source_factory
        self.dispatcher = dispatcher
        self.history = history if history is not None else DetectionHistory()
        self.interval_ms = int(np.clip(interval_ms, MIN_DETECTION_INTERVAL_MS, MAX_DETECTION_INTERVAL_MS))
        self.highlight_id = highlight_id
        self.read_fail_threshold = max(1, int(read_fail_threshold))
        self.join_timeout = join_timeout
        self.on_error = on_error
        self.logger = setup_logger(self.__class__.__name__)

        self.lock = threading.Lock()
        self.capture_lock = threading.Lock()
        self.transition_lock = threading.Lock()

        self._state = LoopState.IDLE
        self._generation = 0
        self._source: Optional[FrameSource] = None
        self._worker: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

        self._detections: List[RecognizedFace] = []
        self._last_frame: Optional[np.ndarray] = None
        self._frame_size: Optional[Tuple[int, int]] = None
        self.last_error: Optional[str] = None
        self.read_fail_streak = 0

    @property
    def state(self) -> LoopState:
        with self.lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is LoopState.RUNNING

    @property
    def frame_size(self) -> Optional[Tuple[int, int]]:
        with self.lock:
            return self._frame_size

    def detections(self) -> List[RecognizedFace]:
        with self.lock:
            return list(self._detections)

    def last_frame(self) -> Optional[np.ndarray]:
        with self.lock:
            return self._last_frame

    def start(self) -> bool:
        with self.transition_lock:
            if self.is_running:
                return False

            source = self.source_factory()
            try:
                source.open()
            except CameraError:
                raise
            except Exception as exc:
                raise CameraError(f"Failed to access camera: {exc}") from exc

            stop_event = threading.Event()
            with self.lock:
                self._generation += 1
                generation = self._generation
                self._source = source
                self._frame_size = source.frame_size
                self._state = LoopState.RUNNING
                self._stop_event = stop_event
                self._detections = []
                self.last_error = None
                self.read_fail_streak = 0

            self._worker = threading.Thread(
                target=self._run,
                args=(generation, source, stop_event),
                name=f"facewatch-detection-{generation}",
                daemon=True,
            )
            self._worker.start()
            width, height = source.frame_size
            self.logger.info(
                "Detection loop started (%dx%d, every %d ms)", width, height, self.interval_ms
            )
            return True

    def stop(self) -> bool:
        with self.transition_lock:
            with self.lock:
                if self._state is LoopState.IDLE:
                    return False
                self._state = LoopState.IDLE
                # Invalidates whatever attempt is still in flight.
                self._generation += 1
                source, self._source = self._source, None
                stop_event, self._stop_event = self._stop_event, None
                worker, self._worker = self._worker, None
                self._detections = []
                self._last_frame = None
                self._frame_size = None

            if stop_event is not None:
                stop_event.set()
            if source is not None:
                with self.capture_lock:
                    source.close()
            if worker is not None and worker is not threading.current_thread():
                worker.join(timeout=self.join_timeout)
                if worker.is_alive():
                    self.logger.info("Detection attempt still in flight; its result will be discarded")

            self.logger.info("Detection loop stopped")
            return True

    def _is_current(self, generation: int) -> bool:
        return self._generation == generation and self._state is LoopState.RUNNING

    def _run(self, generation: int, source: FrameSource, stop_event: threading.Event) -> None:
        interval = self.interval_ms / 1000.0
        while not stop_event.is_set():
            started = time.monotonic()
            self._tick(generation, source)
            elapsed = time.monotonic() - started
            stop_event.wait(max(0.0, interval - elapsed))

    def _tick(self, generation: int, source: FrameSource) -> bool:
        frame = self._read_frame(generation, source)
        if frame is None:
            return False

        try:
            faces = self.recognizer.recognize(frame)
        except FaceWatchError as exc:
            self.logger.error("Error during face recognition: %s", exc)
            self._commit_frame_only(generation, frame)
            return False
        except Exception:
            self.logger.exception("Unexpected detector failure")
            self._commit_frame_only(generation, frame)
            return False

        filtered = filter_by_confidence(faces, self.settings.confidence)
        rendered = render_overlay(frame, filtered, self.highlight_id)

        with self.lock:
            if not self._is_current(generation):
                self.logger.debug("Discarding detection result from a stopped run")
                return False
            self._detections = filtered
            self._last_frame = rendered
            # Under the lock so a concurrent stop() cannot slip in before history and alerts.
            self.history.record(filtered)
            if self.dispatcher is not None:
                self.dispatcher.dispatch(filtered, muted=self.settings.muted)
        return True

    def _read_frame(self, generation: int, source: FrameSource) -> Optional[np.ndarray]:
        try:
            with self.capture_lock:
                with self.lock:
                    if not self._is_current(generation):
                        return None
                frame = source.read()
        except Exception as exc:
            self.read_fail_streak += 1
            if isinstance(exc, CameraError):
                self.logger.warning("Camera read failed (%d in a row): %s", self.read_fail_streak, exc)
            else:
                self.logger.exception("Unexpected camera read failure (%d in a row)", self.read_fail_streak)
            if self.read_fail_streak == self.read_fail_threshold:
                message = f"Camera frame read failed {self.read_fail_streak} times. Check the camera connection."
                with self.lock:
                    self.last_error = message
                if self.on_error is not None:
                    self.on_error(message)
            return None

        if self.read_fail_streak:
            self.read_fail_streak = 0
            with self.lock:
                self.last_error = None
        return frame

    def _commit_frame_only(self, generation: int, frame: np.ndarray) -> None:
        # Keep the video moving with the previous detections.
        with self.lock:
            if not self._is_current(generation):
                return
            previous = list(self._detections)
        rendered = render_overlay(frame, previous, self.highlight_id)
        with self.lock:
            if self._is_current(generation):
                self._last_frame = rendered
