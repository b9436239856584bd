from typing import Optional, Tuple

import cv2
import numpy as np

from .camera_capture import open_camera_capture
from .config import CAMERA_INDEX, FRAME_FPS, FRAME_HEIGHT, FRAME_WIDTH
from .exceptions import CameraError


class CameraStream:
    def __init__(
        self,
        camera_index: int = CAMERA_INDEX,
        width: int = FRAME_WIDTH,
        height: int = FRAME_HEIGHT,
        fps: int = FRAME_FPS,
    ):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.fps = fps
        self.cap: Optional[cv2.VideoCapture] = None
        self.backend_name: str | None = None
        self._frame_size: Optional[Tuple[int, int]] = None

    def __enter__(self) -> "CameraStream":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def frame_size(self) -> Tuple[int, int]:
        """Native ``(width, height)`` of the delivered frames."""
        if self._frame_size is None:
            raise CameraError("Webcam stream is not initialized.")
        return self._frame_size

    def open(self) -> None:
        self.cap, self.backend_name, _ = open_camera_capture(self.camera_index)

        # Requested sizes are hints; the first frame after applying them is authoritative.
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)
        cv2.setUseOptimized(True)

        try:
            frame = self.read()
        except CameraError:
            self.close()
            raise
        h, w = frame.shape[:2]
        self._frame_size = (w, h)

    def read(self) -> np.ndarray:
        if self.cap is None:
            raise CameraError("Webcam stream is not initialized.")

        success, frame = self.cap.read()
        if not success or frame is None:
            raise CameraError("Failed to read frame from webcam.")
        return frame

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        self._frame_size = None
