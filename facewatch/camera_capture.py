from __future__ import annotations

import os
import time
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import CAMERA_BACKEND_ORDER
from .exceptions import CameraError
from .logger import setup_logger

# (display name, cv2 constant name, accepted spellings)
_BACKENDS: Tuple[Tuple[str, str, Tuple[str, ...]], ...] = (
    ("Auto", "CAP_ANY", ("auto", "any")),
    ("V4L2", "CAP_V4L2", ("v4l2", "v4l")),
    ("DirectShow", "CAP_DSHOW", ("dshow", "directshow")),
    ("Media Foundation", "CAP_MSMF", ("msmf", "mediafoundation")),
    ("AVFoundation", "CAP_AVFOUNDATION", ("avfoundation", "mac")),
)
WARMUP_ATTEMPTS = 6
WARMUP_DELAY_SECONDS = 0.03

logger = setup_logger("camera_capture")


def _platform_default() -> List[str]:
    if os.name == "nt":
        return ["DirectShow", "Media Foundation", "Auto"]
    return ["Auto", "V4L2", "AVFoundation"]


def preferred_backend_order(requested: Sequence[str] = CAMERA_BACKEND_ORDER) -> List[str]:
    """Map user spellings to backend names, keeping order; unknown names are ignored."""
    order: List[str] = []
    for token in requested:
        key = token.strip().lower().replace(" ", "")
        for display, _, aliases in _BACKENDS:
            if key in aliases and display not in order:
                order.append(display)
    return order or _platform_default()


def capture_backends(requested: Sequence[str] = CAMERA_BACKEND_ORDER) -> List[Tuple[str, Optional[int]]]:
    constants = {display: getattr(cv2, attr, None) for display, attr, _ in _BACKENDS}
    candidates: List[Tuple[str, Optional[int]]] = []
    for name in preferred_backend_order(requested):
        api = constants[name]
        # Some builds alias several names to the same constant.
        if any(api == existing for _, existing in candidates):
            continue
        candidates.append((name, api))
    return candidates


def _first_frame(cap: cv2.VideoCapture) -> Optional[np.ndarray]:
    # A backend may report isOpened() and still never deliver a frame.
    for _ in range(WARMUP_ATTEMPTS):
        ok, frame = cap.read()
        if ok and frame is not None:
            return frame
        time.sleep(WARMUP_DELAY_SECONDS)
    return None


def open_camera_capture(camera_index: int) -> Tuple[cv2.VideoCapture, str, np.ndarray]:
    """Open the first backend that delivers a frame; returns the capture, backend name and first frame."""
    candidates = capture_backends()
    for name, api in candidates:
        cap = cv2.VideoCapture(camera_index) if api is None else cv2.VideoCapture(camera_index, api)
        frame = _first_frame(cap) if cap.isOpened() else None
        if frame is not None:
            logger.info("Camera %d opened with %s backend", camera_index, name)
            return cap, name, frame
        logger.debug("Camera %d: %s backend delivered no frame", camera_index, name)
        cap.release()

    tried = ", ".join(name for name, _ in candidates) or "default backend"
    raise CameraError(f"Unable to open webcam index {camera_index}. Tried backends: {tried}.")
