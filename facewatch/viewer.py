import time

import cv2
import numpy as np

from .config import CONFIDENCE_STEP
from .exceptions import FaceWatchError
from .logger import setup_logger
from .overlay import ascii_text
from .runtime import FaceWatchRuntime, ModelStatus
from .settings import snap_confidence

WINDOW_NAME = "FaceWatch - Q quit | M mute | +/- confidence"


def run_viewer(runtime: FaceWatchRuntime) -> None:
    """Show the annotated camera feed in a local OpenCV window until ``q`` is pressed."""
    logger = setup_logger("viewer")

    if runtime.status is ModelStatus.LOADING:
        runtime.load_models()
    if runtime.status is not ModelStatus.READY:
        raise FaceWatchError(runtime.status_error or "Face recognition models failed to load.")

    runtime.start_camera()
    logger.info("Viewer started")
    cursor = 0
    try:
        while True:
            frame = runtime.get_frame()
            if frame is not None:
                display = frame.copy()
                _draw_status(display, runtime)
                cv2.imshow(WINDOW_NAME, display)

            for note in runtime.notifications_since(cursor):
                logger.info("[%s] %s", note["level"], note["message"])
                cursor = note["id"]

            key = cv2.waitKey(30) & 0xFF
            if key == ord("q"):
                break
            if key == ord("m"):
                runtime.toggle_mute()
            elif key in (ord("+"), ord("=")):
                _nudge_confidence(runtime, CONFIDENCE_STEP)
            elif key in (ord("-"), ord("_")):
                _nudge_confidence(runtime, -CONFIDENCE_STEP)
            if frame is None:
                time.sleep(0.02)
    finally:
        runtime.shutdown()
        cv2.destroyAllWindows()


def _nudge_confidence(runtime: FaceWatchRuntime, delta: float) -> None:
    try:
        runtime.set_confidence(snap_confidence(runtime.settings.confidence + delta))
    except ValueError:
        return


def _draw_status(frame: np.ndarray, runtime: FaceWatchRuntime) -> None:
    loop = runtime.loop
    faces = loop.detections() if loop is not None else []
    if faces:
        message = "Detected: " + ", ".join(ascii_text(face.name) for face in faces)
    else:
        message = "No face recognized"
    audio = "muted" if runtime.settings.muted else "on"
    message = f"{message} | conf {runtime.settings.confidence:.2f} | audio {audio}"

    cv2.rectangle(frame, (0, 0), (frame.shape[1], 44), (35, 35, 35), -1)
    cv2.putText(
        frame,
        message,
        (16, 29),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.65,
        (255, 255, 255),
        2,
        cv2.LINE_AA,
    )
