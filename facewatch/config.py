import os
from pathlib import Path

import torch


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values = tuple(token.strip() for token in raw.split(",") if token.strip())
    return values or default


BASE_DIR = Path(__file__).resolve().parent.parent
LOG_DIR = Path(os.getenv("FACEWATCH_LOG_DIR", str(BASE_DIR / "logs")))
KNOWN_FACES_FILE = os.getenv("FACEWATCH_KNOWN_FACES_FILE") or None
LOG_LEVEL = os.getenv("FACEWATCH_LOG_LEVEL", "INFO").strip().upper()

# Webcam settings
CAMERA_INDEX = _int_env("FACEWATCH_CAMERA_INDEX", 0)
FRAME_WIDTH = _int_env("FACEWATCH_FRAME_WIDTH", 1280)
FRAME_HEIGHT = _int_env("FACEWATCH_FRAME_HEIGHT", 720)
FRAME_FPS = _int_env("FACEWATCH_FRAME_FPS", 30)
CAMERA_BACKEND_ORDER = _csv_env("FACEWATCH_CAMERA_BACKEND_ORDER", ())
CAMERA_READ_FAIL_THRESHOLD = _int_env("FACEWATCH_CAMERA_READ_FAIL_THRESHOLD", 4)
JPEG_QUALITY = _int_env("FACEWATCH_JPEG_QUALITY", 78)

# Detection loop
DETECTOR_KIND = os.getenv("FACEWATCH_DETECTOR", "face").strip().lower()
DETECTION_INTERVAL_MS = _int_env("FACEWATCH_DETECTION_INTERVAL_MS", 500)
MIN_DETECTION_INTERVAL_MS = 200
MAX_DETECTION_INTERVAL_MS = 2000
FACE_DETECTION_THRESHOLD = _float_env("FACEWATCH_FACE_DETECTION_THRESHOLD", 0.5)
MIN_FACE_SIZE = _int_env("FACEWATCH_MIN_FACE_SIZE", 40)

# Generic object detector variant, filtered to people
OBJECT_MODEL = os.getenv("FACEWATCH_OBJECT_MODEL", "yolov8n.pt")
OBJECT_CONFIDENCE = _float_env("FACEWATCH_OBJECT_CONFIDENCE", 0.30)
OBJECT_IOU = _float_env("FACEWATCH_OBJECT_IOU", 0.45)
OBJECT_IMAGE_SIZE = _int_env("FACEWATCH_OBJECT_IMAGE_SIZE", 640)
OBJECT_MAX_DETECTIONS = _int_env("FACEWATCH_OBJECT_MAX_DETECTIONS", 100)
PERSON_LABEL = "person"

# Recognition settings
# Euclidean distance on L2-normalised descriptors; 0.6 equals cosine 0.82.
MATCH_DISTANCE_THRESHOLD = _float_env("FACEWATCH_MATCH_DISTANCE_THRESHOLD", 0.6)
REFERENCE_FETCH_TIMEOUT = _float_env("FACEWATCH_REFERENCE_FETCH_TIMEOUT", 10.0)
HIGHLIGHT_IDENTITY_ID = os.getenv("FACEWATCH_HIGHLIGHT_ID", "ashal")

# Confidence slider
DEFAULT_CONFIDENCE = _float_env("FACEWATCH_DEFAULT_CONFIDENCE", 0.5)
CONFIDENCE_MIN = 0.10
CONFIDENCE_MAX = 0.90
CONFIDENCE_STEP = 0.05

# Alerts
ALERT_COOLDOWN_SECONDS = _float_env("FACEWATCH_ALERT_COOLDOWN_SECONDS", 5.0)
START_MUTED = _bool_env("FACEWATCH_START_MUTED", False)
SPEECH_ENABLED = _bool_env("FACEWATCH_SPEECH_ENABLED", True)
SPEECH_RATE = _int_env("FACEWATCH_SPEECH_RATE", 175)
SPEECH_VOLUME = _float_env("FACEWATCH_SPEECH_VOLUME", 0.8)
SPEECH_QUEUE_SIZE = _int_env("FACEWATCH_SPEECH_QUEUE_SIZE", 8)

HISTORY_LIMIT = _int_env("FACEWATCH_HISTORY_LIMIT", 10)
NOTIFICATION_LIMIT = 20

# Runtime settings
DEVICE = "cuda" if torch.cuda.is_available() else "cpu"
