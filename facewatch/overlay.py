import unicodedata
from typing import Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import HIGHLIGHT_IDENTITY_ID, JPEG_QUALITY
from .face_types import RecognizedFace

Color = Tuple[int, int, int]

# BGR
CATEGORY_COLORS: Dict[str, Color] = {
    "user": (255, 132, 0),
    "celebrity": (0, 128, 255),
    "unknown": (150, 150, 150),
}
BORDER_COLOR: Color = (230, 230, 230)
TEXT_COLOR: Color = (255, 255, 255)
CROWN_COLOR: Color = (0, 215, 255)
SCAN_TINT_COLOR: Color = (255, 200, 0)

LABEL_HEIGHT = 24
GLOW_PAD = 15


def render_overlay(
    frame: np.ndarray,
    faces: Sequence[RecognizedFace],
    highlight_id: Optional[str] = HIGHLIGHT_IDENTITY_ID,
) -> np.ndarray:
    """Return a new image with every face drawn over a copy of ``frame``."""
    canvas = frame.copy()
    height, width = canvas.shape[:2]

    for face in faces:
        x1, y1, x2, y2 = face.box.corners
        x1, x2 = int(np.clip(x1, 0, width - 1)), int(np.clip(x2, 0, width - 1))
        y1, y2 = int(np.clip(y1, 0, height - 1)), int(np.clip(y2, 0, height - 1))
        if x2 <= x1 or y2 <= y1:
            continue

        color = CATEGORY_COLORS.get(face.category, CATEGORY_COLORS["unknown"])
        _draw_glow(canvas, (x1, y1, x2, y2), color)
        _fill_gradient(canvas, (x1, y1, x2, y2), color)
        cv2.rectangle(canvas, (x1, y1), (x2, y2), BORDER_COLOR, 2, cv2.LINE_AA)
        _draw_label(canvas, face_label(face), x1, y1, color)

        if highlight_id and face.id == highlight_id:
            _draw_crown(canvas, (x1 + x2) // 2, y1)

    tint = np.empty_like(canvas)
    tint[:] = SCAN_TINT_COLOR
    cv2.addWeighted(tint, 0.05, canvas, 0.95, 0.0, dst=canvas)
    return canvas


def face_label(face: RecognizedFace) -> str:
    if face.score is None:
        return face.name
    return f"{face.name} ({round(face.score * 100)}%)"


def encode_jpeg(frame: np.ndarray, quality: int = JPEG_QUALITY) -> Optional[bytes]:
    quality = int(np.clip(quality, 45, 95))
    ok, encoded = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        return None
    return encoded.tobytes()


def ascii_text(text: str) -> str:
    # Hershey fonts only cover ASCII.
    return unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")


def _draw_glow(canvas: np.ndarray, box: Tuple[int, int, int, int], color: Color) -> None:
    x1, y1, x2, y2 = box
    height, width = canvas.shape[:2]
    rx1, ry1 = max(0, x1 - GLOW_PAD), max(0, y1 - GLOW_PAD)
    rx2, ry2 = min(width, x2 + GLOW_PAD + 1), min(height, y2 + GLOW_PAD + 1)

    roi = canvas[ry1:ry2, rx1:rx2]
    layer = np.zeros_like(roi)
    cv2.rectangle(layer, (x1 - rx1, y1 - ry1), (x2 - rx1, y2 - ry1), color, 6, cv2.LINE_AA)
    layer = cv2.GaussianBlur(layer, (0, 0), sigmaX=5.0, sigmaY=5.0)
    roi[:] = cv2.add(roi, layer)


def _fill_gradient(canvas: np.ndarray, box: Tuple[int, int, int, int], color: Color) -> None:
    x1, y1, x2, y2 = box
    roi = canvas[y1:y2, x1:x2]
    h, w = roi.shape[:2]

    xs = np.linspace(0.0, 1.0, w, dtype=np.float32)[None, :]
    ys = np.linspace(0.0, 1.0, h, dtype=np.float32)[:, None]
    alpha = (0.4 - 0.15 * ((xs + ys) * 0.5))[..., None]

    tint = np.array(color, dtype=np.float32)[None, None, :]
    blended = roi.astype(np.float32) * (1.0 - alpha) + tint * alpha
    roi[:] = np.clip(blended, 0.0, 255.0).astype(np.uint8)


def _draw_label(canvas: np.ndarray, label: str, x: int, y: int, color: Color) -> None:
    text = ascii_text(label)
    (text_w, _), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 0.55, 2)
    top = y - LABEL_HEIGHT if y >= LABEL_HEIGHT else y
    cv2.rectangle(canvas, (x, top), (x + text_w + 10, top + LABEL_HEIGHT), color, -1)
    cv2.putText(
        canvas,
        text,
        (x + 5, top + LABEL_HEIGHT - 7),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.55,
        TEXT_COLOR,
        2,
        cv2.LINE_AA,
    )


def _draw_crown(canvas: np.ndarray, cx: int, top: int) -> None:
    points = np.array(
        [
            (cx, top - 30),
            (cx - 15, top - 20),
            (cx - 7, top - 10),
            (cx, top - 15),
            (cx + 7, top - 10),
            (cx + 15, top - 20),
        ],
        dtype=np.int32,
    )
    cv2.fillPoly(canvas, [points], CROWN_COLOR, cv2.LINE_AA)
    cv2.polylines(canvas, [points], True, (40, 40, 40), 1, cv2.LINE_AA)
