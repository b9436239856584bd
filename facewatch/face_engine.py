from dataclasses import dataclass, field
from typing import List, Tuple

import cv2
import numpy as np
import torch
import torch.nn.functional as f
import torchvision.models as models
from torchvision.models import ResNet18_Weights

from .config import DEVICE, FACE_DETECTION_THRESHOLD, MIN_FACE_SIZE
from .exceptions import FaceEngineError

try:
    import mediapipe as mp
except Exception:  # pragma: no cover - runtime dependency guard
    mp = None

DESCRIPTOR_INPUT = 224
CROP_MARGIN = 0.1
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


@dataclass
class FaceBatch:
    """Faces found in one frame. Boxes are ``[x1, y1, x2, y2]`` in pixels."""

    embeddings: List[np.ndarray] = field(default_factory=list)
    boxes: List[np.ndarray] = field(default_factory=list)
    confidences: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.boxes)


@dataclass
class _FaceRegion:
    box: np.ndarray
    score: float


class FaceEngine:
    """mediapipe face detection plus a ResNet18 descriptor head.

    Descriptors are 512-dimensional and L2-normalised, so the Euclidean
    distance between two of them lies in ``[0, 2]``.
    """

    def __init__(
        self,
        device: str = DEVICE,
        detection_threshold: float = FACE_DETECTION_THRESHOLD,
        min_face_size: int = MIN_FACE_SIZE,
    ):
        if mp is None:
            raise FaceEngineError("mediapipe is required. Install the project dependencies first.")

        self.device = torch.device(device)
        self.detection_threshold = detection_threshold
        self.min_face_size = min_face_size

        try:
            # model_selection=1 is the full-range model; portraits and webcam frames differ in scale.
            self.detector = mp.solutions.face_detection.FaceDetection(
                model_selection=1,
                min_detection_confidence=detection_threshold,
            )
            backbone = models.resnet18(weights=ResNet18_Weights.DEFAULT)
            backbone.fc = torch.nn.Identity()
            self.embedder = backbone.eval().to(self.device)
        except Exception as exc:
            raise FaceEngineError(f"Failed to initialize face models: {exc}") from exc

        self.mean = torch.tensor(IMAGENET_MEAN, device=self.device).view(1, 3, 1, 1)
        self.std = torch.tensor(IMAGENET_STD, device=self.device).view(1, 3, 1, 1)
        self.clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))

    def detect(self, frame: np.ndarray) -> FaceBatch:
        """Run face detection only; the returned batch carries no embeddings."""
        regions = self._find_faces(frame)
        return FaceBatch(
            boxes=[region.box for region in regions],
            confidences=[region.score for region in regions],
        )

    def extract_embeddings(self, frame: np.ndarray) -> FaceBatch:
        regions = self._find_faces(frame)
        if not regions:
            return FaceBatch()

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        try:
            batch = torch.stack([self._prepare(self._square_crop(rgb, region.box)) for region in regions])
            batch = (batch.to(self.device) - self.mean) / self.std
            with torch.inference_mode():
                if self.device.type == "cuda":
                    with torch.autocast(device_type="cuda", dtype=torch.float16):
                        raw = self.embedder(batch)
                else:
                    raw = self.embedder(batch)
                descriptors = f.normalize(raw.float(), p=2, dim=1).cpu().numpy()
        except Exception as exc:
            raise FaceEngineError(f"Descriptor extraction failed: {exc}") from exc

        return FaceBatch(
            embeddings=list(descriptors.astype(np.float32)),
            boxes=[region.box for region in regions],
            confidences=[region.score for region in regions],
        )

    def _find_faces(self, frame: np.ndarray) -> List[_FaceRegion]:
        height, width = frame.shape[:2]
        try:
            result = self.detector.process(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        except Exception as exc:
            raise FaceEngineError(f"Face detection failed: {exc}") from exc

        regions: List[_FaceRegion] = []
        for detection in result.detections or []:
            score = float(detection.score[0]) if detection.score else 0.0
            if score < self.detection_threshold:
                continue

            rel = detection.location_data.relative_bounding_box
            corners = np.array(
                [rel.xmin * width, rel.ymin * height, (rel.xmin + rel.width) * width, (rel.ymin + rel.height) * height],
                dtype=np.float32,
            )
            corners[[0, 2]] = np.clip(corners[[0, 2]], 0, width)
            corners[[1, 3]] = np.clip(corners[[1, 3]], 0, height)
            if min(corners[2] - corners[0], corners[3] - corners[1]) < self.min_face_size:
                continue
            regions.append(_FaceRegion(box=corners, score=score))
        return regions

    @staticmethod
    def _square_crop(rgb: np.ndarray, box: np.ndarray) -> np.ndarray:
        # Pads with edge pixels when the square runs off the frame.
        x1, y1, x2, y2 = box
        side = int(max(x2 - x1, y2 - y1) * (1.0 + CROP_MARGIN))
        cx, cy = int((x1 + x2) / 2), int((y1 + y2) / 2)
        left, top = cx - side // 2, cy - side // 2
        height, width = rgb.shape[:2]

        pad: Tuple[int, int, int, int] = (
            max(0, -top),
            max(0, top + side - height),
            max(0, -left),
            max(0, left + side - width),
        )
        if any(pad):
            rgb = cv2.copyMakeBorder(rgb, *pad, cv2.BORDER_REPLICATE)
            left += pad[2]
            top += pad[0]
        return rgb[top:top + side, left:left + side]

    def _prepare(self, crop: np.ndarray) -> torch.Tensor:
        interpolation = cv2.INTER_AREA if crop.shape[0] >= DESCRIPTOR_INPUT else cv2.INTER_CUBIC
        resized = cv2.resize(crop, (DESCRIPTOR_INPUT, DESCRIPTOR_INPUT), interpolation=interpolation)

        # Equalize lightness only so webcam frames and studio portraits land closer together.
        lab = cv2.cvtColor(resized, cv2.COLOR_RGB2LAB)
        lab[..., 0] = self.clahe.apply(lab[..., 0])
        balanced = cv2.cvtColor(lab, cv2.COLOR_LAB2RGB)
        return torch.from_numpy(balanced).permute(2, 0, 1).float().div_(255.0)
