from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import torch

from .exceptions import DetectorError
from .face_types import ObjectDetection
from .logger import setup_logger

try:
    from ultralytics import YOLO
except ImportError:  # pragma: no cover - handled at runtime.
    YOLO = None


class YoloV8Detector:
    """Pretrained YOLOv8 model restricted to a set of class labels."""

    def __init__(
        self,
        model_path: str | Path = "yolov8n.pt",
        prefer_gpu: bool = True,
        conf_threshold: float = 0.25,
        iou_threshold: float = 0.45,
        labels: Optional[Sequence[str]] = None,
        img_size: int = 640,
        max_detections: int = 300,
    ) -> None:
        if YOLO is None:
            raise DetectorError("Ultralytics YOLO is not installed. Install the project dependencies first.")

        self.model_path = str(model_path)
        self.conf_threshold = conf_threshold
        self.iou_threshold = iou_threshold
        self.img_size = img_size
        self.max_detections = max_detections
        self.logger = setup_logger(self.__class__.__name__)
        self.device = "cuda:0" if prefer_gpu and torch.cuda.is_available() else "cpu"

        try:
            self.model = YOLO(self.model_path)
        except Exception as exc:
            raise DetectorError(f"Failed to initialize YOLO model '{self.model_path}': {exc}") from exc

        self.names = self._names_by_id(self.model.names)
        self.class_ids = self._resolve_class_ids(labels)
        self.logger.info(
            "Loaded %s on %s (classes: %s)",
            Path(self.model_path).name,
            self.device,
            ", ".join(self.names[i] for i in self.class_ids) if self.class_ids else "all",
        )

    def detect(self, frame: np.ndarray) -> List[ObjectDetection]:
        try:
            results = self.model.predict(
                source=frame,
                conf=self.conf_threshold,
                iou=self.iou_threshold,
                imgsz=self.img_size,
                max_det=self.max_detections,
                classes=self.class_ids,
                device=self.device,
                half=self.device != "cpu",
                verbose=False,
            )
        except Exception as exc:
            raise DetectorError(f"YOLO inference failed: {exc}") from exc

        if not results or results[0].boxes is None:
            return []

        boxes = results[0].boxes
        corners = boxes.xyxy.cpu().numpy().astype(int)
        scores = boxes.conf.cpu().numpy()
        class_ids = boxes.cls.cpu().numpy().astype(int)
        return [
            ObjectDetection(
                class_id=int(class_id),
                label=self.names.get(int(class_id), str(class_id)),
                confidence=float(score),
                bbox=tuple(int(v) for v in box),
            )
            for box, score, class_id in zip(corners, scores, class_ids)
        ]

    @staticmethod
    def _names_by_id(names) -> Dict[int, str]:
        if isinstance(names, dict):
            return {int(k): str(v) for k, v in names.items()}
        return {i: str(v) for i, v in enumerate(names or [])}

    def _resolve_class_ids(self, labels: Optional[Sequence[str]]) -> Optional[List[int]]:
        if not labels:
            return None
        wanted = {label.lower() for label in labels}
        ids = [class_id for class_id, name in self.names.items() if name.lower() in wanted]
        if not ids:
            raise DetectorError(f"Model {self.model_path} has no classes named {sorted(wanted)}")
        return ids
