import threading
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional, Sequence

from .config import HISTORY_LIMIT
from .face_types import RecognizedFace


class DetectionHistory:
    """Most recent detection entries, newest first."""

    def __init__(self, limit: int = HISTORY_LIMIT):
        if limit < 1:
            raise ValueError("History limit must be at least 1.")
        self.limit = limit
        self._entries: Deque[str] = deque(maxlen=limit)
        self._lock = threading.Lock()

    def record(self, faces: Sequence[RecognizedFace], when: Optional[datetime] = None) -> List[str]:
        if not faces:
            return []

        stamp = (when or datetime.now()).strftime("%H:%M:%S")
        new_entries = [f"{face.name} detected at {stamp}" for face in faces]
        with self._lock:
            # Prepend while keeping this cycle's faces in detection order.
            for entry in reversed(new_entries):
                self._entries.appendleft(entry)
        return new_entries

    def entries(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
