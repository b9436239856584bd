import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .config import ALERT_COOLDOWN_SECONDS, HIGHLIGHT_IDENTITY_ID
from .face_types import RecognizedFace
from .logger import setup_logger


class Speaker(Protocol):
    def speak(self, text: str) -> bool:
        ...


def alert_phrase(face: RecognizedFace, highlight_id: Optional[str] = HIGHLIGHT_IDENTITY_ID) -> str:
    if highlight_id and face.id == highlight_id:
        return f"Hello {face.name}, welcome back!"
    if face.category == "celebrity":
        return f"Celebrity detected: {face.name}"
    return "Unknown person detected"


class AlertDispatcher:
    """Speaks one phrase per face, with an independent cooldown per alert label."""

    def __init__(
        self,
        speaker: Optional[Speaker],
        cooldown_seconds: float = ALERT_COOLDOWN_SECONDS,
        highlight_id: Optional[str] = HIGHLIGHT_IDENTITY_ID,
        clock: Callable[[], float] = time.monotonic,
        on_alert: Optional[Callable[[str], None]] = None,
    ):
        self.speaker = speaker
        self.cooldown_seconds = float(cooldown_seconds)
        self.highlight_id = highlight_id
        self.clock = clock
        self.on_alert = on_alert
        self.logger = setup_logger(self.__class__.__name__)

        self._lock = threading.Lock()
        self._last_spoken: Dict[str, float] = {}

    def dispatch(
        self,
        faces: Sequence[RecognizedFace],
        muted: bool = False,
        now: Optional[float] = None,
    ) -> List[str]:
        if muted or not faces:
            return []

        now = self.clock() if now is None else now
        spoken: List[str] = []
        for face in faces:
            label = face.alert_label
            with self._lock:
                last = self._last_spoken.get(label)
                if last is not None and now - last < self.cooldown_seconds:
                    continue
                self._last_spoken[label] = now

            phrase = alert_phrase(face, self.highlight_id)
            spoken.append(phrase)
            if self.speaker is not None:
                self.speaker.speak(phrase)
            if self.on_alert is not None:
                self.on_alert(phrase)

        if spoken:
            self.logger.info("Alerts: %s", "; ".join(spoken))
        return spoken
