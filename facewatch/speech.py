from __future__ import annotations

import threading
from queue import Empty, Full, Queue
from typing import Optional

import pyttsx3

from .config import SPEECH_QUEUE_SIZE, SPEECH_RATE, SPEECH_VOLUME
from .exceptions import SpeechError
from .logger import setup_logger


class SpeechSynthesizer:
    """Speaks phrases on a background thread that owns the pyttsx3 engine.

    ``speak`` never blocks the caller. When the queue is full the oldest
    pending phrase is dropped so alerts stay current.
    """

    def __init__(
        self,
        rate: int = SPEECH_RATE,
        volume: float = SPEECH_VOLUME,
        queue_size: int = SPEECH_QUEUE_SIZE,
    ):
        self.rate = rate
        self.volume = volume
        self.logger = setup_logger(self.__class__.__name__)
        self.last_error: Optional[str] = None

        self._queue: Queue[Optional[str]] = Queue(maxsize=max(1, queue_size))
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self.last_error is None

    def speak(self, text: str) -> bool:
        if not text or not self.available:
            return False
        self._ensure_worker()
        self._enqueue_latest(text)
        return True

    def close(self, timeout: float = 3.0) -> None:
        with self._lock:
            worker = self._worker
            self._worker = None
        if worker is None:
            return
        self._enqueue_latest(None)
        worker.join(timeout=timeout)

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="facewatch-speech", daemon=True)
            self._worker.start()

    def _enqueue_latest(self, item: Optional[str]) -> None:
        try:
            self._queue.put_nowait(item)
            return
        except Full:
            pass

        try:
            dropped = self._queue.get_nowait()
            self.logger.debug("Speech queue full, dropped: %s", dropped)
        except Empty:
            pass

        try:
            self._queue.put_nowait(item)
        except Full:
            pass

    def _init_engine(self):
        try:
            engine = pyttsx3.init()
            engine.setProperty("rate", self.rate)
            engine.setProperty("volume", float(self.volume))
        except Exception as exc:
            raise SpeechError(f"Text-to-speech engine unavailable: {exc}") from exc
        return engine

    def _run(self) -> None:
        try:
            engine = self._init_engine()
        except SpeechError as exc:
            self.last_error = str(exc)
            self.logger.error("%s. Audio alerts are disabled.", exc)
            return

        while True:
            text = self._queue.get()
            if text is None:
                break
            try:
                engine.say(text)
                engine.runAndWait()
            except Exception as exc:
                self.logger.warning("Speech synthesis failed for '%s': %s", text, exc)

        try:
            engine.stop()
        except Exception as exc:
            self.logger.debug("Speech engine stop failed: %s", exc)
