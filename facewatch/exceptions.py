class FaceWatchError(Exception):
    """Base exception for the face watch system."""


class CameraError(FaceWatchError):
    """Raised when webcam access fails."""


class FaceEngineError(FaceWatchError):
    """Raised when face detection or descriptor extraction fails."""


class DetectorError(FaceWatchError):
    """Raised when object detection initialization or inference fails."""


class ReferenceLoadError(FaceWatchError):
    """Raised when the reference identity list cannot be read."""


class SpeechError(FaceWatchError):
    """Raised when the text-to-speech engine cannot be used."""
