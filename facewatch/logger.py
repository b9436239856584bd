import logging
from logging.handlers import RotatingFileHandler

from .config import LOG_DIR, LOG_LEVEL

ROOT_LOGGER_NAME = "facewatch"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(threadName)s | %(message)s"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if root.handlers:
        return root

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    root.propagate = False
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    for handler in (
        RotatingFileHandler(LOG_DIR / "facewatch.log", maxBytes=2_000_000, backupCount=5, encoding="utf-8"),
        logging.StreamHandler(),
    ):
        handler.setFormatter(formatter)
        root.addHandler(handler)
    return root


def setup_logger(name: str) -> logging.Logger:
    """Child of the ``facewatch`` logger; all children share one file and console handler."""
    _configure_root()
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
