import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional, Sequence

from .exceptions import ReferenceLoadError

KnownCategory = Literal["user", "celebrity"]
VALID_CATEGORIES = {"user", "celebrity"}


@dataclass(frozen=True)
class KnownFace:
    id: str
    name: str
    image_url: str
    category: KnownCategory


DEFAULT_KNOWN_FACES: tuple[KnownFace, ...] = (
    KnownFace(
        id="ashal",
        name="ASHAL",
        image_url="reference_faces/ashal.png",
        category="user",
    ),
    KnownFace(
        id="tom-cruise",
        name="Tom Cruise",
        image_url="https://upload.wikimedia.org/wikipedia/commons/3/33/Tom_Cruise_by_Gage_Skidmore_2.jpg",
        category="celebrity",
    ),
    KnownFace(
        id="taylor-swift",
        name="Taylor Swift",
        image_url=(
            "https://upload.wikimedia.org/wikipedia/commons/b/b5/"
            "191125_Taylor_Swift_at_the_2019_American_Music_Awards_%28cropped%29.png"
        ),
        category="celebrity",
    ),
    KnownFace(
        id="leonardo-dicaprio",
        name="Leonardo DiCaprio",
        image_url="https://upload.wikimedia.org/wikipedia/commons/4/46/Leonardo_Dicaprio_Cannes_2019.jpg",
        category="celebrity",
    ),
    KnownFace(
        id="beyonce",
        name="Beyoncé",
        image_url=(
            "https://upload.wikimedia.org/wikipedia/commons/1/17/"
            "Beyonc%C3%A9_at_The_Lion_King_European_Premiere_2019.png"
        ),
        category="celebrity",
    ),
)


def load_known_faces(path: Optional[str | Path] = None) -> List[KnownFace]:
    """Return the reference identities, read from a JSON file when a path is given.

    The file holds an array of ``{"id", "name", "image_url", "category"}``
    objects. Relative image paths are resolved against the file's directory.
    """
    if path is None:
        return list(DEFAULT_KNOWN_FACES)

    source = Path(path)
    try:
        raw = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ReferenceLoadError(f"Unable to read known faces from {source}: {exc}") from exc

    if not isinstance(raw, list):
        raise ReferenceLoadError(f"Known faces file {source} must contain a JSON array.")

    faces = [_parse_entry(entry, source.parent) for entry in raw]
    _ensure_unique_ids(faces)
    return faces


def _parse_entry(entry: object, base_dir: Path) -> KnownFace:
    if not isinstance(entry, dict):
        raise ReferenceLoadError(f"Invalid known face entry: {entry!r}")

    missing = [key for key in ("id", "name", "image_url", "category") if not entry.get(key)]
    if missing:
        raise ReferenceLoadError(f"Known face entry {entry!r} is missing: {', '.join(missing)}")

    category = str(entry["category"]).strip().lower()
    if category not in VALID_CATEGORIES:
        raise ReferenceLoadError(f"Unsupported category '{category}' for known face {entry['id']}")

    image_url = str(entry["image_url"]).strip()
    if "://" not in image_url and not Path(image_url).is_absolute():
        image_url = str(base_dir / image_url)

    return KnownFace(
        id=str(entry["id"]).strip(),
        name=str(entry["name"]).strip(),
        image_url=image_url,
        category=category,  # type: ignore[arg-type]
    )


def _ensure_unique_ids(faces: Sequence[KnownFace]) -> None:
    seen: set[str] = set()
    for face in faces:
        if face.id in seen:
            raise ReferenceLoadError(f"Duplicate known face id: {face.id}")
        seen.add(face.id)
