import json

import cv2
import numpy as np
import pytest
import requests

from conftest import FakeEngine, unit
from facewatch.exceptions import ReferenceLoadError
from facewatch.face_engine import FaceBatch
from facewatch.known_faces import DEFAULT_KNOWN_FACES, KnownFace, load_known_faces
from facewatch.reference_loader import ReferenceLoader


def _write_portrait(path):
    image = np.full((32, 32, 3), 128, dtype=np.uint8)
    assert cv2.imwrite(str(path), image)
    return path


class _PerImageEngine:
    """Picks the batch by the portrait's mean intensity."""

    def __init__(self, batches):
        self.batches = batches

    def extract_embeddings(self, frame):
        return self.batches[int(frame.mean())]


def test_default_identities():
    faces = load_known_faces()
    assert [face.id for face in faces] == [face.id for face in DEFAULT_KNOWN_FACES]
    assert {face.category for face in faces} == {"user", "celebrity"}
    assert {face.id: face.name for face in faces}["tom-cruise"] == "Tom Cruise"


def test_known_faces_file_resolves_relative_images(tmp_path):
    path = tmp_path / "faces.json"
    path.write_text(json.dumps([{"id": "me", "name": "Me", "image_url": "me.png", "category": "User"}]))
    faces = load_known_faces(path)
    assert faces == [KnownFace(id="me", name="Me", image_url=str(tmp_path / "me.png"), category="user")]


@pytest.mark.parametrize(
    "entries",
    [
        [{"id": "a", "name": "A", "image_url": "a.png", "category": "villain"}],
        [{"id": "a", "name": "A", "category": "user"}],
        [
            {"id": "a", "name": "A", "image_url": "a.png", "category": "user"},
            {"id": "a", "name": "B", "image_url": "b.png", "category": "celebrity"},
        ],
        {"id": "a"},
    ],
)
def test_invalid_known_faces_file_is_rejected(tmp_path, entries):
    path = tmp_path / "faces.json"
    path.write_text(json.dumps(entries))
    with pytest.raises(ReferenceLoadError):
        load_known_faces(path)


def test_loader_skips_missing_and_faceless_portraits(tmp_path):
    good = _write_portrait(tmp_path / "good.png")
    faceless = _write_portrait(tmp_path / "faceless.png")
    known = [
        KnownFace(id="missing", name="Missing", image_url=str(tmp_path / "nope.png"), category="celebrity"),
        KnownFace(id="good", name="Good", image_url=str(good), category="user"),
        KnownFace(id="faceless", name="Faceless", image_url=str(faceless), category="celebrity"),
    ]

    calls = []

    class _Engine(FakeEngine):
        def extract_embeddings(self, frame):
            calls.append(frame.shape)
            if len(calls) == 1:
                return FaceBatch(embeddings=[unit(1, 0)], boxes=[np.zeros(4)], confidences=[0.9])
            return FaceBatch()

    labeled = ReferenceLoader(_Engine(), base_dir=tmp_path).load(known)
    assert [item.label for item in labeled] == ["good"]
    assert len(calls) == 2


def test_loader_uses_most_confident_face(tmp_path):
    portrait = _write_portrait(tmp_path / "group.png")
    engine = _PerImageEngine(
        {
            128: FaceBatch(
                embeddings=[unit(1, 0), unit(0, 1)],
                boxes=[np.zeros(4), np.zeros(4)],
                confidences=[0.6, 0.95],
            )
        }
    )
    labeled = ReferenceLoader(engine).load(
        [KnownFace(id="group", name="Group", image_url=str(portrait), category="user")]
    )
    np.testing.assert_allclose(labeled[0].descriptor, unit(0, 1))


def test_relative_paths_resolve_against_base_dir(tmp_path):
    _write_portrait(tmp_path / "me.png")
    engine = FakeEngine(embeddings=[unit(1, 1)], boxes=[np.zeros(4)], confidences=[0.9])
    labeled = ReferenceLoader(engine, base_dir=tmp_path).load(
        [KnownFace(id="me", name="Me", image_url="me.png", category="user")]
    )
    assert [item.label for item in labeled] == ["me"]


class _FakeResponse:
    def __init__(self, content, status=200):
        self.content = content
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class _FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.requested = []

    def get(self, url, timeout):
        self.requested.append((url, timeout))
        return self.responses[url]


def test_http_portraits_are_downloaded(tmp_path):
    ok, encoded = cv2.imencode(".png", np.full((16, 16, 3), 200, dtype=np.uint8))
    assert ok
    session = _FakeSession(
        {
            "https://img.example/ok.png": _FakeResponse(encoded.tobytes()),
            "https://img.example/gone.png": _FakeResponse(b"", status=404),
            "https://img.example/junk.png": _FakeResponse(b"not an image"),
        }
    )
    engine = FakeEngine(embeddings=[unit(1, 0)], boxes=[np.zeros(4)], confidences=[0.9])
    loader = ReferenceLoader(engine, fetch_timeout=2.5, session=session)
    labeled = loader.load(
        [
            KnownFace(id="gone", name="Gone", image_url="https://img.example/gone.png", category="celebrity"),
            KnownFace(id="ok", name="Ok", image_url="https://img.example/ok.png", category="celebrity"),
            KnownFace(id="junk", name="Junk", image_url="https://img.example/junk.png", category="celebrity"),
        ]
    )
    assert [item.label for item in labeled] == ["ok"]
    assert session.requested[1] == ("https://img.example/ok.png", 2.5)


def test_all_failures_yield_empty_set(tmp_path):
    engine = FakeEngine()
    labeled = ReferenceLoader(engine, base_dir=tmp_path).load(
        [KnownFace(id="x", name="X", image_url="missing.png", category="user")]
    )
    assert labeled == []


def test_empty_portraits_are_skipped(tmp_path):
    (tmp_path / "empty.png").write_bytes(b"")
    _write_portrait(tmp_path / "good.png")
    session = _FakeSession({"https://img.example/blank.png": _FakeResponse(b"")})
    engine = FakeEngine(embeddings=[unit(1, 0)], boxes=[np.zeros(4)], confidences=[0.9])
    labeled = ReferenceLoader(engine, base_dir=tmp_path, session=session).load(
        [
            KnownFace(id="empty", name="Empty", image_url="empty.png", category="user"),
            KnownFace(id="blank", name="Blank", image_url="https://img.example/blank.png", category="celebrity"),
            KnownFace(id="good", name="Good", image_url="good.png", category="celebrity"),
        ]
    )
    assert [item.label for item in labeled] == ["good"]
