"""Shared pytest fixtures for all test modules.

The fake detector and recognizer read their behaviour from the pixels
of small PNG images, so an identity database can be laid out on disk
exactly like a real one:

    pixel [0, 0, 0]  number of faces the FakeDetector reports
    pixel [0, 0, 1]  descriptor seed used by the FakeRecognizer

A face with seed ``s`` always embeds to the same vector, so a query
image written with seed ``s`` matches a reference photo with seed ``s``
at similarity 1.0.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Sequence

import cv2
import numpy as np
import pytest
from watchdog.observers.polling import PollingObserver

from core.detector.base_detector import BaseDetector, DetectionResult, FaceBox
from core.recognizer.base_recognizer import BaseRecognizer, FaceEmbedding
from core.recognizer.index_loader import IndexLoader

EMBEDDING_DIM = 128


def rand_vec(seed: int, dim: int = EMBEDDING_DIM) -> np.ndarray:
    """Deterministic unit-normalised float32 vector."""
    rng = np.random.default_rng(seed)
    v = rng.standard_normal(dim).astype(np.float32)
    return v / np.linalg.norm(v)


def face_image(seed: int = 0, faces: int = 1, size: int = 32) -> np.ndarray:
    img = np.full((size, size, 3), 128, dtype=np.uint8)
    img[0, 0, 0] = faces
    img[0, 0, 1] = seed
    return img


def write_face_image(path: Path, seed: int = 0, faces: int = 1) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    ok = cv2.imwrite(str(path), face_image(seed, faces))
    assert ok, f"cv2.imwrite failed for {path}"
    return path


# ============================================================
# Fakes
# ============================================================

class FakeDetector(BaseDetector):
    """Reports ``image[0, 0, 0]`` faces, most confident first."""

    def __init__(self, fail_seeds: Iterable[int] = (), delay: float = 0.0) -> None:
        super().__init__(model_path="fake-detector.onnx")
        self.fail_seeds = set(fail_seeds)
        self.delay = delay
        self.calls = 0
        self._calls_lock = threading.Lock()

    def load_model(self) -> None:
        self._model = object()
        self._is_loaded = True

    def detect(self, image: np.ndarray) -> DetectionResult:
        self._require_loaded()
        self._validate_image(image)
        with self._calls_lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)

        if int(image[0, 0, 1]) in self.fail_seeds:
            raise RuntimeError("simulated detector failure")

        h, w = image.shape[:2]
        faces = [
            FaceBox(
                x1=0, y1=0, x2=w, y2=h,
                confidence=round(0.9 - 0.1 * i, 3),
                face_index=i,
            )
            for i in range(int(image[0, 0, 0]))
        ]
        return DetectionResult(faces=faces, image_width=w, image_height=h)


class FakeRecognizer(BaseRecognizer):
    """Embeds face *i* of an image with seed ``s`` as ``rand_vec(s + i)``."""

    def __init__(
        self,
        none_seeds: Iterable[int] = (),
        fail_seeds: Iterable[int] = (),
        dims: Optional[Dict[int, int]] = None,
        embedding_dim: int = EMBEDDING_DIM,
    ) -> None:
        super().__init__(
            model_path="fake-recognizer.onnx",
            similarity_threshold=0.4,
            embedding_dim=embedding_dim,
        )
        self.none_seeds = set(none_seeds)
        self.fail_seeds = set(fail_seeds)
        self.dims = dict(dims or {})

    def load_model(self) -> None:
        self._model = object()
        self._is_loaded = True

    def get_embedding(self, image: np.ndarray, face: FaceBox) -> Optional[FaceEmbedding]:
        self._require_loaded()
        seed = int(image[0, 0, 1]) + face.face_index
        if seed in self.fail_seeds:
            raise RuntimeError("simulated recognizer failure")
        if seed in self.none_seeds:
            return None
        dim = self.dims.get(seed, self.embedding_dim)
        return FaceEmbedding(vector=rand_vec(seed, dim), face_index=face.face_index)


# ============================================================
# Image fixtures
# ============================================================

@pytest.fixture
def blank_image() -> np.ndarray:
    return np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture
def sample_face_box() -> FaceBox:
    return FaceBox(
        x1=100, y1=80, x2=300, y2=320,
        confidence=0.92,
        face_index=0,
    )


@pytest.fixture
def sample_face_box_with_landmarks() -> FaceBox:
    lm = np.array(
        [[150.0, 140.0], [250.0, 140.0], [200.0, 200.0],
         [160.0, 270.0], [240.0, 270.0]],
        dtype=np.float32,
    )
    return FaceBox(
        x1=100, y1=80, x2=300, y2=320,
        confidence=0.92, face_index=0, landmarks=lm,
    )


# ============================================================
# Component fixtures
# ============================================================

@pytest.fixture
def fake_detector() -> FakeDetector:
    det = FakeDetector()
    det.load_model()
    return det


@pytest.fixture
def fake_recognizer() -> FakeRecognizer:
    rec = FakeRecognizer()
    rec.load_model()
    return rec


@pytest.fixture
def loader(fake_detector, fake_recognizer) -> IndexLoader:
    return IndexLoader(fake_detector, fake_recognizer)


@pytest.fixture
def build_db() -> Callable[[Path, Dict[str, Sequence[int]]], Path]:
    """
    Return ``build(root, {"Alice": [1, 2], ...})`` which writes one
    single-face PNG per seed under ``root/<name>/``.
    """

    def build(root: Path, people: Dict[str, Sequence[int]]) -> Path:
        root.mkdir(parents=True, exist_ok=True)
        for name, seeds in people.items():
            (root / name).mkdir(parents=True, exist_ok=True)
            for i, seed in enumerate(seeds):
                write_face_image(root / name / f"photo_{i}.png", seed=seed)
        return root

    return build


@pytest.fixture
def db_root(tmp_path, build_db) -> Path:
    """Alice (seed 1), Bob (seed 2), Carol (seed 3)."""
    return build_db(tmp_path / "db", {"Alice": [1], "Bob": [2], "Carol": [3]})


@pytest.fixture
def polling_observer_factory():
    return lambda: PollingObserver(timeout=0.05)


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    def wait(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.02) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return wait
