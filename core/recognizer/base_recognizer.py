# ============================================================
# Face Identity Engine
# core/recognizer/base_recognizer.py
# ============================================================
# Defines the abstract contract that ALL face recognizers must
# implement, plus the descriptor type and similarity helpers.
#
# Hierarchy:
#   BaseRecognizer  (abstract)
#       └── SFaceRecognizer
#       └── <any future recognizer>
#
# Key data types:
#   FaceEmbedding  — immutable descriptor for exactly one face
# ============================================================

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from core.detector.base_detector import FaceBox


# ============================================================
# Data Types
# ============================================================

@dataclass(frozen=True, eq=False)
class FaceEmbedding:
    """
    A single face descriptor extracted from one detected face.

    Faces of the same person have descriptors with high cosine
    similarity, faces of different people have low similarity.

    The wrapped vector is copied to float32 and flagged read-only on
    construction, so a descriptor can be shared between snapshots and
    threads without copying.

    Attributes:
        vector:       Embedding array of shape (D,), float32.
        face_index:   Which face in the source image this came from.
        source_path:  Optional path of the source image.
    """

    vector: np.ndarray
    face_index: int = 0
    source_path: Optional[str] = None

    def __post_init__(self) -> None:
        vec = np.array(self.vector, dtype=np.float32).reshape(-1)
        vec.flags.writeable = False
        object.__setattr__(self, "vector", vec)

    # ------------------------------------------------------------------
    # Embedding properties
    # ------------------------------------------------------------------

    @property
    def dim(self) -> int:
        """Dimensionality of the embedding vector."""
        return int(self.vector.shape[0])

    @property
    def norm(self) -> float:
        """L2 norm of the embedding vector."""
        return float(np.linalg.norm(self.vector))

    def cosine_similarity(self, other: "FaceEmbedding") -> float:
        """
        Compute the cosine similarity between this and another embedding.

        Args:
            other: The embedding to compare against.

        Returns:
            Cosine similarity in [-1.0, 1.0].
        """
        return cosine_similarity(self.vector, other.vector)

    def as_list(self) -> List[float]:
        """Return the embedding vector as a Python list of floats."""
        return self.vector.tolist()

    def __repr__(self) -> str:
        path_str = f", src={self.source_path!r}" if self.source_path else ""
        return (
            f"FaceEmbedding(idx={self.face_index}, "
            f"dim={self.dim}, "
            f"norm={self.norm:.4f}"
            f"{path_str})"
        )


# ============================================================
# Cosine similarity utilities (module-level, no class needed)
# ============================================================

def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Compute cosine similarity between two 1-D vectors.

    Args:
        a: First vector (any length, float).
        b: Second vector (same length as *a*).

    Returns:
        Cosine similarity in [-1.0, 1.0]. 0.0 if either vector has
        zero norm.

    Raises:
        ValueError: If vectors have different shapes.
    """
    if a.shape != b.shape:
        raise ValueError(
            f"Shape mismatch: a={a.shape}, b={b.shape}"
        )
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a < 1e-10 or norm_b < 1e-10:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


def cosine_similarity_matrix(
    queries: np.ndarray,
    gallery: np.ndarray,
) -> np.ndarray:
    """
    Compute a cosine similarity matrix between query and gallery embeddings.

    Args:
        queries: (N, D) array of query embeddings.
        gallery: (M, D) array of gallery (database) embeddings.

    Returns:
        (N, M) float32 similarity matrix.
        result[i, j] = cosine_similarity(queries[i], gallery[j])

    Raises:
        ValueError: If embedding dimensions do not match.
    """
    if queries.ndim == 1:
        queries = queries[np.newaxis, :]
    if gallery.ndim == 1:
        gallery = gallery[np.newaxis, :]

    if queries.shape[1] != gallery.shape[1]:
        raise ValueError(
            f"Embedding dimension mismatch: "
            f"queries={queries.shape[1]}, gallery={gallery.shape[1]}"
        )

    q_norm = l2_normalise_rows(queries)
    g_norm = l2_normalise_rows(gallery)

    return np.clip(q_norm @ g_norm.T, -1.0, 1.0).astype(np.float32)


def l2_normalise_rows(matrix: np.ndarray) -> np.ndarray:
    """Return *matrix* with every row scaled to unit L2 norm (zero rows stay zero)."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms = np.where(norms < 1e-10, 1.0, norms)
    return (matrix / norms).astype(np.float32)


# ============================================================
# Abstract Base Recognizer
# ============================================================

class BaseRecognizer(ABC):
    """
    Abstract base class for all face recognizers (the embed capability).

    Subclasses must implement:
        - ``load_model()``                — load weights into memory
        - ``get_embedding(image, face)``  — embed exactly one detected face

    Usage::

        recognizer = SFaceRecognizer(model_path="models/face_recognition_sface_2021dec.onnx")
        recognizer.load_model()

        embedding = recognizer.get_embedding(image, detection.best_face)

    Context-manager usage (auto load + release)::

        with SFaceRecognizer(...) as rec:
            embedding = rec.get_embedding(image, face)
    """

    def __init__(
        self,
        model_path: str,
        similarity_threshold: float = 0.4,
        embedding_dim: int = 128,
    ) -> None:
        """
        Args:
            model_path:           Path to the recognition model weights.
            similarity_threshold: Cosine similarity threshold for a positive
                                  identity match.
            embedding_dim:        Expected embedding vector dimension.
        """
        self.model_path = model_path
        self.similarity_threshold = float(similarity_threshold)
        self.embedding_dim = int(embedding_dim)

        self._model = None
        self._is_loaded: bool = False

    # ------------------------------------------------------------------
    # Abstract interface — subclasses MUST implement these
    # ------------------------------------------------------------------

    @abstractmethod
    def load_model(self) -> None:
        """
        Load the recognition model weights into memory.

        Must:
          - Populate ``self._model``
          - Set ``self._is_loaded = True``
          - Raise ``RuntimeError`` on failure.
        """

    @abstractmethod
    def get_embedding(
        self,
        image: np.ndarray,
        face: FaceBox,
    ) -> Optional[FaceEmbedding]:
        """
        Extract the descriptor of one detected face.

        Args:
            image: BGR numpy array (H, W, 3) the face was detected in.
            face:  The detected face region (landmarks used for alignment
                   when present).

        Returns:
            FaceEmbedding, or None if the face could not be processed.

        Raises:
            RuntimeError: If the model has not been loaded.
        """

    # ------------------------------------------------------------------
    # Concrete helpers
    # ------------------------------------------------------------------

    def compare(
        self,
        embedding_a: FaceEmbedding,
        embedding_b: FaceEmbedding,
    ) -> float:
        """Cosine similarity between two FaceEmbeddings."""
        return cosine_similarity(embedding_a.vector, embedding_b.vector)

    def is_same_person(
        self,
        embedding_a: FaceEmbedding,
        embedding_b: FaceEmbedding,
        threshold: Optional[float] = None,
    ) -> bool:
        """True if cosine similarity >= *threshold* (default: instance threshold)."""
        t = threshold if threshold is not None else self.similarity_threshold
        return self.compare(embedding_a, embedding_b) >= t

    def release(self) -> None:
        """
        Release model resources.

        Subclasses should call ``super().release()`` after their own cleanup.
        """
        self._model = None
        self._is_loaded = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        """True if ``load_model()`` has been called successfully."""
        return self._is_loaded

    @property
    def model_name(self) -> str:
        """Human-readable model identifier."""
        import os
        return os.path.basename(self.model_path)

    # ------------------------------------------------------------------
    # Context manager support
    # ------------------------------------------------------------------

    def __enter__(self) -> "BaseRecognizer":
        if not self._is_loaded:
            self.load_model()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_loaded(self) -> None:
        """Raise RuntimeError if model is not loaded."""
        if not self._is_loaded:
            raise RuntimeError(
                f"{self.__class__.__name__} model is not loaded. "
                "Call load_model() first or use as a context manager."
            )

    @staticmethod
    def _validate_image(image: np.ndarray) -> None:
        """Raise ValueError for obviously invalid images."""
        if image is None:
            raise ValueError("Image is None.")
        if not isinstance(image, np.ndarray):
            raise ValueError(
                f"Expected numpy ndarray, got {type(image).__name__}."
            )
        if image.ndim not in (2, 3):
            raise ValueError(
                f"Expected 2-D or 3-D array, got shape {image.shape}."
            )
        if image.size == 0:
            raise ValueError("Image array is empty (zero size).")

    @staticmethod
    def _timer() -> float:
        """Return current time in milliseconds."""
        return time.perf_counter() * 1000.0

    def __repr__(self) -> str:
        status = "loaded" if self._is_loaded else "not loaded"
        return (
            f"{self.__class__.__name__}("
            f"model={self.model_name!r}, "
            f"threshold={self.similarity_threshold}, "
            f"status={status})"
        )
