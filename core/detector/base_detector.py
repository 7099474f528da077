# Defines the abstract contract that ALL face detectors must
# implement, plus shared data-types used by the loader and engine.
#
# Hierarchy:
#   BaseDetector  (abstract)
#       └── YuNetDetector
#       └── <any future detector>

from __future__ import annotations

import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np


@dataclass
class FaceBox:
    """
    A single detected face bounding box.

    All coordinates are in absolute pixel space of the source image
    (not normalised 0-1 values).

    Attributes:
        x1:          Left edge of the bounding box (pixels).
        y1:          Top edge of the bounding box (pixels).
        x2:          Right edge of the bounding box (pixels).
        y2:          Bottom edge of the bounding box (pixels).
        confidence:  Detection confidence score in [0.0, 1.0].
        face_index:  Zero-based index of this face within the detection
                     result.
        landmarks:   Optional (5, 2) float32 array of facial keypoints
                     [right_eye, left_eye, nose, right_mouth, left_mouth].
    """

    x1: int
    y1: int
    x2: int
    y2: int
    confidence: float
    face_index: int = 0
    landmarks: Optional[np.ndarray] = field(default=None, repr=False)

    # ------------------------------------------------------------------
    # Derived geometry properties
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        """Bounding box width in pixels."""
        return max(0, self.x2 - self.x1)

    @property
    def height(self) -> int:
        """Bounding box height in pixels."""
        return max(0, self.y2 - self.y1)

    @property
    def area(self) -> int:
        """Bounding box area in pixels²."""
        return self.width * self.height

    @property
    def as_tuple(self) -> Tuple[int, int, int, int]:
        """Return (x1, y1, x2, y2) as a plain tuple."""
        return self.x1, self.y1, self.x2, self.y2

    @property
    def as_xywh(self) -> Tuple[int, int, int, int]:
        """Return (x, y, width, height) format."""
        return self.x1, self.y1, self.width, self.height

    @property
    def has_landmarks(self) -> bool:
        """True if 5-point landmark data is available."""
        return self.landmarks is not None and self.landmarks.shape == (5, 2)

    # ------------------------------------------------------------------
    # Geometry helpers
    # ------------------------------------------------------------------

    def scale(self, sx: float, sy: float) -> "FaceBox":
        """
        Return a new FaceBox with coordinates scaled by (sx, sy).

        Used when images are resized before detection and boxes must be
        mapped back to the original resolution.
        """
        new_lm = None
        if self.landmarks is not None:
            new_lm = self.landmarks * np.array([sx, sy], dtype=np.float32)

        return FaceBox(
            x1=int(round(self.x1 * sx)),
            y1=int(round(self.y1 * sy)),
            x2=int(round(self.x2 * sx)),
            y2=int(round(self.y2 * sy)),
            confidence=self.confidence,
            face_index=self.face_index,
            landmarks=new_lm,
        )

    def crop(self, image: np.ndarray) -> np.ndarray:
        """
        Crop this face region from *image*.

        Returns:
            Cropped numpy array, empty if the box lies outside the image.
        """
        h, w = image.shape[:2]
        x1 = max(0, self.x1)
        y1 = max(0, self.y1)
        x2 = min(w, self.x2)
        y2 = min(h, self.y2)

        if x2 <= x1 or y2 <= y1:
            return np.empty((0, 0, 3), dtype=image.dtype)

        return image[y1:y2, x1:x2].copy()

    def to_yunet_row(self) -> np.ndarray:
        """
        Encode this box in OpenCV's YuNet face row layout.

        Layout: [x, y, w, h, 10 landmark coords, score] as a (1, 15)
        float32 array, which is what ``FaceRecognizerSF.alignCrop``
        expects.

        Raises:
            ValueError: If the box has no landmarks.
        """
        if not self.has_landmarks:
            raise ValueError("YuNet row requires 5-point landmarks.")
        row = np.zeros((1, 15), dtype=np.float32)
        row[0, 0:4] = self.as_xywh
        row[0, 4:14] = self.landmarks.reshape(-1)
        row[0, 14] = self.confidence
        return row

    def __repr__(self) -> str:
        lm_str = f", landmarks={'yes' if self.has_landmarks else 'no'}"
        return (
            f"FaceBox(idx={self.face_index}, "
            f"bbox=[{self.x1},{self.y1},{self.x2},{self.y2}], "
            f"conf={self.confidence:.3f}, "
            f"size={self.width}×{self.height}"
            f"{lm_str})"
        )


def face_box_from_xywh(
    x: float,
    y: float,
    w: float,
    h: float,
    confidence: float,
    face_index: int = 0,
    landmarks: Optional[np.ndarray] = None,
) -> FaceBox:
    """Create a FaceBox from float (x, y, width, height) coordinates, rounding to int."""
    return FaceBox(
        x1=int(round(x)),
        y1=int(round(y)),
        x2=int(round(x + w)),
        y2=int(round(y + h)),
        confidence=float(confidence),
        face_index=face_index,
        landmarks=landmarks,
    )


@dataclass
class DetectionResult:
    """
    The complete output of a single detection call on one image.

    Attributes:
        faces:             List of detected FaceBox objects, sorted by
                           confidence (highest first).
        image_width:       Width of the source image in pixels.
        image_height:      Height of the source image in pixels.
        inference_time_ms: Wall-clock time for the detector inference.
        metadata:          Optional free-form dict for extra info.
    """

    faces: List[FaceBox]
    image_width: int
    image_height: int
    inference_time_ms: float = 0.0
    metadata: dict = field(default_factory=dict)

    @property
    def num_faces(self) -> int:
        return len(self.faces)

    @property
    def is_empty(self) -> bool:
        return len(self.faces) == 0

    @property
    def best_face(self) -> Optional[FaceBox]:
        """Face with the highest confidence score, or None."""
        if not self.faces:
            return None
        return max(self.faces, key=lambda f: f.confidence)

    def get_face(self, index: int) -> Optional[FaceBox]:
        if 0 <= index < len(self.faces):
            return self.faces[index]
        return None

    def __repr__(self) -> str:
        return (
            f"DetectionResult("
            f"num_faces={self.num_faces}, "
            f"image={self.image_width}×{self.image_height}, "
            f"inference={self.inference_time_ms:.1f}ms"
            f")"
        )


class BaseDetector(ABC):
    """
    Abstract base class for all face detectors (the detect capability).

    Subclasses must implement:
        - ``load_model()``   — load weights into memory
        - ``detect(image)``  — run inference and return DetectionResult

    Usage::

        detector = YuNetDetector(model_path="models/face_detection_yunet_2023mar.onnx")
        detector.load_model()
        result = detector.detect(image)
        for face in result.faces:
            print(face)

    Or using the context manager (auto load + release)::

        with YuNetDetector(...) as detector:
            result = detector.detect(image)
    """

    def __init__(
        self,
        model_path: str,
        score_threshold: float = 0.5,
        max_faces: int = 20,
    ) -> None:
        """
        Args:
            model_path:       Path to the model weights file.
            score_threshold:  Minimum confidence to accept a detection.
            max_faces:        Maximum number of faces to return per image.
        """
        self.model_path = model_path
        self.score_threshold = float(score_threshold)
        self.max_faces = int(max_faces)

        self._model = None
        self._is_loaded: bool = False

    # ------------------------------------------------------------------
    # Abstract interface — subclasses MUST implement these
    # ------------------------------------------------------------------

    @abstractmethod
    def load_model(self) -> None:
        """
        Load the model weights into memory.

        This method must:
          - Populate ``self._model``
          - Set ``self._is_loaded = True``
          - Raise ``RuntimeError`` if loading fails.
        """

    @abstractmethod
    def detect(self, image: np.ndarray) -> DetectionResult:
        """
        Run face detection on a single image.

        Args:
            image: BGR numpy array of shape (H, W, 3).

        Returns:
            DetectionResult containing all detected FaceBox objects,
            sorted by confidence descending.

        Raises:
            RuntimeError:  If the model has not been loaded yet.
            ValueError:    If the image is invalid or empty.
        """

    def release(self) -> None:
        """Release model resources; subclasses should call ``super().release()``."""
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
        return os.path.basename(self.model_path)

    # ------------------------------------------------------------------
    # Context manager support
    # ------------------------------------------------------------------

    def __enter__(self) -> "BaseDetector":
        if not self._is_loaded:
            self.load_model()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_loaded(self) -> None:
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
            f"score_threshold={self.score_threshold}, "
            f"status={status})"
        )
