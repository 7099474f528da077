# SFace-based face recognizer.
#
# Uses OpenCV's FaceRecognizerSF (SFace ONNX model) to turn one
# detected face into a 128-dimensional descriptor.
#
# Supports two input modes:
#   1. Landmark mode  — the face carries YuNet 5-point landmarks;
#                       alignCrop() produces the canonical 112×112 crop
#   2. Box-only mode  — no landmarks; the box is cropped and resized
#
# Key design decisions:
#   - Thread-safe model loading (threading.Lock)
#   - Inference guarded by a lock (the OpenCV net is not re-entrant)
#   - Output vectors are copied out of the OpenCV buffer

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
from loguru import logger

from core.detector.base_detector import FaceBox
from core.recognizer.base_recognizer import BaseRecognizer, FaceEmbedding
from utils.image_utils import normalise_channels

# SFace input resolution
_SFACE_INPUT = (112, 112)


class SFaceRecognizer(BaseRecognizer):
    """
    OpenCV SFace face recognizer.

    Quick usage::

        rec = SFaceRecognizer(model_path="models/face_recognition_sface_2021dec.onnx")
        rec.load_model()

        embedding = rec.get_embedding(image, detection.best_face)
    """

    def __init__(
        self,
        model_path: str = "models/face_recognition_sface_2021dec.onnx",
        similarity_threshold: float = 0.4,
        embedding_dim: int = 128,
    ) -> None:
        super().__init__(
            model_path=model_path,
            similarity_threshold=similarity_threshold,
            embedding_dim=embedding_dim,
        )
        self._load_lock = threading.Lock()
        self._infer_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Model loading
    # ------------------------------------------------------------------

    def load_model(self) -> None:
        """
        Create the OpenCV FaceRecognizerSF instance.

        Raises:
            FileNotFoundError: If ``model_path`` does not exist.
            RuntimeError:      If OpenCV fails to build the recognizer.
        """
        with self._load_lock:
            if self._is_loaded:
                logger.debug(
                    f"{self.__class__.__name__} already loaded — skipping."
                )
                return

            model_path = Path(self.model_path)
            if not model_path.exists():
                raise FileNotFoundError(
                    f"SFace model file not found: {model_path.resolve()}"
                )

            logger.info(f"Loading SFace recognizer | model={self.model_path}")

            try:
                self._model = cv2.FaceRecognizerSF.create(str(model_path), "")
            except cv2.error as exc:
                raise RuntimeError(
                    f"Failed to load SFace model from {self.model_path}: {exc}"
                ) from exc

            self._is_loaded = True
            logger.success(f"SFace recognizer ready: {self.model_name!r}")

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def get_embedding(
        self,
        image: np.ndarray,
        face: FaceBox,
    ) -> Optional[FaceEmbedding]:
        self._require_loaded()
        self._validate_image(image)
        image = normalise_channels(image)

        with self._infer_lock:
            if face.has_landmarks:
                aligned = self._model.alignCrop(image, face.to_yunet_row())
            else:
                crop = face.crop(image)
                if crop.size == 0:
                    logger.debug(f"Empty crop for face {face.face_index} — skipping.")
                    return None
                aligned = cv2.resize(crop, _SFACE_INPUT, interpolation=cv2.INTER_LINEAR)

            feature = self._model.feature(aligned)

        vector = np.asarray(feature, dtype=np.float32).reshape(-1).copy()
        if vector.size != self.embedding_dim:
            logger.warning(
                f"SFace returned {vector.size}-dim feature, "
                f"expected {self.embedding_dim}."
            )
        if not np.isfinite(vector).all():
            logger.warning(f"Non-finite feature for face {face.face_index} — skipping.")
            return None

        return FaceEmbedding(vector=vector, face_index=face.face_index)
