# YuNet-based face detector implementation.
#
# Uses OpenCV's FaceDetectorYN (YuNet ONNX model) to find faces
# and their 5-point landmarks in reference photos and live frames.
#
# Key features:
#   - Optional down-scaling of large images before inference
#     (boxes and landmarks are mapped back to source coordinates)
#   - Faces sorted by confidence, capped at max_faces
#   - Inference guarded by a lock: the OpenCV detector keeps a
#     mutable input size and is not safe to share across threads

from __future__ import annotations

import threading
from pathlib import Path

import cv2
import numpy as np
from loguru import logger

from core.detector.base_detector import (
    BaseDetector,
    DetectionResult,
    FaceBox,
    face_box_from_xywh,
)
from utils.image_utils import normalise_channels, resize_to_max


class YuNetDetector(BaseDetector):
    """
    OpenCV YuNet face detector.

    Quick usage::

        detector = YuNetDetector(
            model_path="models/face_detection_yunet_2023mar.onnx",
            score_threshold=0.5,
            max_size=600,
        )
        detector.load_model()

        result = detector.detect(frame)
        for face in result.faces:
            print(face)
    """

    def __init__(
        self,
        model_path: str = "models/face_detection_yunet_2023mar.onnx",
        score_threshold: float = 0.5,
        nms_threshold: float = 0.3,
        top_k: int = 5000,
        max_size: int = 600,
        max_faces: int = 20,
    ) -> None:
        """
        Args:
            model_path:       Path to the YuNet ONNX model.
            score_threshold:  Minimum face confidence.
            nms_threshold:    Non-maximum suppression IoU threshold.
            top_k:            Candidates kept before NMS.
            max_size:         Longest image side used for inference.
                              0 disables resizing.
            max_faces:        Maximum number of faces returned per image.
        """
        super().__init__(
            model_path=model_path,
            score_threshold=score_threshold,
            max_faces=max_faces,
        )
        self.nms_threshold = float(nms_threshold)
        self.top_k = int(top_k)
        self.max_size = int(max_size)

        self._load_lock = threading.Lock()
        self._infer_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Model loading
    # ------------------------------------------------------------------

    def load_model(self) -> None:
        """
        Create the OpenCV FaceDetectorYN instance.

        Raises:
            FileNotFoundError: If ``model_path`` does not exist.
            RuntimeError:      If OpenCV fails to build the detector.
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
                    f"YuNet model file not found: {model_path.resolve()}"
                )

            logger.info(
                f"Loading YuNet face detector | "
                f"model={self.model_path} | "
                f"score={self.score_threshold} | "
                f"nms={self.nms_threshold}"
            )

            t0 = self._timer()
            try:
                self._model = cv2.FaceDetectorYN.create(
                    str(model_path),
                    "",
                    (320, 320),
                    self.score_threshold,
                    self.nms_threshold,
                    self.top_k,
                )
            except cv2.error as exc:
                raise RuntimeError(
                    f"Failed to load YuNet model from {self.model_path}: {exc}"
                ) from exc

            self._is_loaded = True
            logger.success(
                f"YuNet detector ready in {self._timer() - t0:.1f}ms"
            )

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def detect(self, image: np.ndarray) -> DetectionResult:
        self._require_loaded()
        self._validate_image(image)

        image = normalise_channels(image)
        src_h, src_w = image.shape[:2]

        frame = resize_to_max(image, self.max_size) if self.max_size > 0 else image
        h, w = frame.shape[:2]

        t0 = self._timer()
        with self._infer_lock:
            self._model.setInputSize((w, h))
            _, raw = self._model.detect(frame)
        elapsed = self._timer() - t0

        faces = self._parse_rows(raw, sx=src_w / w, sy=src_h / h)
        logger.debug(f"YuNet found {len(faces)} face(s) in {elapsed:.1f}ms")

        return DetectionResult(
            faces=faces,
            image_width=src_w,
            image_height=src_h,
            inference_time_ms=elapsed,
            metadata={"model": self.model_name, "input_size": (w, h)},
        )

    def _parse_rows(self, raw, sx: float, sy: float) -> list[FaceBox]:
        """Convert YuNet (N, 15) rows into FaceBoxes in source coordinates."""
        if raw is None or len(raw) == 0:
            return []

        rows = sorted(np.asarray(raw, dtype=np.float32), key=lambda r: -float(r[14]))
        faces: list[FaceBox] = []
        for idx, row in enumerate(rows[: self.max_faces]):
            landmarks = row[4:14].reshape(5, 2).copy()
            box = face_box_from_xywh(
                row[0], row[1], row[2], row[3],
                confidence=float(row[14]),
                face_index=idx,
                landmarks=landmarks,
            )
            if sx != 1.0 or sy != 1.0:
                box = box.scale(sx, sy)
            faces.append(box)
        return faces
