# ============================================================
# Face Identity Engine - Core Detector Module
# ============================================================

from core.detector.base_detector import (
    BaseDetector,
    DetectionResult,
    FaceBox,
    face_box_from_xywh,
)
from core.detector.yunet_detector import YuNetDetector

__all__ = [
    "BaseDetector",
    "DetectionResult",
    "FaceBox",
    "face_box_from_xywh",
    "YuNetDetector",
]
