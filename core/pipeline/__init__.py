from core.pipeline.recognition_engine import FaceRecognitionEngine, ImageSource

__all__ = [
    "FaceRecognitionEngine",
    "ImageSource",
]
