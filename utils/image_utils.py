from __future__ import annotations

from pathlib import Path
from typing import Iterable, Tuple, Union

import cv2
import numpy as np
from loguru import logger

# ── Type aliases ────────────────────────────────────────────
# All internal frames are np.ndarray in BGR uint8 (OpenCV convention)
Frame = np.ndarray  # shape (H, W, 3)  dtype=uint8
BBox = Tuple[int, int, int, int]  # (x1, y1, x2, y2)

# Extensions cv2.imread can decode in a stock opencv-python build
DEFAULT_IMAGE_EXTENSIONS: Tuple[str, ...] = (
    ".jpg", ".jpeg", ".png", ".bmp", ".webp", ".tif", ".tiff",
)


def load_image(source: Union[str, Path, bytes, np.ndarray]) -> Frame:
    """
    Load an image from a file path, raw bytes, or pass-through ndarray.

    Args:
        source: File path, encoded bytes, or already-loaded ndarray.

    Returns:
        Image as a 3-channel BGR np.ndarray.

    Raises:
        FileNotFoundError: If a path source does not exist.
        ValueError:        If the source cannot be decoded.
        TypeError:         If the source type is unsupported.
    """
    if isinstance(source, np.ndarray):
        return normalise_channels(source.copy())

    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Image file not found: {path}")
        # imdecode on the raw bytes also handles non-ASCII paths
        raw = np.fromfile(str(path), dtype=np.uint8)
        img = cv2.imdecode(raw, cv2.IMREAD_UNCHANGED) if raw.size else None
        if img is None:
            raise ValueError(f"OpenCV could not decode image: {path}")
    elif isinstance(source, bytes):
        arr = np.frombuffer(source, dtype=np.uint8)
        img = cv2.imdecode(arr, cv2.IMREAD_UNCHANGED) if arr.size else None
        if img is None:
            raise ValueError("OpenCV could not decode image from bytes.")
    else:
        raise TypeError(f"Unsupported source type: {type(source)}")

    return normalise_channels(img)


def normalise_channels(image: np.ndarray) -> Frame:
    """
    Convert grayscale / BGRA / 16-bit images to 3-channel uint8 BGR.
    """
    if image.dtype != np.uint8:
        image = cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 1:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image


def resize_to_max(image: Frame, max_side: int) -> Frame:
    """
    Down-scale *image* so its longest side is at most *max_side*,
    preserving aspect ratio. Smaller images are returned unchanged.
    """
    h, w = image.shape[:2]
    longest = max(h, w)
    if max_side <= 0 or longest <= max_side:
        return image
    scale = max_side / float(longest)
    new_w = max(1, int(w * scale))
    new_h = max(1, int(h * scale))
    logger.trace(f"resize_to_max: {w}x{h} → {new_w}x{new_h}")
    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)


def has_image_extension(
    path: Union[str, Path],
    extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS,
) -> bool:
    """True if *path* has one of *extensions* (case-insensitive)."""
    suffix = Path(path).suffix.lower()
    return suffix in {e.lower() for e in extensions}
