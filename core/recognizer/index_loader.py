# ============================================================
# Face Identity Engine
# core/recognizer/index_loader.py
# ============================================================
# Builds an IdentityStore snapshot from a directory tree:
#
#   <root>/
#       Alice/
#           01.jpg
#           02.png
#       Bob/
#           portrait.jpg
#
# Each immediate subdirectory is one identity (name = directory
# name, trimmed). Each supported image inside it must contain
# exactly one face; its descriptor becomes one reference for
# that identity.
#
# Failure policy:
#   - Root missing / not a directory / unlistable → DatabaseLoadError
#   - Anything wrong with a single photo or identity directory
#     → LoadWarning, entry skipped, load continues
# ============================================================

from __future__ import annotations

import time
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from loguru import logger
from tqdm import tqdm

from core.detector.base_detector import BaseDetector
from core.exceptions import DatabaseLoadError
from core.recognizer.base_recognizer import BaseRecognizer, FaceEmbedding
from core.recognizer.identity_store import (
    FaceIdentity,
    IdentityStore,
    LoadWarning,
    WarningKind,
)
from core.recognizer.matcher import UNKNOWN
from utils.image_utils import DEFAULT_IMAGE_EXTENSIONS, has_image_extension, load_image

DEFAULT_SKIP_SUFFIXES: Tuple[str, ...] = ("_visualize",)


class IndexLoader:
    """
    Turns a database directory into an immutable IdentityStore.

    The loader holds no state between calls; ``load()`` may be called
    from the watcher thread while query threads keep using the
    previous snapshot.

    Usage::

        loader = IndexLoader(detector, recognizer)
        store, warnings = loader.load("media/db")
        for w in warnings:
            print(w)
    """

    def __init__(
        self,
        detector: BaseDetector,
        recognizer: BaseRecognizer,
        image_extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS,
        skip_suffixes: Iterable[str] = DEFAULT_SKIP_SUFFIXES,
        show_progress: bool = False,
    ) -> None:
        """
        Args:
            detector:          Loaded face detector.
            recognizer:        Loaded face recognizer.
            image_extensions:  File extensions treated as photos.
            skip_suffixes:     Filename stems ending in one of these are
                               ignored without a warning (annotated copies).
            show_progress:     Show a tqdm bar over identity directories.
        """
        self.detector = detector
        self.recognizer = recognizer
        self.image_extensions = tuple(e.lower() for e in image_extensions)
        self.skip_suffixes = tuple(skip_suffixes)
        self.show_progress = show_progress

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(
        self,
        root: Union[str, Path],
        previous_version: Optional[int] = None,
    ) -> Tuple[IdentityStore, List[LoadWarning]]:
        """
        Load every identity under *root*.

        Args:
            root:              Database root directory.
            previous_version:  Version of the snapshot being replaced, or
                               None for the first load.

        Returns:
            (store, warnings). ``store.version`` is ``previous_version + 1``,
            or 0 when *previous_version* is None.

        Raises:
            DatabaseLoadError: If *root* is missing, not a directory, or
                               cannot be listed.
        """
        root_path = Path(root)
        version = 0 if previous_version is None else previous_version + 1
        t0 = time.perf_counter()

        groups = self._group_identity_dirs(root_path)
        warnings: List[LoadWarning] = []
        identities: List[FaceIdentity] = []
        expected_dim: Optional[int] = None

        items = tqdm(
            groups.items(),
            total=len(groups),
            desc="Loading identities",
            unit="id",
            disable=not self.show_progress,
        )
        for name, dirs in items:
            descriptors: List[FaceEmbedding] = []

            if not name or name.lower() == UNKNOWN:
                for d in dirs:
                    self._warn(
                        warnings,
                        WarningKind.INVALID_NAME,
                        d,
                        identity=None,
                        message=f"Directory name {d.name!r} is not a usable identity name.",
                    )
                continue

            for directory in dirs:
                for photo in self._list_photos(directory, name, warnings):
                    descriptor = self._embed_photo(photo, name, warnings)
                    if descriptor is None:
                        continue
                    if expected_dim is None:
                        expected_dim = descriptor.dim
                    elif descriptor.dim != expected_dim:
                        self._warn(
                            warnings,
                            WarningKind.DIMENSION_MISMATCH,
                            photo,
                            identity=name,
                            message=(
                                f"Descriptor has dimension {descriptor.dim}, "
                                f"expected {expected_dim}."
                            ),
                        )
                        continue
                    descriptors.append(descriptor)

            if not descriptors:
                self._warn(
                    warnings,
                    WarningKind.EMPTY_IDENTITY,
                    dirs[0],
                    identity=name,
                    message="No usable reference photos; identity omitted.",
                )
                continue

            identities.append(FaceIdentity(name=name, descriptors=tuple(descriptors)))

        store = IdentityStore.from_identities(
            identities, version=version, root=str(root_path)
        )
        elapsed = time.perf_counter() - t0
        logger.info(
            f"Loaded identity database | root={root_path} | version={version} | "
            f"identities={store.count} | descriptors={store.total_descriptors} | "
            f"warnings={len(warnings)} | {elapsed:.2f}s"
        )
        return store, warnings

    # ------------------------------------------------------------------
    # Directory traversal
    # ------------------------------------------------------------------

    @staticmethod
    def _group_identity_dirs(root: Path) -> "OrderedDict[str, List[Path]]":
        """
        List identity directories under *root*, grouped by trimmed name.

        Directories that trim to the same name are merged into one group,
        in sorted order of their raw names.
        """
        if not root.exists():
            raise DatabaseLoadError(
                f"Database root does not exist: {root}",
                details={"root": str(root)},
            )
        if not root.is_dir():
            raise DatabaseLoadError(
                f"Database root is not a directory: {root}",
                details={"root": str(root)},
            )
        try:
            entries = sorted(root.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            raise DatabaseLoadError(
                f"Cannot list database root {root}: {exc}",
                details={"root": str(root), "error": str(exc)},
            ) from exc

        groups: Dict[str, List[Path]] = {}
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if not entry.is_dir():
                continue
            groups.setdefault(entry.name.strip(), []).append(entry)

        return OrderedDict(sorted(groups.items()))

    def _list_photos(
        self,
        directory: Path,
        name: str,
        warnings: List[LoadWarning],
    ) -> List[Path]:
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            self._warn(
                warnings,
                WarningKind.UNREADABLE_DIRECTORY,
                directory,
                identity=name,
                message=str(exc),
            )
            return []

        photos: List[Path] = []
        for entry in entries:
            if entry.name.startswith(".") or not entry.is_file():
                continue
            if entry.stem.endswith(self.skip_suffixes):
                logger.debug(f"Skipping annotated copy: {entry}")
                continue
            if not has_image_extension(entry, self.image_extensions):
                self._warn(
                    warnings,
                    WarningKind.UNSUPPORTED_FORMAT,
                    entry,
                    identity=name,
                    message=f"Unsupported extension {entry.suffix!r}.",
                )
                continue
            photos.append(entry)
        return photos

    # ------------------------------------------------------------------
    # Per-photo pipeline
    # ------------------------------------------------------------------

    def _embed_photo(
        self,
        photo: Path,
        name: str,
        warnings: List[LoadWarning],
    ) -> Optional[FaceEmbedding]:
        """Decode → detect → require exactly one face → embed."""
        try:
            image = load_image(photo)
        except (OSError, ValueError) as exc:
            self._warn(warnings, WarningKind.UNREADABLE_IMAGE, photo, name, str(exc))
            return None

        try:
            detection = self.detector.detect(image)
        except Exception as exc:
            self._warn(warnings, WarningKind.DETECTION_FAILED, photo, name, str(exc))
            return None

        if detection.is_empty:
            self._warn(
                warnings, WarningKind.NO_FACE, photo, name, "No face detected."
            )
            return None
        if detection.num_faces > 1:
            self._warn(
                warnings,
                WarningKind.MULTIPLE_FACES,
                photo,
                name,
                f"{detection.num_faces} faces detected; expected exactly one.",
            )
            return None

        face = detection.faces[0]
        try:
            embedding = self.recognizer.get_embedding(image, face)
        except Exception as exc:
            self._warn(warnings, WarningKind.EMBEDDING_FAILED, photo, name, str(exc))
            return None
        if embedding is None:
            self._warn(
                warnings,
                WarningKind.EMBEDDING_FAILED,
                photo,
                name,
                "Recognizer returned no descriptor.",
            )
            return None

        return FaceEmbedding(
            vector=embedding.vector,
            face_index=face.face_index,
            source_path=str(photo),
        )

    @staticmethod
    def _warn(
        warnings: List[LoadWarning],
        kind: WarningKind,
        path: Path,
        identity: Optional[str] = None,
        message: str = "",
    ) -> None:
        warning = LoadWarning(kind=kind, path=str(path), identity=identity, message=message)
        warnings.append(warning)
        logger.warning(f"Skipped during load | {warning}")

    def __repr__(self) -> str:
        return (
            f"IndexLoader("
            f"detector={self.detector.__class__.__name__}, "
            f"recognizer={self.recognizer.__class__.__name__}, "
            f"extensions={list(self.image_extensions)})"
        )
