# ============================================================
# Face Identity Engine
# core/pipeline/recognition_engine.py
# ============================================================
# Query-side entry point that ties the components together:
#
#   Face image
#       │
#       ▼
#   [1] FaceDatabase.current_snapshot()  → IdentityStore (fail fast)
#       │
#       ▼
#   [2] Detector                          → DetectionResult
#       │
#       ▼
#   [3] Recognizer (best face)            → FaceEmbedding
#       │
#       ▼
#   [4] Matcher                           → MatchResult
#
# Query calls never block on a reload: they match against whatever
# snapshot was current when they started. Everything except an
# unavailable database degrades to ("unknown", 0.0) with a warning.
# ============================================================

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import numpy as np
from watchdog.observers.polling import PollingObserver

from core.detector.base_detector import BaseDetector
from core.exceptions import DatabaseNotAvailableError
from core.recognizer.base_recognizer import BaseRecognizer
from core.recognizer.face_database import DatabaseState, FaceDatabase
from core.recognizer.identity_store import IdentityStore, LoadWarning
from core.recognizer.index_loader import DEFAULT_SKIP_SUFFIXES, IndexLoader
from core.recognizer.matcher import MatchResult, match_one
from core.watcher.folder_watcher import ObserverFactory
from utils.image_utils import DEFAULT_IMAGE_EXTENSIONS, load_image
from utils.logger import get_logger

logger = get_logger(__name__)

ImageSource = Union[np.ndarray, str, Path, bytes]


class FaceRecognitionEngine:
    """
    Identifies faces against a hot-reloadable identity database.

    Several engines may coexist (e.g. one per database root); each owns
    its own FaceDatabase and watcher.

    Usage::

        engine = FaceRecognitionEngine(YuNetDetector(), SFaceRecognizer())
        engine.initialize("media/db")
        engine.enable_hot_reload()

        result = engine.identify(frame)
        print(result)            # "Alice (0.87)" or "unknown"

        engine.shutdown()

    Or as a context manager::

        with FaceRecognitionEngine.from_settings() as engine:
            engine.initialize(settings.database.root)
            print(engine.identify("query.jpg"))
    """

    def __init__(
        self,
        detector: BaseDetector,
        recognizer: BaseRecognizer,
        similarity_threshold: Optional[float] = None,
        debounce_seconds: float = 3.0,
        observer_factory: Optional[ObserverFactory] = None,
        image_extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS,
        skip_suffixes: Iterable[str] = DEFAULT_SKIP_SUFFIXES,
        show_progress: bool = False,
        owns_models: bool = False,
    ) -> None:
        """
        Args:
            detector:              Face detector (loaded on initialize()).
            recognizer:            Face recognizer (loaded on initialize()).
            similarity_threshold:  Default match threshold. Falls back to
                                   ``recognizer.similarity_threshold``.
            debounce_seconds:      Watcher quiet period.
            observer_factory:      Optional watchdog observer factory.
            image_extensions:      Reference photo extensions.
            skip_suffixes:         Filename stems ignored during load.
            show_progress:         Progress bar while loading.
            owns_models:           Release detector/recognizer on shutdown().
        """
        self.detector = detector
        self.recognizer = recognizer
        self.similarity_threshold = float(
            recognizer.similarity_threshold
            if similarity_threshold is None
            else similarity_threshold
        )
        self.owns_models = owns_models

        self.loader = IndexLoader(
            detector=detector,
            recognizer=recognizer,
            image_extensions=image_extensions,
            skip_suffixes=skip_suffixes,
            show_progress=show_progress,
        )
        self.database = FaceDatabase(
            loader=self.loader,
            debounce_seconds=debounce_seconds,
            observer_factory=observer_factory,
        )
        self._shut_down = False

    # ------------------------------------------------------------------
    # Construction from settings
    # ------------------------------------------------------------------

    @classmethod
    def from_settings(cls, settings=None) -> "FaceRecognitionEngine":
        """
        Build an engine with the YuNet + SFace pair configured from
        ``config.settings``.
        """
        from config.settings import settings as default_settings  # noqa: PLC0415
        from core.detector.yunet_detector import YuNetDetector  # noqa: PLC0415
        from core.recognizer.sface_recognizer import SFaceRecognizer  # noqa: PLC0415

        cfg = settings or default_settings
        det, rec, db = cfg.detector, cfg.recognizer, cfg.database

        detector = YuNetDetector(
            model_path=det.model_path,
            score_threshold=det.score_threshold,
            nms_threshold=det.nms_threshold,
            top_k=det.top_k,
            max_size=det.max_size,
            max_faces=det.max_faces,
        )
        recognizer = SFaceRecognizer(
            model_path=rec.model_path,
            similarity_threshold=rec.similarity_threshold,
            embedding_dim=rec.embedding_dim,
        )

        observer_factory: Optional[ObserverFactory] = None
        if db.use_polling:
            interval = db.polling_interval
            observer_factory = lambda: PollingObserver(timeout=interval)  # noqa: E731

        return cls(
            detector=detector,
            recognizer=recognizer,
            similarity_threshold=rec.similarity_threshold,
            debounce_seconds=db.debounce_seconds,
            observer_factory=observer_factory,
            image_extensions=db.image_extensions,
            skip_suffixes=db.skip_suffixes,
            show_progress=db.show_progress,
            owns_models=True,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, database_root: Union[str, Path]) -> IdentityStore:
        """
        Load models (if needed) and the initial database snapshot.

        Raises:
            DatabaseLoadError:         If *database_root* is unusable.
            DatabaseNotAvailableError: If the engine has been shut down.
            FileNotFoundError / RuntimeError: If a model cannot be loaded.
        """
        if self._shut_down:
            raise DatabaseNotAvailableError("Engine has been shut down.")
        if not self.detector.is_loaded:
            self.detector.load_model()
        if not self.recognizer.is_loaded:
            self.recognizer.load_model()

        store = self.database.load_initial(database_root)
        warnings = self.database.last_warnings
        if warnings:
            logger.warning(
                f"Initial load skipped {len(warnings)} entr"
                f"{'y' if len(warnings) == 1 else 'ies'} — see warnings above."
            )
        return store

    def enable_hot_reload(self, debounce_seconds: Optional[float] = None) -> bool:
        """
        Start watching the database root.

        Returns:
            True if hot reload is active; False if the watcher could not be
            set up (the engine keeps serving the loaded snapshot).
        """
        active = self.database.start_watching(debounce_seconds)
        if not active:
            logger.warning("Hot reload unavailable — serving the initial snapshot only.")
        return active

    def reload(self) -> Optional[IdentityStore]:
        """Reload the database now; load errors propagate."""
        return self.database.reload(raise_on_error=True)

    def reload_with_warnings(self) -> Tuple[Optional[IdentityStore], List[LoadWarning]]:
        """Like reload(), also returning the warnings of this load."""
        return self.database.reload_with_warnings(raise_on_error=True)

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Stop hot reload and release resources. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        self.database.stop(timeout=timeout)
        if self.owns_models:
            self.detector.release()
            self.recognizer.release()
        logger.info("Face recognition engine shut down.")

    def __enter__(self) -> "FaceRecognitionEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_snapshot(self) -> IdentityStore:
        """Snapshot queries are currently served from (raises if unavailable)."""
        return self.database.current_snapshot()

    def _query_snapshot(self, snapshot: Optional[IdentityStore]) -> IdentityStore:
        # Availability is checked even when the caller pins a snapshot.
        if self._shut_down:
            raise DatabaseNotAvailableError("Engine has been shut down.")
        current = self.database.current_snapshot()
        return snapshot if snapshot is not None else current

    def identify(
        self,
        face_image: ImageSource,
        threshold: Optional[float] = None,
        snapshot: Optional[IdentityStore] = None,
    ) -> MatchResult:
        """
        Identify the most prominent face in *face_image*.

        Args:
            face_image: BGR ndarray, image path, or encoded bytes.
            threshold:  Match threshold (default: engine threshold).
            snapshot:   Snapshot to match against (default: current).

        Returns:
            MatchResult. ``("unknown", 0.0)`` when no face is found or any
            step of the pipeline fails.

        Raises:
            DatabaseNotAvailableError: Before initialize() or after shutdown().
        """
        store = self._query_snapshot(snapshot)
        t = self.similarity_threshold if threshold is None else float(threshold)

        try:
            image = load_image(face_image)
            detection = self.detector.detect(image)
            face = detection.best_face
            if face is None:
                logger.debug("identify: no face detected.")
                return MatchResult.unknown(0.0)

            embedding = self.recognizer.get_embedding(image, face)
            if embedding is None:
                logger.debug("identify: recognizer returned no descriptor.")
                return MatchResult.unknown(0.0)

            return match_one(embedding, store, t)
        except Exception as exc:
            logger.warning(f"identify failed, reporting unknown | {type(exc).__name__}: {exc}")
            return MatchResult.unknown(0.0)

    def identify_all(
        self,
        image: ImageSource,
        threshold: Optional[float] = None,
        snapshot: Optional[IdentityStore] = None,
    ) -> List[MatchResult]:
        """
        Identify every detected face, in detection order.

        A face that cannot be embedded or matched is reported as
        ``("unknown", 0.0)``; if detection itself fails the result is empty.

        Raises:
            DatabaseNotAvailableError: Before initialize() or after shutdown().
        """
        store = self._query_snapshot(snapshot)
        t = self.similarity_threshold if threshold is None else float(threshold)

        try:
            frame = load_image(image)
            detection = self.detector.detect(frame)
        except Exception as exc:
            logger.warning(f"identify_all: detection failed | {type(exc).__name__}: {exc}")
            return []

        results: List[MatchResult] = []
        for face in detection.faces:
            try:
                embedding = self.recognizer.get_embedding(frame, face)
                if embedding is None:
                    results.append(MatchResult.unknown(0.0))
                    continue
                results.append(match_one(embedding, store, t))
            except Exception as exc:
                logger.warning(
                    f"identify_all: face {face.face_index} failed | "
                    f"{type(exc).__name__}: {exc}"
                )
                results.append(MatchResult.unknown(0.0))

        logger.debug(
            f"identify_all: {len(results)} face(s) | "
            f"{', '.join(str(r) for r in results) or 'none'}"
        )
        return results

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return not self._shut_down and self.database.state is DatabaseState.READY

    def stats(self) -> dict:
        return {
            "ready":                self.is_ready,
            "similarity_threshold": self.similarity_threshold,
            "detector":             self.detector.model_name,
            "recognizer":           self.recognizer.model_name,
            **self.database.stats(),
        }

    def __repr__(self) -> str:
        return (
            f"FaceRecognitionEngine("
            f"detector={self.detector.__class__.__name__}, "
            f"recognizer={self.recognizer.__class__.__name__}, "
            f"threshold={self.similarity_threshold}, "
            f"database={self.database!r})"
        )
