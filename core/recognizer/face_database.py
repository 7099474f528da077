# ============================================================
# Face Identity Engine
# core/recognizer/face_database.py
# ============================================================
# Hot-reloadable handle over the current IdentityStore snapshot.
#
# Features:
#   - Synchronous initial load (structural errors propagate)
#   - Lock-free reads: current_snapshot() is a single attribute read
#   - Serialised writes: install() only accepts strictly newer versions
#   - Background reload driven by a debounced FolderWatcher
#   - Last good snapshot keeps serving when a reload fails
#   - Clean shutdown: watcher joined, late reloads discarded
#
# States:
#   UNINITIALIZED ──load_initial()──▶ READY ──stop()──▶ STOPPED
# ============================================================

from __future__ import annotations

import threading
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from loguru import logger

from core.exceptions import DatabaseLoadError, DatabaseNotAvailableError
from core.recognizer.identity_store import IdentityStore, LoadWarning
from core.recognizer.index_loader import IndexLoader
from core.watcher.folder_watcher import FolderWatcher, ObserverFactory


class DatabaseState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    STOPPED = "stopped"


class FaceDatabase:
    """
    Owns the current snapshot and keeps it in sync with the database
    directory.

    Readers call ``current_snapshot()`` and keep using the returned
    IdentityStore for as long as they like; a reload never changes a
    snapshot somebody already holds.

    Usage::

        db = FaceDatabase(IndexLoader(detector, recognizer))
        db.load_initial("media/db")
        db.start_watching()

        store = db.current_snapshot()
        result = match_one(query, store, threshold=0.4)

        db.stop()
    """

    def __init__(
        self,
        loader: IndexLoader,
        debounce_seconds: float = 3.0,
        observer_factory: Optional[ObserverFactory] = None,
    ) -> None:
        """
        Args:
            loader:            Builds snapshots from the database directory.
            debounce_seconds:  Default quiet period for the watcher.
            observer_factory:  Optional watchdog observer factory
                               (e.g. a PollingObserver for network mounts).
        """
        self._loader = loader
        self.debounce_seconds = float(debounce_seconds)
        self._observer_factory = observer_factory

        self._write_lock = threading.Lock()
        self._snapshot: Optional[IdentityStore] = None
        self._state = DatabaseState.UNINITIALIZED
        self._root: Optional[Path] = None
        self._next_version = 0
        self._watcher: Optional[FolderWatcher] = None

        self._last_warnings: Tuple[LoadWarning, ...] = ()
        self.reload_count = 0
        self.failed_reload_count = 0

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_initial(self, root: Union[str, Path]) -> IdentityStore:
        """
        Load the database synchronously and move to READY.

        Returns:
            The installed snapshot (version 0).

        Raises:
            DatabaseLoadError:         If *root* is structurally unusable.
            DatabaseNotAvailableError: If the handle has been stopped.
            RuntimeError:              If the handle is already loaded.
        """
        root_path = Path(root)
        with self._write_lock:
            if self._state is DatabaseState.STOPPED:
                raise DatabaseNotAvailableError("Face database has been stopped.")
            if self._state is DatabaseState.READY:
                raise RuntimeError(
                    f"Face database already loaded from {self._root}; use reload()."
                )

            store, warnings = self._loader.load(root_path, previous_version=None)

            self._root = root_path
            self._snapshot = store
            self._next_version = store.version + 1
            self._last_warnings = tuple(warnings)
            self._state = DatabaseState.READY

        logger.info(
            f"Face database ready | root={root_path} | version={store.version} | "
            f"identities={store.count} | warnings={len(warnings)}"
        )
        return store

    def reload(self, raise_on_error: bool = False) -> Optional[IdentityStore]:
        """Rebuild and install the snapshot; see reload_with_warnings()."""
        store, _ = self.reload_with_warnings(raise_on_error=raise_on_error)
        return store

    def reload_with_warnings(
        self, raise_on_error: bool = False
    ) -> Tuple[Optional[IdentityStore], List[LoadWarning]]:
        """
        Rebuild the snapshot from the database root and install it.

        The version is reserved before loading, so concurrent reloads
        can never install an older view over a newer one.

        Args:
            raise_on_error: Re-raise load failures instead of logging them.

        Returns:
            (store, warnings). *store* is the newly installed snapshot, or
            None if the load failed or was discarded (stopped, or
            superseded by a newer reload). *warnings* are the ones this
            load produced, empty when nothing was installed.

        Raises:
            DatabaseNotAvailableError: Not loaded yet, or stopped and
                                       *raise_on_error* is set.
            DatabaseLoadError:         Load failed and *raise_on_error* is set.
        """
        with self._write_lock:
            if self._state is DatabaseState.UNINITIALIZED:
                raise DatabaseNotAvailableError(
                    "Face database is not loaded; call load_initial() first."
                )
            if self._state is DatabaseState.STOPPED:
                if raise_on_error:
                    raise DatabaseNotAvailableError("Face database has been stopped.")
                logger.debug("Reload requested after stop — ignored.")
                return None, []
            version = self._next_version
            self._next_version += 1
            root = self._root

        logger.info(f"Reloading face database | root={root} | version={version}")
        try:
            store, warnings = self._loader.load(root, previous_version=version - 1)
        except DatabaseLoadError as exc:
            self._record_failed_reload()
            if raise_on_error:
                raise
            logger.error(f"Reload failed, keeping previous snapshot | {exc}")
            return None, []
        except Exception as exc:
            self._record_failed_reload()
            if raise_on_error:
                raise DatabaseLoadError(
                    f"Reload of {root} failed: {exc}",
                    details={"root": str(root), "error": str(exc)},
                ) from exc
            logger.exception(f"Unexpected reload failure, keeping previous snapshot | {exc}")
            return None, []

        if not self.install(store, warnings):
            return None, []
        return store, list(warnings)

    def _record_failed_reload(self) -> None:
        with self._write_lock:
            self.failed_reload_count += 1

    def install(
        self,
        snapshot: IdentityStore,
        warnings: Optional[List[LoadWarning]] = None,
    ) -> bool:
        """
        Publish *snapshot* if it is newer than the current one.

        Returns:
            True if installed; False if the handle is stopped or the
            snapshot's version is not strictly higher.
        """
        with self._write_lock:
            if self._state is DatabaseState.STOPPED:
                logger.debug(
                    f"Discarding snapshot v{snapshot.version}: database stopped."
                )
                return False

            current = self._snapshot
            if current is not None and snapshot.version <= current.version:
                logger.debug(
                    f"Discarding stale snapshot v{snapshot.version} "
                    f"(current v{current.version})."
                )
                return False

            self._snapshot = snapshot
            self._next_version = max(self._next_version, snapshot.version + 1)
            if warnings is not None:
                self._last_warnings = tuple(warnings)
            if self._state is DatabaseState.UNINITIALIZED:
                if snapshot.root is not None:
                    self._root = Path(snapshot.root)
                self._state = DatabaseState.READY
            elif current is not None:
                self.reload_count += 1

        logger.info(
            f"Installed snapshot v{snapshot.version} | identities={snapshot.count} | "
            f"descriptors={snapshot.total_descriptors}"
        )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current_snapshot(self) -> IdentityStore:
        """
        Return the snapshot currently being served.

        Raises:
            DatabaseNotAvailableError: Before the first load or after stop().
        """
        snapshot = self._snapshot
        if snapshot is None or self._state is not DatabaseState.READY:
            raise DatabaseNotAvailableError(
                f"Face database is not available (state={self._state.value}).",
                details={"state": self._state.value},
            )
        return snapshot

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def start_watching(self, debounce_seconds: Optional[float] = None) -> bool:
        """
        Start hot reload on the database root. Idempotent.

        Returns:
            True if the watcher is running. False if it could not be set
            up; the database keeps serving the current snapshot.

        Raises:
            DatabaseNotAvailableError: If the handle is not READY.
        """
        with self._write_lock:
            if self._state is not DatabaseState.READY:
                raise DatabaseNotAvailableError(
                    f"Cannot watch in state {self._state.value!r}.",
                    details={"state": self._state.value},
                )
            if self._watcher is None:
                self._watcher = FolderWatcher(
                    root=self._root,
                    on_change=self._on_change,
                    debounce_seconds=(
                        self.debounce_seconds if debounce_seconds is None else debounce_seconds
                    ),
                    observer_factory=self._observer_factory,
                )
            watcher = self._watcher

        return watcher.start()

    def _on_change(self) -> None:
        self.reload(raise_on_error=False)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop watching and release the snapshot. Idempotent.

        A reload already in flight finishes its load but is not installed.
        """
        with self._write_lock:
            if self._state is DatabaseState.STOPPED:
                return
            self._state = DatabaseState.STOPPED
            watcher, self._watcher = self._watcher, None
            self._snapshot = None

        # Joined outside the lock: the watcher's callback may be waiting on it
        if watcher is not None:
            watcher.stop(timeout=timeout)
        logger.info("Face database stopped.")

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    @property
    def state(self) -> DatabaseState:
        return self._state

    @property
    def version(self) -> Optional[int]:
        snapshot = self._snapshot
        return snapshot.version if snapshot is not None else None

    @property
    def root(self) -> Optional[Path]:
        return self._root

    @property
    def is_watching(self) -> bool:
        watcher = self._watcher
        return watcher is not None and watcher.is_running

    @property
    def last_warnings(self) -> Tuple[LoadWarning, ...]:
        """Warnings from the most recently installed load."""
        return self._last_warnings

    def list_identities(self) -> List[dict]:
        """Name and descriptor count of every identity in the current snapshot."""
        store = self.current_snapshot()
        return [
            {"name": identity.name, "num_descriptors": identity.num_descriptors}
            for identity in store
        ]

    def stats(self) -> dict:
        snapshot = self._snapshot
        return {
            "state":               self._state.value,
            "root":                str(self._root) if self._root else None,
            "version":             snapshot.version if snapshot is not None else None,
            "identities":          snapshot.count if snapshot is not None else 0,
            "total_descriptors":   snapshot.total_descriptors if snapshot is not None else 0,
            "watching":            self.is_watching,
            "reload_count":        self.reload_count,
            "failed_reload_count": self.failed_reload_count,
            "warnings":            len(self._last_warnings),
        }

    def __repr__(self) -> str:
        return (
            f"FaceDatabase("
            f"state={self._state.value}, "
            f"root={str(self._root) if self._root else None!r}, "
            f"version={self.version}, "
            f"watching={self.is_watching})"
        )
