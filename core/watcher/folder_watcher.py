# ============================================================
# Face Identity Engine
# core/watcher/folder_watcher.py
# ============================================================
# Recursive, debounced change watcher for the database root.
#
# Two threads:
#   1. watchdog observer  — delivers raw filesystem events
#   2. debounce worker    — waits until the tree has been quiet
#                           for `debounce_seconds`, then fires
#                           `on_change()` once per burst
#
# Lifecycle:
#   start()  — idempotent; a setup failure is logged once, the
#              watcher goes dormant and never retries
#   stop()   — cancels both threads and joins them; no new
#              on_change() call begins afterwards
# ============================================================

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable, Optional, Union

from loguru import logger
from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from core.exceptions import WatchError

ObserverFactory = Callable[[], BaseObserver]

_CHANGE_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}
)


class _ChangeHandler(FileSystemEventHandler):
    """Forwards content-changing events to the watcher; ignores open/close."""

    def __init__(self, watcher: "FolderWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _CHANGE_EVENTS:
            return
        self._watcher.notify_change(event.src_path)


class FolderWatcher:
    """
    Watches a directory tree and calls ``on_change`` after each burst
    of filesystem activity.

    Usage::

        watcher = FolderWatcher("media/db", on_change=db.reload, debounce_seconds=3.0)
        if not watcher.start():
            print("hot reload unavailable")
        ...
        watcher.stop()
    """

    def __init__(
        self,
        root: Union[str, Path],
        on_change: Callable[[], None],
        debounce_seconds: float = 3.0,
        observer_factory: Optional[ObserverFactory] = None,
    ) -> None:
        """
        Args:
            root:              Directory to watch (recursively).
            on_change:         Callback fired once per quiet period.
            debounce_seconds:  Quiet time required before firing.
            observer_factory:  Builds the watchdog observer. Defaults to the
                               platform-native ``Observer``.
        """
        if debounce_seconds < 0:
            raise ValueError(f"debounce_seconds must be >= 0, got {debounce_seconds}")

        self.root = Path(root)
        self.debounce_seconds = float(debounce_seconds)
        self._on_change = on_change
        self._observer_factory: ObserverFactory = observer_factory or Observer

        self._lock = threading.Lock()
        self._cond = threading.Condition()
        self._observer: Optional[BaseObserver] = None
        self._worker: Optional[threading.Thread] = None

        self._pending = False
        self._last_event_at = 0.0
        self._stopping = False
        self._dormant = False

        self.last_error: Optional[WatchError] = None
        self.events_seen = 0
        self.fire_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Begin watching.

        Returns:
            True if the watcher is running, False if it is dormant
            (setup failed earlier or now) or has been stopped.
        """
        with self._lock:
            if self._stopping or self._dormant:
                return False
            if self._observer is not None:
                return True

            observer: Optional[BaseObserver] = None
            try:
                if not self.root.is_dir():
                    raise FileNotFoundError(f"Not a directory: {self.root}")
                observer = self._observer_factory()
                observer.schedule(_ChangeHandler(self), str(self.root), recursive=True)
                observer.start()
            except Exception as exc:
                self._dormant = True
                self.last_error = WatchError(
                    f"Cannot watch {self.root}: {exc}",
                    details={"root": str(self.root), "error": str(exc)},
                )
                logger.error(f"Hot reload disabled | {self.last_error}")
                if observer is not None and observer.is_alive():
                    observer.stop()
                return False

            self._observer = observer
            self._worker = threading.Thread(
                target=self._run,
                name=f"folder-watcher-debounce[{self.root.name}]",
                daemon=True,
            )
            self._worker.start()

        logger.info(
            f"Watching {self.root} | debounce={self.debounce_seconds}s | "
            f"observer={observer.__class__.__name__}"
        )
        return True

    def stop(self, timeout: Optional[float] = 5.0) -> bool:
        """
        Stop watching and join both threads.

        Args:
            timeout: Per-thread join timeout in seconds (None = wait forever).

        Returns:
            True if every thread has terminated.
        """
        with self._lock:
            with self._cond:
                self._stopping = True
                self._cond.notify_all()
            observer, worker = self._observer, self._worker

        clean = True
        if observer is not None:
            observer.stop()
            if observer.is_alive() and threading.current_thread() is not observer:
                observer.join(timeout)
            clean = clean and not observer.is_alive()
        if worker is not None and threading.current_thread() is not worker:
            worker.join(timeout)
            clean = clean and not worker.is_alive()

        if observer is not None or worker is not None:
            logger.info(f"Stopped watching {self.root} | clean={clean}")
        return clean

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def notify_change(self, path: Optional[str] = None) -> None:
        """Record one change; restarts the quiet-period countdown."""
        with self._cond:
            if self._stopping:
                return
            self.events_seen += 1
            self._pending = True
            self._last_event_at = time.monotonic()
            self._cond.notify_all()
        logger.trace(f"Change event: {path}")

    # ------------------------------------------------------------------
    # Debounce worker
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._pending and not self._stopping:
                    self._cond.wait()
                while not self._stopping:
                    remaining = self._last_event_at + self.debounce_seconds - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(timeout=remaining)
                if self._stopping:
                    return
                self._pending = False
                self.fire_count += 1

            logger.debug(f"Change burst settled under {self.root} — firing on_change")
            try:
                self._on_change()
            except Exception as exc:
                logger.exception(f"on_change callback failed: {exc}")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return (
            self._observer is not None
            and not self._stopping
            and self._worker is not None
            and self._worker.is_alive()
        )

    @property
    def is_dormant(self) -> bool:
        return self._dormant

    def __repr__(self) -> str:
        status = "running" if self.is_running else ("dormant" if self._dormant else "idle")
        return (
            f"FolderWatcher("
            f"root={str(self.root)!r}, "
            f"debounce={self.debounce_seconds}, "
            f"status={status})"
        )
