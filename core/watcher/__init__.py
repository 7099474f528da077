# ============================================================
# Face Identity Engine - Core Watcher Module
# ============================================================

from core.watcher.folder_watcher import FolderWatcher, ObserverFactory

__all__ = [
    "FolderWatcher",
    "ObserverFactory",
]
