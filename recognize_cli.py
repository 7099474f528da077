# ============================================================
# Face Identity Engine - Command Line Tool
# ============================================================
# Identify the faces in one image against a database directory.
#
#   python recognize_cli.py --image query.jpg --db media/db
#
# Watch mode checks that hot reload works end to end:
#
#   python recognize_cli.py --image query.jpg --db media/db --watch --wait 20
#
#   1. load the database and start watching it
#   2. identify the image
#   3. wait while you add / remove photos under --db
#   4. identify the image again against the reloaded snapshot
# ============================================================

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import List, Optional

from core.exceptions import FaceRecognitionError
from core.pipeline.recognition_engine import FaceRecognitionEngine
from utils.logger import get_logger, setup_logger

logger = get_logger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="recognize_cli",
        description="Identify faces in an image against a directory of reference photos.",
    )
    parser.add_argument(
        "-i", "--image",
        type=Path,
        required=True,
        metavar="FILE",
        help="Path to the input image.",
    )
    parser.add_argument(
        "-d", "--db",
        type=Path,
        default=None,
        metavar="DIR",
        help="Database directory (one subdirectory per person). Default: DATABASE_ROOT.",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Cosine similarity threshold. Default: RECOGNIZER_SIMILARITY_THRESHOLD.",
    )
    parser.add_argument(
        "--all-faces",
        action="store_true",
        help="Report every face instead of only the most confident one.",
    )
    parser.add_argument(
        "-t", "--watch",
        action="store_true",
        help="Hot reload test: identify, wait for database changes, identify again.",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=10.0,
        metavar="SECONDS",
        help="How long to wait for database changes in --watch mode (default 10).",
    )
    parser.add_argument(
        "--debounce",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Watcher quiet period in --watch mode. Default: DATABASE_DEBOUNCE_SECONDS.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default INFO).",
    )
    return parser.parse_args(argv)


def _build_engine() -> FaceRecognitionEngine:
    return FaceRecognitionEngine.from_settings()


def _report(engine: FaceRecognitionEngine, image: Path, threshold: Optional[float], all_faces: bool) -> None:
    if all_faces:
        results = engine.identify_all(image, threshold=threshold)
        if not results:
            logger.info("No faces found.")
        for i, result in enumerate(results):
            logger.info(f"Face {i + 1}: {result}")
            print(f"Face {i + 1}: {result}")
    else:
        result = engine.identify(image, threshold=threshold)
        logger.info(f"Found name: {result}")
        print(result)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns exit code (0 = success, 1 = failure)."""
    args = _parse_args(argv)
    setup_logger(level=args.log_level, force=True)

    if args.db is None:
        from config.settings import settings  # noqa: PLC0415
        args.db = settings.database.root

    if not args.image.exists():
        logger.error(f"Image file does not exist: {args.image}")
        return 1
    if not args.db.is_dir():
        logger.error(f"Database directory does not exist: {args.db}")
        return 1

    try:
        engine = _build_engine()
    except Exception as exc:
        logger.error(f"Could not create recognition engine: {exc}")
        return 1

    with engine:
        try:
            store = engine.initialize(args.db)
        except (FaceRecognitionError, FileNotFoundError, RuntimeError) as exc:
            logger.error(f"Initialisation failed: {exc}")
            return 1
        logger.info(f"Database v{store.version}: {store.count} identities")

        if not args.watch:
            _report(engine, args.image, args.threshold, args.all_faces)
            return 0

        if not engine.enable_hot_reload(args.debounce):
            logger.error("Hot reload could not be started.")
            return 1

        logger.info("1. Identifying against the initial snapshot...")
        _report(engine, args.image, args.threshold, args.all_faces)

        logger.info(f"2. Waiting {args.wait:.0f}s for database changes under {args.db}...")
        time.sleep(args.wait)

        logger.info(
            f"3. Identifying again (database v{engine.database.version}, "
            f"{engine.database.reload_count} reload(s))..."
        )
        _report(engine, args.image, args.threshold, args.all_faces)

    return 0


if __name__ == "__main__":
    sys.exit(main())
