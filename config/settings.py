from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root: two levels up from this file (config/settings.py)
ROOT_DIR: Path = Path(__file__).resolve().parent.parent


class DetectorSettings(BaseSettings):
    """YuNet face detector settings."""

    model_config = SettingsConfigDict(env_prefix="DETECTOR_", extra="ignore")

    model_path: str = Field(
        default="models/face_detection_yunet_2023mar.onnx",
        description="Path to the YuNet face detection ONNX model.",
    )
    # Detection confidence threshold
    score_threshold: float = Field(
        default=0.5,
        ge=0.01,
        le=1.0,
        description="Minimum confidence score to accept a detected face.",
    )
    nms_threshold: float = Field(
        default=0.3,
        ge=0.01,
        le=1.0,
        description="Intersection-over-Union threshold for Non-Maximum Suppression.",
    )
    top_k: int = Field(
        default=5000,
        ge=1,
        description="Candidate boxes kept before NMS.",
    )
    # Longest image side fed to the detector (0 = no resize)
    max_size: int = Field(
        default=600,
        ge=0,
        description="Images are down-scaled so their longest side is at most this many pixels.",
    )
    max_faces: int = Field(
        default=20,
        ge=1,
        description="Maximum number of faces to return per image.",
    )


class RecognizerSettings(BaseSettings):
    """SFace face recognizer settings."""

    model_config = SettingsConfigDict(env_prefix="RECOGNIZER_", extra="ignore")

    model_path: str = Field(
        default="models/face_recognition_sface_2021dec.onnx",
        description="Path to the SFace face recognition ONNX model.",
    )
    # Cosine similarity threshold for face identity match
    similarity_threshold: float = Field(
        default=0.4,
        ge=-1.0,
        le=1.0,
        description="Cosine similarity threshold for accepting a face identity match.",
    )
    # Embedding vector dimension (SFace = 128)
    embedding_dim: int = Field(
        default=128,
        ge=1,
        description="Dimensionality of the face embedding vector.",
    )


class DatabaseSettings(BaseSettings):
    """Identity database directory and hot reload settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")

    root: Path = Field(
        default=ROOT_DIR / "media" / "db",
        description="Directory holding one subdirectory of reference photos per identity.",
    )
    hot_reload: bool = Field(
        default=True,
        description="Watch the database directory and reload it on change.",
    )
    debounce_seconds: float = Field(
        default=3.0,
        ge=0.0,
        description="Quiet period after the last filesystem event before reloading.",
    )
    # Use watchdog's PollingObserver (network mounts, containers without inotify)
    use_polling: bool = Field(
        default=False,
        description="Poll the directory instead of using native filesystem events.",
    )
    polling_interval: float = Field(
        default=1.0,
        gt=0.0,
        description="Polling interval in seconds when use_polling is enabled.",
    )
    image_extensions: List[str] = Field(
        default=[".jpg", ".jpeg", ".png", ".bmp", ".webp", ".tif", ".tiff"],
        description="File extensions treated as reference photos.",
    )
    # Annotated copies written next to the originals
    skip_suffixes: List[str] = Field(
        default=["_visualize"],
        description="Photos whose filename stem ends with one of these are ignored.",
    )
    show_progress: bool = Field(
        default=False,
        description="Show a progress bar while loading identities.",
    )

    @field_validator("image_extensions", mode="after")
    @classmethod
    def normalise_extensions(cls, v: List[str]) -> List[str]:
        return [e.lower() if e.startswith(".") else f".{e.lower()}" for e in v]


class APISettings(BaseSettings):
    """FastAPI server settings."""

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore")

    host: str = Field(default="0.0.0.0", description="API server bind host.")
    port: int = Field(default=8000, ge=1, le=65535, description="API server port.")
    debug: bool = Field(default=False, description="Enable debug mode.")

    cors_origins: List[str] = Field(
        default=["http://localhost:8000", "http://127.0.0.1:8000"],
        description="Allowed CORS origins.",
    )

    # API versioning prefix
    api_prefix: str = Field(default="/api/v1", description="URL prefix for all API routes.")

    # Upload constraints
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum upload file size in bytes (default 10 MB).",
    )
    max_image_dimension: int = Field(
        default=4096,
        description="Maximum width or height for uploaded images in pixels.",
    )
    min_image_dimension: int = Field(
        default=10,
        description="Minimum width or height for uploaded images in pixels.",
    )


class LoggingSettings(BaseSettings):
    """Logging settings (Loguru-based)."""

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level to emit.",
    )
    # Log file path (None = stdout only)
    file_path: Optional[Path] = Field(
        default=ROOT_DIR / "logs" / "app.log",
        description="Path to log file. Set to null/empty to disable file logging.",
    )
    rotation: str = Field(
        default="10 MB",
        description="Loguru rotation threshold (e.g. '10 MB', '1 day').",
    )
    retention: str = Field(
        default="7 days",
        description="How long to retain rotated log files.",
    )
    # Structured JSON logs (useful for production / log aggregators)
    json_logs: bool = Field(
        default=False,
        description="Emit logs as JSON objects (for log aggregation pipelines).",
    )


class Settings(BaseSettings):
    """
    Master settings object.

    Priority (highest → lowest):
      1. Environment variables  (e.g. RECOGNIZER_SIMILARITY_THRESHOLD=0.5)
      2. .env file              (loaded from project root)
      3. Default values below
    """

    model_config = SettingsConfigDict(
        env_file=str(ROOT_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # App meta
    app_name: str = Field(default="Face Identity Engine", description="Application name.")
    app_version: str = Field(default="1.0.0", description="Application version string.")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment.",
    )

    # Sub-settings (nested)
    detector: DetectorSettings = Field(default_factory=DetectorSettings)
    recognizer: RecognizerSettings = Field(default_factory=RecognizerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    api: APISettings = Field(default_factory=APISettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
