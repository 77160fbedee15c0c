# -*- coding: utf-8 -*-


from pathlib import Path
from dataclasses import dataclass
from typing import Dict, Any, Tuple
import os

from dotenv import load_dotenv

# ============================================================================
# Load .env file for local environment configuration
# ============================================================================
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


# ============================================================================
# Read settings from environment variables (from .env or system)
# ============================================================================
# Backend API (vocabulary lookups)
_API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8080/api")
_API_TIMEOUT = int(os.getenv("API_TIMEOUT", "30"))
_API_VERIFY_SSL = _env_bool("API_VERIFY_SSL", "true")

# Package security
_REQUIRE_DIGITAL_SIGNATURE = _env_bool("REQUIRE_DIGITAL_SIGNATURE", "false")
_SIGNATURE_KEY = os.getenv("SIGNATURE_KEY", "trrcms-dev-signing-key")
_BLOCK_ON_MAJOR_VOCAB_MISMATCH = _env_bool("BLOCK_ON_MAJOR_VOCAB_MISMATCH", "false")

# Storage
_DATA_DIR = os.getenv("TRRCMS_DATA_DIR", None)

# Duplicate detection
_MATCH_HIGH_THRESHOLD = float(os.getenv("MATCH_HIGH_THRESHOLD", "90"))
_MATCH_MEDIUM_THRESHOLD = float(os.getenv("MATCH_MEDIUM_THRESHOLD", "70"))
_SPATIAL_THRESHOLD_METERS = float(os.getenv("SPATIAL_THRESHOLD_METERS", "50"))

# Retries and retention
_TRANSFER_MAX_RETRIES = int(os.getenv("TRANSFER_MAX_RETRIES", "3"))
_DELETE_MAX_ATTEMPTS = int(os.getenv("DELETE_MAX_ATTEMPTS", "3"))
_DELETE_BASE_DELAY_MS = int(os.getenv("DELETE_BASE_DELAY_MS", "200"))
_STAGING_RETENTION_DAYS = int(os.getenv("STAGING_RETENTION_DAYS", "30"))


@dataclass
class Config:
    """Application configuration."""

    # Application Info
    APP_NAME: str = "TRRCMS Import Pipeline"
    APP_TITLE: str = "Field Package Import & Sync Pipeline"
    VERSION: str = "1.0.0"
    ORGANIZATION: str = "UN-Habitat"

    # HTTP API Backend Settings
    API_BASE_URL: str = _API_BASE_URL
    API_TIMEOUT: int = _API_TIMEOUT
    API_VERIFY_SSL: bool = _API_VERIFY_SSL

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    DATA_DIR: Path = Path(_DATA_DIR) if _DATA_DIR else PROJECT_ROOT / "data"
    LOGS_DIR: Path = PROJECT_ROOT / "logs"
    QUARANTINE_DIR: Path = DATA_DIR / "quarantine"
    ARCHIVE_DIR: Path = DATA_DIR / "archive"
    ATTACHMENTS_DIR: Path = DATA_DIR / "attachments"

    # Database Configuration
    # SQLite (development/fallback)
    DB_NAME: str = "trrcms.db"
    DB_PATH: Path = DATA_DIR / DB_NAME

    # PostgreSQL (production)
    # Set TRRCMS_DB_TYPE=postgresql to use PostgreSQL
    DB_TYPE: str = "sqlite"  # "sqlite" or "postgresql"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "trrcms"
    POSTGRES_USER: str = "trrcms_user"
    POSTGRES_PASSWORD: str = "trrcms_password"
    POSTGRES_MIN_CONN: int = 1
    POSTGRES_MAX_CONN: int = 10

    # Logging
    LOG_FILE: str = "pipeline.log"
    LOG_PATH: Path = LOGS_DIR / LOG_FILE
    LOG_MAX_BYTES: int = 5 * 1024 * 1024  # 5MB
    LOG_BACKUP_COUNT: int = 3

    # Package security
    REQUIRE_DIGITAL_SIGNATURE: bool = _REQUIRE_DIGITAL_SIGNATURE
    SIGNATURE_KEY: str = _SIGNATURE_KEY
    BLOCK_ON_MAJOR_VOCAB_MISMATCH: bool = _BLOCK_ON_MAJOR_VOCAB_MISMATCH
    SUPPORTED_SCHEMA_VERSIONS: Tuple[str, ...] = ("1.0.0", "1.0.1", "1.1.0")

    # Duplicate detection (0-100 scale)
    MATCH_HIGH_THRESHOLD: float = _MATCH_HIGH_THRESHOLD
    MATCH_MEDIUM_THRESHOLD: float = _MATCH_MEDIUM_THRESHOLD
    SPATIAL_THRESHOLD_METERS: float = _SPATIAL_THRESHOLD_METERS

    # Syria bounding box
    SYRIA_BOUNDS_MIN_LAT: float = 32.0
    SYRIA_BOUNDS_MAX_LAT: float = 37.5
    SYRIA_BOUNDS_MIN_LNG: float = 35.5
    SYRIA_BOUNDS_MAX_LNG: float = 42.5

    # Retry / retention
    TRANSFER_MAX_RETRIES: int = _TRANSFER_MAX_RETRIES
    DELETE_MAX_ATTEMPTS: int = _DELETE_MAX_ATTEMPTS
    DELETE_BASE_DELAY_MS: int = _DELETE_BASE_DELAY_MS
    STAGING_RETENTION_DAYS: int = _STAGING_RETENTION_DAYS


@dataclass
class PipelineSettings:
    """
    Per-instance pipeline settings.

    Services take one of these instead of reading Config directly, so a
    test (or a second pipeline instance) can point at its own directories.
    """

    quarantine_dir: Path = Config.QUARANTINE_DIR
    archive_dir: Path = Config.ARCHIVE_DIR
    attachments_dir: Path = Config.ATTACHMENTS_DIR
    require_digital_signature: bool = Config.REQUIRE_DIGITAL_SIGNATURE
    signature_key: str = Config.SIGNATURE_KEY
    block_on_major_vocab_mismatch: bool = Config.BLOCK_ON_MAJOR_VOCAB_MISMATCH
    supported_schema_versions: Tuple[str, ...] = Config.SUPPORTED_SCHEMA_VERSIONS
    match_high_threshold: float = Config.MATCH_HIGH_THRESHOLD
    match_medium_threshold: float = Config.MATCH_MEDIUM_THRESHOLD
    spatial_threshold_meters: float = Config.SPATIAL_THRESHOLD_METERS
    min_lat: float = Config.SYRIA_BOUNDS_MIN_LAT
    max_lat: float = Config.SYRIA_BOUNDS_MAX_LAT
    min_lng: float = Config.SYRIA_BOUNDS_MIN_LNG
    max_lng: float = Config.SYRIA_BOUNDS_MAX_LNG
    transfer_max_retries: int = Config.TRANSFER_MAX_RETRIES
    delete_max_attempts: int = Config.DELETE_MAX_ATTEMPTS
    delete_base_delay_ms: int = Config.DELETE_BASE_DELAY_MS
    staging_retention_days: int = Config.STAGING_RETENTION_DAYS

    @classmethod
    def from_config(cls) -> 'PipelineSettings':
        """Build settings from the environment-backed Config."""
        return cls()

    @classmethod
    def for_directory(cls, root: Path, **overrides) -> 'PipelineSettings':
        """Settings with all storage directories under ``root``."""
        root = Path(root)
        values: Dict[str, Any] = {
            "quarantine_dir": root / "quarantine",
            "archive_dir": root / "archive",
            "attachments_dir": root / "attachments",
        }
        values.update(overrides)
        return cls(**values)

    def ensure_directories(self) -> None:
        for path in (self.quarantine_dir, self.archive_dir, self.attachments_dir):
            path.mkdir(parents=True, exist_ok=True)
