"""
Configuration management for NetAtlas.

Environment-based configuration using python-dotenv for secure credential handling.
"""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class CacheConfig:
    """Tiered cache configuration."""

    # Base directory for data storage
    DATA_DIR: Path = Path(os.getenv("NETATLAS_DATA_DIR", "data"))

    # SQLite database path for the persistent tier
    DB_PATH: Path = Path(os.getenv("NETATLAS_CACHE_DB", str(DATA_DIR / "cache.db")))

    # Memory tier byte budget (50MB default)
    MEMORY_MAX_BYTES: int = int(os.getenv("CACHE_MEMORY_MAX_BYTES", str(50 * 1024 * 1024)))

    # How long fallback results are cached (1 hour default)
    FALLBACK_TTL_SECONDS: int = int(os.getenv("FALLBACK_CACHE_TTL_SECONDS", "3600"))

    # Interval of the expired-entry cleanup job
    CLEANUP_INTERVAL_MINUTES: int = int(os.getenv("CACHE_CLEANUP_INTERVAL_MINUTES", "60"))

    @classmethod
    def ensure_directories(cls) -> None:
        """Create necessary directories if they don't exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.DB_PATH.parent.mkdir(parents=True, exist_ok=True)


class OrchestratorConfig:
    """Data orchestrator behaviour."""

    ENABLE_CACHE: bool = _env_bool("ENABLE_CACHE", "true")

    AUTO_REFRESH_ENABLED: bool = _env_bool("AUTO_REFRESH_ENABLED", "true")

    # Auto-refresh interval per dataset kind (5 minutes default)
    REFRESH_INTERVAL_SECONDS: int = int(os.getenv("REFRESH_INTERVAL_SECONDS", "300"))


class TeleGeographyConfig:
    """Submarine cable catalog source."""

    DATA_URL: str = os.getenv(
        "TELEGEOGRAPHY_DATA_URL",
        "https://github.com/telegeography/www.submarinecablemap.com/raw/master/web/public/api/v3/cable/cable.json",
    )

    # Optional prefix for routing through a CORS/egress proxy
    PROXY_URL: Optional[str] = os.getenv("TELEGEOGRAPHY_PROXY_URL")

    TIMEOUT: float = float(os.getenv("TELEGEOGRAPHY_TIMEOUT", "15"))


class PeeringDBConfig:
    """Exchange point and facility directory."""

    BASE_URL: str = os.getenv("PEERINGDB_BASE_URL", "https://api.peeringdb.com/api")

    API_KEY: Optional[str] = os.getenv("PEERINGDB_API_KEY")

    TIMEOUT: float = float(os.getenv("PEERINGDB_TIMEOUT", "10"))

    # Anonymous access allowance
    RATE_LIMIT: int = int(os.getenv("PEERINGDB_RATE_LIMIT", "100"))
    RATE_WINDOW_SECONDS: int = 3600

    @classmethod
    def has_api_key(cls) -> bool:
        return bool(cls.API_KEY)


class CloudflareRadarConfig:
    """Real-time attack and traffic telemetry."""

    BASE_URL: str = os.getenv("CLOUDFLARE_RADAR_BASE_URL", "https://api.cloudflare.com/client/v4/radar")

    API_TOKEN: Optional[str] = os.getenv("CLOUDFLARE_API_TOKEN")

    TIMEOUT: float = float(os.getenv("CLOUDFLARE_RADAR_TIMEOUT", "15"))

    RATE_LIMIT: int = int(os.getenv("CLOUDFLARE_RADAR_RATE_LIMIT", "300"))
    RATE_WINDOW_SECONDS: int = 300

    @classmethod
    def is_configured(cls) -> bool:
        """Check if a Radar API token is configured."""
        return bool(cls.API_TOKEN)


class FallbackConfig:
    """Synthetic fallback dataset generation."""

    SEED: int = int(os.getenv("FALLBACK_SEED", "42"))

    SYNTHETIC_CABLES: int = int(os.getenv("FALLBACK_SYNTHETIC_CABLES", "450"))
    SYNTHETIC_IXPS: int = int(os.getenv("FALLBACK_SYNTHETIC_IXPS", "600"))
    SYNTHETIC_DATACENTERS: int = int(os.getenv("FALLBACK_SYNTHETIC_DATACENTERS", "1200"))


class LoggingConfig:
    """Logging configuration."""

    # Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Log directory
    LOG_DIR: Path = Path(os.getenv("LOG_DIR", "logs"))

    # Log file name
    LOG_FILE: str = os.getenv("LOG_FILE", "netatlas.log")

    # Log format
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Date format
    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    # Maximum log file size in bytes (10MB default)
    MAX_LOG_SIZE: int = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))

    # Number of backup log files to keep
    BACKUP_COUNT: int = int(os.getenv("LOG_BACKUP_COUNT", "5"))

    @classmethod
    def ensure_log_directory(cls) -> None:
        """Create log directory if it doesn't exist."""
        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_log_file_path(cls) -> Path:
        """Get full path to log file."""
        return cls.LOG_DIR / cls.LOG_FILE


class AppConfig:
    """Main application configuration aggregating all config classes."""

    cache = CacheConfig
    orchestrator = OrchestratorConfig
    telegeography = TeleGeographyConfig
    peeringdb = PeeringDBConfig
    cloudflare_radar = CloudflareRadarConfig
    fallback = FallbackConfig
    logging = LoggingConfig

    APP_NAME: str = "NetAtlas"
    VERSION: str = "0.1.0"

    @classmethod
    def initialize(cls) -> None:
        """Initialize all configuration settings and create necessary directories."""
        CacheConfig.ensure_directories()
        LoggingConfig.ensure_log_directory()

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate configuration settings.

        Missing upstream credentials are not errors: the affected
        dataset kinds degrade to cached or fallback data.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        if CacheConfig.MEMORY_MAX_BYTES <= 0:
            errors.append("CACHE_MEMORY_MAX_BYTES must be greater than 0")

        if CacheConfig.FALLBACK_TTL_SECONDS < 60:
            errors.append("FALLBACK_CACHE_TTL_SECONDS should be at least 60 seconds")

        if OrchestratorConfig.REFRESH_INTERVAL_SECONDS < 60:
            errors.append("REFRESH_INTERVAL_SECONDS should be at least 60 seconds")

        for name, timeout in (
            ("TELEGEOGRAPHY_TIMEOUT", TeleGeographyConfig.TIMEOUT),
            ("PEERINGDB_TIMEOUT", PeeringDBConfig.TIMEOUT),
            ("CLOUDFLARE_RADAR_TIMEOUT", CloudflareRadarConfig.TIMEOUT),
        ):
            if timeout <= 0:
                errors.append(f"{name} must be greater than 0")

        return (len(errors) == 0, errors)


# Initialize configuration on module import
AppConfig.initialize()
