"""
Tests for environment-driven configuration.
"""

from unittest.mock import patch

from netatlas.clients.api_client import APIClientConfig
from netatlas.config import (
    AppConfig,
    CacheConfig,
    CloudflareRadarConfig,
    OrchestratorConfig,
    PeeringDBConfig,
    TeleGeographyConfig,
)
from netatlas.normalizer.schemas import DatasetKind
from netatlas.orchestrator.data_orchestrator import OrchestratorSettings


class TestAppConfig:
    """Test configuration validation."""

    def test_defaults_are_valid(self):
        is_valid, errors = AppConfig.validate()

        assert is_valid is True
        assert errors == []

    def test_invalid_values_are_reported(self):
        with patch.object(CacheConfig, "FALLBACK_TTL_SECONDS", 10), \
                patch.object(OrchestratorConfig, "REFRESH_INTERVAL_SECONDS", 5), \
                patch.object(PeeringDBConfig, "TIMEOUT", 0):
            is_valid, errors = AppConfig.validate()

        assert is_valid is False
        assert len(errors) == 3
        assert "PEERINGDB_TIMEOUT must be greater than 0" in errors

    def test_initialize_creates_directories(self, temp_cache_dir):
        data_dir = temp_cache_dir / "data"
        with patch.object(CacheConfig, "DATA_DIR", data_dir), \
                patch.object(CacheConfig, "DB_PATH", data_dir / "db" / "cache.db"), \
                patch("netatlas.config.LoggingConfig.LOG_DIR", temp_cache_dir / "logs"):
            AppConfig.initialize()

        assert (data_dir / "db").is_dir()
        assert (temp_cache_dir / "logs").is_dir()


class TestClientConfigFromEnv:
    """Test per-upstream client configuration."""

    def test_peeringdb_api_key_header(self):
        with patch.object(PeeringDBConfig, "API_KEY", "secret"):
            config = APIClientConfig.from_env("peeringdb")

        assert config.headers == {"Authorization": "Api-Key secret"}
        assert config.base_url == PeeringDBConfig.BASE_URL

    def test_peeringdb_anonymous(self):
        with patch.object(PeeringDBConfig, "API_KEY", None):
            assert APIClientConfig.from_env("peeringdb").headers == {}

    def test_radar_bearer_token(self):
        with patch.object(CloudflareRadarConfig, "API_TOKEN", "token"):
            config = APIClientConfig.from_env("cloudflare-radar")

        assert config.headers == {"Authorization": "Bearer token"}

    def test_telegeography_proxy_prefix(self):
        with patch.object(TeleGeographyConfig, "PROXY_URL", "https://proxy.example.net/?url="):
            config = APIClientConfig.from_env("telegeography")

        assert config.base_url == f"https://proxy.example.net/?url={TeleGeographyConfig.DATA_URL}"


class TestOrchestratorSettings:
    def test_from_env(self):
        with patch.object(OrchestratorConfig, "REFRESH_INTERVAL_SECONDS", 600), \
                patch.object(OrchestratorConfig, "AUTO_REFRESH_ENABLED", False):
            settings = OrchestratorSettings.from_env()

        assert settings.refresh_interval_seconds == 600
        assert settings.enable_auto_refresh is False
        assert settings.fallback_cache_ttl_seconds == CacheConfig.FALLBACK_TTL_SECONDS
        assert settings.auto_refresh_kinds == tuple(DatasetKind)
