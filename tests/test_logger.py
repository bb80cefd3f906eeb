"""
Unit tests for logger utility.

Tests logging configuration, file rotation, console output,
and specialized logger instances.
"""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

from netatlas.utils.logger import (
    LoggerConfig,
    get_api_logger,
    get_cache_logger,
    get_fallback_logger,
    get_logger,
    setup_logger,
)


def _mock_logging_config(mock_config, log_dir: Path, max_size: int, fmt: str) -> None:
    mock_config.LOG_DIR = log_dir
    mock_config.LOG_LEVEL = "INFO"
    mock_config.LOG_FORMAT = fmt
    mock_config.DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
    mock_config.MAX_LOG_SIZE = max_size
    mock_config.BACKUP_COUNT = 3
    mock_config.ensure_log_directory = lambda: None


class TestLoggerConfig:
    """Test LoggerConfig class."""

    def test_initialization(self):
        """Test LoggerConfig initializes with configured defaults."""
        config = LoggerConfig()

        assert config.log_dir.exists()
        assert config.max_bytes == 10 * 1024 * 1024  # 10MB
        assert config.backup_count == 5

    def test_daily_log_filename_format(self):
        """Test daily log filename generation with date prefix."""
        config = LoggerConfig()

        filename = config.get_daily_log_filename("netatlas.cache")

        date_prefix = datetime.now().strftime("%Y%m%d")
        assert filename.startswith(date_prefix)
        assert "netatlas_cache" in filename
        assert filename.endswith(".log")

    def test_log_file_path_construction(self):
        """Test complete log file path construction."""
        config = LoggerConfig()

        log_path = config.get_log_file_path("netatlas.api")

        assert isinstance(log_path, Path)
        assert log_path.parent == config.log_dir
        assert log_path.suffix == ".log"


class TestSetupLogger:
    """Test setup_logger function."""

    def test_logger_creation(self):
        """Test basic logger creation with file and console handlers."""
        logger = setup_logger("test.logger")

        assert logger.name == "test.logger"
        assert len(logger.handlers) == 2

    def test_logger_level_configuration(self):
        """Test logger respects custom log level."""
        assert setup_logger("test.debug", level=logging.DEBUG).level == logging.DEBUG
        assert setup_logger("test.warning", level=logging.WARNING).level == logging.WARNING

    def test_file_handler_configuration(self):
        """Test rotating file handler captures every level."""
        logger = setup_logger("test.file")

        file_handlers = [
            h for h in logger.handlers
            if isinstance(h, logging.handlers.RotatingFileHandler)
        ]

        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 10 * 1024 * 1024
        assert file_handlers[0].backupCount == 5
        assert file_handlers[0].level == logging.DEBUG

    def test_no_duplicate_handlers(self):
        """Test repeated setup does not add handlers."""
        logger1 = setup_logger("test.duplicates")
        logger2 = setup_logger("test.duplicates")

        assert logger1 is logger2
        assert len(logger2.handlers) == 2

    def test_logger_writes_to_file(self, tmp_path):
        """Test that logger writes to its daily log file."""
        with patch("netatlas.utils.logger.LoggingConfig") as mock_config:
            _mock_logging_config(
                mock_config, tmp_path, 1024 * 1024,
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            )

            logger = setup_logger("test.write")
            logger.info("Serving fallback data for cables")

            log_files = list(tmp_path.glob("*.log"))
            assert len(log_files) == 1
            assert "Serving fallback data for cables" in log_files[0].read_text(encoding="utf-8")


class TestGetLogger:
    """Test get_logger function."""

    def test_get_logger_returns_cached_instance(self):
        assert get_logger("test.cached") is get_logger("test.cached")

    def test_get_logger_creates_new_if_not_cached(self):
        unique_name = f"test.unique.{datetime.now().timestamp()}"
        logger = get_logger(unique_name)

        assert logger.name == unique_name
        assert len(logger.handlers) > 0


class TestSpecializedLoggers:
    """Test specialized logger instances."""

    def test_api_logger_creation(self):
        api_logger = get_api_logger()

        assert api_logger.name == "netatlas.api"
        assert len(api_logger.handlers) > 0

    def test_cache_logger_creation(self):
        assert get_cache_logger().name == "netatlas.cache"

    def test_fallback_logger_creation(self):
        assert get_fallback_logger().name == "netatlas.fallback"

    def test_specialized_loggers_are_cached(self):
        """Test that specialized loggers return same instance on multiple calls."""
        assert get_api_logger() is get_api_logger()
        assert get_cache_logger() is get_cache_logger()
        assert get_fallback_logger() is get_fallback_logger()


class TestLoggingOutput:
    """Test actual logging output and formatting."""

    def test_log_levels(self, caplog):
        logger = get_logger("test.levels")
        logger.setLevel(logging.DEBUG)

        with caplog.at_level(logging.DEBUG):
            logger.debug("Debug message")
            logger.warning("Warning message")
            logger.critical("Critical message")

        assert "Debug message" in caplog.text
        assert "Warning message" in caplog.text
        assert "Critical message" in caplog.text

    def test_log_message_with_context(self, caplog):
        logger = get_logger("test.context")

        with caplog.at_level(logging.INFO):
            logger.info("Invalidated %d cache entries for %s", 3, "ixps")

        assert "3 cache entries for ixps" in caplog.text


class TestFileRotation:
    """Test log file rotation behavior."""

    def test_rotation_creates_backup_files(self, tmp_path):
        """Test that rotation creates numbered backup files."""
        with patch("netatlas.utils.logger.LoggingConfig") as mock_config:
            _mock_logging_config(mock_config, tmp_path, 100, "%(message)s")

            logger = setup_logger("test.rotation")
            for _ in range(20):
                logger.info("A" * 50)

            assert len(list(tmp_path.glob("*.log*"))) > 1
