"""
Unit tests for logging helpers.
"""

import logging

import pytest

from modelhub.logging_utils import format_size, setup_service_logger


class TestSetupServiceLogger:

    def test_file_handlers_written_to_log_dir(self, tmp_path):
        log_dir = tmp_path / "logs"

        logger = setup_service_logger("modelhub_test", log_dir=str(log_dir), console=False)
        try:
            logger.error("cache write failed")
            for handler in logger.handlers:
                handler.flush()

            assert (log_dir / "modelhub_test.log").exists()
            assert "cache write failed" in (log_dir / "error.log").read_text(encoding="utf-8")
            assert not any(type(h) is logging.StreamHandler for h in logger.handlers)
        finally:
            for handler in logger.handlers:
                handler.close()
            logger.handlers = []

    def test_console_only(self):
        logger = setup_service_logger("modelhub_console", log_dir=None)

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)
        logger.handlers = []


@pytest.mark.parametrize("num_bytes,expected", [
    (512, "512 B"),
    (1536, "1.5 KB"),
    (400 * 1024 * 1024, "400.0 MB"),
    (3 * 1024 ** 3, "3.0 GB"),
])
def test_format_size(num_bytes, expected):
    assert format_size(num_bytes) == expected
