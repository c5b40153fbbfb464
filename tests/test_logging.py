"""
Tests for logging setup and secret redaction.
"""

import logging

import pytest


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestRedaction:
    def test_redact_masks_api_key(self):
        from crypto_prediction.utils.logging import redact

        url = "https://api.polygon.io/v2/aggs/ticker/X:BTCUSD/range/1/day?apiKey=secret123&sort=asc"
        assert redact(url) == (
            "https://api.polygon.io/v2/aggs/ticker/X:BTCUSD/range/1/day?apiKey=***&sort=asc"
        )
        assert redact("no secrets here") == "no secrets here"

    def test_filter_rewrites_formatted_message(self):
        from crypto_prediction.utils.logging import RedactingFilter

        record = logging.LogRecord(
            "httpx", logging.INFO, __file__, 1,
            "HTTP Request: GET %s", ("https://x.test/?apiKey=abc",), None,
        )
        assert RedactingFilter().filter(record)
        assert record.getMessage() == "HTTP Request: GET https://x.test/?apiKey=***"

    def test_configure_logging_writes_redacted_file(self, tmp_path, restore_root_logger):
        from crypto_prediction.utils.logging import configure_logging

        log_file = tmp_path / "engine.log"
        configure_logging("INFO", str(log_file))
        logging.getLogger("crypto_prediction.test").info("fetching ?apiKey=topsecret")
        for handler in logging.getLogger().handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        assert "apiKey=***" in content
        assert "topsecret" not in content
        assert logging.getLogger("httpx").level == logging.WARNING
