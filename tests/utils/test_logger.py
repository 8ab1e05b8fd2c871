import logging

from utils.logger import get_logger


def test_level_follows_environment(monkeypatch):
    """Test the log level comes from the environment."""
    monkeypatch.setenv("PRICING_LOG_LEVEL", "warning")
    logger = get_logger("tests.pricing.level")
    assert logger.level == logging.WARNING


def test_handler_installed_once(monkeypatch):
    """Test repeated calls install a single handler."""
    monkeypatch.delenv("PRICING_LOG_LEVEL", raising=False)
    first = get_logger("tests.pricing.handlers")
    second = get_logger("tests.pricing.handlers")
    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.INFO
    assert "%(name)s" in second.handlers[0].formatter._fmt
