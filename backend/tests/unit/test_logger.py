"""
Unit tests for logging setup.

WHAT: Test handler levels and third-party logger caps
WHY: The console must show offer transitions and sync retries, not per-request noise
HOW: Swap the root handlers out, run setup_logging against a temp file, restore afterwards
"""

import logging

import pytest

from offer_engine.core.config import settings
from offer_engine.utils.logger import NOISY_LOGGERS, resolve_level, setup_logging


@pytest.fixture
def isolated_root():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    saved_noisy = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    for handler in saved_handlers:
        root.removeHandler(handler)
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)
    for name, level in saved_noisy.items():
        logging.getLogger(name).setLevel(level)


def _handler_levels(root):
    console = next(h for h in root.handlers if not isinstance(h, logging.FileHandler))
    file_handler = next(h for h in root.handlers if isinstance(h, logging.FileHandler))
    return console.level, file_handler.level


@pytest.mark.unit
class TestResolveLevel:
    """Test level resolution from settings values."""

    def test_named_level(self):
        assert resolve_level("warning", debug=False) == logging.WARNING

    def test_debug_flag_wins(self):
        assert resolve_level("ERROR", debug=True) == logging.DEBUG

    def test_unknown_name_falls_back_to_info(self):
        assert resolve_level("chatty", debug=False) == logging.INFO


@pytest.mark.unit
class TestSetupLogging:
    """Test handler wiring."""

    def test_console_follows_log_level(self, isolated_root, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "LOG_LEVEL", "WARNING")
        monkeypatch.setattr(settings, "DEBUG", False)

        setup_logging(str(tmp_path / "logs" / "engine.log"))

        assert _handler_levels(isolated_root) == (logging.WARNING, logging.DEBUG)
        assert (tmp_path / "logs" / "engine.log").exists()

    def test_debug_setting_opens_console(self, isolated_root, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "LOG_LEVEL", "INFO")
        monkeypatch.setattr(settings, "DEBUG", True)

        setup_logging(str(tmp_path / "engine.log"))

        assert _handler_levels(isolated_root)[0] == logging.DEBUG

    def test_third_party_loggers_are_capped(self, isolated_root, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "LOG_LEVEL", "DEBUG")
        monkeypatch.setattr(settings, "DEBUG", False)

        setup_logging(str(tmp_path / "engine.log"))

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
        assert logging.getLogger("offer_engine").getEffectiveLevel() == logging.DEBUG

    def test_repeated_setup_does_not_stack_handlers(self, isolated_root, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", False)

        setup_logging(str(tmp_path / "engine.log"))
        setup_logging(str(tmp_path / "engine.log"))

        assert len(isolated_root.handlers) == 2
