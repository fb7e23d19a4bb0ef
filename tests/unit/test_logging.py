"""
Unit tests for logging setup.
"""

import logging
import warnings

import pytest

from infraslow_nwb.core.waveforms import WaveformReshaper
from infraslow_nwb.utils.logging import THIRD_PARTY_LOGGERS, setup_logging


@pytest.fixture
def restore_logging():
    """Undo the global changes setup_logging() makes."""
    levels = {name: logging.getLogger(name).level for name in THIRD_PARTY_LOGGERS}
    yield
    logging.captureWarnings(False)
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_third_party_kept_at_warning(self, restore_logging):
        setup_logging(level="INFO")
        for name in THIRD_PARTY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_debug_reaches_third_party(self, restore_logging):
        setup_logging(level="debug", format_style="minimal")
        assert logging.getLogger("hdmf").level == logging.DEBUG

    def test_warnings_routed_to_logging(self, restore_logging, caplog):
        setup_logging(level="INFO")
        with caplog.at_level(logging.WARNING, logger="py.warnings"):
            warnings.showwarning("dtype converted", UserWarning, "nwb_writer.py", 1)
        assert "dtype converted" in caplog.text

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            setup_logging(level="LOUD")

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            setup_logging(format_style="fancy")


class TestLoggerMixin:
    """Tests for LoggerMixin."""

    def test_logger_named_after_class(self):
        reshaper = WaveformReshaper(n_channels=4, n_samples=10)
        assert reshaper.logger.name == "infraslow_nwb.core.waveforms.WaveformReshaper"
