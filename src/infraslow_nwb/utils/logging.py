"""
Logging utilities for the NWB conversion.

Library modules use logging.getLogger(__name__) and never print().
"""

import logging
from typing import Dict


LOG_FORMATS: Dict[str, str] = {
    "default": "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    "minimal": "%(levelname)s | %(message)s",
}

# Third-party libraries that log per dataset or per attribute at INFO/DEBUG
THIRD_PARTY_LOGGERS = ("hdmf", "pynwb", "h5py")


def setup_logging(level: str = "INFO", format_style: str = "default") -> None:
    """
    Configure logging for a conversion run.

    Call this from the entry point (``python -m infraslow_nwb``, a script or a
    notebook), never from inside library modules. Python warnings raised by
    pynwb / hdmf while building or writing a file (dtype conversions, schema
    notes) are routed into the ``py.warnings`` logger so that they end up in
    the same log as the conversion itself. Third-party loggers stay at WARNING
    unless ``level`` is DEBUG.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_style: Key of LOG_FORMATS

    Raises:
        ValueError: Unknown level or format style

    Example:
        >>> from infraslow_nwb.utils.logging import setup_logging
        >>> setup_logging(level="DEBUG", format_style="minimal")
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")
    if format_style not in LOG_FORMATS:
        raise ValueError(f"Unknown log format '{format_style}', expected one of {sorted(LOG_FORMATS)}")

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMATS[format_style],
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.captureWarnings(True)

    third_party_level = numeric_level if numeric_level <= logging.DEBUG else max(numeric_level, logging.WARNING)
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


class LoggerMixin:
    """
    Mixin class that provides a logger property.

    Usage:
        class WaveformReshaper(LoggerMixin):
            def reshape(self, ...):
                self.logger.debug("Reshaping ...")
    """

    @property
    def logger(self) -> logging.Logger:
        """Logger named after the concrete class."""
        return logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
