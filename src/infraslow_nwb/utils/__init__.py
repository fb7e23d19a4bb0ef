"""
Shared utilities: logging, validation, exceptions.
"""

from infraslow_nwb.utils.exceptions import (
    InfraslowNWBError,
    ConfigurationError,
    IdentifierCollisionError,
    JoinIntegrityError,
    ShapeMismatchError,
    DataLoadError,
    ExportError,
)
from infraslow_nwb.utils.logging import setup_logging, LoggerMixin

__all__ = [
    "InfraslowNWBError",
    "ConfigurationError",
    "IdentifierCollisionError",
    "JoinIntegrityError",
    "ShapeMismatchError",
    "DataLoadError",
    "ExportError",
    "setup_logging",
    "LoggerMixin",
]
