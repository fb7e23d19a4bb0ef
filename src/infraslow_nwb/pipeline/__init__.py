"""
Pipeline orchestration: configuration and batch conversion.
"""

from infraslow_nwb.pipeline.config import (
    ConversionConfig,
    GeneralConfig,
    AnimalConfig,
    ProbeConfig,
    SessionConfig,
    load_conversion_config,
)
from infraslow_nwb.pipeline.runner import (
    ConversionResult,
    SessionResult,
    convert_animal,
    convert_session,
)

__all__ = [
    "ConversionConfig",
    "GeneralConfig",
    "AnimalConfig",
    "ProbeConfig",
    "SessionConfig",
    "load_conversion_config",
    "ConversionResult",
    "SessionResult",
    "convert_animal",
    "convert_session",
]
