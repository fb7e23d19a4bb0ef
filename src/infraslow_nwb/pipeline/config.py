"""
Configuration loading and validation for the NWB conversion.

One JSON file describes one animal: general (lab-wide) metadata, the animal
and its derived-data container, and the recording sessions with their probes.
Uses Pydantic for schema validation.

Example file:

    {
      "general": {"experimenter": ["Martynas Dervinis"], "lab": "..."},
      "animal": {"animal_id": "M190114_A_MD", "derived_data_file": "M190114_A_MD.mat", ...},
      "sessions": [
        {"session_id": "201901221911", "start_time": "2019-01-22T19:11:00+00:00",
         "probes": [{"probe_number": 1, "n_channels_per_shank": 32, ...}, ...]}
      ]
    }
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from infraslow_nwb.core.electrodes import ProbeLayout
from infraslow_nwb.utils.exceptions import ConfigurationError
from infraslow_nwb.utils.validation import validate_animal_id, validate_session_id


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class GeneralConfig(BaseModel):
    """Metadata shared by every file of the dataset."""

    experimenter: List[str] = Field(default_factory=list)
    institution: Optional[str] = None
    lab: Optional[str] = None
    related_publications: List[str] = Field(default_factory=list)
    video_frame_rate: Optional[float] = Field(default=None, gt=0)

    @field_validator("experimenter", "related_publications", mode="before")
    @classmethod
    def wrap_single_string(cls, v):
        """Accept a bare string where a list is expected."""
        if isinstance(v, str):
            return [v]
        return v


class AnimalConfig(BaseModel):
    """Subject metadata and the location of its derived data."""

    animal_id: str
    derived_data_file: Path
    output_folder: Optional[Path] = None
    age: Optional[str] = None
    sex: Optional[str] = None
    species: Optional[str] = None
    description: Optional[str] = None

    @field_validator("animal_id")
    @classmethod
    def check_animal_id(cls, v):
        try:
            return validate_animal_id(v)
        except ConfigurationError as e:
            raise ValueError(str(e))


class ProbeConfig(BaseModel):
    """Layout of one probe in one session."""

    probe_number: int = Field(ge=1, le=9)
    label: Optional[str] = None
    description: str = ""
    manufacturer: str = ""
    n_shanks: int = Field(default=1, ge=1)
    n_channels_per_shank: int = Field(ge=1)
    coordinates: List[Tuple[float, float, float]]
    locations: List[str]
    electrode_folder: Optional[Path] = None
    waveform_samples: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_channel_count(self):
        n_channels = self.n_shanks * self.n_channels_per_shank
        if len(self.coordinates) != n_channels:
            raise ValueError(
                f"probe{self.probe_number}: {len(self.coordinates)} coordinates for "
                f"{n_channels} channels"
            )
        if len(self.locations) != n_channels:
            raise ValueError(
                f"probe{self.probe_number}: {len(self.locations)} locations for "
                f"{n_channels} channels"
            )
        return self

    @property
    def resolved_label(self) -> str:
        return self.label or f"probe{self.probe_number}"

    @property
    def n_channels(self) -> int:
        return self.n_shanks * self.n_channels_per_shank

    def to_layout(self) -> ProbeLayout:
        """Probe layout consumed by the electrode table builder."""
        return ProbeLayout(
            probe_number=self.probe_number,
            label=self.resolved_label,
            n_shanks=self.n_shanks,
            n_channels_per_shank=self.n_channels_per_shank,
            coordinates=self.coordinates,
            locations=tuple(self.locations),
            description=self.description,
            manufacturer=self.manufacturer,
        )


class SessionConfig(BaseModel):
    """One recording session."""

    session_id: str
    start_time: datetime
    description: str = ""
    notes: Optional[str] = None
    probes: List[ProbeConfig] = Field(min_length=1)

    @field_validator("session_id", mode="before")
    @classmethod
    def check_session_id(cls, v):
        try:
            return validate_session_id(v)
        except ConfigurationError as e:
            raise ValueError(str(e))

    @field_validator("probes")
    @classmethod
    def unique_probe_numbers(cls, v):
        numbers = [p.probe_number for p in v]
        if len(set(numbers)) != len(numbers):
            raise ValueError(f"Duplicate probe numbers: {numbers}")
        return v


class ConversionConfig(BaseModel):
    """Complete conversion configuration for one animal."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    animal: AnimalConfig
    sessions: List[SessionConfig] = Field(default_factory=list)
    stop_on_error: bool = False

    @field_validator("sessions")
    @classmethod
    def unique_sessions(cls, v):
        ids = [s.session_id for s in v]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate session ids: {duplicates}")
        return v

    def session_position(self, session_id: str) -> int:
        """1-based position of a session; it numbers the output file."""
        for i, session in enumerate(self.sessions, start=1):
            if session.session_id == session_id:
                return i
        raise ConfigurationError(
            f"Session {session_id} is not configured for {self.animal.animal_id}",
            session_id=session_id,
        )

    def resolve_paths(self, base_dir: Path) -> "ConversionConfig":
        """Return a copy with relative paths resolved against ``base_dir``."""
        def resolve(p: Optional[Path]) -> Optional[Path]:
            if p is None or p.is_absolute():
                return p
            return base_dir / p

        animal = self.animal.model_copy(update={
            "derived_data_file": resolve(self.animal.derived_data_file),
            "output_folder": resolve(self.animal.output_folder),
        })
        sessions = [
            s.model_copy(update={
                "probes": [
                    p.model_copy(update={"electrode_folder": resolve(p.electrode_folder)})
                    for p in s.probes
                ]
            })
            for s in self.sessions
        ]
        return self.model_copy(update={"animal": animal, "sessions": sessions})


# =============================================================================
# Configuration Loading Functions
# =============================================================================

def load_json_config(path: Path) -> Dict[str, Any]:
    """
    Load a JSON configuration file.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dictionary

    Raises:
        ConfigurationError: If file cannot be loaded or parsed
    """
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}")


def load_conversion_config(path: Path) -> ConversionConfig:
    """
    Load and validate an animal conversion configuration.

    Relative paths in the file are resolved against the file's directory.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid
    """
    path = Path(path)
    data = load_json_config(path)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Conversion config {path} must be a JSON object")

    try:
        config = ConversionConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid conversion config in {path}: {e}")

    logger.info(
        f"Loaded config for {config.animal.animal_id}: {len(config.sessions)} session(s)"
    )
    return config.resolve_paths(path.parent.resolve())
