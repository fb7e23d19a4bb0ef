"""
Input validation utilities for the NWB conversion.
"""

import re
from pathlib import Path
from typing import Union

from infraslow_nwb.utils.exceptions import ConfigurationError


# Animal IDs end up in file identifiers and container keys
ANIMAL_ID_PATTERN = re.compile(r'^[A-Za-z0-9_.\-]+$')

# Session IDs are concatenated into integer channel/unit IDs
SESSION_ID_PATTERN = re.compile(r'^[0-9]+$')


def validate_animal_id(animal_id: str) -> str:
    """
    Validate an animal ID.

    Examples: M190114_A_MD, M200324_MD

    Raises:
        ConfigurationError: If the ID is empty or contains unsafe characters
    """
    if not animal_id:
        raise ConfigurationError("animal_id cannot be empty")

    if not ANIMAL_ID_PATTERN.match(animal_id):
        raise ConfigurationError(
            f"Invalid animal_id: '{animal_id}'. "
            "Only letters, digits, '_', '.' and '-' are allowed."
        )

    return animal_id


def validate_session_id(session_id: str) -> str:
    """
    Validate a session ID.

    Session IDs must be decimal digits only, because their digits become the
    leading digits of every channel and unit ID of the session.

    Args:
        session_id: Session identifier, e.g. "201901221911"

    Returns:
        The session ID stripped of surrounding whitespace

    Raises:
        ConfigurationError: If session_id is empty or not numeric
    """
    session_id = str(session_id).strip()

    if not session_id:
        raise ConfigurationError("session_id cannot be empty")

    if not SESSION_ID_PATTERN.match(session_id):
        raise ConfigurationError(
            f"Invalid session_id: '{session_id}'. Session IDs must contain digits only.",
            session_id=session_id,
        )

    return session_id


def validate_path_exists(path: Union[str, Path], file_type: str = "file") -> Path:
    """
    Validate that a path exists.

    Args:
        path: Path to validate (string or Path object)
        file_type: Description of what the path should be (for error messages)

    Returns:
        Path object

    Raises:
        FileNotFoundError: If path does not exist
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"{file_type} not found: {path}")

    return path


def validate_mat_path(path: Union[str, Path]) -> Path:
    """
    Validate a MATLAB container path.

    Raises:
        ConfigurationError: If the file does not have a .mat extension
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)

    if path.suffix.lower() != ".mat":
        raise ConfigurationError(f"Expected .mat file, got: {path}")

    return validate_path_exists(path, "MAT file")
