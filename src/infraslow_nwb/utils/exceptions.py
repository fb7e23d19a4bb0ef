"""
Exception hierarchy for the infraslow NWB conversion.

All custom exceptions inherit from InfraslowNWBError. Every error is fatal for
the session being converted; none of them is retried.
"""

from typing import Optional


class InfraslowNWBError(Exception):
    """
    Base exception for all conversion errors.

    All custom exceptions MUST inherit from this class.
    """
    pass


class ConfigurationError(InfraslowNWBError):
    """
    Invalid configuration or parameters.

    Raised when:
    - Config file not found or malformed
    - Declared channel count does not match coordinates or locations
    - A region name is not part of the canonical region order
    - Sampling rates disagree between regions of one session
    """

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        probe: Optional[str] = None,
    ):
        super().__init__(message)
        self.session_id = session_id
        self.probe = probe


class IdentifierCollisionError(InfraslowNWBError):
    """
    A synthesized identifier would not be unique.

    Raised when:
    - Local channel index or cluster id does not fit the padding width
    - Probe number has more than one digit
    """

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        probe_number: Optional[int] = None,
        local_index: Optional[int] = None,
        width: Optional[int] = None,
    ):
        super().__init__(message)
        self.session_id = session_id
        self.probe_number = probe_number
        self.local_index = local_index
        self.width = width


class JoinIntegrityError(InfraslowNWBError):
    """
    A unit does not resolve to exactly one channel.

    Raised when the (local channel index, probe label) lookup against the
    electrode table returns zero or several rows.
    """

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        probe: Optional[str] = None,
        unit_id: Optional[int] = None,
        local_channel: Optional[int] = None,
        matches: int = 0,
    ):
        super().__init__(message)
        self.session_id = session_id
        self.probe = probe
        self.unit_id = unit_id
        self.local_channel = local_channel
        self.matches = matches


class ShapeMismatchError(InfraslowNWBError):
    """
    Array shapes are inconsistent.

    Raised when:
    - A ragged index does not fit the data it indexes
    - Waveform block axes disagree with the declared channel count
    - Activity and metadata matrices of a region have different row counts
    """

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        expected: Optional[object] = None,
        actual: Optional[object] = None,
    ):
        super().__init__(message)
        self.entity = entity
        self.expected = expected
        self.actual = actual


class DataLoadError(InfraslowNWBError):
    """
    Error loading a source container.

    Raised when:
    - A .mat file cannot be read
    - A required field is missing from the container
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.file_path = file_path
        self.original_error = original_error


class ExportError(InfraslowNWBError):
    """
    Error assembling or writing the NWB file.

    The partially written file is removed before this is raised.
    """

    def __init__(
        self,
        message: str,
        output_path: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.output_path = output_path
        self.original_error = original_error
