"""
Deterministic channel and unit identifiers.

An identifier is the decimal concatenation of the session id, the probe number
and the zero-padded local index:

    channel_id("201901221911", 1, 7)  ->  2019012219111007
    unit_id("201901221911", 2, 45)    ->  20190122191120045

The mapping is injective as long as the probe number is a single digit and the
local index fits the padding width; anything else is rejected instead of
silently producing a duplicate.
"""

from infraslow_nwb.core.conventions import CHANNEL_ID_WIDTH, UNIT_ID_WIDTH
from infraslow_nwb.utils.exceptions import ConfigurationError, IdentifierCollisionError


def synthesize_id(session_id: str, probe_number: int, local_index: int, width: int) -> int:
    """
    Build an integer identifier from session, probe and local index.

    Args:
        session_id: Session identifier, decimal digits only
        probe_number: Probe reference number (1-9)
        local_index: Channel index or cluster id local to the probe
        width: Number of digits the local index is padded to

    Returns:
        Synthesized integer identifier

    Raises:
        ConfigurationError: If session_id is not a string of digits
        IdentifierCollisionError: If probe_number or local_index does not fit
    """
    session_id = str(session_id)
    if not session_id.isdigit():
        raise ConfigurationError(
            f"Session id '{session_id}' must contain digits only to form identifiers",
            session_id=session_id,
        )

    probe_number = int(probe_number)
    if not 1 <= probe_number <= 9:
        raise IdentifierCollisionError(
            f"Probe number {probe_number} must be a single digit (1-9)",
            session_id=session_id,
            probe_number=probe_number,
        )

    local_index = int(local_index)
    if local_index < 0 or local_index >= 10 ** width:
        raise IdentifierCollisionError(
            f"Local index {local_index} on probe {probe_number} does not fit "
            f"{width} digits (session {session_id})",
            session_id=session_id,
            probe_number=probe_number,
            local_index=local_index,
            width=width,
        )

    return int(f"{session_id}{probe_number}{local_index:0{width}d}")


def channel_id(
    session_id: str,
    probe_number: int,
    local_index: int,
    width: int = CHANNEL_ID_WIDTH,
) -> int:
    """Session-unique channel id for a 1-based, tip-relative channel index."""
    return synthesize_id(session_id, probe_number, local_index, width)


def unit_id(
    session_id: str,
    probe_number: int,
    local_cluster_id: int,
    width: int = UNIT_ID_WIDTH,
) -> int:
    """Session-unique unit id for a probe-local cluster id."""
    return synthesize_id(session_id, probe_number, local_cluster_id, width)
