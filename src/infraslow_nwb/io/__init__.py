"""
I/O: MATLAB container reading, source extraction and NWB export.
"""

from infraslow_nwb.io.matfile import load_mat, lookup
from infraslow_nwb.io.sources import (
    BehaviorStream,
    FACE_MOVEMENT,
    PUPIL_AREA,
    extract_behavior,
    extract_region_blocks,
    load_waveform_block,
)
from infraslow_nwb.io.nwb_writer import (
    BehaviorSeries,
    SessionMetadata,
    assemble_nwbfile,
    output_filename,
    write_nwb_atomic,
)

__all__ = [
    "load_mat",
    "lookup",
    "BehaviorStream",
    "FACE_MOVEMENT",
    "PUPIL_AREA",
    "extract_behavior",
    "extract_region_blocks",
    "load_waveform_block",
    "BehaviorSeries",
    "SessionMetadata",
    "assemble_nwbfile",
    "output_filename",
    "write_nwb_atomic",
]
