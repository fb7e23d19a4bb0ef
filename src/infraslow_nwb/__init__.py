"""
Infra-slow Dynamics NWB Conversion

Converts derived per-brain-region Neuronexus recordings (MATLAB containers)
into one Neurodata Without Borders (NWB) file per recording session.

Architecture:
    - core/     : Identifiers, electrode/unit tables, ragged arrays, waveforms, quality masks
    - io/       : MATLAB container reading, source extraction, NWB export
    - pipeline/ : Configuration and batch orchestration
    - utils/    : Shared utilities (exceptions, logging, validation)
"""

__version__ = "0.1.0"
__author__ = "Brain-wide Infra-slow Dynamics Study"

# Users should import from subpackages directly:
#   from infraslow_nwb.pipeline import load_conversion_config, convert_animal
#   from infraslow_nwb.core import encode, build_quality_mask
