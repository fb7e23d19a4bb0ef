"""
Transformation engine: identifiers, electrode and unit tables, ragged arrays,
waveforms and quality masks.
"""

from infraslow_nwb.core.conventions import ExportConventions, DEFAULT_CONVENTIONS
from infraslow_nwb.core.identifiers import channel_id, unit_id
from infraslow_nwb.core.quality import build_quality_mask, QUALITY_CONTROL_DESCRIPTION
from infraslow_nwb.core.ragged import (
    RaggedArray,
    encode,
    decode,
    encode_nested,
    decode_nested,
)
from infraslow_nwb.core.electrodes import (
    ProbeLayout,
    ChannelRecord,
    ElectrodeGroup,
    ElectrodeTable,
    ElectrodeTableBuilder,
    build_electrode_table,
)
from infraslow_nwb.core.aggregation import (
    RegionBlock,
    AggregatedUnits,
    CrossRegionAggregator,
)
from infraslow_nwb.core.units import (
    UnitRecord,
    UnitTable,
    UnitMetadataJoiner,
    join_units,
)
from infraslow_nwb.core.waveforms import (
    WaveformBlock,
    ReshapedWaveforms,
    WaveformReshaper,
    SessionWaveforms,
    combine_probe_waveforms,
)

__all__ = [
    "ExportConventions",
    "DEFAULT_CONVENTIONS",
    "channel_id",
    "unit_id",
    "build_quality_mask",
    "QUALITY_CONTROL_DESCRIPTION",
    "RaggedArray",
    "encode",
    "decode",
    "encode_nested",
    "decode_nested",
    "ProbeLayout",
    "ChannelRecord",
    "ElectrodeGroup",
    "ElectrodeTable",
    "ElectrodeTableBuilder",
    "build_electrode_table",
    "RegionBlock",
    "AggregatedUnits",
    "CrossRegionAggregator",
    "UnitRecord",
    "UnitTable",
    "UnitMetadataJoiner",
    "join_units",
    "WaveformBlock",
    "ReshapedWaveforms",
    "WaveformReshaper",
    "SessionWaveforms",
    "combine_probe_waveforms",
]
