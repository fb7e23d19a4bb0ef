"""
NWB assembly and atomic export.

Turns the per-session tables into a pynwb object tree:

    NWBFile
      general/devices/probe<N>
      general/extracellular_ephys/<group>     one per shank
      general/extracellular_ephys/electrodes
      units                                   spike times, peak electrode,
                                              mean waveforms
      processing/behavior                     PupilTracking,
                                              BehavioralTimeSeries

and writes it to ``<path>.tmp`` before publishing it under its final name.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
from hdmf.common import DynamicTableRegion, VectorData, VectorIndex
from pynwb import NWBFile, NWBHDF5IO, TimeSeries
from pynwb.behavior import BehavioralTimeSeries, PupilTracking
from pynwb.ecephys import ElectrodeGroup as NWBElectrodeGroup
from pynwb.file import Subject
from pynwb.misc import Units

from infraslow_nwb.core.electrodes import ElectrodeTable
from infraslow_nwb.core.quality import QUALITY_CONTROL_DESCRIPTION
from infraslow_nwb.core.ragged import RaggedArray, encode_nested
from infraslow_nwb.core.units import UnitTable
from infraslow_nwb.core.waveforms import SessionWaveforms
from infraslow_nwb.utils.exceptions import ExportError


logger = logging.getLogger(__name__)


UNIT_COLUMN_DESCRIPTIONS = {
    "cluster_id": "Unique cluster id",
    "local_cluster_id": "Local cluster id on the probe",
    "type": "Cluster type: unit vs mua",
    "peak_channel_index": "Peak channel row index in the electrode table",
    "peak_channel_id": "Unique ID of the channel with the largest cluster waveform amplitude",
    "local_peak_channel_id": "Local probe channel with the largest cluster waveform amplitude",
    "rel_horz_pos": "Probe-relative horizontal position in mm",
    "rel_vert_pos": "Probe tip-relative vertical position in mm",
    "isi_violations": "Interspike interval violations (unit quality measure)",
    "isolation_distance": "Cluster isolation distance (unit quality measure)",
    "area": (
        "Brain area where the unit is located. Internal thalamic nuclei divisions "
        "are not precise, because they are derived from unit locations on the probe."
    ),
    "probe_id": "Probe id where the unit is located",
}

ELECTRODE_COLUMN_DESCRIPTIONS = {
    "channel_id": "Unique probe channel ID formed of session ID, probe number and local channel index",
    "channel_local_index": "Channel index relative to the tip of the probe (unique within a probe)",
    "channel_label": "Probe, shank and electrode label of the channel",
    "probe_label": "Probe label",
}


@dataclass
class SessionMetadata:
    """File-level and subject metadata of one NWB file."""
    identifier: str
    session_id: str
    session_description: str
    session_start_time: datetime
    subject_id: str
    experimenter: List[str] = field(default_factory=list)
    institution: Optional[str] = None
    lab: Optional[str] = None
    related_publications: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    age: Optional[str] = None
    sex: Optional[str] = None
    species: Optional[str] = None
    subject_description: Optional[str] = None


@dataclass(frozen=True)
class BehaviorSeries:
    """A behavioral series ready for export; frame_rate is the nominal video rate (Hz)."""
    values: np.ndarray
    timestamps: np.ndarray
    quality: np.ndarray
    frame_rate: Optional[float] = None


# =============================================================================
# Object tree
# =============================================================================

def create_nwbfile(metadata: SessionMetadata) -> NWBFile:
    """Create the NWBFile with session and subject metadata."""
    start_time = metadata.session_start_time
    if start_time.tzinfo is None:
        logger.warning("session_start_time is timezone naive, assuming local time")
        start_time = start_time.astimezone()

    subject = Subject(
        subject_id=metadata.subject_id,
        age=metadata.age,
        description=metadata.subject_description,
        species=metadata.species,
        sex=metadata.sex,
    )
    return NWBFile(
        session_description=metadata.session_description,
        identifier=metadata.identifier,
        session_start_time=start_time,
        experimenter=list(metadata.experimenter) or None,
        session_id=metadata.session_id,
        institution=metadata.institution,
        related_publications=list(metadata.related_publications) or None,
        notes=metadata.notes,
        lab=metadata.lab,
        subject=subject,
    )


def add_electrodes(nwbfile: NWBFile, table: ElectrodeTable) -> Dict[str, NWBElectrodeGroup]:
    """
    Register devices, electrode groups and electrode table rows.

    Returns:
        Group name -> pynwb ElectrodeGroup
    """
    devices = {}
    for probe in table.probes:
        devices[probe.device_name] = nwbfile.create_device(
            name=probe.device_name,
            description=probe.description,
            manufacturer=probe.manufacturer,
        )

    groups: Dict[str, NWBElectrodeGroup] = {}
    for group in table.groups:
        device = devices.get(group.device_name)
        if device is None:
            device = devices[group.device_name] = nwbfile.create_device(
                name=group.device_name,
                description=group.device_description,
                manufacturer=group.manufacturer,
            )
        groups[group.name] = nwbfile.create_electrode_group(
            name=group.name,
            description=group.description,
            location=group.location,
            device=device,
            position=group.reference_position,
        )

    for name, description in ELECTRODE_COLUMN_DESCRIPTIONS.items():
        nwbfile.add_electrode_column(name=name, description=description)

    for channel in table.channels:
        nwbfile.add_electrode(
            group=groups[channel.shank_group],
            location=channel.location,
            x=channel.x,
            y=channel.y,
            z=channel.z,
            imp=channel.impedance,
            filtering=channel.filtering,
            channel_id=channel.channel_id,
            channel_local_index=channel.local_index,
            channel_label=channel.channel_label,
            probe_label=channel.probe_label,
        )

    logger.debug(f"Added {len(table.channels)} electrodes in {len(groups)} groups")
    return groups


def _vector(name: str, data) -> VectorData:
    return VectorData(name=name, description=UNIT_COLUMN_DESCRIPTIONS[name], data=data)


def build_units(
    nwbfile: NWBFile,
    unit_table: UnitTable,
    spike_times: RaggedArray,
    groups: Dict[str, NWBElectrodeGroup],
    waveforms: Optional[SessionWaveforms] = None,
) -> Units:
    """
    Build the units table from already-encoded columns.

    Args:
        nwbfile: File holding the electrode table the peak electrodes refer to
        unit_table: Joined unit records
        spike_times: Spike times of every unit, one group per unit
        groups: Group name -> pynwb ElectrodeGroup
        waveforms: Mean waveforms in unit table order; omitted when None

    Raises:
        ExportError: If the encoded columns do not cover every unit
    """
    units = unit_table.units
    n_units = len(units)
    if len(spike_times) != n_units:
        raise ExportError(
            f"{len(spike_times)} spike trains for {n_units} units",
        )

    columns = [
        _vector("cluster_id", np.array([u.unit_id for u in units], dtype=np.int64)),
        _vector("local_cluster_id", np.array([u.local_cluster_id for u in units], dtype=np.int64)),
        _vector("type", [u.activity_type for u in units]),
        _vector("peak_channel_index", np.array([u.peak_channel_index for u in units], dtype=np.int64)),
        _vector("peak_channel_id", np.array([u.peak_channel_id for u in units], dtype=np.int64)),
        _vector("local_peak_channel_id", np.array([u.local_peak_channel for u in units], dtype=np.int64)),
        _vector("rel_horz_pos", np.array([u.relative_horizontal_pos for u in units], dtype=np.float64)),
        _vector("rel_vert_pos", np.array([u.relative_vertical_pos for u in units], dtype=np.float64)),
        _vector("isi_violations", np.array([u.isi_violation_rate for u in units], dtype=np.float64)),
        _vector("isolation_distance", np.array([u.isolation_distance for u in units], dtype=np.float64)),
        _vector("area", [u.brain_area for u in units]),
        _vector("probe_id", [u.probe_label for u in units]),
    ]

    spike_data = VectorData(
        name="spike_times",
        description="Session spike times",
        data=spike_times.flat,
    )
    spike_index = VectorIndex(
        name="spike_times_index",
        data=spike_times.index.astype(np.uint64),
        target=spike_data,
    )
    columns += [spike_data, spike_index]

    columns.append(VectorData(
        name="electrode_group",
        description="Recording channel groups",
        data=[groups[u.electrode_group] for u in units],
    ))

    peak_electrodes = DynamicTableRegion(
        name="electrodes",
        description="Probe recording channel with the largest waveform amplitude",
        data=np.array([u.peak_channel_index for u in units], dtype=np.int64),
        table=nwbfile.electrodes,
    )
    peak_index = VectorIndex(
        name="electrodes_index",
        data=np.arange(1, n_units + 1, dtype=np.uint64),
        target=peak_electrodes,
    )
    columns += [peak_electrodes, peak_index]

    if waveforms is not None:
        if waveforms.means.shape[0] != n_units or len(waveforms.channel_rows) != n_units:
            raise ExportError(
                f"Waveforms cover {waveforms.means.shape[0]} units, table has {n_units}",
            )
        columns.append(VectorData(
            name="waveform_mean",
            description=(
                "Mean waveforms on the probe channel with the largest waveform amplitude. "
                "MUA waveforms are excluded (NaN). The order of waveforms matches the order "
                "of units in the unit table."
            ),
            data=waveforms.means,
        ))

        flat, (row_index, unit_index) = encode_nested(
            waveforms.channel_rows, depth=2, dtype=np.float64
        )
        channel_waveforms = VectorData(
            name="channel_mean_waveforms",
            description=(
                "Mean waveforms on every probe channel, per unit and channel. Units "
                "without extracted waveforms have empty channel entries."
            ),
            data=flat,
        )
        channel_index = VectorIndex(
            name="channel_mean_waveforms_index",
            data=row_index.astype(np.uint64),
            target=channel_waveforms,
        )
        channel_index_index = VectorIndex(
            name="channel_mean_waveforms_index_index",
            data=unit_index.astype(np.uint64),
            target=channel_index,
        )
        columns += [channel_waveforms, channel_index, channel_index_index]

    colnames = tuple(c.name for c in columns if not isinstance(c, VectorIndex))
    return Units(
        name="units",
        description="Units table",
        id=list(range(n_units)),
        columns=columns,
        colnames=colnames,
    )


def _time_series(
    name: str,
    series: BehaviorSeries,
    unit: str,
    description: str,
) -> TimeSeries:
    extra = {}
    if series.frame_rate is not None:
        # rate and timestamps are exclusive in TimeSeries
        extra["comments"] = f"Video frame rate: {series.frame_rate:g} Hz"
    return TimeSeries(
        name=name,
        data=series.values,
        timestamps=series.timestamps,
        unit=unit,
        control=series.quality.astype(np.uint8),
        control_description=list(QUALITY_CONTROL_DESCRIPTION),
        description=description,
        **extra,
    )


def add_behavior(
    nwbfile: NWBFile,
    pupil_area: Optional[BehaviorSeries] = None,
    face_movement: Optional[BehaviorSeries] = None,
) -> None:
    """Add the behavior processing module; absent series are omitted."""
    if pupil_area is None and face_movement is None:
        logger.info("No behavioral data for this session")
        return

    module = nwbfile.create_processing_module(
        name="behavior",
        description="contains behavioral data",
    )
    if pupil_area is not None:
        module.add(PupilTracking(time_series=_time_series(
            "pupil_area_size",
            pupil_area,
            unit="pixels^2",
            description=(
                "Pupil area size over the recording session measured in pixels^2. "
                "Samples outside the acceptable quality periods are marked in control."
            ),
        )))
    if face_movement is not None:
        module.add(BehavioralTimeSeries(time_series=_time_series(
            "total_face_movement",
            face_movement,
            unit="a.u.",
            description=(
                "Z-scored change in the frame pixels' content with respect to the previous "
                "frame. It measures the total movement of objects inside the video."
            ),
        )))


def assemble_nwbfile(
    metadata: SessionMetadata,
    electrodes: ElectrodeTable,
    unit_table: UnitTable,
    spike_times: RaggedArray,
    waveforms: Optional[SessionWaveforms] = None,
    pupil_area: Optional[BehaviorSeries] = None,
    face_movement: Optional[BehaviorSeries] = None,
) -> NWBFile:
    """
    Build the complete object tree of one session.

    Raises:
        ExportError: If pynwb rejects any part of the tree
    """
    try:
        nwbfile = create_nwbfile(metadata)
        groups = add_electrodes(nwbfile, electrodes)
        if len(unit_table):
            nwbfile.units = build_units(nwbfile, unit_table, spike_times, groups, waveforms)
        else:
            logger.warning(f"Session {metadata.session_id}: no units, units table omitted")
        add_behavior(nwbfile, pupil_area, face_movement)
    except ExportError:
        raise
    except (ValueError, TypeError, KeyError) as e:
        raise ExportError(
            f"Cannot assemble NWB file for session {metadata.session_id}: {e}",
            original_error=e,
        ) from e
    return nwbfile


# =============================================================================
# Export
# =============================================================================

def _safe_remove_file(path: Path) -> None:
    try:
        if path.exists():
            path.unlink()
            logger.debug(f"Removed partial file: {path}")
    except OSError as e:
        logger.warning(f"Failed to remove partial file {path}: {e}")


def write_nwb_atomic(
    nwbfile: NWBFile,
    path: Union[str, Path],
    overwrite: bool = False,
) -> Path:
    """
    Write ``nwbfile`` to ``path`` via a temporary sibling file.

    The output appears under its final name only after a complete write; on
    failure no file is left behind.

    Raises:
        FileExistsError: If path exists and overwrite is False
        ExportError: If writing fails
    """
    path = Path(path)
    if path.exists() and not overwrite:
        raise FileExistsError(f"NWB file already exists: {path}. Use overwrite=True to replace.")

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    _safe_remove_file(tmp_path)

    try:
        with NWBHDF5IO(str(tmp_path), "w") as io:
            io.write(nwbfile)
        os.replace(tmp_path, path)
    except Exception as e:
        _safe_remove_file(tmp_path)
        raise ExportError(
            f"Failed to write NWB file {path}: {e}",
            output_path=str(path),
            original_error=e,
        ) from e

    logger.info(f"Saved NWB file to {path}: {path.stat().st_size // 1024} kB")
    return path


def output_filename(session_position: int) -> str:
    """File name of the ``session_position``-th (1-based) session."""
    return f"ecephys_session_{session_position:02d}.nwb"
