"""
Conversion runner.

Converts the derived data of one animal into one NWB file per recording
session. The derived-data container is read once; every session is then built
independently and written atomically, so a failed session never leaves a file
behind and does not affect the others.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tqdm import tqdm

from infraslow_nwb.core.aggregation import CrossRegionAggregator
from infraslow_nwb.core.conventions import DEFAULT_CONVENTIONS, ExportConventions
from infraslow_nwb.core.electrodes import build_electrode_table
from infraslow_nwb.core.quality import build_quality_mask
from infraslow_nwb.core.ragged import encode
from infraslow_nwb.core.units import UnitTable, join_units
from infraslow_nwb.core.waveforms import (
    ReshapedWaveforms,
    SessionWaveforms,
    WaveformBlock,
    WaveformReshaper,
    combine_probe_waveforms,
)
from infraslow_nwb.io.matfile import load_mat
from infraslow_nwb.io.nwb_writer import (
    BehaviorSeries,
    SessionMetadata,
    assemble_nwbfile,
    output_filename,
    write_nwb_atomic,
)
from infraslow_nwb.io.sources import (
    FACE_MOVEMENT,
    PUPIL_AREA,
    extract_behavior,
    extract_region_blocks,
    load_waveform_block,
)
from infraslow_nwb.pipeline.config import ConversionConfig, SessionConfig
from infraslow_nwb.utils.exceptions import ConfigurationError, InfraslowNWBError
from infraslow_nwb.utils.validation import validate_mat_path


logger = logging.getLogger(__name__)


# =============================================================================
# Result Types
# =============================================================================

@dataclass
class SessionResult:
    """Outcome of converting one session."""
    session_id: str
    output_path: Optional[Path] = None
    num_units: int = 0
    num_channels: int = 0
    success: bool = False
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class ConversionResult:
    """Outcome of converting all selected sessions of one animal."""
    animal_id: str
    output_dir: Path
    sessions: List[SessionResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[SessionResult]:
        return [s for s in self.sessions if s.success]

    @property
    def failed(self) -> List[SessionResult]:
        return [s for s in self.sessions if not s.success]

    @property
    def success(self) -> bool:
        return not self.failed


# =============================================================================
# Session Conversion
# =============================================================================

def _session_waveforms(
    session: SessionConfig,
    unit_table: UnitTable,
    warnings: List[str],
) -> Optional[SessionWaveforms]:
    blocks: Dict[int, Optional[WaveformBlock]] = {}
    for probe in session.probes:
        if probe.electrode_folder is None:
            blocks[probe.probe_number] = None
            continue
        blocks[probe.probe_number] = load_waveform_block(probe.electrode_folder)

    # sample length for probes without a waveform file
    known_lengths = [b.n_samples for b in blocks.values() if b is not None]
    known_lengths += [p.waveform_samples for p in session.probes if p.waveform_samples]
    if not known_lengths:
        message = (
            f"Session {session.session_id}: no waveform files and no waveform_samples "
            "configured, waveform columns omitted"
        )
        logger.warning(message)
        warnings.append(message)
        return None
    fallback_samples = known_lengths[0]

    parts: Dict[int, ReshapedWaveforms] = {}
    for probe in session.probes:
        units = unit_table.for_probe(probe.probe_number)
        block = blocks[probe.probe_number]
        if block is None:
            warnings.append(f"probe{probe.probe_number}: no waveforms, placeholders used")
        reshaper = WaveformReshaper(
            n_channels=probe.n_channels,
            n_samples=probe.waveform_samples or (None if block is not None else fallback_samples),
        )
        parts[probe.probe_number] = reshaper.reshape(units, block)

    return combine_probe_waveforms(unit_table, parts)


def _behavior_series(
    derived,
    animal_id: str,
    session_id: str,
    kind,
    frame_rate: Optional[float] = None,
) -> Optional[BehaviorSeries]:
    stream = extract_behavior(derived, animal_id, session_id, kind)
    if stream is None:
        return None
    return BehaviorSeries(
        values=stream.values,
        timestamps=stream.timestamps,
        quality=build_quality_mask(stream.timestamps, stream.intervals),
        frame_rate=frame_rate,
    )


def convert_session(
    config: ConversionConfig,
    session: SessionConfig,
    derived: Mapping[str, Any],
    output_dir: Path,
    overwrite: bool = False,
    conventions: ExportConventions = DEFAULT_CONVENTIONS,
) -> SessionResult:
    """
    Convert one session into an NWB file.

    Args:
        config: Animal conversion config
        session: Session to convert (one of config.sessions)
        derived: Loaded derived-data container
        output_dir: Directory receiving ecephys_session_<NN>.nwb
        overwrite: Replace an existing output file
        conventions: Export conventions

    Returns:
        SessionResult of a successful conversion

    Raises:
        InfraslowNWBError: Any error of the conversion taxonomy
        FileExistsError: If the output exists and overwrite is False
    """
    animal_id = config.animal.animal_id
    session_id = session.session_id
    result = SessionResult(session_id=session_id)
    output_path = Path(output_dir) / output_filename(config.session_position(session_id))

    logger.info(f"Converting {animal_id} session {session_id} -> {output_path.name}")

    electrodes = build_electrode_table(
        session_id,
        [p.to_layout() for p in session.probes],
        channel_id_width=conventions.channel_id_width,
    )

    blocks = extract_region_blocks(derived, animal_id, session_id, conventions)
    absent = [region for region, block in blocks.items() if block is None]
    if absent:
        logger.info(f"Session {session_id}: regions not recorded: {', '.join(absent)}")
    aggregated = CrossRegionAggregator(conventions).aggregate(blocks, session_id=session_id)
    if aggregated.n_units == 0:
        result.warnings.append("no units in any region")

    unit_table = join_units(session_id, aggregated, electrodes, conventions)
    spike_times = encode(aggregated.spike_trains(), dtype="float64")

    waveforms = None
    if len(unit_table):
        waveforms = _session_waveforms(session, unit_table, result.warnings)

    metadata = SessionMetadata(
        identifier=f"{animal_id}_{session_id}",
        session_id=session_id,
        session_description=session.description or f"Recording session {session_id}",
        session_start_time=session.start_time,
        subject_id=animal_id,
        experimenter=config.general.experimenter,
        institution=config.general.institution,
        lab=config.general.lab,
        related_publications=config.general.related_publications,
        notes=session.notes,
        age=config.animal.age,
        sex=config.animal.sex,
        species=config.animal.species,
        subject_description=config.animal.description,
    )

    nwbfile = assemble_nwbfile(
        metadata,
        electrodes,
        unit_table,
        spike_times,
        waveforms=waveforms,
        pupil_area=_behavior_series(
            derived, animal_id, session_id, PUPIL_AREA,
            frame_rate=config.general.video_frame_rate,
        ),
        face_movement=_behavior_series(derived, animal_id, session_id, FACE_MOVEMENT),
    )
    result.output_path = write_nwb_atomic(nwbfile, output_path, overwrite=overwrite)
    result.num_units = len(unit_table)
    result.num_channels = len(electrodes)
    result.success = True
    return result


# =============================================================================
# Animal Conversion
# =============================================================================

def _select_sessions(config: ConversionConfig, session_ids: Optional[Sequence[str]]) -> List[SessionConfig]:
    if not session_ids:
        return list(config.sessions)
    by_id = {s.session_id: s for s in config.sessions}
    unknown = [str(s) for s in session_ids if str(s) not in by_id]
    if unknown:
        raise ConfigurationError(
            f"Sessions {unknown} are not configured for {config.animal.animal_id}"
        )
    return [by_id[str(s)] for s in session_ids]


def convert_animal(
    config: ConversionConfig,
    output_dir: Optional[Path] = None,
    session_ids: Optional[Sequence[str]] = None,
    overwrite: bool = False,
    stop_on_error: Optional[bool] = None,
    conventions: ExportConventions = DEFAULT_CONVENTIONS,
) -> ConversionResult:
    """
    Convert the selected sessions of one animal.

    Args:
        config: Animal conversion config
        output_dir: Output directory (default: config.animal.output_folder)
        session_ids: Sessions to convert (default: all configured sessions)
        overwrite: Replace existing output files
        stop_on_error: Re-raise the first session failure (default:
            config.stop_on_error)
        conventions: Export conventions

    Returns:
        ConversionResult with one SessionResult per selected session

    Raises:
        ConfigurationError: If no output directory is known or a selected
            session is not configured
        DataLoadError: If the derived-data container cannot be read

    Example:
        >>> config = load_conversion_config(Path("M190114_A_MD.json"))
        >>> result = convert_animal(config)
        >>> [s.output_path.name for s in result.succeeded]
        ['ecephys_session_01.nwb', 'ecephys_session_02.nwb']
    """
    if output_dir is None:
        output_dir = config.animal.output_folder
    if output_dir is None:
        raise ConfigurationError(
            f"No output directory for {config.animal.animal_id}: set animal.output_folder "
            "or pass output_dir"
        )
    output_dir = Path(output_dir)
    if stop_on_error is None:
        stop_on_error = config.stop_on_error

    sessions = _select_sessions(config, session_ids)
    derived = load_mat(validate_mat_path(config.animal.derived_data_file))

    output_dir.mkdir(parents=True, exist_ok=True)
    result = ConversionResult(animal_id=config.animal.animal_id, output_dir=output_dir)

    for session in tqdm(sessions, desc=f"Converting {config.animal.animal_id}", unit="session"):
        try:
            session_result = convert_session(
                config, session, derived, output_dir,
                overwrite=overwrite,
                conventions=conventions,
            )
        except (InfraslowNWBError, FileExistsError) as e:
            logger.error(f"Session {session.session_id} failed: {type(e).__name__}: {e}")
            if stop_on_error:
                raise
            session_result = SessionResult(
                session_id=session.session_id,
                success=False,
                error=f"{type(e).__name__}: {e}",
            )
        result.sessions.append(session_result)

    logger.info(
        f"{config.animal.animal_id}: {len(result.succeeded)} session(s) converted, "
        f"{len(result.failed)} failed"
    )
    return result
