"""
Extraction of conversion inputs from the derived-data container.

Container layout (after load_mat):

    dataStruct
      seriesData
        <animal>_s<session><k>        one per region, k = canonical position
          popData: spkDB, muaMetadata, spkDB_units
          shankData: shank1: units
          conf: samplingParams: srData
      eyeData
        <animal>_s<session>: period, frameTimes, pupilArea
      motionData
        <animal>_s<session>: period, frameTimes, sa

Every missing structure is reported as None, never as an error.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import numpy as np

from infraslow_nwb.core.aggregation import RegionBlock
from infraslow_nwb.core.conventions import DEFAULT_CONVENTIONS, ExportConventions
from infraslow_nwb.core.waveforms import WaveformBlock
from infraslow_nwb.io.matfile import load_mat, lookup
from infraslow_nwb.utils.exceptions import DataLoadError


logger = logging.getLogger(__name__)


ROOT_KEY = "dataStruct"
SERIES_KEY = "seriesData"

# behavior kind -> (container key, value field)
PUPIL_AREA = ("eyeData", "pupilArea")
FACE_MOVEMENT = ("motionData", "sa")

WAVEFORMS_FILENAME = "waveforms.mat"


def series_key(animal_id: str, session_id: str) -> str:
    """Key of a session's recording series, e.g. ``M1_s201901221911``."""
    return f"{animal_id}_s{session_id}"


def region_key(animal_id: str, session_id: str, region_number: int) -> str:
    return f"{series_key(animal_id, session_id)}{region_number}"


def extract_region_blocks(
    derived: Mapping[str, Any],
    animal_id: str,
    session_id: str,
    conventions: ExportConventions = DEFAULT_CONVENTIONS,
) -> Dict[str, Optional[RegionBlock]]:
    """
    Pull the region blocks of one session out of the container.

    Returns:
        Region name -> RegionBlock, or None when the region was not recorded

    Raises:
        DataLoadError: If a region is present but lacks a required field
    """
    series = lookup(derived, ROOT_KEY, SERIES_KEY, default={})
    blocks: Dict[str, Optional[RegionBlock]] = {}
    for region in conventions.region_order:
        key = region_key(animal_id, session_id, conventions.region_number(region))
        record = series.get(key) if isinstance(series, dict) else None
        if record is None:
            blocks[region] = None
            continue
        blocks[region] = _region_block(region, key, record)
    return blocks


def _require(record: Mapping[str, Any], key: str, *path: str) -> Any:
    value = lookup(record, *path)
    if value is None:
        raise DataLoadError(f"Region record {key} has no field {'.'.join(path)}")
    return value


def _region_block(region: str, key: str, record: Mapping[str, Any]) -> RegionBlock:
    activity = _require(record, key, "popData", "spkDB")
    metadata = _require(record, key, "popData", "muaMetadata")
    cluster_ids = _require(record, key, "popData", "spkDB_units")
    rate = _require(record, key, "conf", "samplingParams", "srData")
    confirmed = lookup(record, "shankData", "shank1", "units", default=())

    if not hasattr(activity, "tocsr"):
        activity = np.asarray(activity, dtype=np.float64)
        if activity.ndim == 1:
            activity = activity.reshape(1, -1) if activity.size else np.empty((0, 0))

    logger.debug(f"{key}: region {region} with {np.size(cluster_ids)} clusters")
    return RegionBlock(
        region=region,
        activity=activity,
        metadata=metadata,
        sampling_rate=float(rate),
        cluster_ids=cluster_ids,
        confirmed_units=confirmed,
    )


@dataclass(frozen=True)
class BehaviorStream:
    """One behavioral time series with its acceptable periods."""
    values: np.ndarray
    timestamps: np.ndarray
    intervals: Any


def extract_behavior(
    derived: Mapping[str, Any],
    animal_id: str,
    session_id: str,
    kind: tuple = PUPIL_AREA,
) -> Optional[BehaviorStream]:
    """
    Pull one behavioral stream (PUPIL_AREA or FACE_MOVEMENT) of a session.

    Returns None when the session has no such stream.

    Raises:
        DataLoadError: If values and frame times differ in length
    """
    container, field_name = kind
    record = lookup(derived, ROOT_KEY, container, series_key(animal_id, session_id))
    if not isinstance(record, dict) or field_name not in record or "frameTimes" not in record:
        logger.info(f"Session {session_id}: no {container}.{field_name}")
        return None

    values = np.atleast_1d(np.asarray(record[field_name], dtype=np.float64)).ravel()
    timestamps = np.atleast_1d(np.asarray(record["frameTimes"], dtype=np.float64)).ravel()
    if values.shape != timestamps.shape:
        raise DataLoadError(
            f"Session {session_id}: {container}.{field_name} has {values.size} samples "
            f"but {timestamps.size} frame times"
        )
    return BehaviorStream(
        values=values,
        timestamps=timestamps,
        intervals=record.get("period"),
    )


def load_waveform_block(path: Union[str, Path]) -> Optional[WaveformBlock]:
    """
    Load a probe's waveform file.

    Args:
        path: waveforms.mat, or the probe's electrode folder containing it

    Returns:
        WaveformBlock, or None when the file does not exist

    Raises:
        DataLoadError: If the file lacks waveforms, maxWaveforms or cluIDs
    """
    path = Path(path)
    if path.is_dir():
        path = path / WAVEFORMS_FILENAME
    if not path.exists():
        logger.warning(f"Waveform file not found, using placeholders: {path}")
        return None

    data = load_mat(path)
    missing = [k for k in ("waveforms", "maxWaveforms", "cluIDs") if k not in data]
    if missing:
        raise DataLoadError(
            f"Waveform file {path} is missing {missing}",
            file_path=str(path),
        )
    return WaveformBlock(
        waveforms=data["waveforms"],
        max_waveforms=data["maxWaveforms"],
        cluster_ids=data["cluIDs"],
    )
