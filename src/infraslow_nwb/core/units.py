"""
Unit table: joins aggregated units against the electrode registry.

Every unit's peak channel is resolved through the unique electrode table row
with the same local channel index on the same probe, and every unit is
classified as single unit ("unit") or multi-unit activity ("mua") by looking
its cluster id up in the curated unit set of its region.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from infraslow_nwb.core.aggregation import AggregatedUnits
from infraslow_nwb.core.conventions import (
    DEFAULT_CONVENTIONS,
    META_HORZ_POS,
    META_ISI_VIOLATIONS,
    META_ISOLATION_DISTANCE,
    META_LOCAL_CHANNEL,
    META_LOCAL_UNIT_ID,
    META_VERT_POS,
    UNIT_TYPE_MULTI,
    UNIT_TYPE_SINGLE,
    ExportConventions,
)
from infraslow_nwb.core.electrodes import ElectrodeTable
from infraslow_nwb.core.identifiers import unit_id as make_unit_id
from infraslow_nwb.utils.exceptions import IdentifierCollisionError, JoinIntegrityError


logger = logging.getLogger(__name__)


UNIT_COLUMNS = [
    "cluster_id",
    "local_cluster_id",
    "type",
    "peak_channel_index",
    "peak_channel_id",
    "local_peak_channel_id",
    "rel_horz_pos",
    "rel_vert_pos",
    "isi_violations",
    "isolation_distance",
    "area",
    "probe_id",
]

# source positions are in micrometres, exported positions in millimetres
UM_PER_MM = 1000.0


@dataclass(frozen=True)
class UnitRecord:
    """One spike-sorted cluster."""
    unit_id: int
    local_cluster_id: int
    activity_type: str
    peak_channel_index: int
    peak_channel_id: int
    local_peak_channel: int
    relative_horizontal_pos: float
    relative_vertical_pos: float
    isi_violation_rate: float
    isolation_distance: float
    brain_area: str
    probe_label: str
    probe_number: int
    electrode_group: str

    @property
    def is_single_unit(self) -> bool:
        return self.activity_type == UNIT_TYPE_SINGLE


@dataclass(frozen=True)
class UnitTable:
    """Units of one session, in aggregated (canonical region) order."""
    session_id: str
    units: Tuple[UnitRecord, ...]

    def __len__(self) -> int:
        return len(self.units)

    def for_probe(self, probe_number: int) -> List[UnitRecord]:
        return [u for u in self.units if u.probe_number == probe_number]

    def to_dataframe(self) -> pd.DataFrame:
        rows = [
            {
                "cluster_id": u.unit_id,
                "local_cluster_id": u.local_cluster_id,
                "type": u.activity_type,
                "peak_channel_index": u.peak_channel_index,
                "peak_channel_id": u.peak_channel_id,
                "local_peak_channel_id": u.local_peak_channel,
                "rel_horz_pos": u.relative_horizontal_pos,
                "rel_vert_pos": u.relative_vertical_pos,
                "isi_violations": u.isi_violation_rate,
                "isolation_distance": u.isolation_distance,
                "area": u.brain_area,
                "probe_id": u.probe_label,
            }
            for u in self.units
        ]
        return pd.DataFrame(rows, columns=UNIT_COLUMNS)


def classify_units(cluster_ids: np.ndarray, confirmed_units) -> np.ndarray:
    """Return "unit" where a cluster id is in the curated set, "mua" otherwise."""
    is_unit = np.isin(np.asarray(cluster_ids, dtype=np.int64), np.asarray(sorted(confirmed_units), dtype=np.int64))
    return np.where(is_unit, UNIT_TYPE_SINGLE, UNIT_TYPE_MULTI)


class UnitMetadataJoiner:
    """
    Resolves channel identity and activity type of aggregated units.

    Example:
        >>> joiner = UnitMetadataJoiner(session_id, conventions)
        >>> table = joiner.join(aggregated, electrode_table)
        >>> table.units[0].peak_channel_id
        2019012219111012
    """

    def __init__(self, session_id: str, conventions: ExportConventions = DEFAULT_CONVENTIONS):
        self.session_id = str(session_id)
        self.conventions = conventions

    def join(self, aggregated: AggregatedUnits, electrodes: ElectrodeTable) -> UnitTable:
        """
        Build the unit table.

        Raises:
            JoinIntegrityError: If a unit's (local channel, probe) matches zero
                or several electrode table rows
            IdentifierCollisionError: If two units end up with the same id
        """
        channel_df = electrodes.to_dataframe()
        lookup: Dict[Tuple[str, int], np.ndarray] = {}
        if len(channel_df):
            lookup = {
                (str(label), int(index)): rows
                for (label, index), rows in channel_df.groupby(
                    ["probe_label", "channel_local_index"]
                ).indices.items()
            }

        probe_labels = {p.probe_number: p.label for p in electrodes.probes}
        types: Dict[str, np.ndarray] = {}
        for region in aggregated.present_regions:
            mask = np.asarray(aggregated.regions) == region
            types[region] = classify_units(
                aggregated.cluster_ids[mask], aggregated.confirmed_units[region]
            )
        type_cursor = {region: 0 for region in aggregated.present_regions}

        units: List[UnitRecord] = []
        seen: Dict[int, int] = {}
        for row in range(aggregated.n_units):
            meta = aggregated.metadata[row]
            region = aggregated.regions[row]
            probe_number = int(aggregated.probe_numbers[row])
            probe_label = probe_labels.get(probe_number, f"probe{probe_number}")
            local_cluster_id = int(meta[META_LOCAL_UNIT_ID])
            uid = make_unit_id(
                self.session_id, probe_number, local_cluster_id,
                width=self.conventions.unit_id_width,
            )
            if uid in seen:
                raise IdentifierCollisionError(
                    f"Session {self.session_id}: rows {seen[uid]} and {row} both map to unit "
                    f"id {uid} (probe {probe_number}, cluster {local_cluster_id})",
                    session_id=self.session_id,
                    probe_number=probe_number,
                    local_index=local_cluster_id,
                )
            seen[uid] = row

            peak_row = self._resolve_channel(lookup, probe_label, meta[META_LOCAL_CHANNEL], uid)
            channel = electrodes.channels[peak_row]

            activity_type = str(types[region][type_cursor[region]])
            type_cursor[region] += 1

            units.append(UnitRecord(
                unit_id=uid,
                local_cluster_id=local_cluster_id,
                activity_type=activity_type,
                peak_channel_index=peak_row,
                peak_channel_id=channel.channel_id,
                local_peak_channel=channel.local_index,
                relative_horizontal_pos=float(meta[META_HORZ_POS]) / UM_PER_MM,
                relative_vertical_pos=float(meta[META_VERT_POS]) / UM_PER_MM,
                isi_violation_rate=float(meta[META_ISI_VIOLATIONS]),
                isolation_distance=float(meta[META_ISOLATION_DISTANCE]),
                brain_area=region,
                probe_label=probe_label,
                probe_number=probe_number,
                electrode_group=channel.shank_group,
            ))

        n_single = sum(1 for u in units if u.is_single_unit)
        logger.info(
            f"Session {self.session_id}: unit table with {len(units)} units "
            f"({n_single} single units, {len(units) - n_single} mua)"
        )
        return UnitTable(session_id=self.session_id, units=tuple(units))

    def _resolve_channel(
        self,
        lookup: Dict[Tuple[str, int], np.ndarray],
        probe_label: str,
        local_channel: float,
        uid: int,
    ) -> int:
        if local_channel is None or np.isnan(local_channel) or float(local_channel) != int(local_channel):
            raise JoinIntegrityError(
                f"Session {self.session_id}: unit {uid} has invalid peak channel {local_channel}",
                session_id=self.session_id,
                probe=probe_label,
                unit_id=uid,
            )
        local_channel = int(local_channel)
        rows: Optional[np.ndarray] = lookup.get((probe_label, local_channel))
        n_matches = 0 if rows is None else len(rows)
        if n_matches != 1:
            raise JoinIntegrityError(
                f"Session {self.session_id}: unit {uid} peak channel {local_channel} on "
                f"{probe_label} matches {n_matches} electrode rows (expected exactly 1)",
                session_id=self.session_id,
                probe=probe_label,
                unit_id=uid,
                local_channel=local_channel,
                matches=n_matches,
            )
        return int(rows[0])


def join_units(
    session_id: str,
    aggregated: AggregatedUnits,
    electrodes: ElectrodeTable,
    conventions: ExportConventions = DEFAULT_CONVENTIONS,
) -> UnitTable:
    """Functional shortcut for UnitMetadataJoiner(...).join(...)."""
    return UnitMetadataJoiner(session_id, conventions).join(aggregated, electrodes)
