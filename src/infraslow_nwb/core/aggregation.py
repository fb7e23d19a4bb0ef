"""
Cross-region aggregation of per-region spike matrices and unit metadata.

Each brain region of a session contributes an activity matrix (units x
samples, non-zero where the unit fired) and a metadata matrix (one row per
unit). Regions are concatenated in the canonical order; regions absent from a
session contribute nothing and do not shift the rows of the others. Every
aggregated row carries an explicit (region, probe) provenance tag.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from infraslow_nwb.core.conventions import (
    DEFAULT_CONVENTIONS,
    META_LOCAL_UNIT_ID,
    META_MIN_COLUMNS,
    ExportConventions,
)
from infraslow_nwb.utils.exceptions import ConfigurationError, ShapeMismatchError


logger = logging.getLogger(__name__)


@dataclass
class RegionBlock:
    """
    Source record of one brain region in one session.

    Attributes:
        region: Region name (must be in the canonical order)
        activity: (n_units, n_samples) sparse or dense activity matrix
        metadata: (n_units, k) numeric metadata, see conventions.META_*
        cluster_ids: Probe-local cluster id of every row; defaults to the
            metadata local unit id column
        confirmed_units: Curated single-unit cluster ids of this region
        sampling_rate: Samples per second of the activity matrix
    """
    region: str
    activity: Any
    metadata: np.ndarray
    sampling_rate: float
    cluster_ids: Optional[np.ndarray] = None
    confirmed_units: FrozenSet[int] = field(default_factory=frozenset)

    def __post_init__(self):
        self.activity = sp.csr_matrix(self.activity)

        metadata = np.asarray(self.metadata, dtype=np.float64)
        if metadata.size == 0:
            metadata = np.empty((0, META_MIN_COLUMNS), dtype=np.float64)
        elif metadata.ndim == 1:
            metadata = metadata.reshape(1, -1)
        self.metadata = metadata

        if self.cluster_ids is None:
            if metadata.shape[0] and metadata.shape[1] > META_LOCAL_UNIT_ID:
                self.cluster_ids = metadata[:, META_LOCAL_UNIT_ID].astype(np.int64)
            else:
                self.cluster_ids = np.empty(0, dtype=np.int64)
        else:
            self.cluster_ids = np.atleast_1d(np.asarray(self.cluster_ids)).astype(np.int64).ravel()

        confirmed = self.confirmed_units
        if isinstance(confirmed, (set, frozenset)):
            confirmed = list(confirmed)
        self.confirmed_units = frozenset(
            int(u) for u in np.atleast_1d(np.asarray(confirmed, dtype=np.float64)).ravel()
            if not np.isnan(u)
        )

    @property
    def n_units(self) -> int:
        return self.activity.shape[0]


@dataclass(frozen=True)
class AggregatedUnits:
    """
    Unit population of one session in canonical region order.

    Attributes:
        activity: (n_units, n_samples) CSR activity matrix
        metadata: (n_units, k) metadata rows
        cluster_ids: Probe-local cluster id per row
        regions: Region tag per row
        probe_numbers: Probe number per row (provenance tag)
        confirmed_units: Curated single-unit ids per present region
        sampling_rate: Shared sampling rate of the activity matrices
        present_regions: Regions that contributed, in order
    """
    activity: sp.csr_matrix
    metadata: np.ndarray
    cluster_ids: np.ndarray
    regions: Tuple[str, ...]
    probe_numbers: np.ndarray
    confirmed_units: Mapping[str, FrozenSet[int]]
    sampling_rate: float
    present_regions: Tuple[str, ...]

    @property
    def n_units(self) -> int:
        return self.activity.shape[0]

    def time_base(self) -> np.ndarray:
        """Time in seconds of every activity column; sample j lies at (j + 1) / rate."""
        n_samples = self.activity.shape[1]
        return np.arange(1, n_samples + 1, dtype=np.float64) / self.sampling_rate

    def spike_trains(self) -> List[np.ndarray]:
        """Spike times (s) of every unit, ascending."""
        activity = self.activity.copy()
        activity.eliminate_zeros()
        activity.sort_indices()
        trains = []
        for row in range(activity.shape[0]):
            cols = activity.indices[activity.indptr[row]:activity.indptr[row + 1]]
            trains.append((cols.astype(np.float64) + 1.0) / self.sampling_rate)
        return trains


class CrossRegionAggregator:
    """
    Concatenates region blocks in canonical order.

    Example:
        >>> aggregator = CrossRegionAggregator(conventions)
        >>> units = aggregator.aggregate({"S1": s1, "VB": None, "Po": po})
        >>> units.regions[:3]
        ('S1', 'S1', 'Po')
    """

    def __init__(self, conventions: ExportConventions = DEFAULT_CONVENTIONS):
        self.conventions = conventions

    def aggregate(
        self,
        blocks: Mapping[str, Optional[RegionBlock]],
        session_id: Optional[str] = None,
    ) -> AggregatedUnits:
        """
        Merge present region blocks.

        Args:
            blocks: Region name -> block, or None when the region is absent
            session_id: Used in error messages only

        Raises:
            ConfigurationError: Unknown region, or sampling rates disagree
            ShapeMismatchError: Sample counts disagree between regions, or a
                block's metadata and activity row counts differ
        """
        unknown = [name for name in blocks if name not in self.conventions.region_order]
        if unknown:
            raise ConfigurationError(
                f"Regions {unknown} are not in the canonical order "
                f"{list(self.conventions.region_order)}",
                session_id=session_id,
            )

        present: List[RegionBlock] = []
        for region in self.conventions.region_order:
            block = blocks.get(region)
            if block is None:
                logger.debug(f"Session {session_id}: region {region} absent")
                continue
            if block.region != region:
                raise ConfigurationError(
                    f"Block stored under '{region}' is tagged '{block.region}'",
                    session_id=session_id,
                )
            self._check_block(block, session_id)
            present.append(block)

        if not present:
            logger.warning(f"Session {session_id}: no region data present")
            return AggregatedUnits(
                activity=sp.csr_matrix((0, 0)),
                metadata=np.empty((0, META_MIN_COLUMNS)),
                cluster_ids=np.empty(0, dtype=np.int64),
                regions=(),
                probe_numbers=np.empty(0, dtype=np.int64),
                confirmed_units={},
                sampling_rate=1.0,
                present_regions=(),
            )

        rate = float(present[0].sampling_rate)
        with_units = [b for b in present if b.n_units]
        n_samples = (with_units or present)[0].activity.shape[1]
        for block in present[1:]:
            if not np.isclose(float(block.sampling_rate), rate):
                raise ConfigurationError(
                    f"Sampling rate of {block.region} ({block.sampling_rate}) differs from "
                    f"{present[0].region} ({rate})",
                    session_id=session_id,
                )
        for block in with_units:
            if block.activity.shape[1] != n_samples:
                raise ShapeMismatchError(
                    f"Region {block.region} has {block.activity.shape[1]} samples, "
                    f"{with_units[0].region} has {n_samples}",
                    entity=block.region,
                    expected=n_samples,
                    actual=block.activity.shape[1],
                )
        # regions without units contribute no rows, whatever their column count
        activities = [
            b.activity if b.n_units else sp.csr_matrix((0, n_samples)) for b in present
        ]

        n_cols = max(b.metadata.shape[1] for b in present)
        metadata = np.vstack([_pad_columns(b.metadata, n_cols) for b in present])

        regions: List[str] = []
        probes: List[int] = []
        for block in present:
            regions.extend([block.region] * block.n_units)
            probes.extend([self.conventions.probe_for(block.region)] * block.n_units)

        aggregated = AggregatedUnits(
            activity=sp.vstack(activities, format="csr"),
            metadata=metadata,
            cluster_ids=np.concatenate([b.cluster_ids for b in present]),
            regions=tuple(regions),
            probe_numbers=np.asarray(probes, dtype=np.int64),
            confirmed_units={b.region: b.confirmed_units for b in present},
            sampling_rate=rate,
            present_regions=tuple(b.region for b in present),
        )
        logger.info(
            f"Session {session_id}: aggregated {aggregated.n_units} units from "
            f"{', '.join(aggregated.present_regions)}"
        )
        return aggregated

    @staticmethod
    def _check_block(block: RegionBlock, session_id: Optional[str]) -> None:
        if block.metadata.shape[0] != block.n_units:
            raise ShapeMismatchError(
                f"Session {session_id} region {block.region}: {block.metadata.shape[0]} "
                f"metadata rows for {block.n_units} activity rows",
                entity=block.region,
                expected=block.n_units,
                actual=block.metadata.shape[0],
            )
        if block.n_units and block.metadata.shape[1] < META_MIN_COLUMNS:
            raise ShapeMismatchError(
                f"Session {session_id} region {block.region}: metadata has "
                f"{block.metadata.shape[1]} columns, need {META_MIN_COLUMNS}",
                entity=block.region,
                expected=META_MIN_COLUMNS,
                actual=block.metadata.shape[1],
            )
        if len(block.cluster_ids) != block.n_units:
            raise ShapeMismatchError(
                f"Session {session_id} region {block.region}: {len(block.cluster_ids)} "
                f"cluster ids for {block.n_units} activity rows",
                entity=block.region,
                expected=block.n_units,
                actual=len(block.cluster_ids),
            )
        if block.sampling_rate is None or float(block.sampling_rate) <= 0:
            raise ConfigurationError(
                f"Region {block.region}: invalid sampling rate {block.sampling_rate}",
                session_id=session_id,
            )


def _pad_columns(matrix: np.ndarray, n_cols: int) -> np.ndarray:
    if matrix.shape[1] == n_cols:
        return matrix
    padded = np.full((matrix.shape[0], n_cols), np.nan)
    padded[:, :matrix.shape[1]] = matrix
    return padded
