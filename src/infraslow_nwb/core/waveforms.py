"""
Waveform reshaping.

A probe's waveform block is three-dimensional (unit x sample x channel) and
only covers the clusters that had waveforms extracted. For every unit of the
probe, in unit table order, the reshaper emits either the unit's
(channel x sample) block or a placeholder: no matrix rows, an empty group,
one empty row per channel slot and an all-NaN mean waveform.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from infraslow_nwb.core.units import UnitRecord, UnitTable
from infraslow_nwb.utils.exceptions import ConfigurationError, ShapeMismatchError
from infraslow_nwb.utils.logging import LoggerMixin


@dataclass
class WaveformBlock:
    """
    Waveforms extracted for one probe.

    Attributes:
        waveforms: (n_clusters, n_samples, n_channels) mean waveforms
        max_waveforms: (n_clusters, n_samples) waveform on the peak channel
        cluster_ids: Cluster id of every entry of the first axis
    """
    waveforms: np.ndarray
    max_waveforms: np.ndarray
    cluster_ids: np.ndarray

    def __post_init__(self):
        self.waveforms = np.asarray(self.waveforms, dtype=np.float64)
        self.cluster_ids = np.atleast_1d(np.asarray(self.cluster_ids)).astype(np.int64).ravel()
        if self.waveforms.ndim == 2 and len(self.cluster_ids) == 1:
            # single cluster squeezed by the MAT reader
            self.waveforms = self.waveforms[np.newaxis]
        if self.waveforms.ndim != 3:
            raise ShapeMismatchError(
                f"Waveform block must be 3-dimensional, got shape {self.waveforms.shape}",
                entity="waveforms",
                expected=3,
                actual=self.waveforms.ndim,
            )

        max_waveforms = np.asarray(self.max_waveforms, dtype=np.float64)
        if max_waveforms.ndim == 1:
            max_waveforms = max_waveforms.reshape(1, -1)
        self.max_waveforms = max_waveforms

        n_clusters, n_samples, _ = self.waveforms.shape
        if len(self.cluster_ids) != n_clusters:
            raise ShapeMismatchError(
                f"{len(self.cluster_ids)} cluster ids for {n_clusters} waveform entries",
                entity="cluIDs",
                expected=n_clusters,
                actual=len(self.cluster_ids),
            )
        if self.max_waveforms.shape != (n_clusters, n_samples):
            raise ShapeMismatchError(
                f"maxWaveforms shape {self.max_waveforms.shape} does not match "
                f"({n_clusters}, {n_samples})",
                entity="maxWaveforms",
                expected=(n_clusters, n_samples),
                actual=self.max_waveforms.shape,
            )
        if len(np.unique(self.cluster_ids)) != n_clusters:
            raise ShapeMismatchError(
                "Waveform block contains duplicate cluster ids",
                entity="cluIDs",
            )

    @property
    def n_samples(self) -> int:
        return self.waveforms.shape[1]

    @property
    def n_channels(self) -> int:
        return self.waveforms.shape[2]

    def row_of(self, cluster_id: int) -> Optional[int]:
        rows = np.flatnonzero(self.cluster_ids == cluster_id)
        return int(rows[0]) if rows.size else None


@dataclass
class ReshapedWaveforms:
    """
    Reshaped waveforms of the units of one probe.

    Attributes:
        unit_ids: Units in the order they were processed
        matrix: (n_present_units * n_channels, n_samples) stacked channel rows
        grouped: Per unit (n_channels, n_samples) block, (0, n_samples) if absent
        channel_rows: Per unit per channel sample row, empty if absent
        means: (n_units, n_samples) peak-channel mean waveforms, NaN if absent
        n_channels: Channel slots per unit
        n_samples: Samples per waveform
    """
    unit_ids: List[int]
    matrix: np.ndarray
    grouped: List[np.ndarray]
    channel_rows: List[np.ndarray]
    means: np.ndarray
    n_channels: int
    n_samples: int
    present: List[bool] = field(default_factory=list)

    def channel_rows_of(self, position: int) -> List[np.ndarray]:
        """Channel rows of the unit at ``position``."""
        start = position * self.n_channels
        return self.channel_rows[start:start + self.n_channels]


class WaveformReshaper(LoggerMixin):
    """
    Reshapes one probe's waveform block into per-unit waveform records.

    Args:
        n_channels: Channel slots per unit on this probe
        n_samples: Expected waveform length; required when the block is absent
    """

    def __init__(self, n_channels: int, n_samples: Optional[int] = None):
        if n_channels < 1:
            raise ConfigurationError(f"n_channels must be positive, got {n_channels}")
        self.n_channels = int(n_channels)
        self.n_samples = None if n_samples is None else int(n_samples)

    def _sample_count(self, block: Optional[WaveformBlock]) -> int:
        if block is None:
            if self.n_samples is None:
                raise ConfigurationError(
                    "Waveform sample length is unknown: no waveform block and no n_samples"
                )
            return self.n_samples

        if block.n_channels != self.n_channels:
            raise ShapeMismatchError(
                f"Waveform block has {block.n_channels} channels, probe declares "
                f"{self.n_channels}",
                entity="waveforms",
                expected=self.n_channels,
                actual=block.n_channels,
            )
        if self.n_samples is not None and block.n_samples != self.n_samples:
            raise ShapeMismatchError(
                f"Waveform block has {block.n_samples} samples, expected {self.n_samples}",
                entity="waveforms",
                expected=self.n_samples,
                actual=block.n_samples,
            )
        return block.n_samples

    def reshape(
        self,
        units: Sequence[UnitRecord],
        block: Optional[WaveformBlock],
    ) -> ReshapedWaveforms:
        """
        Reshape waveforms for ``units`` (all from one probe, table order).

        Raises:
            ShapeMismatchError: If the block disagrees with the declared
                channel count or sample length
            ConfigurationError: If the block is absent and no sample length
                was declared
        """
        n_samples = self._sample_count(block)

        matrix_rows: List[np.ndarray] = []
        grouped: List[np.ndarray] = []
        channel_rows: List[np.ndarray] = []
        means: List[np.ndarray] = []
        present: List[bool] = []

        for unit in units:
            row = block.row_of(unit.local_cluster_id) if block is not None else None
            if row is not None:
                unit_block = block.waveforms[row].T  # (channel, sample)
                matrix_rows.append(unit_block)
                grouped.append(unit_block)
                channel_rows.extend(unit_block[c] for c in range(self.n_channels))
                means.append(block.max_waveforms[row])
                present.append(True)
            else:
                grouped.append(np.empty((0, n_samples)))
                channel_rows.extend(np.empty(0) for _ in range(self.n_channels))
                means.append(np.full(n_samples, np.nan))
                present.append(False)

        matrix = np.vstack(matrix_rows) if matrix_rows else np.empty((0, n_samples))
        result = ReshapedWaveforms(
            unit_ids=[u.unit_id for u in units],
            matrix=matrix,
            grouped=grouped,
            channel_rows=channel_rows,
            means=np.vstack(means) if means else np.empty((0, n_samples)),
            n_channels=self.n_channels,
            n_samples=n_samples,
            present=present,
        )
        self.logger.debug(
            f"Reshaped waveforms of {len(units)} units: {sum(present)} with waveforms, "
            f"{len(units) - sum(present)} placeholders"
        )
        return result


@dataclass
class SessionWaveforms:
    """Waveforms of all units of a session, in unit table order."""
    means: np.ndarray
    channel_rows: List[List[np.ndarray]]
    n_samples: int


def combine_probe_waveforms(
    unit_table: UnitTable,
    parts: Mapping[int, ReshapedWaveforms],
) -> SessionWaveforms:
    """
    Reorder per-probe results into unit table order.

    Args:
        unit_table: Session unit table
        parts: Probe number -> reshaped waveforms of that probe

    Raises:
        ShapeMismatchError: If probes disagree on sample length or a unit is
            missing from its probe's result
    """
    sample_counts = {p.n_samples for p in parts.values()}
    if len(sample_counts) > 1:
        raise ShapeMismatchError(
            f"Probes have different waveform lengths: {sorted(sample_counts)}",
            entity="waveforms",
        )
    n_samples = sample_counts.pop() if sample_counts else 0

    positions: Dict[int, Dict[int, int]] = {
        probe: {uid: i for i, uid in enumerate(part.unit_ids)} for probe, part in parts.items()
    }

    means = np.full((len(unit_table), n_samples), np.nan)
    channel_rows: List[List[np.ndarray]] = []
    for i, unit in enumerate(unit_table.units):
        part = parts.get(unit.probe_number)
        pos = positions.get(unit.probe_number, {}).get(unit.unit_id)
        if part is None or pos is None:
            raise ShapeMismatchError(
                f"No reshaped waveforms for unit {unit.unit_id} on probe {unit.probe_number}",
                entity="waveforms",
            )
        means[i] = part.means[pos]
        channel_rows.append(part.channel_rows_of(pos))

    return SessionWaveforms(means=means, channel_rows=channel_rows, n_samples=n_samples)
