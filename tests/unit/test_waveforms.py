"""
Unit tests for waveform reshaping.
"""

import numpy as np
import pytest

from infraslow_nwb.core.aggregation import CrossRegionAggregator
from infraslow_nwb.core.electrodes import build_electrode_table
from infraslow_nwb.core.units import join_units
from infraslow_nwb.core.waveforms import (
    WaveformBlock,
    WaveformReshaper,
    combine_probe_waveforms,
)
from infraslow_nwb.utils.exceptions import ConfigurationError, ShapeMismatchError


N_SAMPLES = 6
N_CHANNELS = 8


@pytest.fixture
def unit_table(session_id, two_probes, s1_block, po_block):
    electrodes = build_electrode_table(session_id, two_probes)
    aggregated = CrossRegionAggregator().aggregate({"S1": s1_block, "Po": po_block})
    return join_units(session_id, aggregated, electrodes)


def make_block(cluster_ids, n_samples=N_SAMPLES, n_channels=N_CHANNELS) -> WaveformBlock:
    n = len(cluster_ids)
    waveforms = np.arange(n * n_samples * n_channels, dtype=float).reshape(n, n_samples, n_channels)
    return WaveformBlock(
        waveforms=waveforms,
        max_waveforms=waveforms[:, :, 0],
        cluster_ids=np.asarray(cluster_ids),
    )


class TestWaveformBlock:
    """Tests for WaveformBlock validation."""

    def test_single_cluster_squeezed(self):
        block = WaveformBlock(
            waveforms=np.zeros((N_SAMPLES, N_CHANNELS)),
            max_waveforms=np.zeros(N_SAMPLES),
            cluster_ids=4,
        )
        assert block.waveforms.shape == (1, N_SAMPLES, N_CHANNELS)
        assert block.row_of(4) == 0
        assert block.row_of(5) is None

    def test_cluster_count_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            WaveformBlock(
                waveforms=np.zeros((2, N_SAMPLES, N_CHANNELS)),
                max_waveforms=np.zeros((2, N_SAMPLES)),
                cluster_ids=[1, 2, 3],
            )

    def test_max_waveform_shape_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            WaveformBlock(
                waveforms=np.zeros((2, N_SAMPLES, N_CHANNELS)),
                max_waveforms=np.zeros((2, N_SAMPLES + 1)),
                cluster_ids=[1, 2],
            )

    def test_duplicate_cluster_ids(self):
        with pytest.raises(ShapeMismatchError):
            make_block([1, 1])


class TestWaveformReshaper:
    """Tests for WaveformReshaper.reshape()."""

    def test_present_and_missing_units(self, unit_table):
        units = unit_table.for_probe(1)  # clusters 5, 7, 9
        block = make_block([9, 5])
        result = WaveformReshaper(N_CHANNELS).reshape(units, block)

        assert result.present == [True, False, True]
        assert result.matrix.shape == (2 * N_CHANNELS, N_SAMPLES)
        assert result.grouped[1].shape == (0, N_SAMPLES)
        assert len(result.channel_rows) == 3 * N_CHANNELS
        assert np.isnan(result.means[1]).all()

    def test_unit_order_not_block_order(self, unit_table):
        units = unit_table.for_probe(1)
        block = make_block([9, 5])
        result = WaveformReshaper(N_CHANNELS).reshape(units, block)

        # cluster 5 is block row 1, cluster 9 block row 0
        np.testing.assert_array_equal(result.grouped[0], block.waveforms[1].T)
        np.testing.assert_array_equal(result.grouped[2], block.waveforms[0].T)
        np.testing.assert_array_equal(result.means[0], block.max_waveforms[1])
        np.testing.assert_array_equal(result.matrix[:N_CHANNELS], block.waveforms[1].T)

    def test_channel_rows(self, unit_table):
        units = unit_table.for_probe(1)
        block = make_block([5, 7, 9])
        result = WaveformReshaper(N_CHANNELS).reshape(units, block)

        rows = result.channel_rows_of(1)
        assert len(rows) == N_CHANNELS
        np.testing.assert_array_equal(rows[3], block.waveforms[1][:, 3])

    def test_missing_unit_channel_rows_empty(self, unit_table):
        units = unit_table.for_probe(1)
        result = WaveformReshaper(N_CHANNELS).reshape(units, make_block([5]))
        assert all(row.size == 0 for row in result.channel_rows_of(2))

    def test_absent_block_placeholders(self, unit_table):
        units = unit_table.for_probe(2)
        result = WaveformReshaper(N_CHANNELS, n_samples=N_SAMPLES).reshape(units, None)

        assert result.present == [False, False]
        assert result.matrix.shape == (0, N_SAMPLES)
        assert result.means.shape == (2, N_SAMPLES)
        assert np.isnan(result.means).all()

    def test_absent_block_without_sample_length(self, unit_table):
        with pytest.raises(ConfigurationError):
            WaveformReshaper(N_CHANNELS).reshape(unit_table.for_probe(2), None)

    def test_channel_count_mismatch(self, unit_table):
        block = make_block([5], n_channels=N_CHANNELS - 1)
        with pytest.raises(ShapeMismatchError):
            WaveformReshaper(N_CHANNELS).reshape(unit_table.for_probe(1), block)

    def test_sample_length_mismatch(self, unit_table):
        with pytest.raises(ShapeMismatchError):
            WaveformReshaper(N_CHANNELS, n_samples=N_SAMPLES + 2).reshape(
                unit_table.for_probe(1), make_block([5])
            )


class TestCombineProbeWaveforms:
    """Tests for combine_probe_waveforms()."""

    def test_unit_table_order(self, unit_table):
        block = make_block([5, 9])
        parts = {
            1: WaveformReshaper(N_CHANNELS).reshape(unit_table.for_probe(1), block),
            2: WaveformReshaper(N_CHANNELS, n_samples=N_SAMPLES).reshape(unit_table.for_probe(2), None),
        }
        combined = combine_probe_waveforms(unit_table, parts)

        assert combined.means.shape == (len(unit_table), N_SAMPLES)
        assert len(combined.channel_rows) == len(unit_table)
        np.testing.assert_array_equal(combined.means[2], block.max_waveforms[1])
        assert np.isnan(combined.means[3]).all()

    def test_missing_probe_part(self, unit_table):
        parts = {1: WaveformReshaper(N_CHANNELS).reshape(unit_table.for_probe(1), make_block([5]))}
        with pytest.raises(ShapeMismatchError):
            combine_probe_waveforms(unit_table, parts)

    def test_sample_length_disagreement(self, unit_table):
        parts = {
            1: WaveformReshaper(N_CHANNELS).reshape(unit_table.for_probe(1), make_block([5])),
            2: WaveformReshaper(N_CHANNELS, n_samples=N_SAMPLES + 1).reshape(unit_table.for_probe(2), None),
        }
        with pytest.raises(ShapeMismatchError):
            combine_probe_waveforms(unit_table, parts)
