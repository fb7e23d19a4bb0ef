"""
Unit tests for the NWB object tree assembly (in memory, nothing written).
"""

from datetime import datetime, timezone

import numpy as np
import pytest

from infraslow_nwb.core.aggregation import CrossRegionAggregator
from infraslow_nwb.core.electrodes import build_electrode_table
from infraslow_nwb.core.ragged import encode
from infraslow_nwb.core.units import join_units
from infraslow_nwb.core.waveforms import SessionWaveforms
from infraslow_nwb.io.nwb_writer import (
    BehaviorSeries,
    SessionMetadata,
    assemble_nwbfile,
    output_filename,
)


N_WAVEFORM_SAMPLES = 4


@pytest.fixture
def session_tables(session_id, two_probes, s1_block, po_block):
    """Electrode table, unit table and spike times of the S1 + Po session."""
    electrodes = build_electrode_table(session_id, two_probes)
    aggregated = CrossRegionAggregator().aggregate({"S1": s1_block, "Po": po_block})
    unit_table = join_units(session_id, aggregated, electrodes)
    spike_times = encode(aggregated.spike_trains(), dtype="float64")
    return electrodes, unit_table, spike_times


@pytest.fixture
def metadata(session_id):
    return SessionMetadata(
        identifier=f"M190114_{session_id}",
        session_id=session_id,
        session_description="Spontaneous activity",
        session_start_time=datetime(2019, 1, 22, 19, 11, tzinfo=timezone.utc),
        subject_id="M190114",
        experimenter=["Experimenter A"],
    )


def _waveforms(n_units: int, with_waveforms) -> SessionWaveforms:
    means = np.full((n_units, N_WAVEFORM_SAMPLES), np.nan)
    rows = []
    for unit in range(n_units):
        if unit in with_waveforms:
            means[unit] = np.arange(N_WAVEFORM_SAMPLES) + unit
            rows.append([np.full(N_WAVEFORM_SAMPLES, float(ch)) for ch in range(8)])
        else:
            rows.append([np.empty(0) for _ in range(8)])
    return SessionWaveforms(means=means, channel_rows=rows, n_samples=N_WAVEFORM_SAMPLES)


def _column(table, name: str):
    """Column or index of ``table`` by its own name (indexing by name yields the top index)."""
    return {column.name: column for column in table.columns}[name]


def _series(frame_rate=None) -> BehaviorSeries:
    timestamps = np.arange(10) / 10.0
    return BehaviorSeries(
        values=np.ones(10),
        timestamps=timestamps,
        quality=timestamps >= 0.5,
        frame_rate=frame_rate,
    )


class TestAssembleUnits:
    """Tests for the units table built by assemble_nwbfile()."""

    def test_units_table_built(self, metadata, session_tables):
        electrodes, unit_table, spike_times = session_tables
        nwbfile = assemble_nwbfile(metadata, electrodes, unit_table, spike_times)

        units = nwbfile.units
        assert len(units) == 5
        assert "spike_times" in units.colnames
        assert "electrodes" in units.colnames
        assert "waveform_mean" not in units.colnames
        np.testing.assert_allclose(units.get_unit_spike_times(3), [0.2, 0.3, 0.4, 10.0])
        np.testing.assert_array_equal(_column(units, "electrodes").data, [0, 3, 7, 9, 15])

    def test_ragged_index_columns(self, metadata, session_tables):
        electrodes, unit_table, spike_times = session_tables
        nwbfile = assemble_nwbfile(
            metadata, electrodes, unit_table, spike_times,
            waveforms=_waveforms(5, with_waveforms={0, 2}),
        )

        units = nwbfile.units
        assert _column(units, "channel_mean_waveforms_index_index").data.tolist() == [8, 16, 24, 32, 40]
        flat = _column(units, "channel_mean_waveforms").data
        assert len(flat) == 2 * 8 * N_WAVEFORM_SAMPLES
        assert np.isnan(_column(units, "waveform_mean").data[1]).all()

    def test_no_units_omits_table(self, metadata, session_id, two_probes):
        electrodes = build_electrode_table(session_id, two_probes)
        aggregated = CrossRegionAggregator().aggregate({})
        unit_table = join_units(session_id, aggregated, electrodes)
        nwbfile = assemble_nwbfile(metadata, electrodes, unit_table, encode([]))

        assert nwbfile.units is None
        assert len(nwbfile.electrodes) == 16


class TestAssembleBehavior:
    """Tests for the behavior processing module."""

    def test_frame_rate_in_comments(self, metadata, session_tables):
        electrodes, unit_table, spike_times = session_tables
        nwbfile = assemble_nwbfile(
            metadata, electrodes, unit_table, spike_times,
            pupil_area=_series(frame_rate=30.0),
            face_movement=_series(),
        )

        behavior = nwbfile.processing["behavior"]
        pupil = behavior["PupilTracking"]["pupil_area_size"]
        assert pupil.comments == "Video frame rate: 30 Hz"
        assert pupil.rate is None
        assert pupil.control.tolist() == [0] * 5 + [1] * 5

        movement = behavior["BehavioralTimeSeries"]["total_face_movement"]
        assert movement.comments == "no comments"

    def test_no_behavior(self, metadata, session_tables):
        electrodes, unit_table, spike_times = session_tables
        nwbfile = assemble_nwbfile(metadata, electrodes, unit_table, spike_times)
        assert "behavior" not in nwbfile.processing


class TestOutputFilename:
    """Tests for output_filename()."""

    def test_zero_padded(self):
        assert output_filename(1) == "ecephys_session_01.nwb"
        assert output_filename(12) == "ecephys_session_12.nwb"
