"""
Pytest configuration and shared fixtures for the NWB conversion tests.

This module provides:
    - Probe layouts and region blocks for table-building tests
    - A synthetic derived-data container (dict and MAT file)
    - A matching conversion config written to JSON
"""

import json
import tempfile
from pathlib import Path

import numpy as np
import pytest
import scipy.io
import scipy.sparse as sp

from infraslow_nwb.core.aggregation import RegionBlock
from infraslow_nwb.core.electrodes import ProbeLayout


SESSION_ID = "20190122"
ANIMAL_ID = "M190114"
SAMPLING_RATE = 10.0
N_SAMPLES = 100
N_CHANNELS = 8
WAVEFORM_SAMPLES = 20


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def session_id():
    return SESSION_ID


@pytest.fixture
def animal_id():
    return ANIMAL_ID


def _coordinates(n_channels: int, ap: float, ml: float) -> np.ndarray:
    coords = np.zeros((n_channels, 3))
    coords[:, 0] = ap
    coords[:, 1] = ml
    coords[:, 2] = np.arange(n_channels) * 0.025
    return coords


def make_probe(
    probe_number: int,
    n_shanks: int = 1,
    n_channels_per_shank: int = N_CHANNELS,
    area: str = "S1",
) -> ProbeLayout:
    n = n_shanks * n_channels_per_shank
    return ProbeLayout(
        probe_number=probe_number,
        label=f"probe{probe_number}",
        n_shanks=n_shanks,
        n_channels_per_shank=n_channels_per_shank,
        coordinates=_coordinates(n, ap=-1.5 * probe_number, ml=2.0),
        locations=tuple([area] * n),
        description=f"Neuronexus probe {probe_number}",
        manufacturer="Neuronexus",
    )


@pytest.fixture
def probe_factory():
    """Factory for ProbeLayout objects: probe_factory(number, n_shanks=1, ...)."""
    return make_probe


@pytest.fixture
def two_probes():
    """Two single-shank probes with 8 channels each."""
    return [make_probe(1, area="S1"), make_probe(2, area="Po")]


def _activity(spike_columns) -> sp.csr_matrix:
    activity = np.zeros((len(spike_columns), N_SAMPLES))
    for row, cols in enumerate(spike_columns):
        activity[row, cols] = 1
    return sp.csr_matrix(activity)


def _metadata(cluster_ids, channels) -> np.ndarray:
    rows = []
    for i, (cluster, channel) in enumerate(zip(cluster_ids, channels)):
        rows.append([cluster, 1, channel, 20.0 * i, 100.0 + 50.0 * i, 0.01 * i, 15.0 + i])
    return np.asarray(rows, dtype=np.float64)


# S1 on probe 1: clusters 5, 7, 9 (5 and 9 curated); Po on probe 2: clusters 2, 11
S1_CLUSTERS = [5, 7, 9]
S1_CHANNELS = [1, 4, 8]
S1_CONFIRMED = [5, 9]
S1_SPIKES = [[0, 10, 20], [5], []]

PO_CLUSTERS = [2, 11]
PO_CHANNELS = [2, 8]
PO_CONFIRMED = [11]
PO_SPIKES = [[1, 2, 3, 99], [50]]


@pytest.fixture
def s1_block():
    return RegionBlock(
        region="S1",
        activity=_activity(S1_SPIKES),
        metadata=_metadata(S1_CLUSTERS, S1_CHANNELS),
        sampling_rate=SAMPLING_RATE,
        cluster_ids=np.array(S1_CLUSTERS),
        confirmed_units=S1_CONFIRMED,
    )


@pytest.fixture
def po_block():
    return RegionBlock(
        region="Po",
        activity=_activity(PO_SPIKES),
        metadata=_metadata(PO_CLUSTERS, PO_CHANNELS),
        sampling_rate=SAMPLING_RATE,
        cluster_ids=np.array(PO_CLUSTERS),
        confirmed_units=PO_CONFIRMED,
    )


def _region_struct(clusters, channels, confirmed, spikes) -> dict:
    return {
        "popData": {
            "spkDB": sp.csc_matrix(_activity(spikes)),
            "muaMetadata": _metadata(clusters, channels),
            "spkDB_units": np.asarray(clusters, dtype=np.float64),
        },
        "shankData": {"shank1": {"units": np.asarray(confirmed, dtype=np.float64)}},
        "conf": {"samplingParams": {"srData": SAMPLING_RATE}},
    }


def make_derived_data(animal_id: str = ANIMAL_ID, session_id: str = SESSION_ID) -> dict:
    """
    Derived-data container of one session: S1 (region 1) and Po (region 3)
    recorded, VB (region 2) absent; 100 video frames at 10 Hz with one
    acceptable period [1.0, 5.0] s.
    """
    series = f"{animal_id}_s{session_id}"
    frame_times = np.arange(N_SAMPLES) / 10.0
    return {
        "dataStruct": {
            "seriesData": {
                f"{series}1": _region_struct(S1_CLUSTERS, S1_CHANNELS, S1_CONFIRMED, S1_SPIKES),
                f"{series}3": _region_struct(PO_CLUSTERS, PO_CHANNELS, PO_CONFIRMED, PO_SPIKES),
            },
            "eyeData": {
                series: {
                    "period": np.array([[1.0, 5.0]]),
                    "frameTimes": frame_times,
                    "pupilArea": np.linspace(100.0, 200.0, N_SAMPLES),
                },
            },
            "motionData": {
                series: {
                    "period": np.array([[0.0, 2.0], [8.0, 9.0]]),
                    "frameTimes": frame_times,
                    "sa": np.sin(frame_times),
                },
            },
        }
    }


@pytest.fixture
def derived_data():
    return make_derived_data()


@pytest.fixture
def derived_factory():
    """Factory for derived-data containers: derived_factory(animal_id, session_id)."""
    return make_derived_data


@pytest.fixture
def waveform_file_factory():
    """Factory writing waveforms.mat files: waveform_file_factory(path, cluster_ids)."""
    return make_waveform_file


def make_waveform_file(path: Path, cluster_ids, n_channels: int = N_CHANNELS) -> np.ndarray:
    """Write a waveforms.mat for ``cluster_ids``; returns the waveform array."""
    n = len(cluster_ids)
    waveforms = np.arange(n * WAVEFORM_SAMPLES * n_channels, dtype=np.float64).reshape(
        n, WAVEFORM_SAMPLES, n_channels
    )
    scipy.io.savemat(str(path), {
        "waveforms": waveforms,
        "maxWaveforms": waveforms[:, :, 0],
        "cluIDs": np.asarray(cluster_ids, dtype=np.float64),
    })
    return waveforms


def _probe_config(probe: ProbeLayout, electrode_folder: str) -> dict:
    return {
        "probe_number": probe.probe_number,
        "label": probe.label,
        "description": probe.description,
        "manufacturer": probe.manufacturer,
        "n_shanks": probe.n_shanks,
        "n_channels_per_shank": probe.n_channels_per_shank,
        "coordinates": np.asarray(probe.coordinates).tolist(),
        "locations": list(probe.locations),
        "electrode_folder": electrode_folder,
    }


@pytest.fixture
def conversion_setup(temp_dir, two_probes):
    """
    Derived MAT file, waveform file for probe 1 (clusters 5 and 9 only),
    no waveform file for probe 2, and a config JSON using relative paths.

    Returns:
        Path to the config JSON
    """
    scipy.io.savemat(str(temp_dir / f"{ANIMAL_ID}.mat"), make_derived_data())

    probe1_dir = temp_dir / "probe1"
    probe1_dir.mkdir()
    make_waveform_file(probe1_dir / "waveforms.mat", [5, 9])
    (temp_dir / "probe2").mkdir()

    config = {
        "general": {
            "experimenter": ["Experimenter A"],
            "institution": "University",
            "lab": "Lab",
            "related_publications": "doi:10.0000/example",
            "video_frame_rate": 30.0,
        },
        "animal": {
            "animal_id": ANIMAL_ID,
            "derived_data_file": f"{ANIMAL_ID}.mat",
            "output_folder": "nwb",
            "age": "P60D",
            "sex": "M",
            "species": "Mus musculus",
            "description": "test animal",
        },
        "sessions": [
            {
                "session_id": SESSION_ID,
                "start_time": "2019-01-22T19:11:00+00:00",
                "description": "Spontaneous activity",
                "notes": "synthetic",
                "probes": [
                    _probe_config(two_probes[0], "probe1"),
                    _probe_config(two_probes[1], "probe2"),
                ],
            }
        ],
    }
    path = temp_dir / "config.json"
    with open(path, "w") as f:
        json.dump(config, f)
    return path
