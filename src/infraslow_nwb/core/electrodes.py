"""
Electrode (recording channel) registry.

Builds one ChannelRecord per probe channel and one ElectrodeGroup per probe
shank. Channels are numbered from the probe tip (local index 1) upwards;
shank ``s`` owns local indices ``(s-1)*cps+1 .. s*cps``.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from infraslow_nwb.core.conventions import CHANNEL_ID_WIDTH
from infraslow_nwb.core.identifiers import channel_id as make_channel_id
from infraslow_nwb.utils.exceptions import ConfigurationError
from infraslow_nwb.utils.logging import LoggerMixin


ELECTRODE_COLUMNS = [
    "channel_id",
    "channel_local_index",
    "x",
    "y",
    "z",
    "imp",
    "location",
    "filtering",
    "group",
    "channel_label",
    "probe_label",
]


@dataclass(frozen=True)
class ProbeLayout:
    """
    Declared layout of one probe in one session.

    Attributes:
        probe_number: Probe reference number (1-9), part of every channel id
        label: Probe label written to the electrode table
        n_shanks: Number of shanks
        n_channels_per_shank: Recording channels per shank
        coordinates: (n_channels, 3) channel coordinates, tip first
        locations: Brain area of every channel, tip first
        description: Device description
        manufacturer: Device manufacturer
    """
    probe_number: int
    label: str
    n_shanks: int
    n_channels_per_shank: int
    coordinates: np.ndarray
    locations: Tuple[str, ...]
    description: str = ""
    manufacturer: str = ""

    @property
    def n_channels(self) -> int:
        return self.n_shanks * self.n_channels_per_shank

    @property
    def device_name(self) -> str:
        return f"probe{self.probe_number}"


@dataclass(frozen=True)
class ElectrodeGroup:
    """One shank of one probe."""
    name: str
    probe_number: int
    probe_label: str
    shank_index: int
    device_name: str
    device_description: str
    manufacturer: str
    location: str
    reference_position: Tuple[float, float, float]

    @property
    def description(self) -> str:
        return f"electrode group for probe{self.probe_number}"


@dataclass(frozen=True)
class ChannelRecord:
    """One recording channel."""
    channel_id: int
    local_index: int
    probe_number: int
    probe_label: str
    shank_group: str
    shank_index: int
    x: float
    y: float
    z: float
    location: str
    impedance: float = float("nan")
    filtering: str = "unknown"

    @property
    def spatial_coords(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    @property
    def channel_label(self) -> str:
        return f"probe{self.probe_number}shank{self.shank_index}elec{self.local_index}"


@dataclass(frozen=True)
class ElectrodeTable:
    """Channel registry of one session."""
    session_id: str
    channels: Tuple[ChannelRecord, ...]
    groups: Tuple[ElectrodeGroup, ...]
    probes: Tuple[ProbeLayout, ...] = field(default=())

    def __len__(self) -> int:
        return len(self.channels)

    def group(self, name: str) -> ElectrodeGroup:
        for group in self.groups:
            if group.name == name:
                return group
        raise KeyError(name)

    def probe(self, probe_number: int) -> ProbeLayout:
        for probe in self.probes:
            if probe.probe_number == probe_number:
                return probe
        raise KeyError(probe_number)

    def to_dataframe(self) -> pd.DataFrame:
        """Electrode table view with the exported column names."""
        return channels_to_dataframe(self.channels)


def channels_to_dataframe(channels: Sequence[ChannelRecord]) -> pd.DataFrame:
    rows = [
        {
            "channel_id": ch.channel_id,
            "channel_local_index": ch.local_index,
            "x": ch.x,
            "y": ch.y,
            "z": ch.z,
            "imp": ch.impedance,
            "location": ch.location,
            "filtering": ch.filtering,
            "group": ch.shank_group,
            "channel_label": ch.channel_label,
            "probe_label": ch.probe_label,
        }
        for ch in channels
    ]
    return pd.DataFrame(rows, columns=ELECTRODE_COLUMNS)


class ElectrodeTableBuilder(LoggerMixin):
    """
    Builds the channel registry for the probes of one session.

    Example:
        >>> builder = ElectrodeTableBuilder("201901221911")
        >>> table = builder.build([probe1, probe2])
        >>> len(table)  # sum of n_shanks * n_channels_per_shank
        64
    """

    def __init__(self, session_id: str, channel_id_width: int = CHANNEL_ID_WIDTH):
        self.session_id = str(session_id)
        self.channel_id_width = channel_id_width

    def _validate(self, probe: ProbeLayout) -> np.ndarray:
        if probe.n_shanks < 1 or probe.n_channels_per_shank < 1:
            raise ConfigurationError(
                f"{probe.device_name}: n_shanks and n_channels_per_shank must be positive "
                f"(got {probe.n_shanks}, {probe.n_channels_per_shank})",
                session_id=self.session_id,
                probe=probe.label,
            )

        coords = np.asarray(probe.coordinates, dtype=np.float64)
        n = probe.n_channels
        if coords.ndim != 2 or coords.shape[1] != 3 or coords.shape[0] != n:
            raise ConfigurationError(
                f"{probe.device_name}: expected {n} channel coordinates of shape ({n}, 3), "
                f"got {coords.shape}",
                session_id=self.session_id,
                probe=probe.label,
            )
        if np.isnan(coords).any():
            raise ConfigurationError(
                f"{probe.device_name}: channel coordinates contain missing values",
                session_id=self.session_id,
                probe=probe.label,
            )

        locations = list(probe.locations)
        if len(locations) != n or any(loc is None or str(loc) == "" for loc in locations):
            raise ConfigurationError(
                f"{probe.device_name}: expected {n} channel locations, got "
                f"{sum(1 for loc in locations if loc)} usable of {len(locations)}",
                session_id=self.session_id,
                probe=probe.label,
            )
        return coords

    def build(self, probes: Sequence[ProbeLayout]) -> ElectrodeTable:
        """
        Build channel records and electrode groups.

        Every probe is validated before any record is produced.

        Raises:
            ConfigurationError: On duplicate probe numbers or if coordinates or
                locations do not cover the declared channel count
            IdentifierCollisionError: If a local index does not fit the id width
        """
        numbers = [p.probe_number for p in probes]
        if len(set(numbers)) != len(numbers):
            raise ConfigurationError(
                f"Duplicate probe numbers: {numbers}", session_id=self.session_id
            )

        validated = [(probe, self._validate(probe)) for probe in probes]

        channels: List[ChannelRecord] = []
        groups: List[ElectrodeGroup] = []
        for probe, coords in validated:
            cps = probe.n_channels_per_shank
            for shank in range(1, probe.n_shanks + 1):
                first = (shank - 1) * cps
                last = shank * cps - 1
                if probe.n_shanks == 1:
                    group_name = probe.device_name
                else:
                    group_name = f"{probe.device_name}shank{shank}"
                groups.append(ElectrodeGroup(
                    name=group_name,
                    probe_number=probe.probe_number,
                    probe_label=probe.label,
                    shank_index=shank,
                    device_name=probe.device_name,
                    device_description=probe.description,
                    manufacturer=probe.manufacturer,
                    location=str(probe.locations[last]),
                    reference_position=tuple(float(v) for v in coords[first]),
                ))

                for row in range(first, last + 1):
                    local_index = row + 1
                    channels.append(ChannelRecord(
                        channel_id=make_channel_id(
                            self.session_id,
                            probe.probe_number,
                            local_index,
                            width=self.channel_id_width,
                        ),
                        local_index=local_index,
                        probe_number=probe.probe_number,
                        probe_label=probe.label,
                        shank_group=group_name,
                        shank_index=shank,
                        x=float(coords[row, 0]),
                        y=float(coords[row, 1]),
                        z=float(coords[row, 2]),
                        location=str(probe.locations[row]),
                    ))

            self.logger.debug(
                f"{probe.device_name}: {probe.n_channels} channels on {probe.n_shanks} shank(s)"
            )

        self.logger.info(
            f"Session {self.session_id}: electrode table with {len(channels)} channels, "
            f"{len(groups)} electrode groups"
        )
        return ElectrodeTable(
            session_id=self.session_id,
            channels=tuple(channels),
            groups=tuple(groups),
            probes=tuple(probes),
        )


def build_electrode_table(
    session_id: str,
    probes: Sequence[ProbeLayout],
    channel_id_width: Optional[int] = None,
) -> ElectrodeTable:
    """Functional shortcut for ElectrodeTableBuilder(session_id).build(probes)."""
    width = CHANNEL_ID_WIDTH if channel_id_width is None else channel_id_width
    return ElectrodeTableBuilder(session_id, channel_id_width=width).build(probes)
