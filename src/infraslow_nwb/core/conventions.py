"""
Export conventions shared by the table builders.

The canonical region order, the region-to-probe mapping and the identifier
padding widths are part of the exported-data contract: changing any of them
changes unit ordering or identifiers in the written files. They are bundled in
one frozen object and passed explicitly to the aggregator and the joiner.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple

from infraslow_nwb.utils.exceptions import ConfigurationError


CANONICAL_REGIONS: Tuple[str, ...] = ("S1", "VB", "Po", "LP", "DG", "CA1", "RSC")

# S1 was recorded with the first probe, every thalamic/hippocampal/RSC region
# with the second one.
REGION_PROBES: Dict[str, int] = {
    "S1": 1,
    "VB": 2,
    "Po": 2,
    "LP": 2,
    "DG": 2,
    "CA1": 2,
    "RSC": 2,
}

CHANNEL_ID_WIDTH: int = 3
UNIT_ID_WIDTH: int = 4

UNIT_TYPE_SINGLE = "unit"
UNIT_TYPE_MULTI = "mua"

# muaMetadata column layout
META_LOCAL_UNIT_ID = 0
META_TYPE_CODE = 1
META_LOCAL_CHANNEL = 2
META_HORZ_POS = 3
META_VERT_POS = 4
META_ISI_VIOLATIONS = 5
META_ISOLATION_DISTANCE = 6
META_MIN_COLUMNS = 7


@dataclass(frozen=True)
class ExportConventions:
    """
    Named conventions for one conversion run.

    Attributes:
        region_order: Canonical region order; aggregated rows follow it.
        region_probes: Probe number recording each region.
        channel_id_width: Zero-padding width of local channel indices.
        unit_id_width: Zero-padding width of local cluster ids.
    """
    region_order: Tuple[str, ...] = CANONICAL_REGIONS
    region_probes: Dict[str, int] = field(default_factory=lambda: dict(REGION_PROBES))
    channel_id_width: int = CHANNEL_ID_WIDTH
    unit_id_width: int = UNIT_ID_WIDTH

    def __post_init__(self):
        if len(set(self.region_order)) != len(self.region_order):
            raise ConfigurationError(f"Duplicate region in region order: {self.region_order}")
        missing = [r for r in self.region_order if r not in self.region_probes]
        if missing:
            raise ConfigurationError(f"No probe assigned to regions: {missing}")
        if self.channel_id_width < 1 or self.unit_id_width < 1:
            raise ConfigurationError("Identifier widths must be positive")

    def probe_for(self, region: str) -> int:
        """Probe number that recorded ``region``."""
        try:
            return self.region_probes[region]
        except KeyError:
            raise ConfigurationError(
                f"Region '{region}' is not part of the canonical region order "
                f"{list(self.region_order)}"
            ) from None

    def region_number(self, region: str) -> int:
        """1-based position of ``region``; used as suffix of container keys."""
        if region not in self.region_order:
            raise ConfigurationError(
                f"Region '{region}' is not part of the canonical region order "
                f"{list(self.region_order)}"
            )
        return self.region_order.index(region) + 1


DEFAULT_CONVENTIONS = ExportConventions()
