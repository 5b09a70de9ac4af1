"""
Monitored regions.

The assessment service only accepts regions listed here; anything else is a
caller mistake and raises ``ValidationError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from crisiswatch.app.core.errors import ValidationError


@dataclass(frozen=True)
class Region:
    name: str
    code: str
    latitude: float
    longitude: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "code": self.code,
            "coordinates": [self.latitude, self.longitude],
        }


# (name, ISO alpha-2, centroid lat, centroid lon)
MONITORED_REGIONS: Tuple[Region, ...] = (
    Region("Sudan", "SD", 12.8628, 30.2176),
    Region("Myanmar", "MM", 21.9162, 95.9560),
    Region("Syria", "SY", 34.8021, 38.9968),
    Region("Yemen", "YE", 15.5527, 48.5164),
    Region("Afghanistan", "AF", 33.9391, 67.7100),
    Region("Bangladesh", "BD", 23.6850, 90.3563),
    Region("Ethiopia", "ET", 9.1450, 40.4897),
    Region("Chad", "TD", 15.4542, 18.7322),
    Region("Iraq", "IQ", 33.2232, 43.6793),
    Region("Somalia", "SO", 5.1521, 46.1996),
)

_BY_KEY: Dict[str, Region] = {}
for _region in MONITORED_REGIONS:
    _BY_KEY[_region.name.lower()] = _region
    _BY_KEY[_region.code.lower()] = _region


def resolve_region(name: str) -> Region:
    """Look up a monitored region by name or ISO code (case-insensitive)."""
    key = (name or "").strip().lower()
    region = _BY_KEY.get(key)
    if region is None:
        raise ValidationError(
            f"Unknown region: {name!r}",
            field="region",
            supported=[r.name for r in MONITORED_REGIONS],
        )
    return region
