from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple

import yaml


DATA_DIR = Path(__file__).resolve().parent / "data"


@dataclass(frozen=True)
class CountryMapping:
    iso3: str | None
    code: str
    canonical_name: str


@dataclass(frozen=True)
class OceanRegion:
    name: str
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    def contains(self, lat: float, lon: float) -> bool:
        # Either longitude bound suffices, for every region. This covers the
        # antimeridian wrap of the Pacific and makes non-wrapping regions match
        # any longitude inside their latitude band.
        if not self.lat_min <= lat <= self.lat_max:
            return False
        return lon >= self.lon_min or lon <= self.lon_max


class GeoResolution(NamedTuple):
    country: str | None
    country_code: str | None
    country_iso3: str | None


_UNRESOLVED = GeoResolution(None, None, None)


def load_country_mappings(path: Path) -> tuple[CountryMapping, ...]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"invalid country table: {path}")

    mappings: list[CountryMapping] = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValueError(f"invalid country entry in: {path}")
        iso3 = entry.get("iso3")
        mappings.append(
            CountryMapping(
                iso3=str(iso3).upper() if iso3 else None,
                code=str(entry["code"]),
                canonical_name=str(entry["name"]),
            )
        )
    return tuple(mappings)


def load_ocean_regions(path: Path) -> tuple[OceanRegion, ...]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"invalid ocean table: {path}")

    return tuple(
        OceanRegion(
            name=str(entry["name"]),
            lat_min=float(entry["lat"]["min"]),
            lat_max=float(entry["lat"]["max"]),
            lon_min=float(entry["long"]["min"]),
            lon_max=float(entry["long"]["max"]),
        )
        for entry in raw
    )


class GeoResolver:
    """Maps ISO3 codes, or failing that coordinates, to a country or ocean.

    Both tables are read once and never mutated; ocean regions keep their
    declared order since the first matching region wins.
    """

    def __init__(
        self,
        countries: tuple[CountryMapping, ...],
        oceans: tuple[OceanRegion, ...],
    ) -> None:
        self._by_iso3 = {c.iso3: c for c in countries if c.iso3}
        self._by_name = {c.canonical_name: c for c in countries}
        self._oceans = tuple(oceans)

    @classmethod
    def from_data_dir(cls, data_dir: Path = DATA_DIR) -> GeoResolver:
        return cls(
            load_country_mappings(data_dir / "countries.yaml"),
            load_ocean_regions(data_dir / "oceans.yaml"),
        )

    def resolve_country(self, iso3: str | None) -> CountryMapping | None:
        if not iso3 or not iso3.strip():
            return None
        return self._by_iso3.get(iso3.strip().upper())

    def resolve_ocean(self, lat: float, lon: float) -> str | None:
        for region in self._oceans:
            if region.contains(lat, lon):
                return region.name
        return None

    def resolve(
        self, iso3: str | None, lat: float | None, lon: float | None
    ) -> GeoResolution:
        country = self.resolve_country(iso3)
        if country is not None:
            return GeoResolution(country.canonical_name, country.code, country.iso3)

        if lat is None or lon is None:
            return _UNRESOLVED
        ocean_name = self.resolve_ocean(lat, lon)
        if ocean_name is None:
            return _UNRESOLVED
        ocean = self._by_name.get(ocean_name)
        if ocean is None:
            return _UNRESOLVED
        return GeoResolution(ocean_name, ocean.code, None)
