from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType

import yaml

from ingest.errors import UnknownTypeCode


DEFAULT_TYPES_PATH = Path(__file__).resolve().parent / "data" / "disaster_types.yaml"


def load_type_table(path: Path) -> Mapping[str, str]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"invalid disaster type table: {path}")
    return MappingProxyType({str(k).strip(): str(v) for k, v in raw.items()})


class TypeMapper:
    def __init__(self, table: Mapping[str, str]) -> None:
        self._table = MappingProxyType(dict(table))

    @classmethod
    def from_file(cls, path: Path = DEFAULT_TYPES_PATH) -> TypeMapper:
        return cls(load_type_table(path))

    @property
    def canonical_types(self) -> frozenset[str]:
        return frozenset(self._table.values())

    def map(self, code: str | None) -> str:
        key = (code or "").strip()
        try:
            return self._table[key]
        except KeyError:
            raise UnknownTypeCode(code) from None
