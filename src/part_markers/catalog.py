"""Parts catalog boundary.

The pipeline only emits marker ids. Names and prices come from a catalog
supplied by the caller; nothing here ships catalog content.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from part_markers.models import MarkerResult


class PartRecord(BaseModel):
    id: str
    name: str
    price: float | None = None
    currency: str | None = None


@runtime_checkable
class PartsCatalog(Protocol):
    def lookup(self, part_id: str) -> PartRecord | None: ...


class JsonPartsCatalog:
    """
    Catalog backed by a JSON object mapping id -> {"name": ..., "price": ...}.

    A list of records each carrying an ``id`` is accepted as well.
    """

    def __init__(self, records: dict[str, PartRecord]):
        self._records = dict(records)

    @classmethod
    def from_data(cls, data: object) -> JsonPartsCatalog:
        if not isinstance(data, (dict, list)):
            raise ValueError(f"catalog must be a JSON object or list, got {type(data).__name__}")
        try:
            if isinstance(data, dict):
                items = [{"id": str(key), **value} for key, value in data.items()]
            else:
                items = data
            records = [PartRecord.model_validate(item) for item in items]
        except (TypeError, ValidationError) as e:
            raise ValueError(f"invalid catalog entry: {e}") from e
        return cls({r.id: r for r in records})

    @classmethod
    def from_file(cls, path: str | Path) -> JsonPartsCatalog:
        return cls.from_data(json.loads(Path(path).read_text()))

    def lookup(self, part_id: str) -> PartRecord | None:
        return self._records.get(part_id)

    def __len__(self) -> int:
        return len(self._records)


def describe(result: MarkerResult, catalog: PartsCatalog | None = None) -> dict:
    """JSON-ready marker entry, enriched with name/price when the catalog knows the id."""
    entry = result.model_dump(mode="json")
    if catalog is None:
        return entry
    record = catalog.lookup(result.id)
    if record is not None:
        entry["name"] = record.name
        entry["price"] = record.price
        if record.currency is not None:
            entry["currency"] = record.currency
    return entry
