# farmland/ingest_sources.py
from __future__ import annotations
from typing import Iterable, Protocol, Any, Dict
import io, json

import pandas as pd

RESERVED_COLUMNS = {"farmer_id", "name", "geometry", "metadata", "surveyed_at"}


class IngestSource(Protocol):
    def records(self) -> Iterable[Dict[str, Any]]:
        """Yield normalized dicts with keys:
        farmer_id, name, geometry, metadata, surveyed_at, source
        """
        ...


def _json_cell(value: str, what: str, index: int) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ValueError(f"Row {index}: {what} is not valid JSON: {e}") from e


class CsvSource(IngestSource):
    """CSV with farmer_id, geometry (GeoJSON text) and optional name, metadata, surveyed_at.
    Any other column is folded into metadata."""

    def __init__(self, content: str):
        self._content = content

    def records(self) -> Iterable[Dict[str, Any]]:
        df = pd.read_csv(io.StringIO(self._content), dtype=str, keep_default_na=False)
        missing = {"farmer_id", "geometry"} - set(df.columns)
        if missing:
            raise ValueError(f"CSV is missing required column(s): {', '.join(sorted(missing))}")

        for index, row in enumerate(df.to_dict(orient="records")):
            meta = _json_cell(row["metadata"], "metadata", index) if row.get("metadata") else {}
            extras = {k: v for k, v in row.items() if k not in RESERVED_COLUMNS and v != ""}
            yield {
                "farmer_id": row["farmer_id"].strip(),
                "name": row.get("name") or None,
                "geometry": _json_cell(row["geometry"], "geometry", index) if row["geometry"] else None,
                "metadata": {**extras, **meta},
                "surveyed_at": row.get("surveyed_at") or None,
                "source": "csv",
            }


class GeoJSONSource(IngestSource):
    def __init__(self, geojson: dict):
        self._geojson = geojson

    def records(self) -> Iterable[Dict[str, Any]]:
        gtype = self._geojson.get("type")
        if gtype == "FeatureCollection":
            features = self._geojson.get("features", []) or []
        elif gtype == "Feature":
            features = [self._geojson]
        else:
            raise ValueError("Body must be GeoJSON Feature or FeatureCollection")

        for feat in features:
            props = dict(feat.get("properties") or {})
            if "farmer_id" not in props:
                raise ValueError("Feature properties must include 'farmer_id'")
            farmer_id = str(props.pop("farmer_id"))
            name = props.pop("name", None) or None
            surveyed_at = props.pop("surveyed_at", None)
            yield {
                "farmer_id": farmer_id,
                "name": name,
                "geometry": feat.get("geometry"),
                "metadata": props,
                "surveyed_at": surveyed_at,
                "source": "geojson",
            }
