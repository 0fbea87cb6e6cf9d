"""
Polygon ring validation.

A farm boundary is a single closed ring of (longitude, latitude) vertices.
`validate_ring` is pure: it either returns a `ValidatedPolygon` or raises one
of the `GeometryError` subclasses, in this order of checks:

1. fewer than 4 vertices          -> TooFewPoints
2. first vertex != last vertex    -> UnclosedRing
3. vertex outside lon/lat bounds  -> CoordinateOutOfRange
4. boundary crosses itself        -> SelfIntersecting

A ring or vertex that is not a list at all is reported as
CoordinateOutOfRange before any of the above.

`validate_bbox` checks a (min_lon, min_lat, max_lon, max_lat) query window.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Tuple, Union

from shapely.geometry import LinearRing, Polygon
from shapely.validation import explain_validity

from farmland.errors import (
    CoordinateOutOfRange,
    SelfIntersecting,
    TooFewPoints,
    UnclosedRing,
)
from farmland.utils import is_valid_number

Vertex = Tuple[float, float]
MIN_RING_POINTS = 4


@dataclass(frozen=True)
class ValidatedPolygon:
    """A closed, in-range, simple ring. Only `validate_ring` should build one."""

    coordinates: Tuple[Vertex, ...]

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        lons = [p[0] for p in self.coordinates]
        lats = [p[1] for p in self.coordinates]
        return min(lons), min(lats), max(lons), max(lats)

    def to_geojson(self) -> dict:
        return {"type": "Polygon", "coordinates": [[[lon, lat] for lon, lat in self.coordinates]]}

    def to_shapely(self) -> Polygon:
        return Polygon(self.coordinates)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _vertex(raw: Any, index: int) -> Vertex:
    if not _is_sequence(raw) or len(raw) < 2:
        raise CoordinateOutOfRange(f"vertex {index} is not a (longitude, latitude) pair: {raw!r}")
    lon, lat = raw[0], raw[1]
    if not (is_valid_number(lon) and is_valid_number(lat)):
        raise CoordinateOutOfRange(f"vertex {index} has non-numeric coordinates: {raw!r}")
    return float(lon), float(lat)


def validate_ring(points: Sequence[Sequence[float]]) -> ValidatedPolygon:
    if points is not None and not _is_sequence(points):
        raise CoordinateOutOfRange(f"ring must be a list of [longitude, latitude] vertices, got {points!r}")
    if points is None or len(points) < MIN_RING_POINTS:
        n = 0 if points is None else len(points)
        raise TooFewPoints(f"ring needs at least {MIN_RING_POINTS} points, got {n}")

    ring = [_vertex(p, i) for i, p in enumerate(points)]

    if ring[0] != ring[-1]:
        raise UnclosedRing(f"first vertex {ring[0]} differs from last vertex {ring[-1]}")

    for i, (lon, lat) in enumerate(ring):
        if not -180.0 <= lon <= 180.0:
            raise CoordinateOutOfRange(f"vertex {i}: longitude {lon} outside [-180, 180]")
        if not -90.0 <= lat <= 90.0:
            raise CoordinateOutOfRange(f"vertex {i}: latitude {lat} outside [-90, 90]")

    if not LinearRing(ring).is_simple:
        raise SelfIntersecting("ring boundary crosses itself")
    poly = Polygon(ring)
    if not poly.is_valid:
        raise SelfIntersecting(f"invalid polygon: {explain_validity(poly)}")

    return ValidatedPolygon(coordinates=tuple(ring))


def polygon_from_geojson(geometry: Union[Mapping[str, Any], Sequence[Sequence[float]]]) -> ValidatedPolygon:
    """Accept a GeoJSON Polygon mapping or a bare ring of [lon, lat] pairs."""
    if isinstance(geometry, Mapping):
        gtype = geometry.get("type")
        if gtype != "Polygon":
            raise ValueError(f"Only Polygon geometries are supported, got {gtype!r}")
        rings = geometry.get("coordinates")
        if not _is_sequence(rings) or not rings:
            raise ValueError("Polygon must contain one coordinate ring")
        if len(rings) > 1:
            raise ValueError("Polygons with interior rings are not supported")
        return validate_ring(rings[0])
    return validate_ring(geometry)


def validate_bbox(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> Tuple[float, float, float, float]:
    for name, value, limit in (("min_lon", min_lon, 180.0), ("max_lon", max_lon, 180.0),
                               ("min_lat", min_lat, 90.0), ("max_lat", max_lat, 90.0)):
        if not is_valid_number(value) or not -limit <= value <= limit:
            raise CoordinateOutOfRange(f"{name} {value!r} outside [-{limit:g}, {limit:g}]")
    if min_lon > max_lon or min_lat > max_lat:
        raise ValueError("bounding box minimum exceeds maximum")
    return float(min_lon), float(min_lat), float(max_lon), float(max_lat)
