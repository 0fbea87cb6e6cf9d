"""
Geodesic area on the WGS84 ellipsoid.

Areas come from pyproj's implementation of Karney's geodesic polygon area,
the same spheroid model PostGIS uses for ST_Area(geography). Farm areas are
reported in hectares rounded to 4 decimal places (1 m^2 resolution).
"""

import logging
from typing import Optional

from pyproj import Geod
from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

from farmland.errors import FarmSizeOutOfRange
from farmland.geometry import ValidatedPolygon
from farmland.utils import round4

WGS84 = Geod(ellps="WGS84")
M2_PER_HECTARE = 10_000.0

LOG = logging.getLogger("farmland.area")


def ring_area_m2(polygon: ValidatedPolygon) -> float:
    lons = [p[0] for p in polygon.coordinates]
    lats = [p[1] for p in polygon.coordinates]
    area, _ = WGS84.polygon_area_perimeter(lons, lats)
    # sign only encodes ring orientation
    return abs(area)


def polygon_area_ha(polygon: ValidatedPolygon) -> float:
    """Area of a validated farm ring in hectares, rounded to 4 decimals."""
    hectares = round4(ring_area_m2(polygon) / M2_PER_HECTARE)
    LOG.debug("Computed area %.4f ha (%d vertices)", hectares, len(polygon.coordinates))
    return hectares


def _polygons(geom: BaseGeometry):
    if isinstance(geom, Polygon):
        yield geom
        return
    for part in getattr(geom, "geoms", ()):
        yield from _polygons(part)


def geometry_area_ha(geom: BaseGeometry) -> float:
    """
    Area of any polygonal shapely result (Polygon, MultiPolygon or a mixed
    GeometryCollection from an intersection). Holes are subtracted; lines
    and points contribute nothing.
    """
    total = 0.0
    for poly in _polygons(geom):
        if poly.is_empty:
            continue
        # counter-clockwise exterior gives a positive signed area
        area, _ = WGS84.geometry_area_perimeter(orient(poly, sign=1.0))
        total += abs(area)
    return round4(total / M2_PER_HECTARE)


def check_farm_size(area_ha: float, min_ha: Optional[float] = None, max_ha: Optional[float] = None) -> float:
    """Reject farms outside [min_ha, max_ha]; either bound may be None."""
    if min_ha is not None and area_ha < min_ha:
        raise FarmSizeOutOfRange(f"farm size {area_ha:.4f} ha is below the minimum of {min_ha:g} ha")
    if max_ha is not None and area_ha > max_ha:
        raise FarmSizeOutOfRange(f"farm size {area_ha:.4f} ha exceeds the maximum of {max_ha:g} ha")
    return area_ha
