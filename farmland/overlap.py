"""
Read-only overlap queries over active farms.

Two farms overlap when their interiors intersect (DE-9IM ``T********``);
sharing an edge or a corner is not an overlap. Nothing here locks or writes,
so a farm committed while a query runs may be missed.

The bbox helpers are shared with the repository's map-window listing, where
a farm that only touches the window is still listed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from shapely import STRtree
from shapely.geometry import box, shape
from sqlalchemy import select
from sqlalchemy.orm import Session

from farmland import models
from farmland.area import geometry_area_ha
from farmland.geometry import ValidatedPolygon

LOG = logging.getLogger("farmland.overlap")

INTERIORS_INTERSECT = "T********"

Bounds = Tuple[float, float, float, float]


@dataclass(frozen=True)
class OverlapResult:
    farm1_id: str
    farm2_id: str
    intersects: bool
    farm1_farmer_id: Optional[str] = None
    farm2_farmer_id: Optional[str] = None
    overlap_area_ha: float = 0.0
    overlap_pct_farm1: float = 0.0
    overlap_pct_farm2: float = 0.0


def bbox_clauses(bounds: Bounds):
    """WHERE clauses for farms whose stored bounding box meets `bounds`."""
    min_lon, min_lat, max_lon, max_lat = bounds
    return (
        models.Farm.min_lon <= max_lon,
        models.Farm.max_lon >= min_lon,
        models.Farm.min_lat <= max_lat,
        models.Farm.max_lat >= min_lat,
    )


def within_bbox(farms: Iterable[models.Farm], bounds: Bounds) -> List[models.Farm]:
    """Exact pass after the bbox prefilter: boundary contact counts, like ST_Intersects."""
    window = box(*bounds)
    return [f for f in farms if window.intersects(shape(f.geometry))]


def _bbox_candidates(session: Session, polygon: ValidatedPolygon, exclude_farm_id: Optional[str]):
    stmt = select(models.Farm).where(models.Farm.is_active, *bbox_clauses(polygon.bounds))
    if exclude_farm_id is not None:
        stmt = stmt.where(models.Farm.id != exclude_farm_id)
    return session.execute(stmt).scalars().all()


def find_overlapping(
    session: Session,
    polygon: ValidatedPolygon,
    exclude_farm_id: Optional[str] = None,
) -> List[str]:
    """Ids of every active farm sharing interior area with `polygon`, sorted."""
    candidate = polygon.to_shapely()
    hits = {
        f.id
        for f in _bbox_candidates(session, polygon, exclude_farm_id)
        if candidate.relate_pattern(shape(f.geometry), INTERIORS_INTERSECT)
    }
    return sorted(hits)


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100.0, 2) if whole > 0 else 0.0


def detect_all_overlaps(session: Session, min_overlap_area_ha: Optional[float] = None) -> List[OverlapResult]:
    """Audit every pair of active farms; each overlapping pair is reported once."""
    farms = session.execute(
        select(models.Farm).where(models.Farm.is_active).order_by(models.Farm.id)
    ).scalars().all()
    if len(farms) < 2:
        return []
    geoms = [shape(f.geometry) for f in farms]
    tree = STRtree(geoms)

    results: List[OverlapResult] = []
    left_idx, right_idx = tree.query(geoms, predicate="intersects")
    for i, j in zip(left_idx.tolist(), right_idx.tolist()):
        if i >= j:
            continue
        if not geoms[i].relate_pattern(geoms[j], INTERIORS_INTERSECT):
            continue
        a, b = farms[i], farms[j]
        overlap_ha = geometry_area_ha(geoms[i].intersection(geoms[j]))
        if min_overlap_area_ha is not None and overlap_ha < min_overlap_area_ha:
            continue
        results.append(OverlapResult(
            farm1_id=a.id,
            farm2_id=b.id,
            intersects=True,
            farm1_farmer_id=a.farmer_id,
            farm2_farmer_id=b.farmer_id,
            overlap_area_ha=overlap_ha,
            overlap_pct_farm1=_pct(overlap_ha, a.area_ha),
            overlap_pct_farm2=_pct(overlap_ha, b.area_ha),
        ))

    results.sort(key=lambda r: (r.farm1_id, r.farm2_id))
    LOG.info("Overlap audit: %d active farms, %d overlapping pairs", len(farms), len(results))
    return results
