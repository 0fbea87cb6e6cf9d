"""Storage maintenance for the farm bounding-box index."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from shapely.geometry import shape
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from farmland import models

LOG = logging.getLogger("farmland.maintenance")

SPATIAL_INDEXES = ("ix_farms_bbox",)


@dataclass
class RebuildReport:
    rebuilt_indexes: List[str] = field(default_factory=list)
    bounding_boxes_refreshed: int = 0


def refresh_bounding_boxes(session: Session) -> int:
    """Recompute each farm's bbox columns from its stored geometry; returns rows changed."""
    changed = 0
    for farm in session.execute(select(models.Farm)).scalars():
        bounds = tuple(float(v) for v in shape(farm.geometry).bounds)
        if (farm.min_lon, farm.min_lat, farm.max_lon, farm.max_lat) != bounds:
            farm.min_lon, farm.min_lat, farm.max_lon, farm.max_lat = bounds
            changed += 1
    session.flush()
    return changed


def rebuild_spatial_indexes(session: Session) -> RebuildReport:
    report = RebuildReport(bounding_boxes_refreshed=refresh_bounding_boxes(session))

    conn = session.connection()
    for index in models.Farm.__table__.indexes:
        if index.name not in SPATIAL_INDEXES:
            continue
        index.drop(bind=conn, checkfirst=True)
        index.create(bind=conn)
        report.rebuilt_indexes.append(index.name)

    conn.execute(text(f"ANALYZE {models.Farm.__tablename__}"))
    LOG.info("Rebuilt %d spatial index(es), refreshed %d bounding boxes",
             len(report.rebuilt_indexes), report.bounding_boxes_refreshed)
    return report
