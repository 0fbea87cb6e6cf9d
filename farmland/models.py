# farmland/models.py
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import validates

from .db import Base
from .geometry import ValidatedPolygon
from .utils import to_aware_utc, utcnow


# ---------- lifecycle tag ----------

@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Deleted:
    at: datetime


FarmState = Union[Active, Deleted]
ACTIVE = Active()


class Farmer(Base):
    __tablename__ = "farmers"
    __table_args__ = (
        CheckConstraint("total_acreage_ha >= 0", name="ck_farmers_total_acreage_nonneg"),
        CheckConstraint("farm_count >= 0", name="ck_farmers_farm_count_nonneg"),
    )

    id = Column(String, primary_key=True)
    name = Column(String, nullable=True)

    # rollup aggregates over active farms; written only by farmland.rollup
    total_acreage_ha = Column(Float, nullable=False, default=0.0, index=True)
    farm_count = Column(Integer, nullable=False, default=0, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Farm(Base):
    __tablename__ = "farms"
    __table_args__ = (
        Index("ix_farms_bbox", "min_lon", "max_lon", "min_lat", "max_lat"),
        Index("ix_farms_farmer_active", "farmer_id", "deleted_at"),
    )

    id = Column(String, primary_key=True)
    farmer_id = Column(String, ForeignKey("farmers.id"), nullable=False, index=True)
    name = Column(String, nullable=True)

    # GeoJSON Polygon with a single closed exterior ring
    geometry = Column(JSON, nullable=False)
    area_ha = Column(Float, nullable=False)

    # bounding box, prefilter for overlap queries
    min_lon = Column(Float, nullable=False)
    min_lat = Column(Float, nullable=False)
    max_lon = Column(Float, nullable=False)
    max_lat = Column(Float, nullable=False)

    meta = Column(JSON, nullable=False, default=dict)

    # NULL = active
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    @validates("deleted_at")
    def _tz(self, _, v):
        # ensure aware timestamps
        return v if v is None or v.tzinfo else v.replace(tzinfo=timezone.utc)

    @hybrid_property
    def is_active(self):
        return self.deleted_at is None

    @is_active.expression
    def is_active(cls):
        return cls.deleted_at.is_(None)

    @property
    def state(self) -> FarmState:
        if self.deleted_at is None:
            return ACTIVE
        return Deleted(at=to_aware_utc(self.deleted_at))

    def mark_deleted(self, at: datetime) -> None:
        self.deleted_at = at

    def mark_active(self) -> None:
        self.deleted_at = None

    def set_boundary(self, polygon: ValidatedPolygon, area_ha: float) -> None:
        self.geometry = polygon.to_geojson()
        self.area_ha = area_ha
        self.min_lon, self.min_lat, self.max_lon, self.max_lat = polygon.bounds
