# farmland/repository.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar, Union

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from farmland import maintenance, models, overlap, rollup
from farmland.area import check_farm_size, polygon_area_ha
from farmland.config import Settings
from farmland.errors import (
    ConcurrencyConflict,
    NotFoundError,
    OverlapConflict,
    is_transient_db_error,
)
from farmland.geometry import ValidatedPolygon, polygon_from_geojson, validate_bbox
from farmland.retry import DEFAULT_RETRY, RetryConfig, retry_with_backoff
from farmland.utils import new_id, utcnow

LOG = logging.getLogger("farmland.repository")

T = TypeVar("T")
Clock = Callable[[], datetime]
GeometryInput = Union[Mapping[str, Any], Sequence[Sequence[float]]]


# ---------- tiny, single-purpose helpers ----------

def _load_farm(session: Session, farm_id: str, *, active_only: bool) -> models.Farm:
    farm = session.get(models.Farm, farm_id, populate_existing=True)
    if farm is None or (active_only and not farm.is_active):
        raise NotFoundError("farm", farm_id)
    return farm


def _require_farmer(session: Session, farmer_id: str) -> None:
    if session.get(models.Farmer, farmer_id) is None:
        raise NotFoundError("farmer", farmer_id)


def _with_area_range(stmt, min_area_ha: Optional[float], max_area_ha: Optional[float]):
    if min_area_ha is not None and max_area_ha is not None and min_area_ha > max_area_ha:
        raise ValueError(f"min_area_ha {min_area_ha} exceeds max_area_ha {max_area_ha}")
    if min_area_ha is not None:
        stmt = stmt.where(models.Farm.area_ha >= min_area_ha)
    if max_area_ha is not None:
        stmt = stmt.where(models.Farm.area_ha <= max_area_ha)
    return stmt


# ---------- repository ----------

class FarmRepository:
    """
    Transactional boundary for farm mutations.

    Each mutating call validates its geometry, opens one transaction, writes
    the farm, applies the rollup and commits, or rolls the whole unit back.
    Stale farm versions and transient lock errors are retried with backoff.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        retry: RetryConfig = DEFAULT_RETRY,
        reject_overlaps: bool = False,
        verify_rollups: bool = False,
        min_farm_ha: Optional[float] = None,
        max_farm_ha: Optional[float] = None,
        clock: Clock | None = None,
    ):
        # DI
        self._session_factory = session_factory
        self._retry = retry
        self._reject_overlaps = reject_overlaps
        self._verify_rollups = verify_rollups
        self._min_farm_ha = min_farm_ha
        self._max_farm_ha = max_farm_ha
        self._clock = clock or utcnow

    @classmethod
    def from_settings(cls, session_factory: sessionmaker, settings: Settings, **overrides) -> "FarmRepository":
        kwargs = dict(
            retry=settings.retry,
            reject_overlaps=settings.reject_overlaps,
            verify_rollups=settings.verify_rollups,
            min_farm_ha=settings.min_farm_ha,
            max_farm_ha=settings.max_farm_ha,
        )
        kwargs.update(overrides)
        return cls(session_factory, **kwargs)

    # ---------- transaction plumbing ----------

    def _transaction(self, op: str, work: Callable[[Session], T]) -> T:
        def attempt() -> T:
            with self._session_factory() as session:
                try:
                    with session.begin():
                        return work(session)
                except StaleDataError as e:
                    raise ConcurrencyConflict(f"{op}: farm changed concurrently ({e})") from e
                except OperationalError as e:
                    if is_transient_db_error(e):
                        raise ConcurrencyConflict(f"{op}: {e.orig}") from e
                    raise

        return retry_with_backoff(attempt, self._retry, op=op)

    def _prepare(self, geometry: GeometryInput) -> tuple[ValidatedPolygon, float]:
        # validate, measure and size-check before any transaction is opened
        polygon = polygon_from_geojson(geometry)
        area_ha = check_farm_size(polygon_area_ha(polygon), self._min_farm_ha, self._max_farm_ha)
        return polygon, area_ha

    def _check_overlaps(self, session: Session, polygon: ValidatedPolygon, exclude_farm_id: Optional[str]) -> None:
        if not self._reject_overlaps:
            return
        hits = overlap.find_overlapping(session, polygon, exclude_farm_id)
        if hits:
            raise OverlapConflict(hits)

    def _after_write(self, session: Session, *farmer_ids: str) -> None:
        if self._verify_rollups:
            for farmer_id in sorted(set(farmer_ids)):
                rollup.verify_farmer(session, farmer_id)

    # ---------- farmer store ----------

    def create_farmer(self, name: Optional[str] = None, farmer_id: Optional[str] = None) -> models.Farmer:
        def work(session: Session) -> models.Farmer:
            farmer = models.Farmer(id=farmer_id or new_id("FMR"), name=name,
                                   total_acreage_ha=0.0, farm_count=0)
            session.add(farmer)
            session.flush()
            return farmer

        return self._transaction("create_farmer", work)

    def get_farmer(self, farmer_id: str) -> models.Farmer:
        with self._session_factory() as session:
            farmer = session.get(models.Farmer, farmer_id)
            if farmer is None:
                raise NotFoundError("farmer", farmer_id)
            return farmer

    # ---------- reads ----------

    def get_farm(self, farm_id: str) -> models.Farm:
        with self._session_factory() as session:
            return _load_farm(session, farm_id, active_only=False)

    def list_farms(
        self,
        farmer_id: str,
        *,
        include_deleted: bool = False,
        min_area_ha: Optional[float] = None,
        max_area_ha: Optional[float] = None,
    ) -> List[models.Farm]:
        stmt = _with_area_range(select(models.Farm).where(models.Farm.farmer_id == farmer_id),
                                min_area_ha, max_area_ha)
        if not include_deleted:
            stmt = stmt.where(models.Farm.is_active)
        with self._session_factory() as session:
            _require_farmer(session, farmer_id)
            return list(session.execute(stmt.order_by(models.Farm.created_at, models.Farm.id)).scalars())

    def list_farms_in_bbox(
        self,
        min_lon: float,
        min_lat: float,
        max_lon: float,
        max_lat: float,
        *,
        farmer_id: Optional[str] = None,
        min_area_ha: Optional[float] = None,
        max_area_ha: Optional[float] = None,
        include_deleted: bool = False,
    ) -> List[models.Farm]:
        """Farms whose boundary meets the lon/lat window, ordered by id."""
        bounds = validate_bbox(min_lon, min_lat, max_lon, max_lat)
        stmt = _with_area_range(select(models.Farm).where(*overlap.bbox_clauses(bounds)),
                                min_area_ha, max_area_ha)
        if farmer_id is not None:
            stmt = stmt.where(models.Farm.farmer_id == farmer_id)
        if not include_deleted:
            stmt = stmt.where(models.Farm.is_active)
        with self._session_factory() as session:
            farms = session.execute(stmt.order_by(models.Farm.id)).scalars().all()
            return overlap.within_bbox(farms, bounds)

    def find_overlapping(self, geometry: GeometryInput, exclude_farm_id: Optional[str] = None) -> List[str]:
        polygon = polygon_from_geojson(geometry)
        with self._session_factory() as session:
            return overlap.find_overlapping(session, polygon, exclude_farm_id)

    # ---------- mutations ----------

    def create(
        self,
        farmer_id: str,
        geometry: GeometryInput,
        metadata: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
    ) -> models.Farm:
        polygon, area_ha = self._prepare(geometry)

        def work(session: Session) -> models.Farm:
            _require_farmer(session, farmer_id)
            self._check_overlaps(session, polygon, None)
            farm = models.Farm(id=new_id("FARM"), farmer_id=farmer_id, name=name,
                               meta=dict(metadata or {}))
            farm.set_boundary(polygon, area_ha)
            session.add(farm)
            session.flush()
            rollup.farm_created(session, farm)
            self._after_write(session, farmer_id)
            return farm

        farm = self._transaction("create_farm", work)
        LOG.info("Created farm %s for farmer %s (%.4f ha)", farm.id, farmer_id, area_ha)
        return farm

    def update_geometry(self, farm_id: str, geometry: GeometryInput) -> models.Farm:
        polygon, area_ha = self._prepare(geometry)

        def work(session: Session) -> models.Farm:
            farm = _load_farm(session, farm_id, active_only=True)
            self._check_overlaps(session, polygon, farm_id)
            old_area = farm.area_ha
            farm.set_boundary(polygon, area_ha)
            session.flush()
            rollup.farm_resized(session, farm, old_area)
            self._after_write(session, farm.farmer_id)
            return farm

        farm = self._transaction("update_geometry", work)
        LOG.info("Updated geometry of farm %s (%.4f ha)", farm_id, area_ha)
        return farm

    def soft_delete(self, farm_id: str) -> None:
        def work(session: Session) -> None:
            farm = _load_farm(session, farm_id, active_only=False)
            if isinstance(farm.state, models.Deleted):
                LOG.debug("Farm %s already soft-deleted", farm_id)
                return
            farm.mark_deleted(self._clock())
            session.flush()
            rollup.farm_deactivated(session, farm)
            self._after_write(session, farm.farmer_id)

        self._transaction("soft_delete", work)
        LOG.info("Soft-deleted farm %s", farm_id)

    def restore(self, farm_id: str) -> None:
        def work(session: Session) -> None:
            farm = _load_farm(session, farm_id, active_only=False)
            if isinstance(farm.state, models.Active):
                LOG.debug("Farm %s already active", farm_id)
                return
            self._check_overlaps(session, polygon_from_geojson(farm.geometry), farm_id)
            farm.mark_active()
            session.flush()
            rollup.farm_reactivated(session, farm)
            self._after_write(session, farm.farmer_id)

        self._transaction("restore", work)
        LOG.info("Restored farm %s", farm_id)

    def hard_delete(self, farm_id: str) -> None:
        def work(session: Session) -> None:
            farm = _load_farm(session, farm_id, active_only=False)
            farmer_id, area_ha, was_active = farm.farmer_id, farm.area_ha, farm.is_active
            session.delete(farm)
            session.flush()
            rollup.farm_removed(session, farmer_id, area_ha, was_active)
            self._after_write(session, farmer_id)

        self._transaction("hard_delete", work)
        LOG.info("Hard-deleted farm %s", farm_id)

    def reassign(self, farm_id: str, new_farmer_id: str) -> None:
        def work(session: Session) -> None:
            farm = _load_farm(session, farm_id, active_only=True)
            _require_farmer(session, new_farmer_id)
            old_farmer_id = farm.farmer_id
            if old_farmer_id == new_farmer_id:
                return
            farm.farmer_id = new_farmer_id
            session.flush()
            rollup.farm_reassigned(session, farm, old_farmer_id)
            self._after_write(session, old_farmer_id, new_farmer_id)

        self._transaction("reassign", work)
        LOG.info("Reassigned farm %s to farmer %s", farm_id, new_farmer_id)

    # ---------- admin ----------

    def detect_all_overlaps(self, min_overlap_area_ha: Optional[float] = None) -> List[overlap.OverlapResult]:
        with self._session_factory() as session:
            return overlap.detect_all_overlaps(session, min_overlap_area_ha)

    def rebuild_spatial_indexes(self) -> maintenance.RebuildReport:
        return self._transaction("rebuild_spatial_indexes", maintenance.rebuild_spatial_indexes)

    def reconcile_aggregates(self, farmer_id: Optional[str] = None) -> rollup.ReconciliationReport:
        if farmer_id is not None:
            with self._session_factory() as session:
                _require_farmer(session, farmer_id)
        return self._transaction("reconcile_aggregates", lambda s: rollup.reconcile_all(s, farmer_id))
