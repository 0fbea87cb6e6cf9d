"""
Acreage rollup engine.

Keeps ``Farmer.total_acreage_ha`` and ``Farmer.farm_count`` equal to the sum
and count of the farmer's *active* farms. Every function here runs inside the
caller's transaction and is called explicitly by the repository right after
the farm write; there are no ORM event hooks.

Deltas are applied after taking the farmer row's write lock, in sorted
farmer-id order when more than one farmer is touched. Concurrent deltas for
the same farmer therefore serialize, while different farmers never contend.

After each delta the aggregate is rounded to 4 decimals and checked. A
negative total or count, or a non-zero total with zero farms, means the
stored aggregate had drifted: it is logged as an AggregateConsistencyError
and recomputed from the farm rows in the same transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from farmland import models
from farmland.errors import AggregateConsistencyError, NotFoundError
from farmland.utils import round4, utcnow

LOG = logging.getLogger("farmland.rollup")

# half a unit in the 4th decimal
AREA_TOLERANCE_HA = 0.00005

Delta = Tuple[float, int]


@dataclass(frozen=True)
class AggregateSnapshot:
    total_acreage_ha: float
    farm_count: int

    def matches(self, farmer: models.Farmer) -> bool:
        return (
            farmer.farm_count == self.farm_count
            and abs(farmer.total_acreage_ha - self.total_acreage_ha) < AREA_TOLERANCE_HA
        )


@dataclass
class ReconciliationReport:
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    farmers_checked: int = 0
    farmers_fixed: List[str] = field(default_factory=list)


# ---------- locking ----------

def _lock_farmer(session: Session, farmer_id: str) -> models.Farmer:
    # A no-op UPDATE takes the row write lock on every backend (SQLite ignores FOR UPDATE).
    touched = session.execute(
        update(models.Farmer)
        .where(models.Farmer.id == farmer_id)
        .values(farm_count=models.Farmer.farm_count)
        .execution_options(synchronize_session=False)
    )
    if touched.rowcount == 0:
        raise NotFoundError("farmer", farmer_id)
    return session.execute(
        select(models.Farmer)
        .where(models.Farmer.id == farmer_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()


# ---------- aggregate maths ----------

def _normalized(farmer_id: str, total: float, count: int) -> Tuple[float, int]:
    total = round4(total)
    if count < 0:
        raise AggregateConsistencyError(farmer_id, f"farm_count would become {count}")
    if total < 0:
        raise AggregateConsistencyError(farmer_id, f"total_acreage_ha would become {total}")
    if count == 0 and total != 0:
        raise AggregateConsistencyError(farmer_id, f"total_acreage_ha {total} with no active farms")
    # also folds -0.0 into 0.0
    return (0.0 if total == 0 else total), count


def recompute_aggregate(session: Session, farmer_id: str) -> AggregateSnapshot:
    """Authoritative aggregate straight from the farm rows."""
    session.flush()
    total, count = session.execute(
        select(func.coalesce(func.sum(models.Farm.area_ha), 0.0), func.count(models.Farm.id))
        .where(models.Farm.farmer_id == farmer_id, models.Farm.is_active)
    ).one()
    count = int(count)
    return AggregateSnapshot(total_acreage_ha=round4(total) if count else 0.0, farm_count=count)


def _overwrite(farmer: models.Farmer, snap: AggregateSnapshot) -> None:
    farmer.total_acreage_ha = snap.total_acreage_ha
    farmer.farm_count = snap.farm_count


def _repair(session: Session, farmer: models.Farmer, err: AggregateConsistencyError) -> None:
    snap = recompute_aggregate(session, farmer.id)
    LOG.warning("%s; reconciling from farm rows (%.4f ha / %d farms -> %.4f ha / %d farms)",
                err, farmer.total_acreage_ha, farmer.farm_count,
                snap.total_acreage_ha, snap.farm_count)
    _overwrite(farmer, snap)


def apply_deltas(session: Session, deltas: Mapping[str, Delta]) -> Dict[str, models.Farmer]:
    """
    Apply (area_ha, farm_count) deltas to each farmer, locking rows in sorted
    id order. Raises NotFoundError if a farmer row is missing.
    """
    touched: Dict[str, models.Farmer] = {}
    for farmer_id in sorted(deltas):
        area_delta, count_delta = deltas[farmer_id]
        farmer = _lock_farmer(session, farmer_id)
        try:
            total, count = _normalized(
                farmer_id,
                farmer.total_acreage_ha + area_delta,
                farmer.farm_count + count_delta,
            )
        except AggregateConsistencyError as err:
            _repair(session, farmer, err)
        else:
            farmer.total_acreage_ha = total
            farmer.farm_count = count
        touched[farmer_id] = farmer
        LOG.debug("Rollup %s: %+.4f ha, %+d farms -> %.4f ha / %d farms",
                  farmer_id, area_delta, count_delta, farmer.total_acreage_ha, farmer.farm_count)
    session.flush()
    return touched


def apply_delta(session: Session, farmer_id: str, area_delta: float, count_delta: int) -> models.Farmer:
    return apply_deltas(session, {farmer_id: (area_delta, count_delta)})[farmer_id]


# ---------- lifecycle transitions ----------

def farm_created(session: Session, farm: models.Farm) -> models.Farmer:
    return apply_delta(session, farm.farmer_id, farm.area_ha, +1)


def farm_resized(session: Session, farm: models.Farm, old_area_ha: float) -> models.Farmer:
    return apply_delta(session, farm.farmer_id, farm.area_ha - old_area_ha, 0)


def farm_deactivated(session: Session, farm: models.Farm) -> models.Farmer:
    return apply_delta(session, farm.farmer_id, -farm.area_ha, -1)


def farm_reactivated(session: Session, farm: models.Farm) -> models.Farmer:
    return apply_delta(session, farm.farmer_id, farm.area_ha, +1)


def farm_removed(session: Session, farmer_id: str, area_ha: float, was_active: bool) -> Optional[models.Farmer]:
    # a soft-deleted farm was already subtracted
    if not was_active:
        return None
    return apply_delta(session, farmer_id, -area_ha, -1)


def farm_reassigned(session: Session, farm: models.Farm, old_farmer_id: str) -> Dict[str, models.Farmer]:
    if old_farmer_id == farm.farmer_id:
        return {}
    return apply_deltas(session, {
        old_farmer_id: (-farm.area_ha, -1),
        farm.farmer_id: (farm.area_ha, +1),
    })


# ---------- audit / repair ----------

def verify_farmer(session: Session, farmer_id: str) -> bool:
    """Compare the stored aggregate with a full recompute; repair on mismatch."""
    farmer = _lock_farmer(session, farmer_id)
    snap = recompute_aggregate(session, farmer_id)
    if snap.matches(farmer):
        return True
    _repair(session, farmer, AggregateConsistencyError(farmer_id, "stored aggregate differs from farm rows"))
    session.flush()
    return False


def reconcile_farmer(session: Session, farmer_id: str) -> bool:
    """Rewrite the aggregate from farm rows. Returns True if it changed."""
    farmer = _lock_farmer(session, farmer_id)
    snap = recompute_aggregate(session, farmer_id)
    if snap.matches(farmer) and farmer.total_acreage_ha == snap.total_acreage_ha:
        return False
    LOG.info("Reconciled farmer %s: %.4f ha / %d farms -> %.4f ha / %d farms",
             farmer_id, farmer.total_acreage_ha, farmer.farm_count,
             snap.total_acreage_ha, snap.farm_count)
    _overwrite(farmer, snap)
    session.flush()
    return True


def reconcile_all(session: Session, farmer_id: Optional[str] = None) -> ReconciliationReport:
    report = ReconciliationReport()
    if farmer_id is not None:
        farmer_ids = [farmer_id]
    else:
        farmer_ids = session.execute(select(models.Farmer.id).order_by(models.Farmer.id)).scalars().all()

    for fid in farmer_ids:
        report.farmers_checked += 1
        if reconcile_farmer(session, fid):
            report.farmers_fixed.append(fid)

    report.finished_at = utcnow()
    LOG.info("Reconciliation checked %d farmers, fixed %d", report.farmers_checked, len(report.farmers_fixed))
    return report
