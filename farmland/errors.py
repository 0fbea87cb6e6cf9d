# farmland/errors.py
from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy.exc import OperationalError


class FarmlandError(Exception):
    """Base for every error raised by the farm core."""


# ---------- geometry (client input, raised before any transaction) ----------

class GeometryError(FarmlandError, ValueError):
    code = "geometry_error"


class TooFewPoints(GeometryError):
    code = "too_few_points"


class UnclosedRing(GeometryError):
    code = "unclosed_ring"


class CoordinateOutOfRange(GeometryError):
    code = "coordinate_out_of_range"


class SelfIntersecting(GeometryError):
    code = "self_intersecting"


class FarmSizeOutOfRange(GeometryError):
    code = "farm_size_out_of_range"


# ---------- repository ----------

class RepositoryError(FarmlandError):
    pass


class NotFoundError(RepositoryError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id!r} not found")


class OverlapConflict(RepositoryError):
    def __init__(self, farm_ids: Iterable[str]):
        self.farm_ids = sorted(set(farm_ids))
        super().__init__(f"polygon overlaps active farm(s): {', '.join(self.farm_ids)}")


class ConcurrencyConflict(RepositoryError):
    def __init__(self, message: str, *, attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)


class AggregateConsistencyError(RepositoryError):
    def __init__(self, farmer_id: str, reason: str):
        self.farmer_id = farmer_id
        self.reason = reason
        super().__init__(f"farmer {farmer_id!r} aggregate inconsistent: {reason}")


# SQLSTATEs: serialization_failure, deadlock_detected, lock_not_available
_TRANSIENT_PG_CODES = {"40001", "40P01", "55P03"}
_TRANSIENT_MESSAGES = ("database is locked", "database table is locked", "deadlock detected",
                       "could not serialize access")


def is_transient_db_error(exc: BaseException) -> bool:
    """True for lock/serialization failures worth retrying."""
    if not isinstance(exc, OperationalError):
        return False
    code: Optional[str] = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if code in _TRANSIENT_PG_CODES:
        return True
    msg = str(exc.orig).lower()
    return any(m in msg for m in _TRANSIENT_MESSAGES)
