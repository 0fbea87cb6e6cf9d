from __future__ import annotations

from typing import Optional, Union
import math
import uuid
from datetime import datetime, timezone

import pandas as pd

Number = Union[int, float]


def is_valid_number(v) -> bool:
    """Check if value is a real, finite number (bools excluded)."""
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return False
    return math.isfinite(v)


def round4(v: Optional[Number]) -> Optional[float]:
    """Round a value to 4 decimal places; return None if invalid."""
    try:
        return None if v is None or v == "" else round(float(v), 4)
    except (TypeError, ValueError):
        return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_aware_utc(v: Optional[Union[str, datetime]]) -> datetime:
    """Convert input to an aware UTC datetime."""
    if v is None:
        return utcnow()
    if isinstance(v, datetime):
        return v.astimezone(timezone.utc) if v.tzinfo else v.replace(tzinfo=timezone.utc)
    ts = pd.to_datetime(v, errors="coerce", utc=True)
    if pd.isna(ts):
        raise ValueError(f"Unparseable timestamp: {v!r}")
    return ts.to_pydatetime()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"
