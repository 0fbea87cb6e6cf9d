# farmland/ingest_service.py
from __future__ import annotations
from typing import Callable, Dict, Any
from datetime import datetime
import logging

from farmland.errors import NotFoundError, OverlapConflict
from farmland.repository import FarmRepository
from farmland.utils import to_aware_utc, utcnow

LOG = logging.getLogger("farmland.ingest")

Clock = Callable[[], datetime]


class FarmIngestService:
    """Bulk import: one repository.create (one transaction) per record."""

    def __init__(self, repository: FarmRepository, *, clock: Clock | None = None):
        # DI
        self._repo = repository
        self._clock = clock or utcnow

    @staticmethod
    def _metadata(r: Dict[str, Any], ingestion_ts: datetime) -> Dict[str, Any]:
        meta = dict(r.get("metadata") or {})
        meta["source"] = r["source"]
        meta["ingested_at"] = ingestion_ts.isoformat()
        if r.get("surveyed_at"):
            meta["surveyed_at"] = to_aware_utc(r["surveyed_at"]).isoformat()
        return meta

    def ingest(self, source) -> Dict[str, Any]:
        # parse everything first so a malformed file creates nothing
        records = list(source.records())
        ingestion_ts = self._clock()
        farm_ids: list[str] = []
        rejected: list[dict] = []

        for index, r in enumerate(records):
            if not r.get("geometry"):
                rejected.append({"index": index, "farmer_id": r.get("farmer_id"), "reason": "missing geometry"})
                continue
            try:
                farm = self._repo.create(
                    r["farmer_id"],
                    r["geometry"],
                    metadata=self._metadata(r, ingestion_ts),
                    name=r.get("name"),
                )
            except (ValueError, NotFoundError, OverlapConflict) as e:
                # GeometryError is a ValueError
                rejected.append({"index": index, "farmer_id": r.get("farmer_id"), "reason": str(e)})
                continue
            farm_ids.append(farm.id)

        LOG.info("Ingested %d farm(s), rejected %d", len(farm_ids), len(rejected))
        return {"ingested": len(farm_ids), "farm_ids": farm_ids, "rejected": rejected}
