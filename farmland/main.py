from fastapi import FastAPI, Depends, UploadFile, File, HTTPException, Request
from fastapi.responses import JSONResponse
from typing import List, Optional
from sqlalchemy.exc import IntegrityError

from farmland import schemas
from farmland.config import configure_logging, settings
from farmland.db import engine, init_db
from farmland.deps import get_ingest_service, get_repository
from farmland.errors import ConcurrencyConflict, GeometryError, NotFoundError, OverlapConflict
from farmland.ingest_service import FarmIngestService
from farmland.ingest_sources import CsvSource, GeoJSONSource
from farmland.repository import FarmRepository

app = FastAPI(title="Farmland API")


# Create tables at startup
@app.on_event("startup")
def _init_db():
    configure_logging(settings.log_level)
    init_db(engine)


# ---------- error mapping ----------

@app.exception_handler(GeometryError)
def _geometry_error(_: Request, exc: GeometryError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "code": exc.code})


@app.exception_handler(ValueError)
def _bad_input(_: Request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
def _not_found(_: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": f"{exc.entity.capitalize()} not found"})


@app.exception_handler(OverlapConflict)
def _overlap(_: Request, exc: OverlapConflict):
    return JSONResponse(status_code=409, content={"detail": str(exc), "farm_ids": exc.farm_ids})


@app.exception_handler(ConcurrencyConflict)
def _busy(_: Request, exc: ConcurrencyConflict):
    return JSONResponse(status_code=503, content={"detail": str(exc)}, headers={"Retry-After": "1"})


# ---------- farmers ----------

@app.post("/farmers", response_model=schemas.FarmerOut, status_code=201)
def create_farmer(body: schemas.FarmerCreate, repo: FarmRepository = Depends(get_repository)):
    try:
        return repo.create_farmer(name=body.name, farmer_id=body.id)
    except IntegrityError:
        raise HTTPException(409, "Farmer already exists")


@app.get("/farmers/{farmer_id}", response_model=schemas.FarmerOut)
def get_farmer(farmer_id: str, repo: FarmRepository = Depends(get_repository)):
    return repo.get_farmer(farmer_id)


@app.get("/farmers/{farmer_id}/farms", response_model=List[schemas.FarmOut])
def list_farmer_farms(
    farmer_id: str,
    include_deleted: bool = False,
    min_area_ha: Optional[float] = None,
    max_area_ha: Optional[float] = None,
    repo: FarmRepository = Depends(get_repository),
):
    return repo.list_farms(farmer_id, include_deleted=include_deleted,
                           min_area_ha=min_area_ha, max_area_ha=max_area_ha)


# ---------- farms ----------

@app.post("/farms", response_model=schemas.FarmOut, status_code=201)
def create_farm(body: schemas.FarmCreate, repo: FarmRepository = Depends(get_repository)):
    return repo.create(body.farmer_id, body.geometry.model_dump(), metadata=body.metadata, name=body.name)


@app.get("/farms", response_model=List[schemas.FarmOut])
def list_farms_in_bbox(
    min_lon: float,
    min_lat: float,
    max_lon: float,
    max_lat: float,
    farmer_id: Optional[str] = None,
    min_area_ha: Optional[float] = None,
    max_area_ha: Optional[float] = None,
    include_deleted: bool = False,
    repo: FarmRepository = Depends(get_repository),
):
    return repo.list_farms_in_bbox(min_lon, min_lat, max_lon, max_lat, farmer_id=farmer_id,
                                   min_area_ha=min_area_ha, max_area_ha=max_area_ha,
                                   include_deleted=include_deleted)


@app.post("/farms/overlaps", response_model=schemas.OverlapIds)
def find_overlapping(body: schemas.OverlapQuery, repo: FarmRepository = Depends(get_repository)):
    ids = repo.find_overlapping(body.geometry.model_dump(), exclude_farm_id=body.exclude_farm_id)
    return {"farm_ids": ids}


@app.get("/farms/{farm_id}", response_model=schemas.FarmOut)
def get_farm(farm_id: str, repo: FarmRepository = Depends(get_repository)):
    return repo.get_farm(farm_id)


@app.put("/farms/{farm_id}/geometry", response_model=schemas.FarmOut)
def update_farm_geometry(farm_id: str, body: schemas.FarmGeometryUpdate, repo: FarmRepository = Depends(get_repository)):
    return repo.update_geometry(farm_id, body.geometry.model_dump())


@app.delete("/farms/{farm_id}")
def soft_delete_farm(farm_id: str, repo: FarmRepository = Depends(get_repository)):
    repo.soft_delete(farm_id)
    return {"farm_id": farm_id, "status": "deleted"}


@app.post("/farms/{farm_id}/restore")
def restore_farm(farm_id: str, repo: FarmRepository = Depends(get_repository)):
    repo.restore(farm_id)
    return {"farm_id": farm_id, "status": "active"}


@app.delete("/farms/{farm_id}/permanent")
def hard_delete_farm(farm_id: str, repo: FarmRepository = Depends(get_repository)):
    repo.hard_delete(farm_id)
    return {"farm_id": farm_id, "status": "removed"}


@app.post("/farms/{farm_id}/reassign")
def reassign_farm(farm_id: str, body: schemas.FarmReassign, repo: FarmRepository = Depends(get_repository)):
    repo.reassign(farm_id, body.farmer_id)
    return {"farm_id": farm_id, "farmer_id": body.farmer_id}


# ---------- admin ----------

@app.post("/admin/overlaps/detect", response_model=schemas.OverlapAuditOut)
def detect_overlaps(min_overlap_area_ha: Optional[float] = None, repo: FarmRepository = Depends(get_repository)):
    overlaps = repo.detect_all_overlaps(min_overlap_area_ha)
    return {"total_overlaps": len(overlaps), "overlaps": overlaps}


@app.post("/admin/spatial-indexes/rebuild", response_model=schemas.RebuildOut)
def rebuild_spatial_indexes(repo: FarmRepository = Depends(get_repository)):
    return repo.rebuild_spatial_indexes()


@app.post("/admin/aggregates/reconcile", response_model=schemas.ReconciliationOut)
def reconcile_aggregates(farmer_id: Optional[str] = None, repo: FarmRepository = Depends(get_repository)):
    return repo.reconcile_aggregates(farmer_id)


# ---------- bulk import ----------

@app.post("/ingest/csv")
async def ingest_csv(
    file: UploadFile = File(...),
    svc: FarmIngestService = Depends(get_ingest_service),
):
    try:
        content = (await file.read()).decode("utf-8")
    except UnicodeDecodeError as e:
        raise HTTPException(status_code=400, detail=f"CSV must be UTF-8 encoded: {e}")
    return svc.ingest(CsvSource(content))


@app.post("/ingest/geojson")
def ingest_geojson(
    geojson: dict,
    svc: FarmIngestService = Depends(get_ingest_service),
):
    return svc.ingest(GeoJSONSource(geojson))
