from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Any, Literal, List, Dict
from datetime import datetime


class PolygonGeometry(BaseModel):
    type: Literal["Polygon"]
    # structure is validated by farmland.geometry so its errors stay typed
    coordinates: List[Any]


class FarmerCreate(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None


class FarmerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    total_acreage_ha: float
    farm_count: int


class FarmCreate(BaseModel):
    farmer_id: str
    name: Optional[str] = None
    geometry: PolygonGeometry
    metadata: Dict[str, Any] = Field(default_factory=dict)


class FarmGeometryUpdate(BaseModel):
    geometry: PolygonGeometry


class FarmReassign(BaseModel):
    farmer_id: str


class FarmOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    farmer_id: str
    name: Optional[str] = None
    geometry: Dict[str, Any]
    area_ha: float
    is_active: bool
    deleted_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    version: int


class OverlapQuery(BaseModel):
    geometry: PolygonGeometry
    exclude_farm_id: Optional[str] = None


class OverlapIds(BaseModel):
    farm_ids: List[str]


class OverlapResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    farm1_id: str
    farm2_id: str
    intersects: bool
    farm1_farmer_id: Optional[str] = None
    farm2_farmer_id: Optional[str] = None
    overlap_area_ha: float
    overlap_pct_farm1: float
    overlap_pct_farm2: float


class OverlapAuditOut(BaseModel):
    total_overlaps: int
    overlaps: List[OverlapResultOut]


class RebuildOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rebuilt_indexes: List[str]
    bounding_boxes_refreshed: int


class ReconciliationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    started_at: datetime
    finished_at: Optional[datetime] = None
    farmers_checked: int
    farmers_fixed: List[str]
