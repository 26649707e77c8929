from pydantic import BaseModel, field_validator
from typing import Optional, List
from datetime import datetime
from app.models.asset import AssetCondition
from app.models.stocktake import StocktakeStatus
from app.schemas.lookup import LookupRef


class StocktakeCreate(BaseModel):
    name: str
    notes: Optional[str] = None
    category_id: Optional[int] = None
    location_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()


class StocktakeUpdate(BaseModel):
    name: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[StocktakeStatus] = None


class VerifyRequest(BaseModel):
    location_match: Optional[bool] = None
    condition_match: Optional[bool] = None
    new_condition: Optional[AssetCondition] = None
    notes: Optional[str] = None


class QuickVerifyRequest(BaseModel):
    item_number: str
    new_condition: Optional[AssetCondition] = None

    @field_validator("item_number")
    @classmethod
    def validate_item_number(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Item number is required")
        return v


class StocktakeAsset(BaseModel):
    id: int
    item_number: str
    serial_number: Optional[str] = None
    model: Optional[str] = None
    status: str
    condition: str
    assigned_to: Optional[str] = None
    category: Optional[LookupRef] = None
    location: Optional[LookupRef] = None
    manufacturer: Optional[LookupRef] = None

    model_config = {"from_attributes": True}


class StocktakeRecordResponse(BaseModel):
    id: int
    stocktake_id: int
    asset_id: int
    verified: bool
    verified_at: Optional[datetime] = None
    location_match: Optional[bool] = None
    condition_match: Optional[bool] = None
    new_condition: Optional[str] = None
    notes: Optional[str] = None
    asset: Optional[StocktakeAsset] = None

    model_config = {"from_attributes": True}


class StocktakeResponse(BaseModel):
    id: int
    name: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    verified_count: Optional[int] = None
    total_count: Optional[int] = None

    model_config = {"from_attributes": True}


class StocktakeDetailResponse(StocktakeResponse):
    records: List[StocktakeRecordResponse] = []
