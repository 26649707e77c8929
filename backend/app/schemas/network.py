from pydantic import BaseModel, field_validator
from typing import Optional, List
from datetime import datetime
from app.schemas.asset import AssetSummary


class SubnetCreate(BaseModel):
    name: str
    cidr: str

    @field_validator("name", "cidr")
    @classmethod
    def strip_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name and CIDR are required")
        return v.strip()


class SubnetUpdate(BaseModel):
    name: Optional[str] = None
    cidr: Optional[str] = None

    @field_validator("name", "cidr")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else None


class SubnetResponse(BaseModel):
    id: int
    name: str
    cidr: str
    usable_host_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SubnetIPRow(BaseModel):
    ip: str
    asset: Optional[AssetSummary] = None
    label: Optional[str] = None

    model_config = {"from_attributes": True}


class SubnetIPsResponse(BaseModel):
    subnet: SubnetResponse
    ips: List[SubnetIPRow]


class IPLinkRequest(BaseModel):
    asset_id: int
    label: Optional[str] = None
