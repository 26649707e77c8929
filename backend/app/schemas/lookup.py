from pydantic import BaseModel, field_validator
from typing import Optional


class _NamedCreate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()


class _NamedUpdate(BaseModel):
    name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip() if v is not None else v


class CategoryCreate(_NamedCreate):
    description: Optional[str] = None


class CategoryUpdate(_NamedUpdate):
    description: Optional[str] = None


class ManufacturerCreate(_NamedCreate):
    website: Optional[str] = None
    support_url: Optional[str] = None


class ManufacturerUpdate(_NamedUpdate):
    website: Optional[str] = None
    support_url: Optional[str] = None


class SupplierCreate(_NamedCreate):
    website: Optional[str] = None
    account_num: Optional[str] = None


class SupplierUpdate(_NamedUpdate):
    website: Optional[str] = None
    account_num: Optional[str] = None


class LocationCreate(_NamedCreate):
    building: Optional[str] = None
    floor: Optional[str] = None
    room: Optional[str] = None
    address: Optional[str] = None


class LocationUpdate(_NamedUpdate):
    building: Optional[str] = None
    floor: Optional[str] = None
    room: Optional[str] = None
    address: Optional[str] = None


class LookupRef(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}
