from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
from app.models.asset import AssetCondition, canonical_status
from app.schemas.lookup import LookupRef
import ipaddress


def normalize_ipv4(v: str) -> str:
    try:
        return str(ipaddress.IPv4Address(v.strip()))
    except ValueError:
        raise ValueError(f"Invalid IPv4 address: {v}")


class AssetIPInput(BaseModel):
    ip: str
    label: Optional[str] = None

    @field_validator("ip")
    @classmethod
    def validate_ip(cls, v: str) -> str:
        return normalize_ipv4(v)


class AssetIPResponse(BaseModel):
    id: int
    ip: str
    label: Optional[str] = None

    model_config = {"from_attributes": True}


class _AssetFields(BaseModel):
    serial_number: Optional[str] = None
    manufacturer_id: Optional[int] = None
    model: Optional[str] = None
    category_id: Optional[int] = None
    description: Optional[str] = None
    acquired_date: Optional[date] = None
    purchase_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    supplier_id: Optional[int] = None
    order_number: Optional[str] = None
    hostname: Optional[str] = None
    device_username: Optional[str] = None
    device_password: Optional[str] = None
    lan_mac_address: Optional[str] = None
    wlan_mac_address: Optional[str] = None
    assigned_to: Optional[str] = None
    location_id: Optional[int] = None
    warranty_expiration: Optional[date] = None
    end_of_life_date: Optional[date] = None
    comments: Optional[str] = None


class AssetCreate(_AssetFields):
    item_number: str
    status: Optional[str] = None
    condition: AssetCondition = AssetCondition.GOOD
    ips: List[AssetIPInput] = []

    @field_validator("item_number")
    @classmethod
    def validate_item_number(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Item number is required")
        return v.strip()

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        return canonical_status(v) if v else v


class AssetUpdate(_AssetFields):
    item_number: Optional[str] = None
    status: Optional[str] = None
    condition: Optional[AssetCondition] = None
    last_review_date: Optional[date] = None
    decommission_date: Optional[date] = None
    ips: Optional[List[AssetIPInput]] = None

    @field_validator("item_number")
    @classmethod
    def validate_item_number(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Item number cannot be empty")
        return v.strip() if v is not None else v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        return canonical_status(v) if v else v


class BulkAssetCreate(BaseModel):
    shared_fields: AssetUpdate = AssetUpdate()
    serial_numbers: List[str]
    assigned_to_list: List[str] = []

    @field_validator("serial_numbers")
    @classmethod
    def validate_serials(cls, v: List[str]) -> List[str]:
        if not [s for s in v if s.strip()]:
            raise ValueError("At least one serial number is required")
        return v


class CredentialsRequest(BaseModel):
    password: str


class AssetResponse(BaseModel):
    id: int
    item_number: str
    serial_number: Optional[str] = None
    model: Optional[str] = None
    description: Optional[str] = None
    status: str
    condition: str
    acquired_date: Optional[date] = None
    purchase_price: Optional[float] = None
    order_number: Optional[str] = None
    hostname: Optional[str] = None
    device_username: Optional[str] = None
    has_device_password: bool = False
    lan_mac_address: Optional[str] = None
    wlan_mac_address: Optional[str] = None
    assigned_to: Optional[str] = None
    warranty_expiration: Optional[date] = None
    end_of_life_date: Optional[date] = None
    last_review_date: Optional[date] = None
    decommission_date: Optional[date] = None
    comments: Optional[str] = None
    manufacturer_id: Optional[int] = None
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None
    location_id: Optional[int] = None
    manufacturer: Optional[LookupRef] = None
    category: Optional[LookupRef] = None
    supplier: Optional[LookupRef] = None
    location: Optional[LookupRef] = None
    ips: List[AssetIPResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AssetSummary(BaseModel):
    """Compact asset view used by the subnet address table."""
    id: int
    item_number: str
    model: Optional[str] = None
    hostname: Optional[str] = None
    assigned_to: Optional[str] = None
    status: str

    model_config = {"from_attributes": True}
