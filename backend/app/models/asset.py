from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Numeric, Text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


ASSET_STATUSES = [
    "In Use",
    "In Use - Infrastructure",
    "In Use - Loaned to student",
    "In Use - Loaned to staff",
    "Awaiting allocation",
    "Awaiting delivery",
    "Awaiting collection",
    "Waiting Repair",
    "Decommissioned",
    "Decommissioned - Beyond service age",
    "Decommissioned - Damaged",
    "Decommissioned - Stolen",
    "Decommissioned - In storage",
    "Decommissioned - User left school",
    "Decommissioned - Written Off",
    "Decommissioned - Unreturned",
]

DEFAULT_STATUS = "In Use"
ACTIVE_STATUS_PREFIX = "In Use"
DECOMMISSIONED_PREFIX = "Decommissioned"


class AssetCondition(str, enum.Enum):
    NEW = "NEW"
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    NON_FUNCTIONAL = "NON_FUNCTIONAL"


def canonical_status(value: str) -> str:
    """Return the canonical spelling of a status, matched case-insensitively."""
    wanted = value.strip().lower()
    for status in ASSET_STATUSES:
        if status.lower() == wanted:
            return status
    raise ValueError(f'Invalid status "{value}". Must be one of: {", ".join(ASSET_STATUSES)}')


class Asset(Base):
    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, index=True)
    item_number = Column(String(50), unique=True, nullable=False, index=True)
    serial_number = Column(String(100), index=True)
    manufacturer_id = Column(Integer, ForeignKey("manufacturers.id"), nullable=True, index=True)
    model = Column(String(150))
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    description = Column(Text)
    status = Column(String(50), nullable=False, default=DEFAULT_STATUS, index=True)
    condition = Column(String(20), nullable=False, default=AssetCondition.GOOD.value)
    acquired_date = Column(Date, nullable=True)
    purchase_price = Column(Numeric(12, 2), nullable=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    order_number = Column(String(100))
    hostname = Column(String(255))
    device_username = Column(String(255))
    device_password = Column(Text)  # Fernet ciphertext, see app.crypto
    lan_mac_address = Column(String(50))
    wlan_mac_address = Column(String(50))
    assigned_to = Column(String(255))
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)
    warranty_expiration = Column(Date, nullable=True)
    end_of_life_date = Column(Date, nullable=True)
    last_review_date = Column(Date, nullable=True)
    decommission_date = Column(Date, nullable=True)
    comments = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    category = relationship("Category", back_populates="assets")
    manufacturer = relationship("Manufacturer", back_populates="assets")
    supplier = relationship("Supplier", back_populates="assets")
    location = relationship("Location", back_populates="assets")
    ips = relationship(
        "AssetIP",
        back_populates="asset",
        cascade="all, delete-orphan",
        order_by="AssetIP.ip",
    )


class AssetIP(Base):
    """An IPv4 address owned by an asset. An address belongs to at most one asset."""
    __tablename__ = "asset_ips"

    id = Column(Integer, primary_key=True, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    ip = Column(String(15), nullable=False, unique=True, index=True)
    label = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    asset = relationship("Asset", back_populates="ips")
