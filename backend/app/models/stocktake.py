from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class StocktakeStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Stocktake(Base):
    __tablename__ = "stocktakes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    end_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default=StocktakeStatus.IN_PROGRESS.value)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    records = relationship(
        "StocktakeRecord",
        back_populates="stocktake",
        cascade="all, delete-orphan",
    )


class StocktakeRecord(Base):
    __tablename__ = "stocktake_records"

    id = Column(Integer, primary_key=True, index=True)
    stocktake_id = Column(Integer, ForeignKey("stocktakes.id", ondelete="CASCADE"), nullable=False, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    location_match = Column(Boolean, nullable=True)
    condition_match = Column(Boolean, nullable=True)
    new_condition = Column(String(20), nullable=True)
    notes = Column(Text)

    stocktake = relationship("Stocktake", back_populates="records")
    asset = relationship("Asset")

    __table_args__ = (
        UniqueConstraint("stocktake_id", "asset_id", name="uq_stocktake_record_asset"),
    )
