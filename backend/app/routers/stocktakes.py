from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from sqlalchemy.orm import selectinload
from typing import List
from datetime import date, datetime, timezone
import logging
from app.database import get_db
from app.models.asset import Asset, ACTIVE_STATUS_PREFIX
from app.models.stocktake import Stocktake, StocktakeRecord, StocktakeStatus
from app.models.user import User
from app.services.auth import log_audit
from app.services.item_numbers import natural_key
from app.services.scan_parser import extract_item_number
from app.services.assets import get_asset_by_item_number
from app.middleware.rbac import get_current_user
from app.routers.auth import get_client_ip
from app.schemas.stocktake import (
    StocktakeCreate, StocktakeUpdate, StocktakeResponse, StocktakeDetailResponse,
    StocktakeRecordResponse, VerifyRequest, QuickVerifyRequest,
)

router = APIRouter(prefix="/api/stocktakes", tags=["Stocktakes"])
logger = logging.getLogger(__name__)

RECORD_ASSET_OPTIONS = (
    selectinload(StocktakeRecord.asset).selectinload(Asset.category),
    selectinload(StocktakeRecord.asset).selectinload(Asset.location),
    selectinload(StocktakeRecord.asset).selectinload(Asset.manufacturer),
)


async def _get_stocktake_or_404(db: AsyncSession, stocktake_id: int) -> Stocktake:
    result = await db.execute(
        select(Stocktake).where(Stocktake.id == stocktake_id).execution_options(populate_existing=True)
    )
    stocktake = result.scalar_one_or_none()
    if not stocktake:
        raise HTTPException(status_code=404, detail="Stocktake not found")
    return stocktake


async def _counts(db: AsyncSession, stocktake_id: int):
    total = await db.execute(
        select(func.count(StocktakeRecord.id)).where(StocktakeRecord.stocktake_id == stocktake_id)
    )
    verified = await db.execute(
        select(func.count(StocktakeRecord.id)).where(
            StocktakeRecord.stocktake_id == stocktake_id, StocktakeRecord.verified == True  # noqa: E712
        )
    )
    return verified.scalar() or 0, total.scalar() or 0


async def _stocktake_response(db: AsyncSession, stocktake: Stocktake) -> StocktakeResponse:
    data = StocktakeResponse.model_validate(stocktake)
    data.verified_count, data.total_count = await _counts(db, stocktake.id)
    return data


async def _load_record(db: AsyncSession, stocktake_id: int, asset_id: int) -> StocktakeRecord:
    result = await db.execute(
        select(StocktakeRecord)
        .options(*RECORD_ASSET_OPTIONS)
        .where(StocktakeRecord.stocktake_id == stocktake_id, StocktakeRecord.asset_id == asset_id)
        .execution_options(populate_existing=True)
    )
    record = result.scalar_one_or_none()
    if not record:
        raise HTTPException(status_code=404, detail="Asset not in this stocktake")
    return record


@router.get("/", response_model=List[StocktakeResponse])
async def list_stocktakes(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    result = await db.execute(select(Stocktake).order_by(Stocktake.start_date.desc(), Stocktake.id.desc()))
    return [await _stocktake_response(db, s) for s in result.scalars().all()]


@router.get("/{stocktake_id}", response_model=StocktakeDetailResponse)
async def get_stocktake(
    stocktake_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    stocktake = await _get_stocktake_or_404(db, stocktake_id)
    result = await db.execute(
        select(StocktakeRecord)
        .options(*RECORD_ASSET_OPTIONS)
        .where(StocktakeRecord.stocktake_id == stocktake_id)
    )
    records = sorted(result.scalars().all(), key=lambda r: natural_key(r.asset.item_number))

    summary = StocktakeResponse.model_validate(stocktake).model_dump(exclude={"verified_count", "total_count"})
    return StocktakeDetailResponse(
        **summary,
        verified_count=sum(1 for r in records if r.verified),
        total_count=len(records),
        records=[StocktakeRecordResponse.model_validate(r) for r in records],
    )


@router.post("/", response_model=StocktakeResponse, status_code=201)
async def create_stocktake(
    request: Request,
    payload: StocktakeCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Snapshot every in-use asset (optionally narrowed by category/location) as unverified."""
    query = select(Asset.id).where(Asset.status.startswith(ACTIVE_STATUS_PREFIX))
    if payload.category_id:
        query = query.where(Asset.category_id == payload.category_id)
    if payload.location_id:
        query = query.where(Asset.location_id == payload.location_id)
    asset_ids = (await db.execute(query)).scalars().all()
    if not asset_ids:
        raise HTTPException(status_code=400, detail="No assets found matching the criteria")

    stocktake = Stocktake(
        name=payload.name,
        notes=payload.notes,
        start_date=datetime.now(timezone.utc),
        status=StocktakeStatus.IN_PROGRESS.value,
        records=[StocktakeRecord(asset_id=asset_id, verified=False) for asset_id in asset_ids],
    )
    db.add(stocktake)
    await db.flush()
    await log_audit(
        db, "stocktake_created",
        user_id=current_user.id, username=current_user.username,
        resource_type="stocktake", resource_id=str(stocktake.id),
        details=f"Created stocktake {stocktake.name} with {len(asset_ids)} assets",
        source_ip=get_client_ip(request), commit=False,
    )
    await db.commit()

    stocktake = await _get_stocktake_or_404(db, stocktake.id)
    data = StocktakeResponse.model_validate(stocktake)
    data.verified_count, data.total_count = 0, len(asset_ids)
    return data


@router.put("/{stocktake_id}", response_model=StocktakeResponse)
async def update_stocktake(
    request: Request,
    stocktake_id: int,
    payload: StocktakeUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stocktake = await _get_stocktake_or_404(db, stocktake_id)
    update_data = payload.model_dump(exclude_unset=True)

    if update_data.get("name"):
        stocktake.name = update_data["name"].strip()
    if "notes" in update_data:
        stocktake.notes = update_data["notes"]

    new_status = update_data.get("status")
    if new_status and new_status.value != stocktake.status:
        stocktake.status = new_status.value
        if new_status == StocktakeStatus.COMPLETED:
            stocktake.end_date = datetime.now(timezone.utc)
            await _apply_completion(db, stocktake_id)

    await log_audit(
        db, "stocktake_updated",
        user_id=current_user.id, username=current_user.username,
        resource_type="stocktake", resource_id=str(stocktake_id),
        details={k: (v.value if hasattr(v, "value") else v) for k, v in update_data.items()},
        source_ip=get_client_ip(request), commit=False,
    )
    await db.commit()
    stocktake = await _get_stocktake_or_404(db, stocktake_id)
    return await _stocktake_response(db, stocktake)


async def _apply_completion(db: AsyncSession, stocktake_id: int) -> None:
    """Stamp today's review date on verified assets and apply recorded condition changes."""
    result = await db.execute(
        select(StocktakeRecord.asset_id, StocktakeRecord.new_condition).where(
            StocktakeRecord.stocktake_id == stocktake_id, StocktakeRecord.verified == True  # noqa: E712
        )
    )
    verified = result.all()
    if not verified:
        return

    await db.execute(
        update(Asset)
        .where(Asset.id.in_([asset_id for asset_id, _ in verified]))
        .values(last_review_date=date.today())
        .execution_options(synchronize_session=False)
    )
    for asset_id, new_condition in verified:
        if new_condition:
            await db.execute(
                update(Asset)
                .where(Asset.id == asset_id)
                .values(condition=new_condition)
                .execution_options(synchronize_session=False)
            )
    logger.info(f"Stocktake {stocktake_id} completed: {len(verified)} assets reviewed")


@router.delete("/{stocktake_id}")
async def delete_stocktake(
    request: Request,
    stocktake_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Stocktake).options(selectinload(Stocktake.records)).where(Stocktake.id == stocktake_id)
    )
    stocktake = result.scalar_one_or_none()
    if not stocktake:
        raise HTTPException(status_code=404, detail="Stocktake not found")
    name = stocktake.name
    await db.delete(stocktake)
    await log_audit(
        db, "stocktake_deleted",
        user_id=current_user.id, username=current_user.username,
        resource_type="stocktake", resource_id=str(stocktake_id),
        details=f"Deleted stocktake {name}",
        source_ip=get_client_ip(request), commit=False,
    )
    await db.commit()
    return {"success": True}


@router.post("/{stocktake_id}/verify/{asset_id}", response_model=StocktakeRecordResponse)
async def verify_asset(
    stocktake_id: int,
    asset_id: int,
    payload: VerifyRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    await _get_stocktake_or_404(db, stocktake_id)
    record = await _load_record(db, stocktake_id, asset_id)
    record.verified = True
    record.verified_at = datetime.now(timezone.utc)
    record.location_match = payload.location_match
    record.condition_match = payload.condition_match
    record.new_condition = payload.new_condition.value if payload.new_condition else None
    record.notes = payload.notes
    await db.commit()
    return await _load_record(db, stocktake_id, asset_id)


@router.post("/{stocktake_id}/unverify/{asset_id}", response_model=StocktakeRecordResponse)
async def unverify_asset(
    stocktake_id: int,
    asset_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    await _get_stocktake_or_404(db, stocktake_id)
    record = await _load_record(db, stocktake_id, asset_id)
    record.verified = False
    record.verified_at = None
    record.location_match = None
    record.condition_match = None
    record.new_condition = None
    record.notes = None
    await db.commit()
    return await _load_record(db, stocktake_id, asset_id)


@router.post("/{stocktake_id}/quick-verify", response_model=StocktakeRecordResponse)
async def quick_verify(
    stocktake_id: int,
    payload: QuickVerifyRequest,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    """Verify by scanned text: a plain item number or the content of an asset label QR code."""
    await _get_stocktake_or_404(db, stocktake_id)
    item_number = extract_item_number(payload.item_number)

    asset = await get_asset_by_item_number(db, item_number)
    if not asset:
        raise HTTPException(status_code=404, detail="Asset not found")

    record = await _load_record(db, stocktake_id, asset.id)
    if record.verified:
        raise HTTPException(status_code=400, detail=f"Asset {asset.item_number} already verified")

    record.verified = True
    record.verified_at = datetime.now(timezone.utc)
    record.location_match = True
    record.condition_match = payload.new_condition is None
    record.new_condition = payload.new_condition.value if payload.new_condition else None
    await db.commit()
    return await _load_record(db, stocktake_id, asset.id)
