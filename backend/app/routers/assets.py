from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func, or_, delete
from typing import List, Optional
from datetime import date
from decimal import Decimal
import math
import logging
from app.database import get_db
from app.crypto import encrypt_value, decrypt_value
from app.models.asset import Asset, DEFAULT_STATUS, canonical_status
from app.models.lookup import Category, Manufacturer, Location
from app.models.stocktake import StocktakeRecord
from app.models.user import User, AuditLog
from app.services.auth import log_audit, verify_password
from app.services.assets import (
    ASSET_LOAD_OPTIONS, IPConflictError, allocate_item_number, check_ip_conflicts,
    get_asset_by_item_number, load_asset, replace_ips,
)
from app.services.item_numbers import natural_key, next_item_number
from app.middleware.rbac import get_current_user
from app.routers.auth import get_client_ip
from app.schemas.asset import (
    AssetCreate, AssetUpdate, AssetResponse, BulkAssetCreate, CredentialsRequest,
)
from app.schemas.user import AuditLogResponse

router = APIRouter(prefix="/api/assets", tags=["Assets"])
logger = logging.getLogger(__name__)

SEARCH_COLUMNS = (
    Asset.item_number, Asset.serial_number, Asset.model,
    Asset.hostname, Asset.assigned_to, Asset.description,
)
SORT_COLUMNS = {
    "serial_number": Asset.serial_number,
    "model": Asset.model,
    "status": Asset.status,
    "condition": Asset.condition,
    "assigned_to": Asset.assigned_to,
    "created_at": Asset.created_at,
    "updated_at": Asset.updated_at,
}
SORT_RELATIONS = {
    "manufacturer": (Manufacturer, Asset.manufacturer_id),
    "category": (Category, Asset.category_id),
    "location": (Location, Asset.location_id),
}
HISTORY_PREVIEW = 20


def asset_response(asset: Asset) -> AssetResponse:
    data = AssetResponse.model_validate(asset)
    data.has_device_password = bool(asset.device_password)
    return data


def _audit_value(value):
    if isinstance(value, (date, Decimal)):
        return str(value)
    return value


def _diff(asset: Asset, update_data: dict) -> dict:
    changes = {}
    for key, new in update_data.items():
        old = getattr(asset, key)
        if key == "device_password":
            if new != old:
                changes[key] = {"from": "***", "to": "***"}
            continue
        if _audit_value(old) != _audit_value(new):
            changes[key] = {"from": _audit_value(old), "to": _audit_value(new)}
    return changes


async def _get_asset_or_404(db: AsyncSession, asset_id: int) -> Asset:
    asset = await load_asset(db, asset_id)
    if not asset:
        raise HTTPException(status_code=404, detail="Asset not found")
    return asset


async def _commit_asset(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="Item number or IP address already exists")


@router.get("/")
async def list_assets(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    search: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[int] = None,
    manufacturer: Optional[int] = None,
    location: Optional[int] = None,
    sort_by: str = "item_number",
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    if sort_by != "item_number" and sort_by not in SORT_COLUMNS and sort_by not in SORT_RELATIONS:
        raise HTTPException(status_code=400, detail=f"Cannot sort by {sort_by}")

    query = select(Asset)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(*(col.ilike(pattern) for col in SEARCH_COLUMNS)))
    if status:
        try:
            query = query.where(Asset.status == canonical_status(status))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    if category:
        query = query.where(Asset.category_id == category)
    if manufacturer:
        query = query.where(Asset.manufacturer_id == manufacturer)
    if location:
        query = query.where(Asset.location_id == location)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    skip = (page - 1) * limit
    descending = sort_order == "desc"

    if sort_by == "item_number":
        # Numeric-aware ordering has to happen after fetching
        result = await db.execute(query.options(*ASSET_LOAD_OPTIONS))
        assets = sorted(result.scalars().all(), key=lambda a: natural_key(a.item_number), reverse=descending)
        assets = assets[skip:skip + limit]
    else:
        if sort_by in SORT_RELATIONS:
            model, fk = SORT_RELATIONS[sort_by]
            query = query.outerjoin(model, fk == model.id)
            column = model.name
        else:
            column = SORT_COLUMNS[sort_by]
        ordering = column.desc() if descending else column.asc()
        result = await db.execute(
            query.options(*ASSET_LOAD_OPTIONS).order_by(ordering, Asset.id).offset(skip).limit(limit)
        )
        assets = result.scalars().all()

    return {
        "data": [asset_response(a) for a in assets],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit),
        },
    }


@router.get("/next-item-number")
async def get_next_item_number(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return {"next_item_number": await allocate_item_number(db)}


@router.post("/bulk", status_code=201)
async def bulk_create_assets(
    request: Request,
    payload: BulkAssetCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create one asset per serial number with sequential item numbers and shared fields."""
    shared = payload.shared_fields.model_dump(
        exclude_unset=True, exclude={"item_number", "serial_number", "ips", "device_password"}
    )
    shared = {k: v for k, v in shared.items() if v is not None}
    if "condition" in shared:
        shared["condition"] = shared["condition"].value
    shared.setdefault("status", DEFAULT_STATUS)
    device_password = encrypt_value(payload.shared_fields.device_password)

    existing = set((await db.execute(select(Asset.item_number))).scalars().all())
    number = int(next_item_number(existing))
    created: List[Asset] = []
    errors = []

    for index, raw_serial in enumerate(payload.serial_numbers):
        serial = raw_serial.strip()
        if not serial:
            continue
        if len(serial) > 100:
            errors.append({"serial_number": serial, "message": "Serial number is too long"})
            continue
        while str(number) in existing:
            number += 1
        item_number = str(number)
        existing.add(item_number)

        fields = dict(shared)
        if index < len(payload.assigned_to_list) and payload.assigned_to_list[index].strip():
            fields["assigned_to"] = payload.assigned_to_list[index].strip()
        asset = Asset(item_number=item_number, serial_number=serial, device_password=device_password, **fields)
        db.add(asset)
        created.append(asset)

    if not created and not errors:
        raise HTTPException(status_code=400, detail="At least one serial number is required")

    await db.flush()
    source_ip = get_client_ip(request)
    for asset in created:
        await log_audit(
            db, "CREATE",
            user_id=current_user.id, username=current_user.username,
            resource_type="asset", resource_id=str(asset.id),
            details={"item_number": asset.item_number, "serial_number": asset.serial_number, "bulk": True},
            source_ip=source_ip, commit=False,
        )
    await _commit_asset(db)
    logger.info(f"Bulk created {len(created)} assets by {current_user.username}")

    return {
        "created": len(created),
        "failed": len(errors),
        "item_numbers": [a.item_number for a in created],
        "errors": errors,
    }


@router.get("/{asset_id}")
async def get_asset(
    asset_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    asset = await _get_asset_or_404(db, asset_id)
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.resource_type == "asset", AuditLog.resource_id == str(asset_id))
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(HISTORY_PREVIEW)
    )
    data = asset_response(asset).model_dump()
    data["audit_logs"] = [AuditLogResponse.model_validate(log) for log in result.scalars().all()]
    return data


@router.post("/", response_model=AssetResponse, status_code=201)
async def create_asset(
    request: Request,
    payload: AssetCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if await get_asset_by_item_number(db, payload.item_number):
        raise HTTPException(status_code=400, detail="Item number already exists")
    try:
        await check_ip_conflicts(db, [e.ip for e in payload.ips])
    except IPConflictError as e:
        raise HTTPException(status_code=400, detail=str(e))

    data = payload.model_dump(exclude={"ips", "device_password"})
    data["status"] = data["status"] or DEFAULT_STATUS
    data["condition"] = payload.condition.value
    asset = Asset(**data, device_password=encrypt_value(payload.device_password))
    replace_ips(asset, payload.ips)
    db.add(asset)
    await db.flush()

    await log_audit(
        db, "CREATE",
        user_id=current_user.id, username=current_user.username,
        resource_type="asset", resource_id=str(asset.id),
        details=payload.model_dump(mode="json", exclude={"device_password"}),
        source_ip=get_client_ip(request), commit=False,
    )
    await _commit_asset(db)
    return asset_response(await load_asset(db, asset.id))


@router.put("/{asset_id}", response_model=AssetResponse)
async def update_asset(
    request: Request,
    asset_id: int,
    payload: AssetUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    asset = await _get_asset_or_404(db, asset_id)
    update_data = payload.model_dump(exclude_unset=True, exclude={"ips"})

    for required in ("item_number", "status", "condition"):
        if required in update_data and update_data[required] is None:
            del update_data[required]
    if "condition" in update_data:
        update_data["condition"] = update_data["condition"].value
    if "item_number" in update_data and update_data["item_number"] != asset.item_number:
        if await get_asset_by_item_number(db, update_data["item_number"]):
            raise HTTPException(status_code=400, detail="Item number already exists")
    if "device_password" in update_data:
        plaintext = update_data["device_password"]
        if plaintext and plaintext == decrypt_value(asset.device_password):
            del update_data["device_password"]
        else:
            update_data["device_password"] = encrypt_value(plaintext) or None

    changes = _diff(asset, update_data)
    for key, value in update_data.items():
        setattr(asset, key, value)

    if payload.ips is not None:
        try:
            await check_ip_conflicts(db, [e.ip for e in payload.ips], asset_id=asset.id)
        except IPConflictError as e:
            raise HTTPException(status_code=400, detail=str(e))
        before = sorted(ip.ip for ip in asset.ips)
        replace_ips(asset, payload.ips)
        after = sorted(e.ip for e in payload.ips)
        if before != after:
            changes["ips"] = {"from": before, "to": after}

    await log_audit(
        db, "UPDATE",
        user_id=current_user.id, username=current_user.username,
        resource_type="asset", resource_id=str(asset.id),
        details=changes,
        source_ip=get_client_ip(request), commit=False,
    )
    await _commit_asset(db)
    return asset_response(await load_asset(db, asset.id))


@router.delete("/{asset_id}")
async def delete_asset(
    request: Request,
    asset_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    asset = await _get_asset_or_404(db, asset_id)
    item_number = asset.item_number

    await db.execute(delete(StocktakeRecord).where(StocktakeRecord.asset_id == asset_id))
    await db.delete(asset)
    await log_audit(
        db, "DELETE",
        user_id=current_user.id, username=current_user.username,
        resource_type="asset", resource_id=str(asset_id),
        details={"item_number": item_number},
        source_ip=get_client_ip(request), commit=False,
    )
    await db.commit()
    return {"success": True, "message": "Asset deleted"}


@router.get("/{asset_id}/history", response_model=List[AuditLogResponse])
async def get_asset_history(
    asset_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.resource_type == "asset", AuditLog.resource_id == str(asset_id))
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
    )
    return result.scalars().all()


@router.post("/{asset_id}/credentials")
async def reveal_credentials(
    request: Request,
    asset_id: int,
    payload: CredentialsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the stored device login after re-checking the caller's password."""
    asset = await _get_asset_or_404(db, asset_id)
    source_ip = get_client_ip(request)

    if not verify_password(payload.password, current_user.password_hash):
        await log_audit(
            db, "credentials_view_denied",
            user_id=current_user.id, username=current_user.username,
            resource_type="asset", resource_id=str(asset_id),
            source_ip=source_ip, success=False,
        )
        raise HTTPException(status_code=403, detail="Password is incorrect")

    await log_audit(
        db, "credentials_viewed",
        user_id=current_user.id, username=current_user.username,
        resource_type="asset", resource_id=str(asset_id),
        source_ip=source_ip,
    )
    return {
        "device_username": asset.device_username,
        "device_password": decrypt_value(asset.device_password),
    }
