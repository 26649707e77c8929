"""
Lookup tables referenced by assets: categories, manufacturers, suppliers, locations.

All four share the same endpoints, registered per kind by ``_register``.
Any user may create a lookup (the asset form creates them inline); only
admins may rename or delete one, and a lookup still referenced by assets
cannot be deleted.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func
from app.database import get_db
from app.models.asset import Asset
from app.models.lookup import Category, Manufacturer, Supplier, Location
from app.models.user import User
from app.services.auth import log_audit
from app.middleware.rbac import get_current_user, require_admin
from app.routers.auth import get_client_ip
from app.schemas.lookup import (
    CategoryCreate, CategoryUpdate,
    ManufacturerCreate, ManufacturerUpdate,
    SupplierCreate, SupplierUpdate,
    LocationCreate, LocationUpdate,
)

router = APIRouter(prefix="/api/lookups", tags=["Lookups"])

# path -> (model, asset FK column, create schema, update schema, extra fields, label)
LOOKUPS = {
    "categories": (Category, Asset.category_id, CategoryCreate, CategoryUpdate, ("description",), "Category"),
    "manufacturers": (Manufacturer, Asset.manufacturer_id, ManufacturerCreate, ManufacturerUpdate,
                      ("website", "support_url"), "Manufacturer"),
    "suppliers": (Supplier, Asset.supplier_id, SupplierCreate, SupplierUpdate, ("website", "account_num"), "Supplier"),
    "locations": (Location, Asset.location_id, LocationCreate, LocationUpdate,
                  ("building", "floor", "room", "address"), "Location"),
}


def _serialize(obj, fields, asset_count=None) -> dict:
    data = {"id": obj.id, "name": obj.name}
    for field in fields:
        data[field] = getattr(obj, field)
    if asset_count is not None:
        data["asset_count"] = asset_count
    return data


async def _count_assets(db: AsyncSession, fk_column, lookup_id: int) -> int:
    result = await db.execute(select(func.count(Asset.id)).where(fk_column == lookup_id))
    return result.scalar() or 0


def _register(path, model, fk_column, create_schema, update_schema, fields, label):
    resource_type = path[:-1] if not path.endswith("ies") else path[:-3] + "y"

    async def get_or_404(db: AsyncSession, lookup_id: int):
        result = await db.execute(select(model).where(model.id == lookup_id))
        obj = result.scalar_one_or_none()
        if not obj:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return obj

    @router.get(f"/{path}", name=f"list_{path}")
    async def list_lookups(
        db: AsyncSession = Depends(get_db),
        _: User = Depends(get_current_user),
    ):
        result = await db.execute(
            select(model, func.count(Asset.id))
            .outerjoin(Asset, fk_column == model.id)
            .group_by(model.id)
            .order_by(model.name)
        )
        return [_serialize(obj, fields, count) for obj, count in result.all()]

    @router.post(f"/{path}", status_code=201, name=f"create_{path}")
    async def create_lookup(
        request: Request,
        payload: create_schema,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ):
        existing = await db.execute(select(model).where(func.lower(model.name) == payload.name.lower()))
        if existing.scalar_one_or_none():
            raise HTTPException(status_code=400, detail=f"{label} already exists")

        obj = model(**payload.model_dump())
        db.add(obj)
        await db.commit()
        await log_audit(
            db, f"{resource_type}_created",
            user_id=current_user.id, username=current_user.username,
            resource_type=resource_type, resource_id=str(obj.id),
            details=f"Created {resource_type}: {obj.name}",
            source_ip=get_client_ip(request),
        )
        return _serialize(obj, fields, 0)

    @router.put(f"/{path}/{{lookup_id}}", name=f"update_{path}")
    async def update_lookup(
        request: Request,
        lookup_id: int,
        payload: update_schema,
        current_user: User = Depends(require_admin()),
        db: AsyncSession = Depends(get_db),
    ):
        obj = await get_or_404(db, lookup_id)
        update_data = payload.model_dump(exclude_unset=True)
        if update_data.get("name") is None:
            update_data.pop("name", None)
        for key, value in update_data.items():
            setattr(obj, key, value)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise HTTPException(status_code=400, detail=f"{label} already exists")

        await log_audit(
            db, f"{resource_type}_updated",
            user_id=current_user.id, username=current_user.username,
            resource_type=resource_type, resource_id=str(lookup_id),
            details=f"Updated fields: {list(update_data.keys())}",
            source_ip=get_client_ip(request),
        )
        return _serialize(obj, fields, await _count_assets(db, fk_column, lookup_id))

    @router.delete(f"/{path}/{{lookup_id}}", name=f"delete_{path}")
    async def delete_lookup(
        request: Request,
        lookup_id: int,
        current_user: User = Depends(require_admin()),
        db: AsyncSession = Depends(get_db),
    ):
        obj = await get_or_404(db, lookup_id)
        in_use = await _count_assets(db, fk_column, lookup_id)
        if in_use:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot delete {resource_type}: it is used by {in_use} asset(s)",
            )
        name = obj.name
        await db.delete(obj)
        await db.commit()

        await log_audit(
            db, f"{resource_type}_deleted",
            user_id=current_user.id, username=current_user.username,
            resource_type=resource_type, resource_id=str(lookup_id),
            details=f"Deleted {resource_type}: {name}",
            source_ip=get_client_ip(request),
        )
        return {"success": True}


for _path, _entry in LOOKUPS.items():
    _register(_path, *_entry)
