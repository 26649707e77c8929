"""
Bulk data exchange: import template, full export and spreadsheet import.
"""
from datetime import datetime
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.config import settings
from app.crypto import encrypt_value, decrypt_value
from app.database import get_db
from app.models.asset import Asset, AssetCondition, DEFAULT_STATUS
from app.models.lookup import Category, Manufacturer, Supplier, Location
from app.models.user import User
from app.services import asset_io
from app.services.assets import ASSET_LOAD_OPTIONS, IPConflictError, check_ip_conflicts, replace_ips
from app.services.auth import log_audit
from app.services.item_numbers import natural_key
from app.middleware.rbac import require_admin
from app.routers.auth import get_client_ip
from app.schemas.asset import AssetIPInput

router = APIRouter(prefix="/api/data", tags=["Data"])
logger = logging.getLogger(__name__)

LOOKUP_MODELS = {
    "manufacturer": Manufacturer,
    "category": Category,
    "supplier": Supplier,
    "location": Location,
}


def _attachment(body, media_type: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([body]),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


class LookupResolver:
    """Case-insensitive name -> id cache for one lookup table, creating missing names."""

    def __init__(self, db: AsyncSession, model):
        self.db = db
        self.model = model
        self.ids: Dict[str, int] = {}
        self.created = 0

    async def load(self):
        result = await self.db.execute(select(self.model.id, self.model.name))
        self.ids = {name.lower(): id_ for id_, name in result.all()}
        return self

    async def resolve(self, name: Optional[str]) -> Optional[int]:
        if not name:
            return None
        key = name.lower()
        if key not in self.ids:
            obj = self.model(name=name)
            self.db.add(obj)
            await self.db.flush()
            self.ids[key] = obj.id
            self.created += 1
        return self.ids[key]


@router.get("/template")
async def download_template(
    format: str = Query("xlsx", pattern="^(xlsx|csv)$"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin()),
):
    if format == "csv":
        return _attachment(asset_io.render_csv(asset_io.HEADERS, []), "text/csv", "asset-import-template.csv")

    names = {}
    for kind, model in LOOKUP_MODELS.items():
        result = await db.execute(select(model.name).order_by(model.name))
        names[kind] = list(result.scalars().all())
    return _attachment(
        asset_io.render_template_xlsx(names), asset_io.XLSX_MEDIA_TYPE, "asset-import-template.xlsx"
    )


@router.get("/export")
async def export_assets(
    request: Request,
    format: str = Query("xlsx", pattern="^(xlsx|csv)$"),
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Asset).options(*ASSET_LOAD_OPTIONS))
    assets = sorted(result.scalars().all(), key=lambda a: natural_key(a.item_number))
    rows = [asset_io.export_row(a, decrypt_value(a.device_password)) for a in assets]

    await log_audit(
        db, "assets_exported",
        user_id=current_user.id, username=current_user.username,
        resource_type="asset", details=f"Exported {len(rows)} assets as {format}",
        source_ip=get_client_ip(request),
    )

    stamp = datetime.now().strftime("%Y-%m-%d")
    if format == "csv":
        return _attachment(asset_io.render_csv(asset_io.HEADERS, rows), "text/csv", f"assets-export-{stamp}.csv")
    return _attachment(asset_io.render_xlsx(rows), asset_io.XLSX_MEDIA_TYPE, f"assets-export-{stamp}.xlsx")


@router.post("/import")
async def import_assets(
    request: Request,
    file: UploadFile = File(...),
    skip_duplicates: bool = False,
    update_existing: bool = False,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Create or update assets from a CSV/XLSX sheet.

    Existing item numbers are updated when ``update_existing`` is set,
    skipped when ``skip_duplicates`` is set, and reported as errors
    otherwise. Row numbers in errors count the header as row 1.
    """
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded")
    try:
        records = asset_io.read_records(content, file.filename, settings.IMPORT_MAX_ROWS)
    except asset_io.ImportFileError as e:
        raise HTTPException(status_code=400, detail=str(e))

    resolvers = {kind: await LookupResolver(db, model).load() for kind, model in LOOKUP_MODELS.items()}
    results = {"created": 0, "updated": 0, "skipped": 0, "errors": []}

    for index, record in enumerate(records):
        row_num = index + 2
        try:
            row = asset_io.clean_record(record)
        except asset_io.RowError as e:
            results["errors"].append({"row": row_num, "message": str(e)})
            continue

        existing = (await db.execute(
            select(Asset).options(selectinload(Asset.ips)).where(Asset.item_number == row["item_number"])
        )).scalar_one_or_none()

        if existing and not update_existing:
            if skip_duplicates:
                results["skipped"] += 1
            else:
                results["errors"].append({
                    "row": row_num,
                    "message": f'Asset with Item Number "{row["item_number"]}" already exists',
                })
            continue

        try:
            await check_ip_conflicts(db, row["ips"], asset_id=existing.id if existing else None)
        except IPConflictError as e:
            results["errors"].append({"row": row_num, "message": str(e)})
            continue

        values = dict(row["fields"])
        values["device_password"] = encrypt_value(values["device_password"])
        for kind, name in row["lookups"].items():
            values[f"{kind}_id"] = await resolvers[kind].resolve(name)

        if existing:
            values["status"] = row["status"] or existing.status
            values["condition"] = row["condition"] or existing.condition
            for key, value in values.items():
                setattr(existing, key, value)
            if row["ips"]:
                replace_ips(existing, [AssetIPInput(ip=ip) for ip in row["ips"]])
            results["updated"] += 1
        else:
            values["status"] = row["status"] or DEFAULT_STATUS
            values["condition"] = row["condition"] or AssetCondition.GOOD.value
            asset = Asset(item_number=row["item_number"], **values)
            replace_ips(asset, [AssetIPInput(ip=ip) for ip in row["ips"]])
            db.add(asset)
            results["created"] += 1
        await db.flush()

    await log_audit(
        db, "assets_imported",
        user_id=current_user.id, username=current_user.username,
        resource_type="asset",
        details={
            "file": file.filename,
            "created": results["created"],
            "updated": results["updated"],
            "skipped": results["skipped"],
            "errors": len(results["errors"]),
            "lookups_created": {k: r.created for k, r in resolvers.items() if r.created},
        },
        source_ip=get_client_ip(request), commit=False,
    )
    await db.commit()
    logger.info(
        f"Import by {current_user.username}: {results['created']} created, "
        f"{results['updated']} updated, {results['skipped']} skipped, {len(results['errors'])} errors"
    )
    return results
