"""
Reports API: warranty, condition, value, lifecycle and stocktake-review.

Every report covers assets that are not decommissioned, optionally narrowed
by category and location, and returns JSON by default or the per-asset rows
as CSV with ``format=csv``.
"""
import csv
import io
from datetime import date, datetime

from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.models.asset import Asset, DECOMMISSIONED_PREFIX
from app.middleware.rbac import get_current_user
from app.models.user import User
from app.services import reports
from app.services.item_numbers import natural_key

router = APIRouter(prefix="/api/reports", tags=["Reports"])

FORMAT_PATTERN = "^(json|csv)$"


def _csv_response(rows: list[dict], filename: str) -> StreamingResponse:
    output = io.StringIO()
    if not rows:
        output.write("No data\n")
    else:
        writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _report_assets(
    db: AsyncSession,
    category: Optional[int] = None,
    location: Optional[int] = None,
    manufacturer: Optional[int] = None,
) -> list[Asset]:
    query = (
        select(Asset)
        .options(
            selectinload(Asset.category),
            selectinload(Asset.location),
            selectinload(Asset.manufacturer),
        )
        .where(~Asset.status.startswith(DECOMMISSIONED_PREFIX))
    )
    if category:
        query = query.where(Asset.category_id == category)
    if location:
        query = query.where(Asset.location_id == location)
    if manufacturer:
        query = query.where(Asset.manufacturer_id == manufacturer)
    result = await db.execute(query)
    return sorted(result.scalars().all(), key=lambda a: natural_key(a.item_number))


def _respond(report: dict, fmt: str, name: str):
    if fmt == "csv":
        ts = datetime.now().strftime("%Y%m%d_%H%M")
        return _csv_response(reports.flatten_rows(report["assets"]), f"{name}_report_{ts}.csv")
    return report


def _window(fmt: str, skip: int, limit: int, size: int):
    """CSV exports every row; JSON returns one page."""
    if fmt == "csv":
        return 0, max(size, 1)
    return skip, limit


@router.get("/warranty")
async def warranty_report(
    days: int = Query(90, ge=0),
    category: Optional[int] = None,
    location: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    format: str = Query("json", pattern=FORMAT_PATTERN),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    assets = await _report_assets(db, category, location)
    skip, limit = _window(format, skip, limit, len(assets))
    report = reports.warranty_report(assets, date.today(), days, skip, limit)
    return _respond(report, format, "warranty")


@router.get("/condition")
async def condition_report(
    category: Optional[int] = None,
    location: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    format: str = Query("json", pattern=FORMAT_PATTERN),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    assets = await _report_assets(db, category, location)
    skip, limit = _window(format, skip, limit, len(assets))
    return _respond(reports.condition_report(assets, skip, limit), format, "condition")


@router.get("/value")
async def value_report(
    category: Optional[int] = None,
    location: Optional[int] = None,
    manufacturer: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    format: str = Query("json", pattern=FORMAT_PATTERN),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    assets = await _report_assets(db, category, location, manufacturer)
    skip, limit = _window(format, skip, limit, len(assets))
    return _respond(reports.value_report(assets, skip, limit), format, "value")


@router.get("/lifecycle")
async def lifecycle_report(
    eol_days: int = Query(365, ge=0),
    category: Optional[int] = None,
    location: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    format: str = Query("json", pattern=FORMAT_PATTERN),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    assets = await _report_assets(db, category, location)
    skip, limit = _window(format, skip, limit, len(assets))
    report = reports.lifecycle_report(assets, date.today(), eol_days, skip, limit)
    return _respond(report, format, "lifecycle")


@router.get("/stocktake-review")
async def stocktake_review_report(
    overdue_months: int = Query(12, ge=1, le=120),
    status: Optional[str] = Query(None, pattern="^(reviewed|overdue|never)$"),
    year: Optional[int] = Query(None, ge=1900, le=2200),
    category: Optional[int] = None,
    location: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    format: str = Query("json", pattern=FORMAT_PATTERN),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    assets = await _report_assets(db, category, location)
    skip, limit = _window(format, skip, limit, len(assets))
    report = reports.stocktake_review_report(
        assets, date.today(), overdue_months, skip, limit, status=status, year=year,
    )
    return _respond(report, format, "stocktake_review")
