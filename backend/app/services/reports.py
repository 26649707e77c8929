"""
Derived-status and aggregation logic for the asset reports.

The functions take already-fetched Asset rows (or any objects with the same
attributes) plus ``today`` and return JSON-ready dicts, so they can be tested
without a database. Routers handle filtering, fetching and response format.
"""
import math
from collections import OrderedDict
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.models.asset import AssetCondition

AGE_GROUPS = ["< 1 year", "1-3 years", "3-5 years", "5-7 years", "7+ years", "Unknown"]
CONDITIONS = [c.value for c in AssetCondition]


# ── shared helpers ────────────────────────────────────────────────────────────

def ref(obj) -> Optional[Dict[str, Any]]:
    if obj is None:
        return None
    return {"id": obj.id, "name": obj.name}


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def paginate(items: Sequence[Any], skip: int, limit: int) -> Tuple[List[Any], Dict[str, int]]:
    total = len(items)
    page = list(items[skip:skip + limit])
    return page, {
        "skip": skip,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


def generated_at() -> str:
    return datetime.now(timezone.utc).isoformat()


def flatten_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace nested {id, name} references with their names for CSV output."""
    flat = []
    for row in rows:
        flat.append({
            key: (value["name"] if isinstance(value, dict) and "name" in value else value)
            for key, value in row.items()
        })
    return flat


def subtract_months(day: date, months: int) -> date:
    """Calendar month subtraction; the day is clamped to the target month's length."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    last_day = (next_month - date(year, month, 1)).days
    return date(year, month, min(day.day, last_day))


# ── warranty ──────────────────────────────────────────────────────────────────

def warranty_status(expiry: Optional[date], today: date, threshold_days: int) -> Tuple[Optional[int], str]:
    if expiry is None:
        return None, "no_warranty"
    days = (expiry - today).days
    if days < 0:
        return days, "expired"
    if days <= threshold_days:
        return days, "expiring_soon"
    return days, "ok"


def warranty_report(assets: Sequence[Any], today: date, threshold_days: int, skip: int, limit: int) -> Dict[str, Any]:
    rows = []
    for asset in assets:
        days, status = warranty_status(asset.warranty_expiration, today, threshold_days)
        rows.append({
            "id": asset.id,
            "item_number": asset.item_number,
            "model": asset.model,
            "serial_number": asset.serial_number,
            "status": asset.status,
            "manufacturer": ref(asset.manufacturer),
            "category": ref(asset.category),
            "location": ref(asset.location),
            "warranty_expiration": _iso(asset.warranty_expiration),
            "days_until_expiry": days,
            "warranty_status": status,
        })

    by_month: Dict[str, int] = {}
    for asset in assets:
        if asset.warranty_expiration:
            month = asset.warranty_expiration.strftime("%Y-%m")
            by_month[month] = by_month.get(month, 0) + 1

    summary = {"no_warranty": 0, "expired": 0, "expiring_soon": 0, "ok": 0}
    for row in rows:
        summary[row["warranty_status"]] += 1

    page, pagination = paginate(rows, skip, limit)
    return {
        "summary": summary,
        "by_month": [{"month": m, "count": c} for m, c in sorted(by_month.items())],
        "assets": page,
        "pagination": pagination,
        "meta": {"threshold_days": threshold_days, "generated_at": generated_at()},
    }


# ── condition ─────────────────────────────────────────────────────────────────

def condition_report(assets: Sequence[Any], skip: int, limit: int) -> Dict[str, Any]:
    counts = OrderedDict((c, 0) for c in CONDITIONS)
    by_category: Dict[str, Dict[str, int]] = {}

    for asset in assets:
        if asset.condition not in counts:
            continue
        counts[asset.condition] += 1
        name = asset.category.name if asset.category else "Uncategorized"
        per_category = by_category.setdefault(name, OrderedDict((c, 0) for c in CONDITIONS))
        per_category[asset.condition] += 1

    by_category_rows = [
        {"category": name, **per_category, "total": sum(per_category.values())}
        for name, per_category in by_category.items()
    ]
    by_category_rows.sort(key=lambda r: r["total"], reverse=True)

    rows = [
        {
            "id": asset.id,
            "item_number": asset.item_number,
            "model": asset.model,
            "status": asset.status,
            "condition": asset.condition,
            "category": ref(asset.category),
            "location": ref(asset.location),
        }
        for asset in assets
    ]
    page, pagination = paginate(rows, skip, limit)
    return {
        "summary": dict(counts),
        "by_condition": sorted(
            ({"condition": c, "count": n} for c, n in counts.items()),
            key=lambda r: r["count"],
            reverse=True,
        ),
        "by_category": by_category_rows,
        "assets": page,
        "pagination": pagination,
        "meta": {"generated_at": generated_at()},
    }


# ── value ─────────────────────────────────────────────────────────────────────

def _group_values(assets: Sequence[Any], key_fn, with_average: bool) -> List[Dict[str, Any]]:
    groups: Dict[str, Dict[str, Any]] = {}
    for asset in assets:
        name = key_fn(asset)
        group = groups.setdefault(name, {"total": Decimal("0"), "count": 0})
        group["count"] += 1
        if asset.purchase_price:
            group["total"] += Decimal(str(asset.purchase_price))
    rows = []
    for name, group in groups.items():
        row = {"name": name, "count": group["count"], "total_value": _money(group["total"])}
        if with_average:
            row["avg_value"] = _money(group["total"] / group["count"])
        rows.append(row)
    rows.sort(key=lambda r: r["total_value"], reverse=True)
    return rows


def value_report(assets: Sequence[Any], skip: int, limit: int) -> Dict[str, Any]:
    priced = [Decimal(str(a.purchase_price)) for a in assets if a.purchase_price is not None and a.purchase_price > 0]
    total = sum(priced, Decimal("0"))

    summary = {
        "total_value": _money(total),
        "avg_value": _money(total / len(priced)) if priced else 0.0,
        "asset_count": len(assets),
        "assets_with_price": len(priced),
        "assets_without_price": len(assets) - len(priced),
        "max_value": _money(max(priced)) if priced else 0.0,
        "min_value": _money(min(priced)) if priced else 0.0,
    }

    by_category = [
        {"category": r.pop("name"), **r}
        for r in _group_values(assets, lambda a: a.category.name if a.category else "Uncategorized", True)
    ]
    by_location = [
        {"location": r.pop("name"), **r}
        for r in _group_values(assets, lambda a: a.location.name if a.location else "Unassigned", False)
    ]
    by_manufacturer = [
        {"manufacturer": r.pop("name"), **r}
        for r in _group_values(assets, lambda a: a.manufacturer.name if a.manufacturer else "Unknown", True)
    ]

    rows = [
        {
            "id": asset.id,
            "item_number": asset.item_number,
            "model": asset.model,
            "status": asset.status,
            "purchase_price": _money(asset.purchase_price) if asset.purchase_price is not None else None,
            "acquired_date": _iso(asset.acquired_date),
            "category": ref(asset.category),
            "location": ref(asset.location),
            "manufacturer": ref(asset.manufacturer),
        }
        for asset in assets
    ]
    page, pagination = paginate(rows, skip, limit)
    return {
        "summary": summary,
        "by_category": by_category,
        "by_location": by_location,
        "by_manufacturer": by_manufacturer,
        "assets": page,
        "pagination": pagination,
        "meta": {"generated_at": generated_at()},
    }


# ── lifecycle ─────────────────────────────────────────────────────────────────

def age_in_years(acquired: Optional[date], today: date) -> Optional[float]:
    if acquired is None:
        return None
    return (today - acquired).days / 365.25


def age_group(age_years: Optional[float]) -> str:
    if age_years is None:
        return "Unknown"
    if age_years < 1:
        return "< 1 year"
    if age_years < 3:
        return "1-3 years"
    if age_years < 5:
        return "3-5 years"
    if age_years < 7:
        return "5-7 years"
    return "7+ years"


def eol_status(end_of_life: Optional[date], today: date, threshold_days: int) -> str:
    if end_of_life is None:
        return "no_eol_date"
    if end_of_life < today:
        return "passed"
    if (end_of_life - today).days <= threshold_days:
        return "upcoming"
    return "ok"


def lifecycle_report(assets: Sequence[Any], today: date, eol_days: int, skip: int, limit: int) -> Dict[str, Any]:
    rows = []
    group_counts = OrderedDict((g, 0) for g in AGE_GROUPS)
    ages = []
    for asset in assets:
        age = age_in_years(asset.acquired_date, today)
        if age is not None:
            ages.append(age)
        group = age_group(age)
        group_counts[group] += 1
        rows.append({
            "id": asset.id,
            "item_number": asset.item_number,
            "model": asset.model,
            "status": asset.status,
            "category": ref(asset.category),
            "location": ref(asset.location),
            "acquired_date": _iso(asset.acquired_date),
            "end_of_life_date": _iso(asset.end_of_life_date),
            "age_years": round(age, 1) if age is not None else None,
            "age_group": group,
            "days_until_eol": (asset.end_of_life_date - today).days if asset.end_of_life_date else None,
            "eol_status": eol_status(asset.end_of_life_date, today, eol_days),
        })

    summary = {
        "total": len(assets),
        "avg_age_years": round(sum(ages) / len(ages), 1) if ages else 0,
        "no_acquired_date": sum(1 for a in assets if a.acquired_date is None),
        "eol_passed": sum(1 for r in rows if r["eol_status"] == "passed"),
        "eol_upcoming": sum(1 for r in rows if r["eol_status"] == "upcoming"),
    }
    page, pagination = paginate(rows, skip, limit)
    return {
        "summary": summary,
        "by_age_group": [{"age_group": g, "count": n} for g, n in group_counts.items() if n > 0],
        "assets": page,
        "pagination": pagination,
        "meta": {"eol_threshold_days": eol_days, "generated_at": generated_at()},
    }


# ── stocktake review ──────────────────────────────────────────────────────────

def review_status(last_review: Optional[date], overdue_before: date) -> str:
    if last_review is None:
        return "never"
    if last_review < overdue_before:
        return "overdue"
    return "reviewed"


def stocktake_review_report(
    assets: Sequence[Any],
    today: date,
    overdue_months: int,
    skip: int,
    limit: int,
    status: Optional[str] = None,
    year: Optional[int] = None,
) -> Dict[str, Any]:
    overdue_before = subtract_months(today, overdue_months)

    rows = []
    year_counts: Dict[int, int] = {}
    for asset in assets:
        last = asset.last_review_date
        if last:
            year_counts[last.year] = year_counts.get(last.year, 0) + 1
        rows.append({
            "id": asset.id,
            "item_number": asset.item_number,
            "model": asset.model,
            "serial_number": asset.serial_number,
            "category": ref(asset.category),
            "location": ref(asset.location),
            "manufacturer": ref(asset.manufacturer),
            "status": asset.status,
            "last_review_date": _iso(last),
            "review_year": last.year if last else None,
            "review_status": review_status(last, overdue_before),
            "days_since_review": (today - last).days if last else None,
        })

    summary = {
        "total_assets": len(rows),
        "reviewed_this_year": sum(1 for r in rows if r["review_year"] == today.year),
        "overdue_count": sum(1 for r in rows if r["review_status"] == "overdue"),
        "never_reviewed_count": sum(1 for r in rows if r["review_status"] == "never"),
    }

    listed = rows
    if status:
        listed = [r for r in listed if r["review_status"] == status]
    if year:
        listed = [r for r in listed if r["review_year"] == year]

    page, pagination = paginate(listed, skip, limit)
    return {
        "summary": summary,
        "by_year": [{"year": y, "count": n} for y, n in sorted(year_counts.items(), reverse=True)],
        "assets": page,
        "pagination": pagination,
        "meta": {
            "overdue_threshold_months": overdue_months,
            "overdue_before": overdue_before.isoformat(),
            "generated_at": generated_at(),
        },
    }
