from typing import Iterable, List, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from app.models.asset import Asset, AssetIP
from app.services.item_numbers import next_item_number
import logging

logger = logging.getLogger(__name__)

ASSET_LOAD_OPTIONS = (
    selectinload(Asset.category),
    selectinload(Asset.manufacturer),
    selectinload(Asset.supplier),
    selectinload(Asset.location),
    selectinload(Asset.ips),
)


class IPConflictError(ValueError):
    def __init__(self, ip: str, owner_item_number: Optional[str] = None):
        self.ip = ip
        self.owner_item_number = owner_item_number
        if owner_item_number:
            message = f"IP address {ip} is already assigned to asset {owner_item_number}"
        else:
            message = f"IP address {ip} is listed more than once"
        super().__init__(message)


async def load_asset(db: AsyncSession, asset_id: int) -> Optional[Asset]:
    """Fetch an asset with lookups and IPs, overwriting any stale copy in the session."""
    result = await db.execute(
        select(Asset)
        .options(*ASSET_LOAD_OPTIONS)
        .where(Asset.id == asset_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_asset_by_item_number(db: AsyncSession, item_number: str) -> Optional[Asset]:
    result = await db.execute(select(Asset).where(Asset.item_number == item_number))
    return result.scalar_one_or_none()


async def allocate_item_number(db: AsyncSession) -> str:
    result = await db.execute(select(Asset.item_number))
    return next_item_number(result.scalars().all())


async def check_ip_conflicts(db: AsyncSession, ips: Sequence[str], asset_id: Optional[int] = None) -> None:
    """Raise IPConflictError if an address repeats or belongs to another asset."""
    seen = set()
    for ip in ips:
        if ip in seen:
            raise IPConflictError(ip)
        seen.add(ip)
    if not ips:
        return
    result = await db.execute(
        select(AssetIP).options(selectinload(AssetIP.asset)).where(AssetIP.ip.in_(list(ips)))
    )
    for assoc in result.scalars().all():
        if assoc.asset_id != asset_id:
            raise IPConflictError(assoc.ip, assoc.asset.item_number if assoc.asset else "unknown")


def replace_ips(asset: Asset, entries: Iterable) -> None:
    """Make ``asset.ips`` match ``entries`` (objects with ``ip`` and ``label``).

    Rows for addresses that stay are updated in place so the unique ip
    constraint never sees a delete and re-insert of the same address.
    """
    wanted = {e.ip: e.label for e in entries}
    kept: List[AssetIP] = []
    for existing in list(asset.ips):
        if existing.ip in wanted:
            existing.label = wanted.pop(existing.ip)
            kept.append(existing)
    for ip, label in wanted.items():
        kept.append(AssetIP(ip=ip, label=label))
    asset.ips = kept
