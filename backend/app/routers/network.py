from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, or_
from sqlalchemy.orm import selectinload
from typing import List
import logging
from app.database import get_db
from app.models.asset import Asset, AssetIP
from app.models.subnet import Subnet
from app.models.user import User
from app.services.auth import log_audit
from app.services.cidr import (
    INVALID_CIDR_MESSAGE, CidrNetwork, InvalidCidrError,
    contains_host, expand_cidr, join_subnet_addresses, parse_cidr, require_cidr,
)
from app.middleware.rbac import get_current_user, require_admin
from app.routers.auth import get_client_ip
from app.schemas.asset import AssetSummary, normalize_ipv4
from app.schemas.network import (
    SubnetCreate, SubnetUpdate, SubnetResponse, SubnetIPRow, SubnetIPsResponse, IPLinkRequest,
)

router = APIRouter(prefix="/api/network", tags=["Network"])
logger = logging.getLogger(__name__)

# Bound on bind parameters per IN clause when matching an expansion
IN_CLAUSE_CHUNK = 500


def subnet_response(subnet: Subnet) -> SubnetResponse:
    data = SubnetResponse.model_validate(subnet)
    parsed = parse_cidr(subnet.cidr)
    data.usable_host_count = parsed.usable_host_count if parsed.ok else None
    return data


def _validated_cidr(cidr: str) -> CidrNetwork:
    try:
        return require_cidr(cidr)
    except InvalidCidrError:
        raise HTTPException(status_code=400, detail=INVALID_CIDR_MESSAGE)


async def _get_subnet_or_404(db: AsyncSession, subnet_id: int) -> Subnet:
    result = await db.execute(select(Subnet).where(Subnet.id == subnet_id))
    subnet = result.scalar_one_or_none()
    if not subnet:
        raise HTTPException(status_code=404, detail="Subnet not found")
    return subnet


async def _ensure_unique(db: AsyncSession, name: str, cidr: str, exclude_id: int = None) -> None:
    query = select(Subnet).where(or_(Subnet.name == name, Subnet.cidr == cidr))
    if exclude_id is not None:
        query = query.where(Subnet.id != exclude_id)
    if (await db.execute(query)).scalars().first():
        raise HTTPException(status_code=400, detail="Subnet name or CIDR already exists")


async def _commit_subnet(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="Subnet name or CIDR already exists")


async def _associations_in(db: AsyncSession, addresses: List[str]) -> List[AssetIP]:
    found = []
    for start in range(0, len(addresses), IN_CLAUSE_CHUNK):
        chunk = addresses[start:start + IN_CLAUSE_CHUNK]
        result = await db.execute(
            select(AssetIP).options(selectinload(AssetIP.asset)).where(AssetIP.ip.in_(chunk))
        )
        found.extend(result.scalars().all())
    return found


def _host_address(network: CidrNetwork, ip: str) -> str:
    try:
        address = normalize_ipv4(ip)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid IPv4 address: {ip}")
    if not contains_host(network, address):
        raise HTTPException(status_code=400, detail=f"{address} is not a usable host address of {network}")
    return address


# ── Subnets CRUD ──────────────────────────────────────────────────────────────

@router.get("/subnets", response_model=List[SubnetResponse])
async def list_subnets(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    result = await db.execute(select(Subnet).order_by(Subnet.name))
    return [subnet_response(s) for s in result.scalars().all()]


@router.post("/subnets", response_model=SubnetResponse, status_code=201)
async def create_subnet(
    request: Request,
    payload: SubnetCreate,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    cidr = str(_validated_cidr(payload.cidr))
    await _ensure_unique(db, payload.name, cidr)

    subnet = Subnet(name=payload.name, cidr=cidr)
    db.add(subnet)
    await _commit_subnet(db)
    await db.refresh(subnet)

    await log_audit(
        db, "subnet_created",
        user_id=current_user.id, username=current_user.username,
        resource_type="subnet", resource_id=str(subnet.id),
        details=f"Created subnet: {subnet.name} ({subnet.cidr})",
        source_ip=get_client_ip(request),
    )
    return subnet_response(subnet)


@router.put("/subnets/{subnet_id}", response_model=SubnetResponse)
async def update_subnet(
    request: Request,
    subnet_id: int,
    payload: SubnetUpdate,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    subnet = await _get_subnet_or_404(db, subnet_id)
    cidr = str(_validated_cidr(payload.cidr)) if payload.cidr else subnet.cidr
    name = payload.name or subnet.name
    await _ensure_unique(db, name, cidr, exclude_id=subnet.id)

    subnet.name = name
    subnet.cidr = cidr
    await _commit_subnet(db)
    await db.refresh(subnet)

    await log_audit(
        db, "subnet_updated",
        user_id=current_user.id, username=current_user.username,
        resource_type="subnet", resource_id=str(subnet.id),
        details=f"Subnet is now {subnet.name} ({subnet.cidr})",
        source_ip=get_client_ip(request),
    )
    return subnet_response(subnet)


@router.delete("/subnets/{subnet_id}")
async def delete_subnet(
    request: Request,
    subnet_id: int,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    subnet = await _get_subnet_or_404(db, subnet_id)
    label = f"{subnet.name} ({subnet.cidr})"
    await db.delete(subnet)
    await db.commit()

    await log_audit(
        db, "subnet_deleted",
        user_id=current_user.id, username=current_user.username,
        resource_type="subnet", resource_id=str(subnet_id),
        details=f"Deleted subnet: {label}",
        source_ip=get_client_ip(request),
    )
    return {"success": True}


# ── Subnet address table ──────────────────────────────────────────────────────

@router.get("/subnets/{subnet_id}/ips", response_model=SubnetIPsResponse)
async def get_subnet_ips(
    subnet_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    """Every usable host of the subnet with the asset linked to it, if any."""
    subnet = await _get_subnet_or_404(db, subnet_id)
    network = parse_cidr(subnet.cidr)
    if not network.ok:
        logger.error(f"Stored subnet {subnet.id} has invalid CIDR {subnet.cidr!r}: {network.reason}")
        raise HTTPException(status_code=400, detail="Invalid CIDR or no host IPs available")

    addresses = expand_cidr(network)
    joined = join_subnet_addresses(addresses, await _associations_in(db, addresses))
    return SubnetIPsResponse(
        subnet=subnet_response(subnet),
        ips=[
            SubnetIPRow(
                ip=row.ip,
                asset=AssetSummary.model_validate(row.asset) if row.asset else None,
                label=row.label,
            )
            for row in joined
        ],
    )


@router.post("/subnets/{subnet_id}/ips/{ip}/link", response_model=SubnetIPRow)
async def link_ip(
    request: Request,
    subnet_id: int,
    ip: str,
    payload: IPLinkRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Assign an address of the subnet to an asset, moving it if another asset holds it."""
    subnet = await _get_subnet_or_404(db, subnet_id)
    address = _host_address(_validated_cidr(subnet.cidr), ip)

    asset = (await db.execute(select(Asset).where(Asset.id == payload.asset_id))).scalar_one_or_none()
    if not asset:
        raise HTTPException(status_code=404, detail="Asset not found")

    result = await db.execute(select(AssetIP).where(AssetIP.ip == address))
    assoc = result.scalar_one_or_none()
    previous_asset_id = assoc.asset_id if assoc else None
    if assoc:
        assoc.asset_id = asset.id
        assoc.label = payload.label
    else:
        assoc = AssetIP(asset_id=asset.id, ip=address, label=payload.label)
        db.add(assoc)

    await log_audit(
        db, "ip_linked",
        user_id=current_user.id, username=current_user.username,
        resource_type="asset", resource_id=str(asset.id),
        details={"ip": address, "subnet": subnet.cidr, "previous_asset_id": previous_asset_id},
        source_ip=get_client_ip(request), commit=False,
    )
    await db.commit()
    return SubnetIPRow(ip=address, asset=AssetSummary.model_validate(asset), label=payload.label)


@router.delete("/subnets/{subnet_id}/ips/{ip}/link")
async def unlink_ip(
    request: Request,
    subnet_id: int,
    ip: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    subnet = await _get_subnet_or_404(db, subnet_id)
    address = _host_address(_validated_cidr(subnet.cidr), ip)

    result = await db.execute(select(AssetIP).where(AssetIP.ip == address))
    assoc = result.scalar_one_or_none()
    if not assoc:
        raise HTTPException(status_code=404, detail="IP address is not linked to an asset")

    asset_id = assoc.asset_id
    await db.delete(assoc)
    await log_audit(
        db, "ip_unlinked",
        user_id=current_user.id, username=current_user.username,
        resource_type="asset", resource_id=str(asset_id),
        details={"ip": address, "subnet": subnet.cidr},
        source_ip=get_client_ip(request), commit=False,
    )
    await db.commit()
    return {"success": True}
