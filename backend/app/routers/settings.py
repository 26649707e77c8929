from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
from app.database import get_db
from app.models.settings import SystemSetting
from app.models.user import User
from app.services.auth import log_audit
from app.middleware.rbac import get_current_user, require_admin
from app.routers.auth import get_client_ip
from pydantic import BaseModel

router = APIRouter(prefix="/api/settings", tags=["Settings"])


class SettingUpdate(BaseModel):
    value: str
    description: Optional[str] = None
    is_secret: Optional[bool] = None


def _serialize(setting: SystemSetting) -> dict:
    return {
        "key": setting.key,
        "value": "***" if setting.is_secret and setting.value else setting.value,
        "description": setting.description,
        "is_secret": bool(setting.is_secret),
    }


@router.get("/")
async def get_settings(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin()),
):
    result = await db.execute(select(SystemSetting).order_by(SystemSetting.key))
    return [_serialize(s) for s in result.scalars().all()]


@router.get("/{key}")
async def get_setting(
    key: str,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    result = await db.execute(select(SystemSetting).where(SystemSetting.key == key))
    setting = result.scalar_one_or_none()
    if not setting:
        raise HTTPException(status_code=404, detail="Setting not found")
    return _serialize(setting)


@router.put("/{key}")
async def update_setting(
    request: Request,
    key: str,
    payload: SettingUpdate,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(SystemSetting).where(SystemSetting.key == key))
    setting = result.scalar_one_or_none()

    if setting:
        setting.value = payload.value
        setting.updated_by = current_user.id
    else:
        setting = SystemSetting(key=key, value=payload.value, updated_by=current_user.id)
        db.add(setting)
    if payload.description is not None:
        setting.description = payload.description
    if payload.is_secret is not None:
        setting.is_secret = payload.is_secret

    await db.commit()
    await log_audit(
        db, "setting_updated",
        user_id=current_user.id, username=current_user.username,
        resource_type="setting", resource_id=key,
        details="value hidden" if setting.is_secret else f"{key}={payload.value}",
        source_ip=get_client_ip(request),
    )
    return {"key": key, "updated": True}
