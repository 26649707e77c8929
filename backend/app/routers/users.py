from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
from app.database import get_db
from app.models.user import User, AuditLog
from app.services.auth import hash_password, log_audit
from app.middleware.rbac import require_admin
from app.routers.auth import get_client_ip
from app.schemas.user import (
    UserCreate, UserUpdate, UserResponse, PasswordResetRequest, AuditLogResponse,
)

router = APIRouter(prefix="/api/users", tags=["User Management"])


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/", response_model=List[UserResponse], dependencies=[Depends(require_admin())])
async def list_users(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).order_by(User.username))
    return result.scalars().all()


@router.post("/", response_model=UserResponse, status_code=201)
async def create_user(
    request: Request,
    payload: UserCreate,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    existing = await db.execute(select(User).where(User.username == payload.username))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Username already exists")

    new_user = User(
        username=payload.username,
        full_name=payload.full_name,
        password_hash=hash_password(payload.password),
        role=payload.role.value,
        is_active=payload.is_active,
        must_change_password=payload.must_change_password,
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    await log_audit(
        db, "user_created",
        user_id=current_user.id, username=current_user.username,
        resource_type="user", resource_id=str(new_user.id),
        details=f"Created user: {new_user.username} ({new_user.role})",
        source_ip=get_client_ip(request),
    )
    return new_user


@router.get("/audit/logs", response_model=List[AuditLogResponse], dependencies=[Depends(require_admin())])
async def get_audit_logs(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    resource_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    query = select(AuditLog)
    if resource_type:
        query = query.where(AuditLog.resource_type == resource_type)
    result = await db.execute(
        query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return result.scalars().all()


@router.get("/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin())])
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    return await _get_user_or_404(db, user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: int,
    payload: UserUpdate,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(db, user_id)

    update_data = payload.model_dump(exclude_unset=True)
    if user.id == current_user.id:
        if update_data.get("is_active") is False:
            raise HTTPException(status_code=400, detail="Cannot deactivate your own account")
        if "role" in update_data and update_data["role"] != "admin":
            raise HTTPException(status_code=400, detail="Cannot remove your own admin role")

    for key, value in update_data.items():
        if value is None and key in ("full_name", "role", "is_active", "must_change_password"):
            continue
        setattr(user, key, value.value if key == "role" else value)
    await db.commit()
    await db.refresh(user)

    await log_audit(
        db, "user_updated",
        user_id=current_user.id, username=current_user.username,
        resource_type="user", resource_id=str(user_id),
        details=f"Updated fields: {list(update_data.keys())}",
        source_ip=get_client_ip(request),
    )
    return user


@router.post("/{user_id}/reset-password")
async def reset_user_password(
    request: Request,
    user_id: int,
    payload: PasswordResetRequest,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(db, user_id)
    user.password_hash = hash_password(payload.new_password)
    user.must_change_password = True
    user.failed_attempts = 0
    user.account_locked = False
    user.locked_until = None
    await db.commit()

    await log_audit(
        db, "password_reset",
        user_id=current_user.id, username=current_user.username,
        resource_type="user", resource_id=str(user_id),
        source_ip=get_client_ip(request),
    )
    return {"message": "Password reset. The user must change it on next login."}


@router.post("/{user_id}/unlock")
async def unlock_account(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(db, user_id)
    user.account_locked = False
    user.failed_attempts = 0
    user.locked_until = None
    await db.commit()

    await log_audit(
        db, "account_unlocked",
        user_id=current_user.id, username=current_user.username,
        resource_type="user", resource_id=str(user_id),
        source_ip=get_client_ip(request),
    )
    return {"message": "Account unlocked"}


@router.delete("/{user_id}")
async def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")

    user = await _get_user_or_404(db, user_id)
    username = user.username
    await db.delete(user)
    await db.commit()

    await log_audit(
        db, "user_deleted",
        user_id=current_user.id, username=current_user.username,
        resource_type="user", resource_id=str(user_id),
        details=f"Deleted user: {username}",
        source_ip=get_client_ip(request),
    )
    return {"message": "User deleted"}
