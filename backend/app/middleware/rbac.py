from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.services.auth import decode_token, get_user_by_id
from app.models.user import User, RoleEnum

# Missing headers are reported as 401 below rather than HTTPBearer's own error
bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the bearer access token to an active user."""
    if credentials is None:
        raise _unauthorized("Not authenticated")

    token_data = decode_token(credentials.credentials)
    if not token_data or not token_data.user_id:
        raise _unauthorized("Could not validate credentials")

    user = await get_user_by_id(db, token_data.user_id)
    if not user:
        raise _unauthorized("Could not validate credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    return user


def require_admin():
    """Dependency factory for the admin-only endpoints (users, settings, subnets, import/export)."""
    async def admin_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role != RoleEnum.admin.value:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Administrator access required",
            )
        return current_user
    return admin_checker
