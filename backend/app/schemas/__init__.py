from app.schemas.auth import (
    Token, TokenData, LoginRequest, PasswordChangeRequest, PasswordVerifyRequest, RefreshTokenRequest,
)
from app.schemas.user import UserCreate, UserUpdate, UserResponse, PasswordResetRequest, AuditLogResponse
from app.schemas.lookup import LookupRef
from app.schemas.asset import (
    AssetCreate, AssetUpdate, AssetResponse, AssetSummary, AssetIPInput, BulkAssetCreate, CredentialsRequest,
)
from app.schemas.network import SubnetCreate, SubnetUpdate, SubnetResponse, SubnetIPRow, IPLinkRequest
from app.schemas.stocktake import (
    StocktakeCreate, StocktakeUpdate, StocktakeResponse, StocktakeDetailResponse,
    StocktakeRecordResponse, VerifyRequest, QuickVerifyRequest,
)

__all__ = [
    "Token", "TokenData", "LoginRequest", "PasswordChangeRequest", "PasswordVerifyRequest", "RefreshTokenRequest",
    "UserCreate", "UserUpdate", "UserResponse", "PasswordResetRequest", "AuditLogResponse",
    "LookupRef",
    "AssetCreate", "AssetUpdate", "AssetResponse", "AssetSummary", "AssetIPInput", "BulkAssetCreate",
    "CredentialsRequest",
    "SubnetCreate", "SubnetUpdate", "SubnetResponse", "SubnetIPRow", "IPLinkRequest",
    "StocktakeCreate", "StocktakeUpdate", "StocktakeResponse", "StocktakeDetailResponse",
    "StocktakeRecordResponse", "VerifyRequest", "QuickVerifyRequest",
]
