from app.models.user import User, AuditLog
from app.models.lookup import Category, Manufacturer, Supplier, Location
from app.models.asset import Asset, AssetIP
from app.models.subnet import Subnet
from app.models.stocktake import Stocktake, StocktakeRecord
from app.models.settings import SystemSetting

__all__ = [
    "User", "AuditLog",
    "Category", "Manufacturer", "Supplier", "Location",
    "Asset", "AssetIP",
    "Subnet",
    "Stocktake", "StocktakeRecord",
    "SystemSetting",
]
