"""
ITMS Asset Tracking - Main Application Entry Point
"""
import logging
import os
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.extensions import limiter
from app.config import settings
from app.database import init_db
from app.routers import (
    auth, users, lookups, assets, network, stocktakes, reports, data, settings as settings_router,
)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Stamp every record with the id of the request being served ('-' outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    "Infrastructure - Network",
    "Infrastructure - Server",
    "Infrastructure - Switch",
    "Infrastructure - Wireless Access Points",
    "Infrastructure - UPS",
    "Mobile Device - Laptop",
    "Mobile Device - Phone",
    "Mobile Device - Tablet",
    "Desktop",
    "Monitor",
    "Printer / Photocopier",
    "Digital Signage / TV / Projector",
    "Accessories",
]

DEFAULT_SETTINGS = [
    ("organization_name", "", "Organisation name shown in the UI"),
    ("warranty_alert_days", "90", "Days before warranty expiry an asset counts as expiring soon"),
    ("eol_alert_days", "365", "Days before end of life an asset counts as upcoming"),
    ("review_overdue_months", "12", "Months after the last stocktake review an asset is overdue"),
]


async def create_default_data():
    """Create the first admin account, default settings and starter categories."""
    from app.database import AsyncSessionLocal
    from app.models.user import User, RoleEnum
    from app.models.lookup import Category
    from app.models.settings import SystemSetting
    from app.services.auth import hash_password
    from sqlalchemy import select, func
    import secrets

    async with AsyncSessionLocal() as db:
        admin_count = await db.execute(select(func.count(User.id)).where(User.role == RoleEnum.admin.value))
        if not admin_count.scalar():
            username = settings.DEFAULT_ADMIN_USERNAME.lower()
            temp_password = secrets.token_urlsafe(16)
            db.add(User(
                username=username,
                full_name="Administrator",
                password_hash=hash_password(temp_password),
                role=RoleEnum.admin.value,
                is_active=True,
                must_change_password=True,  # Force change on first login
            ))
            await db.commit()
            logger.warning("=" * 60)
            logger.warning("  DEFAULT ADMIN CREDENTIALS (first run only)")
            logger.warning("  Username: %s", username)
            logger.warning("  Password: %s", temp_password)
            logger.warning("  You MUST change this password on first login.")
            logger.warning("=" * 60)

        for key, value, desc in DEFAULT_SETTINGS:
            existing = await db.execute(select(SystemSetting).where(SystemSetting.key == key))
            if not existing.scalar_one_or_none():
                db.add(SystemSetting(key=key, value=value, description=desc))
        await db.commit()

        category_count = await db.execute(select(func.count(Category.id)))
        if not category_count.scalar():
            for name in DEFAULT_CATEGORIES:
                db.add(Category(name=name))
            await db.commit()
            logger.info(f"Default categories created ({len(DEFAULT_CATEGORIES)})")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    await create_default_data()
    yield
    logger.info(f"{settings.APP_NAME} shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS != "*" else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID middleware for log correlation
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


# CSRF Origin validation middleware
@app.middleware("http")
async def csrf_origin_check(request: Request, call_next):
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        origin = request.headers.get("origin")
        if origin:
            allowed = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS != "*" else []
            if allowed and origin not in allowed:
                return JSONResponse(
                    status_code=status.HTTP_403_FORBIDDEN,
                    content={"detail": "Origin not allowed"},
                )
    return await call_next(request)


# Security headers middleware
@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.HTTPS_ONLY:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(lookups.router)
app.include_router(settings_router.router)
app.include_router(assets.router)
app.include_router(network.router)
app.include_router(stocktakes.router)
app.include_router(reports.router)
app.include_router(data.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": settings.APP_VERSION}


# Serve frontend static files in production
if os.path.exists(settings.FRONTEND_BUILD_DIR):
    app.mount("/", StaticFiles(directory=settings.FRONTEND_BUILD_DIR, html=True), name="frontend")
