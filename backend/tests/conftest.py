import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-device-passwords")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("HTTPS_ONLY", "false")
os.environ.setdefault("FRONTEND_BUILD_DIR", "/nonexistent-frontend-build")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base, get_db
from app.main import app
from app.models.user import User, RoleEnum
from app.services.auth import create_access_token, hash_password, token_claims

PASSWORD = "Sup3r-secret"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _create_user(session_factory, username: str, role: str, **kwargs) -> User:
    async with session_factory() as session:
        user = User(
            username=username,
            full_name=username.title(),
            password_hash=hash_password(kwargs.pop("password", PASSWORD)),
            role=role,
            **kwargs,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest.fixture
async def admin_user(session_factory):
    return await _create_user(session_factory, "admin", RoleEnum.admin.value)


@pytest.fixture
async def regular_user(session_factory):
    return await _create_user(session_factory, "staff", RoleEnum.user.value)


@pytest.fixture
def make_user(session_factory):
    async def factory(username: str, role: str = RoleEnum.user.value, **kwargs) -> User:
        return await _create_user(session_factory, username, role, **kwargs)
    return factory


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(token_claims(user))}"}


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def user_headers(regular_user):
    return auth_headers(regular_user)


async def create_asset(client, headers, **fields):
    payload = {"item_number": "100", **fields}
    response = await client.post("/api/assets/", headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def create_lookup(client, headers, kind, name):
    response = await client.post(f"/api/lookups/{kind}", headers=headers, json={"name": name})
    assert response.status_code == 201, response.text
    return response.json()
