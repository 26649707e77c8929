from pydantic_settings import BaseSettings
import secrets


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "ITMS Asset Tracking"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = secrets.token_urlsafe(64)
    ALLOWED_ORIGINS: str = "http://localhost:5173"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://itms:itms@db:5432/itms"

    # JWT
    JWT_SECRET_KEY: str = secrets.token_urlsafe(64)
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Security
    BCRYPT_ROUNDS: int = 12
    MAX_LOGIN_ATTEMPTS: int = 5
    ACCOUNT_LOCK_MINUTES: int = 30
    PASSWORD_MIN_LENGTH: int = 8
    RATE_LIMIT_LOGIN: str = "10/minute"
    RATE_LIMIT_ENABLED: bool = True

    # Bootstrap
    DEFAULT_ADMIN_USERNAME: str = "admin"

    # Import / export
    IMPORT_MAX_ROWS: int = 500

    # HTTPS
    HTTPS_ONLY: bool = True

    # Frontend build served in production
    FRONTEND_BUILD_DIR: str = "/app/frontend/dist"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
