"""
Café Aroma - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: No secrets are hardcoded. Use .env for local development.
"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        SECRET_KEY: JWT signing key for session tokens
        TOKEN_ISSUER: `iss` claim stamped on and required from every token
        DATABASE_URL: SQLAlchemy URL for users and user_security tables
        DB_TIMEOUT_SECONDS: Storage client timeout (lock waits, pool checkout)
        MAX_LOGIN_ATTEMPTS: Failed attempts before a temporary lock
        LOCK_DURATION_MINUTES: Length of the automatic temporary lock
        MIN_LOCK_REASON_LENGTH: Minimum reason length for admin locks
        ENVIRONMENT: "development" or "production" (affects cookie flags)
        ALLOWED_ORIGINS: CORS allowed origins for the storefront frontend
        GOOGLE_CLIENT_ID: OAuth client id expected as `aud` of Google ID tokens
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Security
    SECRET_KEY: str = ""  # Must be set via environment
    JWT_ALGORITHM: str = "HS256"
    TOKEN_ISSUER: str = "cafe-aroma.com"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Account lockout policy
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCK_DURATION_MINUTES: int = 15
    MIN_LOCK_REASON_LENGTH: int = 10

    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./aroma.db"
    DB_TIMEOUT_SECONDS: int = 5

    # Runtime
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:5173"]

    # Federated login
    GOOGLE_CLIENT_ID: str = ""

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()
