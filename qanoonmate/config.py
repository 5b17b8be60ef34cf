from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Database
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "qanoonmate"
    DB_USER: str = "postgres"
    DB_PASS: str = "postgres"
    DATABASE_URL: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy async URL; overrides the DB_* fields when set",
    )

    # Database Connection Pool
    DB_POOL_SIZE: int = Field(default=20, description="Base size of the connection pool")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Extra connections allowed above the pool size")
    DB_POOL_TIMEOUT: int = Field(default=30, description="Seconds to wait for a free pooled connection")
    DB_POOL_RECYCLE: int = Field(default=3600, description="Seconds before a pooled connection is recycled")

    # Application
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000
    ENV: str = "dev"
    DEBUG: bool = False
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_FORMAT: str = Field(default="text", description="'text' or 'json' (structured)")
    ENABLE_SCHEDULER: bool = Field(default=True, description="Run periodic jobs inside the API process")

    # CORS
    ALLOWED_ORIGINS: str = "*"  # comma separated, or "*"

    # Auth
    JWT_SECRET: str = Field(default="change-me", description="HS256 signing secret for access tokens")
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = Field(default=60 * 24, description="Access token lifetime in minutes")
    ADMIN_EMAIL: Optional[str] = Field(default=None, description="Admin account seeded by init_db")
    ADMIN_PASSWORD: Optional[str] = Field(default=None, description="Password for the seeded admin account")

    # Uploads
    UPLOAD_DIR: str = Field(default="uploads", description="Directory where uploaded files are stored")
    PRIVATE_UPLOAD_DIR: str = Field(
        default="private_uploads",
        description="Directory for verification documents, served only through authorized routes",
    )
    MAX_UPLOAD_MB: int = Field(default=5, description="Maximum size of a single uploaded file in MB")

    # Payments
    PAYMENT_GATEWAY_URL: str = Field(default="https://sandbox.gateway.local/checkout", description="Hosted checkout URL")
    PAYMENT_STATUS_URL: str = Field(default="", description="Gateway order status endpoint")
    PAYMENT_MERCHANT_ID: str = ""
    PAYMENT_WEBHOOK_SECRET: str = Field(default="", description="HMAC secret for gateway callbacks")
    PAYMENT_EXPIRY_MINUTES: int = Field(default=30, description="Minutes before a pending payment expires")
    PAYMENT_CURRENCY: str = "PKR"
    PAYMENT_MAX_RETRIES: int = 3
    FRONTEND_URL: str = "http://localhost:3000"

    # AI assistant
    ASSISTANT_API_URL: str = Field(default="", description="Inference endpoint of the legal assistant model")
    ASSISTANT_API_KEY: str = ""
    ASSISTANT_TIMEOUT: float = Field(default=60.0, description="Seconds to wait for an assistant reply")
    ASSISTANT_STREAM_CHUNK: int = Field(default=40, description="Characters per streamed chunk")

    # Consultations
    MAX_FUTURE_CONSULTATION_DAYS: int = Field(default=60, description="How far ahead a consultation can be booked")
    DEFAULT_CONSULTATION_DURATION: int = Field(default=60, description="Duration in minutes when none is given")
    NO_SHOW_GRACE_MINUTES: int = Field(default=30, description="Minutes after the slot end before a consultation is flagged overdue")

    # Scheduler intervals (minutes)
    PAYMENT_EXPIRY_INTERVAL: int = 5
    IDEMPOTENCY_CLEANUP_INTERVAL: int = 60
    OVERDUE_CONSULTATIONS_INTERVAL: int = 15

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASS}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_MB * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings"""
    return Settings()


settings = get_settings()
