"""Application configuration"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Invoice Trust API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Security
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 1440  # 24 hours
    ENCRYPTION_KEY: str  # Fernet key for integration credentials

    # Invoice sealing
    # WHY: The sealing secret never leaves the server. Rotated secrets stay
    # in VERIFICATION_SECRET_LEGACY so invoices sealed before a rotation
    # still verify.
    VERIFICATION_SECRET: Optional[str] = None
    VERIFICATION_SECRET_LEGACY: list[str] = []

    # Database
    DATABASE_URL: str

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # URLs
    PUBLIC_APP_URL: str = "http://localhost:3000"

    # Cron trigger (Bearer token for /api/cron/reminders)
    CRON_SECRET: Optional[str] = None

    # Email (Resend)
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "billing@invoicetrust.local"
    EMAIL_FROM_NAME: str = "Invoice Trust"

    # WhatsApp (Meta Cloud API)
    WHATSAPP_API_BASE_URL: str = "https://graph.facebook.com/v17.0"

    # SMS (Twilio)
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_API_BASE_URL: str = "https://api.twilio.com/2010-04-01"

    # Delivery
    DELIVERY_TIMEOUT_SECONDS: float = 10.0

    # Reminder dispatch
    REMINDER_DISPATCH_INTERVAL_SECONDS: int = 3600
    REMINDER_BATCH_SIZE: int = 50
    REMINDER_CLAIM_LEASE_SECONDS: int = 900
    REMINDER_SCHEDULER_ENABLED: bool = True

    # Quotas
    QUOTA_WINDOW_DAYS: int = 30

    # Rate limits (requests per minute)
    VERIFY_RATE_LIMIT_PER_MINUTE: int = 30
    ISSUE_RATE_LIMIT_PER_MINUTE: int = 60

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

    @property
    def sms_enabled(self) -> bool:
        """
        Check if Twilio is configured.

        WHY: Both the account SID and auth token are needed for the REST API.
        """
        return all([self.TWILIO_ACCOUNT_SID, self.TWILIO_AUTH_TOKEN])


settings = Settings()
