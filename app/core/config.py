from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Slot Escrow API"
    # Comma-separated origins for CORS (e.g. https://app.example.com,https://partners.example.com). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    # Shared secret of the identity provider that issues bearer tokens
    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Escrow hold
    ESCROW_WINDOW_MINUTES: int = 5
    SWEEP_INTERVAL_SECONDS: float = 30.0
    REFUND_QUEUE_INTERVAL_SECONDS: float = 120.0

    # Slot grid
    SLOT_TIMEZONE: str = "UTC"
    SLOT_HORIZON_DAYS: int = 7
    SLOT_OPEN_HOUR: int = 8
    SLOT_CLOSE_HOUR: int = 22
    SLOT_STEP_MINUTES: int = 30

    # Payment gateway (HTTP Signature / REST Payments)
    PAYMENT_HOST: str = "apitest.cybersource.com"
    PAYMENT_MERCHANT_ID: str = ""
    PAYMENT_KEY_ID: str = ""
    PAYMENT_SECRET_KEY_B64: str = ""
    PAYMENT_CURRENCY: str = "USD"
    PAYMENT_TIMEOUT_SECONDS: int = 25
    PAYMENT_SANDBOX: bool = False  # If True, skip real gateway calls and return mock success (for dev when gateway not ready)


settings = Settings()
