from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Furnishing Back-office API"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS (e.g. https://admin.example.co.uk). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Booking policy
    BOOKING_AUTO_CONFIRM_TYPES: str = "ONLINE,SHOWROOM"  # comma-separated booking types confirmed on creation
    BOOKING_CANCELLATION_WINDOW_HOURS: int = 24
    BUSINESS_TIMEZONE: str = "Europe/London"
    SLOT_DAY_START: str = "09:00"
    SLOT_DAY_END: str = "17:00"  # exclusive
    SLOT_INTERVAL_MINUTES: int = 60
    ONLINE_MEETING_BASE_URL: str = ""  # e.g. https://meet.example.co.uk/consultation

    # Payments
    SUPPORTED_CURRENCIES: str = "GBP,USD,EUR,INR"
    PAYMENT_MAX_RETRIES: int = 3

    # Payment gateway (Stripe-compatible REST API)
    GATEWAY_API_BASE: str = "https://api.stripe.com"
    GATEWAY_SECRET_KEY: str = ""
    GATEWAY_TIMEOUT_SECONDS: int = 20
    GATEWAY_SANDBOX: bool = False  # If True, skip real gateway calls and return mock intents (for dev when gateway not ready)
    GATEWAY_WEBHOOK_VERIFY: bool = False  # can only be switched off when ENV=local
    GATEWAY_WEBHOOK_SECRET: str = ""
    GATEWAY_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Event outbox relay. If EVENT_SINK_URL is empty, relayed events are only logged.
    EVENT_SINK_URL: str = ""
    EVENT_SINK_TIMEOUT_SECONDS: int = 10
    OUTBOX_MAX_ATTEMPTS: int = 10

    @property
    def webhook_verification_required(self) -> bool:
        return self.GATEWAY_WEBHOOK_VERIFY or self.ENV != "local"


settings = Settings()
