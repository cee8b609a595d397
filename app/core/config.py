from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Clinic Online Booking API"
    # Comma-separated origins for CORS (e.g. https://online.clinic.mn). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    API_PUBLIC_URL: str = ""  # e.g. https://api.clinic.mn - base for gateway callback links

    # QPay merchant API
    QPAY_ENV: str = "sandbox"  # sandbox|live
    QPAY_BASE_URL_SANDBOX: str = "https://merchant-sandbox.qpay.mn"
    QPAY_BASE_URL_LIVE: str = "https://merchant.qpay.mn"
    QPAY_CLIENT_ID: str = ""
    QPAY_CLIENT_SECRET: str = ""
    QPAY_INVOICE_CODE: str = ""
    QPAY_RECEIVER_CODE: str = "terminal"
    QPAY_CALLBACK_URL: str = ""  # default callback for generic (non-booking) invoices
    QPAY_TIMEOUT: int = 25
    QPAY_TOKEN_TTL_SECONDS: int = 50 * 60  # used when the auth response has no expires_in

    @field_validator("QPAY_ENV", mode="after")
    @classmethod
    def normalize_qpay_env(cls, v: str) -> str:
        return (v or "sandbox").strip().lower()

    # Online booking deposit
    ONLINE_DEPOSIT_AMOUNT: int = 30000
    ONLINE_HOLD_MINUTES: int = 10
    ONLINE_PLACEHOLDER_REG_NO: str = "ONLINE-BOOKING"

    # Optional beat sweep; holds are otherwise expired lazily by polls/callbacks
    EXPIRY_SWEEP_ENABLED: bool = False
    ORPHAN_HOLD_GRACE_MINUTES: int = 15

    @property
    def qpay_base_url(self) -> str:
        if self.QPAY_ENV == "live":
            return self.QPAY_BASE_URL_LIVE.rstrip("/")
        return self.QPAY_BASE_URL_SANDBOX.rstrip("/")


settings = Settings()
