from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Busbooking API"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Refuse to start when the database is not at the expected migration head
    SCHEMA_CHECK: bool = True

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "booking@busbooking.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    FRONTEND_URL: str = "http://localhost:5173"

    # VNPay (HMAC-SHA512 signed redirect + IPN)
    VNP_TMN_CODE: str = ""
    VNP_HASH_SECRET: str = ""
    VNP_URL: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    VNP_RETURN_URL: str = "http://localhost:8000/api/v1/payments/vnpay/return"
    VNP_API_URL: str = "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction"
    VNP_EXPIRE_MINUTES: int = 15
    VNP_TIMEOUT: int = 25

    # Booking policy
    VOUCHERS_ENABLED: bool = True
    CANCELLATION_CUTOFF_HOURS: int = 2
    # Abandoned checkouts are only swept when this is set.
    PENDING_PAYMENT_TIMEOUT_MINUTES: int | None = None


settings = Settings()
