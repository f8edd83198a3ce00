from pydantic_settings import BaseSettings
from urllib.parse import quote_plus
from typing import Dict, Optional


class Settings(BaseSettings):
    env: str = "local"
    log_level: str = "INFO"

    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "coursepay"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"

    # overrides the postgres_* settings when set (e.g. sqlite+aiosqlite:///./local.db)
    database_url_override: Optional[str] = None

    secret_key: str = "change-me"
    algorithm: str = "HS256"

    base_url: str = "http://localhost:8000"

    # payment provider selection
    payment_provider: str = "fake"
    currency_providers: Dict[str, str] = {}

    gateway_timeout_seconds: float = 10.0
    gateway_max_retries: int = 3
    gateway_retry_backoff_seconds: float = 0.5
    version_conflict_retries: int = 3

    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""

    clickpay_api_url: str = "https://secure.clickpay.com.sa"
    clickpay_profile_id: str = ""
    clickpay_server_key: str = ""

    fake_gateway_secret: str = "fake-secret"
    fake_gateway_checkout_url: str = "https://pay.example.test/checkout"

    # delivery of paid content
    secure_link_ttl_days: int = 7
    secure_link_max_uses: int = 5
    presigned_url_expires_seconds: int = 900

    # reconciliation sweep
    payment_expiry_minutes: int = 15
    reconciliation_enabled: bool = False
    reconciliation_interval_seconds: int = 300

    idempotency_retention_days: int = 30

    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = "course-attachments"

    @property
    def database_url(self):
        """Sync URL, used by alembic."""
        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+psycopg2://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def async_database_url(self):
        if self.database_url_override:
            return self.database_url_override
        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"


settings = Settings()
