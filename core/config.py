# ==================================================================================
# core/config.py: Billing backend configuration (Stripe + SendGrid + Pydantic v2)
# ==================================================================================
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import EmailStr, ValidationError
import sys


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str | None = None

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    # Shared JWT secret of the auth provider; service-role tokens are signed with it.
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    CRON_SECRET: str | None = None

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: str | None = None
    MAIL_FROM: EmailStr | None = None

    # ------------------------
    # FRONTEND CONFIG
    # ------------------------
    FRONTEND_URL: str = "http://localhost:5173"
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    # ------------------------
    # STRIPE / BILLING CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_API_VERSION: str = "2023-10-16"

    FREE_PLAN_NAME: str = "free"
    DEFAULT_CURRENCY: str = "EUR"
    SEED_DEFAULT_PLANS: bool = True

    # ------------------------
    # SCHEDULED JOBS
    # ------------------------
    REMINDER_ERROR_LIMIT: int = 10
    ENABLE_BILLING_SCHEDULER: bool = False
    # Daily run time (UTC) for reminders + expiry sweep
    BILLING_SCHEDULER_HOUR: int = 6
    BILLING_SCHEDULER_MINUTE: int = 0
    DEFAULT_TRIAL_DAYS: int = 14

    @property
    def BILLING_URL(self) -> str:
        """Page the reminder emails link to."""
        return f"{self.FRONTEND_URL}/billing"

    @property
    def DASHBOARD_URL(self) -> str:
        return f"{self.FRONTEND_URL}/dashboard"

    @property
    def STRIPE_CONFIGURED(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production'
    DEBUG: bool = True

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
except ValidationError as e:
    print("❌ Environment configuration error: missing or invalid settings!")
    print(e)
    sys.exit(1)
