from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


class Config:
    def __init__(self) -> None:
        self.APP_ENV = (os.getenv("APP_ENV", "development") or "development").strip().lower()
        self.IS_PRODUCTION = self.APP_ENV in {"prod", "production"}
        self.APP_VERSION = os.getenv("APP_VERSION", "0.1.0")
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = int(os.getenv("PORT", "5002"))

        database_url = (os.getenv("DATABASE_URL", "sqlite:///./recruitment.db") or "").strip()

        # Supabase Postgres requires SSL.
        if (
            (database_url.startswith("postgresql://") or database_url.startswith("postgres://") or database_url.startswith("postgresql+"))
            and "sslmode=" not in database_url
            and "supabase.co" in database_url
        ):
            database_url += ("&" if "?" in database_url else "?") + "sslmode=require"

        self.DATABASE_URL = database_url

        self.GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
        self.SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", "720"))
        self.APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Kolkata")

        self.ALLOWED_ORIGINS = [
            s.strip() for s in (os.getenv("ALLOWED_ORIGINS", "*") or "*").split(",") if s.strip()
        ]

        self.RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "300 per minute")
        self.RATE_LIMIT_GLOBAL = os.getenv("RATE_LIMIT_GLOBAL", "2000 per minute")
        self.RATE_LIMIT_LOGIN = os.getenv("RATE_LIMIT_LOGIN", "30 per minute")

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        self.REDIS_URL = os.getenv("REDIS_URL", "")
        self.INTERNAL_CRON_TOKEN = os.getenv("INTERNAL_CRON_TOKEN", "")

        # Tests/dev only: bypass Google token verification.
        self.AUTH_ALLOW_TEST_TOKENS = _env_bool("AUTH_ALLOW_TEST_TOKENS", False)

    def validate(self) -> None:
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required")
        if self.IS_PRODUCTION and self.AUTH_ALLOW_TEST_TOKENS:
            raise RuntimeError("AUTH_ALLOW_TEST_TOKENS must be disabled in production")
        if not self.GOOGLE_CLIENT_ID:
            raise RuntimeError("GOOGLE_CLIENT_ID is required")
        if self.SESSION_TTL_MINUTES <= 0:
            raise RuntimeError("SESSION_TTL_MINUTES must be positive")
