from __future__ import annotations

import json
import os
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(name, default)


def _json_list(name: str, default: list[str]) -> list[str]:
    value = _env(name)
    if not value:
        return list(default)
    return list(json.loads(value))


@dataclass(frozen=True)
class Settings:
    postgres_dsn: str
    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_api_version: str
    base_package_price_id: str
    language_addon_price_id: str
    commitment_months: int
    checkout_max_attempts: int
    checkout_attempt_window_seconds: int
    retry_attempts: int
    retry_delay_seconds: float
    admin_email: str
    resend_api_key: str
    resend_api_base: str
    email_from: str
    email_timeout_seconds: float
    cors_allow_origins: list[str]
    log_level: str


def get_settings() -> Settings:
    return Settings(
        postgres_dsn=_env("POSTGRES_DSN", ""),
        stripe_secret_key=_env("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=_env("STRIPE_WEBHOOK_SECRET", ""),
        stripe_api_version=_env("STRIPE_API_VERSION", "2025-09-30.clover"),
        base_package_price_id=_env("STRIPE_BASE_PACKAGE_PRICE_ID", ""),
        language_addon_price_id=_env("STRIPE_LANGUAGE_ADDON_PRICE_ID", ""),
        commitment_months=int(_env("CHECKOUT_COMMITMENT_MONTHS", "12")),
        checkout_max_attempts=int(_env("CHECKOUT_MAX_ATTEMPTS", "5")),
        checkout_attempt_window_seconds=int(_env("CHECKOUT_ATTEMPT_WINDOW_SECONDS", "3600")),
        retry_attempts=int(_env("CHECKOUT_RETRY_ATTEMPTS", "2")),
        retry_delay_seconds=float(_env("CHECKOUT_RETRY_DELAY_SECONDS", "0.3")),
        admin_email=_env("ADMIN_EMAIL") or _env("NOTIFICATION_ADMIN_EMAIL", ""),
        resend_api_key=_env("RESEND_API_KEY", ""),
        resend_api_base=_env("RESEND_API_BASE", "https://api.resend.com"),
        email_from=_env("EMAIL_FROM", "noreply@example.com"),
        email_timeout_seconds=float(_env("EMAIL_TIMEOUT_SECONDS", "10")),
        cors_allow_origins=_json_list("CORS_ALLOW_ORIGINS", ["*"]),
        log_level=_env("LOG_LEVEL", "INFO"),
    )
