"""
Configuration for the tuning-file fulfillment service
All settings are read once from the environment at import time
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fulfillment.db")

    # Object storage (Cloudflare R2, S3 compatible API)
    R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
    R2_ENDPOINT = os.getenv("R2_ENDPOINT") or (
        f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com" if R2_ACCOUNT_ID else None
    )
    R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
    R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
    R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "tuning-files")
    # Public read base URL; when set, downloads skip signing
    R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL")
    PRESIGNED_URL_EXPIRES = int(os.getenv("PRESIGNED_URL_EXPIRES", "900"))
    MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "200"))
    # Empty list means every content type is accepted
    ALLOWED_CONTENT_TYPES = _env_list("ALLOWED_CONTENT_TYPES")

    # Telegram bots, one credential per role
    TELEGRAM_SUPER_ADMIN_BOT_TOKEN = os.getenv("TELEGRAM_SUPER_ADMIN_BOT_TOKEN")
    TELEGRAM_SUPER_ADMIN_CHAT_ID = os.getenv("TELEGRAM_SUPER_ADMIN_CHAT_ID")
    TELEGRAM_SUPER_ADMIN_ENABLED = _env_bool("TELEGRAM_SUPER_ADMIN_ENABLED", "true")

    TELEGRAM_FILE_ADMIN_BOT_TOKEN = os.getenv("TELEGRAM_FILE_ADMIN_BOT_TOKEN")
    TELEGRAM_FILE_ADMIN_CHAT_ID = os.getenv("TELEGRAM_FILE_ADMIN_CHAT_ID")
    TELEGRAM_FILE_ADMIN_ENABLED = _env_bool("TELEGRAM_FILE_ADMIN_ENABLED", "true")

    TELEGRAM_CUSTOMER_BOT_TOKEN = os.getenv("TELEGRAM_CUSTOMER_BOT_TOKEN")
    TELEGRAM_CUSTOMER_ENABLED = _env_bool("TELEGRAM_CUSTOMER_ENABLED", "true")

    # Email (Brevo)
    BREVO_API_KEY = os.getenv("BREVO_API_KEY")
    FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@example.com")
    FROM_NAME = os.getenv("FROM_NAME", "ECU Tuning Files")
    SITE_URL = os.getenv("SITE_URL", "").rstrip("/")

    # Notifications
    NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10"))

    # Yalidine carrier webhooks
    YALIDINE_WEBHOOK_SECRET = os.getenv("YALIDINE_WEBHOOK_SECRET") or os.getenv(
        "YALIDINE_WEBHOOK_SECRET_KEY"
    )
    WEBHOOK_QUEUE_MAX_SIZE = int(os.getenv("WEBHOOK_QUEUE_MAX_SIZE", "1000"))
    WEBHOOK_QUEUE_WORKERS = int(os.getenv("WEBHOOK_QUEUE_WORKERS", "2"))
    WEBHOOK_QUEUE_DRAIN_TIMEOUT = float(os.getenv("WEBHOOK_QUEUE_DRAIN_TIMEOUT", "10"))

    # HTTP server
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))

    @classmethod
    def max_upload_bytes(cls) -> int:
        return cls.MAX_UPLOAD_MB * 1024 * 1024
