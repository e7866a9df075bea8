"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    MAX_UPLOAD_BYTES: int
    MAX_BULK_TRANSACTIONS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    CRON_SECRET: str
    WEBHOOK_SECRET: str
    APP_URL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'finance.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))  # 5 MB default
        self.MAX_BULK_TRANSACTIONS = int(os.getenv("MAX_BULK_TRANSACTIONS", "5000"))
        self.ALLOW_INSECURE_JWT = _flag("ALLOW_INSECURE_JWT", "false")
        self.ALLOW_DEV_CORS = _flag("ALLOW_DEV_CORS", "true")
        self.CRON_SECRET = os.getenv("CRON_SECRET", "")
        self.WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")
        self.APP_URL = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")

        # outgoing mail; an empty MAIL_HOST disables sending
        self.MAIL_HOST = os.getenv("MAIL_HOST", "")
        self.MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
        self.MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
        self.MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
        self.MAIL_FROM = os.getenv("MAIL_FROM", "Finance Tracker <no-reply@localhost>")
        self.MAIL_USE_TLS = _flag("MAIL_USE_TLS", "true")
        self.MAIL_USE_SSL = _flag("MAIL_USE_SSL", "false")
        self.MAIL_TIMEOUT_SECONDS = float(os.getenv("MAIL_TIMEOUT_SECONDS", "10"))

        self.AUTH_RATE_LIMIT_PER_MIN = int(os.getenv("AUTH_RATE_LIMIT_PER_MIN", "20"))
        self.API_RATE_LIMIT_PER_MIN = int(os.getenv("API_RATE_LIMIT_PER_MIN", "30"))
        self.RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.MAIL_USE_TLS and self.MAIL_USE_SSL:
            raise RuntimeError("MAIL_USE_TLS and MAIL_USE_SSL are mutually exclusive")


settings = Settings()
