"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent

_DEFAULT_SECRET = "change_me_for_prod"
_DEFAULT_REFRESH_SECRET = "change_me_refresh_for_prod"


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_REFRESH_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_MINUTES: int
    JWT_REFRESH_EXPIRE_DAYS: int
    FRONTEND_URL: str
    MAIL_BACKEND: str
    SMTP_HOST: str
    SMTP_PORT: int
    SMTP_USER: str
    SMTP_PASSWORD: str
    MAIL_FROM: str
    MAIL_FROM_NAME: str
    UPLOAD_DIR: Path
    MAX_UPLOAD_BYTES: int
    RATE_LIMIT_MAX_REQUESTS: int
    RATE_LIMIT_WINDOW_SECONDS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", _DEFAULT_SECRET)
        self.JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", _DEFAULT_REFRESH_SECRET)
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))
        self.JWT_REFRESH_EXPIRE_DAYS = int(os.getenv("JWT_REFRESH_EXPIRE_DAYS", "30"))
        self.FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
        self.MAIL_BACKEND = os.getenv("MAIL_BACKEND", "console").lower()
        self.SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
        self.SMTP_USER = os.getenv("SMTP_USER", "")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
        self.MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@localhost")
        self.MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "Learning & Careers Portal")
        self.UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE / "data" / "uploads"))).expanduser()
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB default
        self.RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"))
        self.RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    def _validate(self):
        if self.LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise RuntimeError(f"unsupported LOG_LEVEL: {self.LOG_LEVEL}")
        if self.ENV in ("dev", "test") or self.ALLOW_INSECURE_JWT:
            return
        if self.JWT_SECRET == _DEFAULT_SECRET or self.JWT_REFRESH_SECRET == _DEFAULT_REFRESH_SECRET:
            raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET must be set to non-default values in non-dev environments")
        if self.MAIL_BACKEND not in ("console", "smtp"):
            raise RuntimeError(f"unsupported MAIL_BACKEND: {self.MAIL_BACKEND}")


settings = Settings()
