"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent
ENVIRONMENTS = ("local", "production")


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_EXPIRE_MINUTES: int
    ALLOW_INSECURE_JWT: bool
    DATABASE_URL: str
    COOKIE_DOMAIN: str
    COOKIE_SECURE: bool
    ALLOW_DEV_CORS: bool
    CORS_ORIGINS: list
    LOG_LEVEL: str
    LOG_DIR: str
    LOG_RETENTION_DAYS: int
    TOKEN_POLL_SECONDS: int
    LOGIN_RATE_LIMIT_PER_MIN: int

    def __init__(self):
        self.ENV = os.getenv("ENVIRONMENT", "local").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "1440"))  # 24 hours
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'konsider.db'}")
        self.COOKIE_DOMAIN = os.getenv("COOKIE_DOMAIN", "localhost").strip()
        self.COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.CORS_ORIGINS = [
            o.strip()
            for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
            if o.strip()
        ]
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", "").strip()
        self.LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "30"))
        self.TOKEN_POLL_SECONDS = int(os.getenv("TOKEN_POLL_SECONDS", "600"))  # 10 minutes
        self.LOGIN_RATE_LIMIT_PER_MIN = int(os.getenv("LOGIN_RATE_LIMIT_PER_MIN", "10"))
        self._validate()

    def _validate(self):
        if self.ENV not in ENVIRONMENTS:
            raise RuntimeError(
                f"{self.ENV} is not a supported environment. Use either `local` or `production`"
            )
        if self.ENV != "local" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in production")
        if self.JWT_EXPIRE_MINUTES <= 0:
            raise RuntimeError("JWT_EXPIRE_MINUTES must be positive")

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
