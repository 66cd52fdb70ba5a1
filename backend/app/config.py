from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


# ==================================================
# BASE DIR
# ==================================================
BASE_DIR = Path(__file__).resolve().parent

# ==================================================
# TEMPLATES
# ==================================================
TEMPLATES_DIR = BASE_DIR / "templates"
EMAIL_TEMPLATES_DIR = TEMPLATES_DIR / "emails"


# ==================================================
# UTIL: build absolute public URLs
# ==================================================
def _join_url(base: str, path: str) -> str:
    base = (base or "").strip()
    path = (path or "").strip()

    if not base:
        base = "http://localhost"

    if not base.startswith(("http://", "https://")):
        base = "http://" + base

    if not path.startswith("/"):
        path = "/" + path

    return base.rstrip("/") + path


# ==================================================
# SETTINGS
# ==================================================
class Settings(BaseSettings):
    """
    Central config for the Pintas storefront backend.

    APP_BASE_URL must be the publicly reachable URL: download links and the
    Google OAuth redirect are built from it.
      Local: http://localhost:8000
      Production: https://pintas.store
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --------------------------------------------------
    # APP
    # --------------------------------------------------
    ENV: str = "dev"
    APP_BASE_URL: str = "http://localhost:8000"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "*"

    # --------------------------------------------------
    # DATABASE
    # --------------------------------------------------
    DATABASE_URL: str = "sqlite:///./pintas.db"

    # --------------------------------------------------
    # AUTH PROVIDER (JWT access tokens)
    # --------------------------------------------------
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_JWT_AUDIENCE: str = "authenticated"

    # --------------------------------------------------
    # OBJECT STORAGE
    # --------------------------------------------------
    STORAGE_URL: str = "http://localhost:54321"
    STORAGE_SERVICE_KEY: Optional[str] = None
    STORAGE_PRODUCTS_BUCKET: str = "products"
    STORAGE_AVATARS_BUCKET: str = "avatars"

    # --------------------------------------------------
    # EMAIL (SendGrid)
    # --------------------------------------------------
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_FROM_EMAIL: str = "noreply@pintas.store"
    SENDGRID_API_URL: str = "https://api.sendgrid.com/v3/mail/send"

    # --------------------------------------------------
    # GOOGLE CALENDAR
    # --------------------------------------------------
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    GOOGLE_REDIRECT_PATH: str = "/api/google/callback"
    GOOGLE_REDIRECT_URI: Optional[str] = None

    # --------------------------------------------------
    # CRON / PAYMENTS
    # --------------------------------------------------
    CRON_SECRET: Optional[str] = None
    MP_ACCESS_TOKEN: Optional[str] = None
    PAYMENT_WEBHOOK_ENABLED: bool = False
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None

    # --------------------------------------------------
    # LIMITS / TTLs
    # --------------------------------------------------
    DOWNLOAD_LINK_TTL_HOURS: int = 24
    SIGNED_URL_TTL_SECONDS: int = 3600
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # --------------------------------------------------
    # POST INIT
    # --------------------------------------------------
    def model_post_init(self, __context: Any) -> None:
        self.GOOGLE_REDIRECT_URI = (
            self.GOOGLE_REDIRECT_URI
            or _join_url(self.APP_BASE_URL, self.GOOGLE_REDIRECT_PATH)
        )

        if self.ENV == "prod" and not self.AUTH_JWT_SECRET:
            raise RuntimeError("AUTH_JWT_SECRET is required in production")

    @property
    def cors_origin_list(self) -> List[str]:
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    def public_url(self, path: str) -> str:
        return _join_url(self.APP_BASE_URL, path)


# ==================================================
# GLOBAL INSTANCE
# ==================================================
settings = Settings()
