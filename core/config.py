# ==================================================================================
# core/config.py: Portal Configuration (Firestore REST + Stripe + SendGrid + Pydantic v2)
# ==================================================================================
from typing import List, Optional
import sys

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ------------------------
    # FIREBASE / FIRESTORE CONFIG
    # ------------------------
    FIREBASE_PROJECT_ID: str = "ownly-portal-dev"
    FIRESTORE_BASE_URL: Optional[str] = None
    FIREBASE_CERTS_URL: str = (
        "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
    )
    HTTP_TIMEOUT_SECONDS: float = 15.0

    # Service account for the privileged (admin SDK) path
    FIREBASE_ADMIN_PROJECT_ID: Optional[str] = None
    FIREBASE_ADMIN_CLIENT_EMAIL: Optional[str] = None
    FIREBASE_ADMIN_PRIVATE_KEY: Optional[str] = None

    # ------------------------
    # QUERY LIMITS
    # ------------------------
    FIND_BY_ID_SCAN_LIMIT: int = 200
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # ------------------------
    # SITE ADMIN ALLOW-LIST
    # ------------------------
    ADMIN_EMAILS: str = ""
    SITE_ADMIN_EMAILS: str = ""
    SITE_ADMIN_DOMAINS: str = "ownly.studio"

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: Optional[str] = None
    MAIL_FROM: Optional[str] = None  # Example: "billing@ownly.studio"

    # ------------------------
    # FRONTEND CONFIG
    # ------------------------
    FRONTEND_URL: str = "http://localhost:3000"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # ------------------------
    # STRIPE / PAYMENT CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    DEFAULT_CURRENCY: str = "usd"
    INVOICE_DAYS_UNTIL_DUE: int = 30

    @property
    def STRIPE_SUCCESS_URL(self) -> str:
        """Success URL handed to Stripe Checkout."""
        return f"{self.FRONTEND_URL}/account?checkout=success&session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def STRIPE_CANCEL_URL(self) -> str:
        return f"{self.FRONTEND_URL}/build?checkout=cancel"

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production'
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def IS_PRODUCTION(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def FIRESTORE_URL(self) -> str:
        if self.FIRESTORE_BASE_URL:
            return self.FIRESTORE_BASE_URL.rstrip("/")
        return (
            f"https://firestore.googleapis.com/v1/projects/{self.FIREBASE_PROJECT_ID}"
            "/databases/(default)/documents"
        )

    @property
    def FIREBASE_ISSUER(self) -> str:
        return f"https://securetoken.google.com/{self.FIREBASE_PROJECT_ID}"

    @property
    def ADMIN_PRIVATE_KEY(self) -> Optional[str]:
        """Private key with escaped newlines restored (env vars flatten them)."""
        key = self.FIREBASE_ADMIN_PRIVATE_KEY
        if key and "\\n" in key:
            key = key.replace("\\n", "\n")
        return key

    @property
    def ADMIN_SDK_AVAILABLE(self) -> bool:
        return bool(
            self.FIREBASE_ADMIN_PROJECT_ID
            and self.FIREBASE_ADMIN_CLIENT_EMAIL
            and self.FIREBASE_ADMIN_PRIVATE_KEY
        )

    @property
    def ADMIN_EMAIL_ALLOWLIST(self) -> List[str]:
        """ADMIN_EMAILS wins; SITE_ADMIN_EMAILS is accepted as an alias."""
        raw = self.ADMIN_EMAILS or self.SITE_ADMIN_EMAILS
        return [e.strip().lower() for e in raw.split(",") if e.strip()]

    @property
    def ADMIN_DOMAIN_ALLOWLIST(self) -> List[str]:
        return [d.strip().lower().lstrip("@") for d in self.SITE_ADMIN_DOMAINS.split(",") if d.strip()]

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
