# core/security.py
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol
import logging
import re

import firebase_admin
import httpx
from fastapi import Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from jose import JWTError, jwt

from core.config import settings
from core.errors import Forbidden, InvalidToken, Unauthorized, UpstreamError

logger = logging.getLogger(__name__)

_MAX_AGE = re.compile(r"max-age=(\d+)")
ADMIN_APP_NAME = "portal-admin"


# ========================================
# 🪪 Verified identity
# ========================================
@dataclass
class TokenClaims:
    uid: str
    token: str
    email: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], token: str) -> "TokenClaims":
        uid = payload.get("uid") or payload.get("user_id") or payload.get("sub")
        if not uid:
            raise InvalidToken()
        return cls(uid=uid, token=token, email=payload.get("email"), claims=dict(payload))


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> TokenClaims: ...


# ========================================
# 🔑 Unprivileged verifier (published keys)
# ========================================
class RemoteKeyTokenVerifier:
    """
    Checks an ID token's RS256 signature against the issuer's published
    certificates, then its issuer and audience against this project.
    """

    def __init__(
        self,
        project_id: str,
        certs_url: str = settings.FIREBASE_CERTS_URL,
        client: Optional[httpx.AsyncClient] = None,
        static_keys: Optional[Dict[str, str]] = None,
    ):
        self.project_id = project_id
        self.issuer = f"https://securetoken.google.com/{project_id}"
        self.certs_url = certs_url
        self.client = client
        self._keys: Dict[str, str] = dict(static_keys or {})
        self._keys_expire_at: Optional[datetime] = None if static_keys is None else datetime.max.replace(tzinfo=timezone.utc)

    async def _public_keys(self) -> Dict[str, str]:
        now = datetime.now(timezone.utc)
        if self._keys and self._keys_expire_at and now < self._keys_expire_at:
            return self._keys

        client = self.client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
        try:
            response = await client.get(self.certs_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"❌ Could not fetch token signing keys: {e}")
            raise InvalidToken()
        finally:
            if self.client is None:
                await client.aclose()

        # Honour the publisher's cache lifetime.
        match = _MAX_AGE.search(response.headers.get("cache-control", ""))
        max_age = int(match.group(1)) if match else 0
        self._keys = response.json()
        self._keys_expire_at = now + timedelta(seconds=max_age)
        return self._keys

    async def verify(self, token: str) -> TokenClaims:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            raise InvalidToken()

        keys = await self._public_keys()
        key = keys.get(header.get("kid", ""))
        if not key:
            raise InvalidToken()

        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=self.issuer,
                options={"verify_at_hash": False},
            )
        except JWTError as e:
            logger.info(f"Token rejected: {e}")
            raise InvalidToken()

        return TokenClaims.from_payload(payload, token)


# ========================================
# 🛡️ Privileged verifier (admin SDK)
# ========================================
def get_admin_app() -> firebase_admin.App:
    """Service-account app; initialised on first use from settings."""
    try:
        return firebase_admin.get_app(ADMIN_APP_NAME)
    except ValueError:
        pass
    if not settings.ADMIN_SDK_AVAILABLE:
        raise UpstreamError("Admin SDK not configured")
    cred = credentials.Certificate(
        {
            "type": "service_account",
            "project_id": settings.FIREBASE_ADMIN_PROJECT_ID,
            "client_email": settings.FIREBASE_ADMIN_CLIENT_EMAIL,
            "private_key": settings.ADMIN_PRIVATE_KEY,
            "token_uri": "https://oauth2.googleapis.com/token",
        }
    )
    return firebase_admin.initialize_app(cred, name=ADMIN_APP_NAME)


class AdminTokenVerifier:
    """Same contract as ``RemoteKeyTokenVerifier``, plus custom-claim minting."""

    def __init__(self, app: firebase_admin.App):
        self.app = app

    async def verify(self, token: str) -> TokenClaims:
        try:
            payload = await run_in_threadpool(firebase_auth.verify_id_token, token, self.app)
        except (
            ValueError,
            firebase_auth.InvalidIdTokenError,
            firebase_auth.CertificateFetchError,
            firebase_auth.UserDisabledError,
        ) as e:
            logger.info(f"Token rejected by admin SDK: {e}")
            raise InvalidToken()
        return TokenClaims.from_payload(payload, token)

    async def set_custom_claims(self, uid: str, claims: Dict[str, Any]) -> None:
        await run_in_threadpool(firebase_auth.set_custom_user_claims, uid, claims, self.app)


def build_token_verifier(client: Optional[httpx.AsyncClient] = None) -> TokenVerifier:
    if settings.ADMIN_SDK_AVAILABLE:
        logger.info("🔐 Verifying ID tokens with the admin SDK")
        return AdminTokenVerifier(get_admin_app())
    logger.info("🔐 Verifying ID tokens against published signing keys")
    return RemoteKeyTokenVerifier(settings.FIREBASE_PROJECT_ID, client=client)


# ========================================
# 🤖 Service credential (webhooks, public lookups)
# ========================================
async def get_service_token() -> str:
    """OAuth access token for the service account; the admin SDK refreshes it."""
    app = get_admin_app()
    info = await run_in_threadpool(app.credential.get_access_token)
    return info.access_token


# ========================================
# 👤 Request dependencies
# ========================================
def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


async def get_current_claims(
    authorization: Optional[str] = Header(default=None),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> TokenClaims:
    """Bearer token -> verified claims. Missing header is 401 Unauthorized, bad token 401 Invalid token."""
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized()
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthorized()
    return await verifier.verify(token)


def is_allowlisted_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.lower()
    if email in settings.ADMIN_EMAIL_ALLOWLIST:
        return True
    return any(email.endswith(f"@{domain}") for domain in settings.ADMIN_DOMAIN_ALLOWLIST)


def is_site_staff(claims: TokenClaims) -> bool:
    """Global admin claim, staff site role, or an allow-listed address."""
    if claims.claims.get("admin") is True:
        return True
    if claims.claims.get("siteRole") in ("superadmin", "staff"):
        return True
    return is_allowlisted_email(claims.email)


def get_site_staff(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
    if not is_site_staff(claims):
        raise Forbidden("Forbidden")
    return claims


def get_claims_admin() -> Optional[AdminTokenVerifier]:
    """Privileged verifier for minting custom claims; ``None`` when no service account is configured."""
    if not settings.ADMIN_SDK_AVAILABLE:
        return None
    return AdminTokenVerifier(get_admin_app())


def get_service_token_provider() -> Callable[[], Awaitable[str]]:
    """Lets a route fetch the service credential only after its own checks pass."""
    return get_service_token
