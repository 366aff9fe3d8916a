"""
Firebase service-account credential cache.
Parses the service-account JSON once, exchanges a signed assertion for a
short-lived OAuth bearer token and reuses that token until it expires.
"""

import hashlib
import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from contact_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FIREBASE_MESSAGING_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600
REQUEST_TIMEOUT = 10  # seconds

REQUIRED_CREDENTIAL_FIELDS = ("client_email", "private_key")


class CredentialErrorKind(str, Enum):
    MISSING = "missing"
    INVALID_FORMAT = "invalid_format"
    EXCHANGE_FAILED = "exchange_failed"


class CredentialError(Exception):
    """Raised when the service-account secret is unusable or the token exchange fails."""

    def __init__(
        self,
        message: str,
        kind: CredentialErrorKind = CredentialErrorKind.EXCHANGE_FAILED,
        response_data: dict | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.kind = kind
        self.response_data = response_data or {}
        # Token endpoint unreachable or overloaded; a later attempt may succeed
        self.retryable = retryable


@dataclass(frozen=True, slots=True)
class ServiceAccountCredentials:
    """The parts of a service-account JSON document the token exchange needs."""

    client_email: str
    private_key_pem: str
    token_uri: str
    project_id: str | None = None
    private_key_id: str | None = None

    @classmethod
    def from_json(cls, raw: str | None) -> "ServiceAccountCredentials":
        if not raw or not raw.strip():
            raise CredentialError(
                "Firebase credentials cannot be blank", kind=CredentialErrorKind.MISSING
            )

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise CredentialError(
                f"Invalid Firebase credentials JSON: {e}", kind=CredentialErrorKind.INVALID_FORMAT
            ) from e

        if not isinstance(data, dict):
            raise CredentialError(
                "Firebase credentials must be a JSON object",
                kind=CredentialErrorKind.INVALID_FORMAT,
            )

        missing = [name for name in REQUIRED_CREDENTIAL_FIELDS if not data.get(name)]
        if missing:
            raise CredentialError(
                f"Firebase credentials missing fields: {', '.join(missing)}",
                kind=CredentialErrorKind.INVALID_FORMAT,
            )

        return cls(
            client_email=data["client_email"],
            private_key_pem=data["private_key"],
            token_uri=data.get("token_uri") or DEFAULT_TOKEN_URI,
            project_id=data.get("project_id"),
            private_key_id=data.get("private_key_id"),
        )


@dataclass(frozen=True, slots=True)
class CachedToken:
    """Bearer token and its expiry, swapped as one value."""

    token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


def _utc_now() -> datetime:
    return datetime.now(UTC)


class CredentialCache:
    """
    Process-scoped holder of the direct-provider credentials.

    Construct once and inject it into the orchestrator. Concurrent refreshes
    are harmless: each one replaces the cached token in a single assignment
    and the last writer wins.
    """

    def __init__(
        self,
        project_id: str | None,
        credentials: str | None,
        *,
        clock: Callable[[], datetime] = _utc_now,
        timeout: float = REQUEST_TIMEOUT,
    ):
        if not project_id or not project_id.strip():
            raise CredentialError(
                "Firebase project_id cannot be blank", kind=CredentialErrorKind.MISSING
            )

        self.project_id = project_id
        self.service_account = ServiceAccountCredentials.from_json(credentials)
        self._signing_key = self._load_signing_key(self.service_account.private_key_pem)
        self._clock = clock
        self._timeout = timeout
        self._cached: CachedToken | None = None
        self.exchange_count = 0

        if self.service_account.project_id and self.service_account.project_id != project_id:
            logger.warning(
                "Firebase project id differs from the service account's project",
                configured_project_id=project_id,
                credentials_project_id=self.service_account.project_id,
            )

        logger.info(
            "Firebase credential cache initialized",
            project_id=project_id,
            client_email=self.service_account.client_email,
        )

    @staticmethod
    def _load_signing_key(pem: str):
        try:
            return serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CredentialError(
                f"Invalid service account private key: {e}",
                kind=CredentialErrorKind.INVALID_FORMAT,
            ) from e

    @property
    def cached_token(self) -> CachedToken | None:
        return self._cached

    async def current_bearer_token(self) -> str:
        """
        Return a bearer token for the provider, refreshing it only when expired.

        Raises:
            CredentialError: If the token exchange fails
        """
        cached = self._cached
        if cached is not None and not cached.is_expired(self._clock()):
            return cached.token

        fresh = await self._exchange()
        self._cached = fresh
        return fresh.token

    def _build_assertion(self, now: datetime) -> str:
        issued_at = int(now.timestamp())
        claims = {
            "iss": self.service_account.client_email,
            "sub": self.service_account.client_email,
            "aud": self.service_account.token_uri,
            "scope": FIREBASE_MESSAGING_SCOPE,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
        }
        headers = {}
        if self.service_account.private_key_id:
            headers["kid"] = self.service_account.private_key_id

        return jwt.encode(claims, self._signing_key, algorithm="RS256", headers=headers)

    async def _exchange(self) -> CachedToken:
        now = self._clock()
        data = {"grant_type": JWT_BEARER_GRANT, "assertion": self._build_assertion(now)}

        logger.info(
            "Exchanging service account assertion for Firebase token",
            project_id=self.project_id,
            token_uri=self.service_account.token_uri,
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self.service_account.token_uri,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.RequestError as e:
            logger.error(
                "Network error during Firebase token exchange",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise CredentialError(
                f"Network error during token exchange: {e}", retryable=True
            ) from e

        self.exchange_count += 1
        return self._handle_token_response(response, now)

    def _handle_token_response(self, response: httpx.Response, now: datetime) -> CachedToken:
        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            if not isinstance(error_data, dict):
                error_data = {}

            error_code = error_data.get("error", "unknown_error")
            logger.error(
                "Firebase token exchange failed",
                status_code=response.status_code,
                error_code=error_code,
                error_description=error_data.get("error_description"),
            )
            raise CredentialError(
                f"Token exchange rejected (HTTP {response.status_code}, {error_code})",
                response_data=error_data,
                retryable=response.status_code == 429 or response.status_code >= 500,
            )

        try:
            payload: dict[str, Any] = response.json()
        except ValueError as e:
            logger.error(
                "Failed to parse Firebase token response", response_text=response.text[:200]
            )
            raise CredentialError(f"Failed to parse token response: {e}") from e

        if not isinstance(payload, dict):
            raise CredentialError("Token response is not a JSON object")

        access_token = payload.get("access_token")
        if not access_token:
            raise CredentialError("Token response missing access_token", response_data=payload)

        try:
            expires_in = int(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0

        expires_at = now + timedelta(seconds=expires_in)

        logger.info(
            "Firebase token exchange successful",
            expires_in=expires_in,
            expires_at=expires_at.isoformat(),
        )

        return CachedToken(token=access_token, expires_at=expires_at)

    def health_check(self) -> dict:
        cached = self._cached
        return {
            "service": "firebase_credentials",
            "project_id": self.project_id,
            "client_email": self.service_account.client_email,
            "has_cached_token": cached is not None,
            "token_expires_at": cached.expires_at.isoformat() if cached else None,
            "exchange_count": self.exchange_count,
        }


_shared_cache: CredentialCache | None = None
_shared_cache_key: str | None = None


def _cache_key(project_id: str | None, credentials: str | None) -> str:
    digest = hashlib.sha256((credentials or "").encode("utf-8")).hexdigest()
    return f"{project_id}:{digest}"


def get_credential_cache(project_id: str | None, credentials: str | None) -> CredentialCache:
    """
    Return the process-wide cache for the given configuration.

    The cache is rebuilt when the configured project or credentials change,
    so rotated secrets are picked up without a restart.
    """
    global _shared_cache, _shared_cache_key

    key = _cache_key(project_id, credentials)
    if _shared_cache is None or _shared_cache_key != key:
        _shared_cache = CredentialCache(project_id, credentials)
        _shared_cache_key = key
    return _shared_cache


def reset_credential_cache() -> None:
    global _shared_cache, _shared_cache_key
    _shared_cache = None
    _shared_cache_key = None
