"""
Tests for the Firebase service-account credential cache.
"""

import json
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from contact_push.features.push_notifications.services.credential_cache import (
    DEFAULT_TOKEN_URI,
    FIREBASE_MESSAGING_SCOPE,
    JWT_BEARER_GRANT,
    CachedToken,
    CredentialCache,
    CredentialError,
    CredentialErrorKind,
    get_credential_cache,
)

PROJECT_ID = "demo-project"


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


def _token_response(httpx_mock, access_token: str, expires_in: int = 3600):
    httpx_mock.add_response(
        method="POST",
        url=DEFAULT_TOKEN_URI,
        json={"access_token": access_token, "expires_in": expires_in, "token_type": "Bearer"},
    )


@pytest.mark.asyncio
async def test_two_calls_within_ttl_exchange_once(httpx_mock, service_account_json, clock):
    _token_response(httpx_mock, "token-1")
    cache = CredentialCache(PROJECT_ID, service_account_json, clock=clock)

    first = await cache.current_bearer_token()
    clock.advance(1800)
    second = await cache.current_bearer_token()

    assert first == second == "token-1"
    assert cache.exchange_count == 1
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.asyncio
async def test_call_after_expiry_exchanges_exactly_once_more(
    httpx_mock, service_account_json, clock
):
    _token_response(httpx_mock, "token-1")
    _token_response(httpx_mock, "token-2")
    cache = CredentialCache(PROJECT_ID, service_account_json, clock=clock)

    assert await cache.current_bearer_token() == "token-1"
    clock.advance(3601)
    assert await cache.current_bearer_token() == "token-2"
    assert await cache.current_bearer_token() == "token-2"

    assert cache.exchange_count == 2
    assert len(httpx_mock.get_requests()) == 2


def test_token_expiring_now_counts_as_expired(clock):
    token = CachedToken(token="t", expires_at=clock())

    assert token.is_expired(clock()) is True
    assert token.is_expired(clock() - timedelta(seconds=1)) is False


@pytest.mark.asyncio
async def test_exchange_posts_signed_assertion(httpx_mock, service_account_json, rsa_key, clock):
    _token_response(httpx_mock, "token-1")
    cache = CredentialCache(PROJECT_ID, service_account_json, clock=clock)

    await cache.current_bearer_token()

    request = httpx_mock.get_requests()[0]
    form = parse_qs(request.content.decode("utf-8"))
    assert form["grant_type"] == [JWT_BEARER_GRANT]

    assertion = form["assertion"][0]
    claims = jwt.decode(
        assertion,
        rsa_key.public_key(),
        algorithms=["RS256"],
        audience=DEFAULT_TOKEN_URI,
        options={"verify_exp": False, "verify_iat": False},
    )
    assert claims["iss"] == "push@demo-project.iam.gserviceaccount.com"
    assert claims["scope"] == FIREBASE_MESSAGING_SCOPE
    assert claims["exp"] - claims["iat"] == 3600
    assert jwt.get_unverified_header(assertion)["kid"] == "key-1"


@pytest.mark.asyncio
async def test_rejected_exchange_raises_and_caches_nothing(
    httpx_mock, service_account_json, clock
):
    httpx_mock.add_response(
        method="POST",
        url=DEFAULT_TOKEN_URI,
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Invalid JWT Signature."},
    )
    cache = CredentialCache(PROJECT_ID, service_account_json, clock=clock)

    with pytest.raises(CredentialError) as exc_info:
        await cache.current_bearer_token()

    assert exc_info.value.kind is CredentialErrorKind.EXCHANGE_FAILED
    assert exc_info.value.response_data["error"] == "invalid_grant"
    assert cache.cached_token is None


@pytest.mark.asyncio
async def test_response_without_access_token_raises(httpx_mock, service_account_json, clock):
    httpx_mock.add_response(method="POST", url=DEFAULT_TOKEN_URI, json={"expires_in": 3600})
    cache = CredentialCache(PROJECT_ID, service_account_json, clock=clock)

    with pytest.raises(CredentialError, match="access_token"):
        await cache.current_bearer_token()


@pytest.mark.asyncio
async def test_network_error_becomes_credential_error(httpx_mock, service_account_json, clock):
    httpx_mock.add_exception(httpx.ConnectError("connection refused"))
    cache = CredentialCache(PROJECT_ID, service_account_json, clock=clock)

    with pytest.raises(CredentialError, match="Network error"):
        await cache.current_bearer_token()

    assert cache.exchange_count == 0


@pytest.mark.parametrize(
    "credentials, kind",
    [
        (None, CredentialErrorKind.MISSING),
        ("   ", CredentialErrorKind.MISSING),
        ("{not json", CredentialErrorKind.INVALID_FORMAT),
        ("[1, 2, 3]", CredentialErrorKind.INVALID_FORMAT),
        (json.dumps({"client_email": "a@b.c"}), CredentialErrorKind.INVALID_FORMAT),
        (
            json.dumps({"client_email": "a@b.c", "private_key": "not a pem"}),
            CredentialErrorKind.INVALID_FORMAT,
        ),
    ],
)
def test_unusable_credentials_rejected_at_construction(credentials, kind):
    with pytest.raises(CredentialError) as exc_info:
        CredentialCache(PROJECT_ID, credentials)

    assert exc_info.value.kind is kind


def test_blank_project_id_rejected(service_account_json):
    with pytest.raises(CredentialError) as exc_info:
        CredentialCache("  ", service_account_json)

    assert exc_info.value.kind is CredentialErrorKind.MISSING


def test_shared_cache_reused_until_configuration_changes(service_account_json):
    first = get_credential_cache(PROJECT_ID, service_account_json)

    assert get_credential_cache(PROJECT_ID, service_account_json) is first
    assert get_credential_cache("other-project", service_account_json) is not first


@pytest.mark.asyncio
async def test_health_check_reports_cached_token(httpx_mock, service_account_json, clock):
    _token_response(httpx_mock, "token-1", expires_in=60)
    cache = CredentialCache(PROJECT_ID, service_account_json, clock=clock)

    assert cache.health_check()["has_cached_token"] is False

    await cache.current_bearer_token()
    health = cache.health_check()

    assert health["has_cached_token"] is True
    assert health["exchange_count"] == 1
    assert health["token_expires_at"] == (clock() + timedelta(seconds=60)).isoformat()


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code, retryable", [(503, True), (429, True), (401, False)])
async def test_exchange_failure_marks_server_side_errors_retryable(
    httpx_mock, service_account_json, clock, status_code, retryable
):
    httpx_mock.add_response(method="POST", url=DEFAULT_TOKEN_URI, status_code=status_code)
    cache = CredentialCache(PROJECT_ID, service_account_json, clock=clock)

    with pytest.raises(CredentialError) as exc_info:
        await cache.current_bearer_token()

    assert exc_info.value.retryable is retryable


@pytest.mark.asyncio
async def test_network_error_is_retryable(httpx_mock, service_account_json, clock):
    httpx_mock.add_exception(httpx.ConnectTimeout("timed out"))
    cache = CredentialCache(PROJECT_ID, service_account_json, clock=clock)

    with pytest.raises(CredentialError) as exc_info:
        await cache.current_bearer_token()

    assert exc_info.value.retryable is True


def test_unusable_credentials_are_not_retryable():
    with pytest.raises(CredentialError) as exc_info:
        CredentialCache(PROJECT_ID, "{not json")

    assert exc_info.value.retryable is False
