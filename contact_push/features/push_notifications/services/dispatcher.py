"""
Delivery channels for contact push notifications.

Builds the notification envelope for a message and sends it through either
Firebase Cloud Messaging (HTTP v1) or the hosted relay hub, classifying each
provider response as delivered, transient or permanent.
"""

import json
from typing import Any

import httpx

from contact_push.features.push_notifications.domain import (
    Channel,
    DispatchOutcome,
    Message,
    PushPayload,
)
from contact_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FCM_BASE_URL = "https://fcm.googleapis.com/v1"
REQUEST_TIMEOUT = 10  # seconds

DEFAULT_TITLE = "Support"
MAX_BODY_LENGTH = 100
TRUNCATION_SUFFIX = "..."

TEST_NOTIFICATION_TITLE = "Test Notification"
TEST_NOTIFICATION_BODY = "This is a test push notification"

TOKEN_INVALID_STATUS_CODES = {400, 404}
CREDENTIAL_REJECTED_STATUS_CODES = {401, 403}

# FCM error codes reported inside an error body
FCM_TOKEN_INVALID_ERRORS = {"UNREGISTERED", "NOT_FOUND", "INVALID_ARGUMENT"}
FCM_TRANSIENT_ERRORS = {"UNAVAILABLE", "INTERNAL", "QUOTA_EXCEEDED", "RESOURCE_EXHAUSTED"}

RELAY_TRANSIENT_HINTS = (
    "unavailable",
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "internal",
    "try again",
)
RELAY_TOKEN_INVALID_HINTS = (
    "unregistered",
    "notregistered",
    "not registered",
    "invalid registration",
    "invalid token",
    "not found",
)


def truncate_body(content: str | None, limit: int = MAX_BODY_LENGTH) -> str:
    """Shorten message content to at most ``limit`` characters, ending with an ellipsis."""
    if not content:
        return ""
    if len(content) <= limit:
        return content
    return content[: limit - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX


def notification_title(message: Message) -> str:
    if message.sender_name:
        return message.sender_name

    account = message.conversation.account if message.conversation else None
    if account and account.name:
        return account.name

    return DEFAULT_TITLE


def build_payload(message: Message, token: str) -> PushPayload:
    """Build the notification envelope shared by both channels."""
    conversation = message.conversation
    account = conversation.account if conversation else None

    reference = {
        "data": {
            "message_id": str(message.id),
            "conversation_id": str(conversation.id) if conversation else "",
            "account_id": str(account.id) if account else "",
        }
    }

    return PushPayload(
        token=token,
        title=notification_title(message),
        body=truncate_body(message.content),
        data={"payload": json.dumps(reference)},
    )


def build_test_payload(token: str) -> PushPayload:
    """Fixed envelope used to check that a contact's device can be reached."""
    return PushPayload(
        token=token,
        title=TEST_NOTIFICATION_TITLE,
        body=truncate_body(TEST_NOTIFICATION_BODY),
        data={"payload": json.dumps({"data": {"test": "true"}})},
    )


def _response_json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _fcm_error_codes(error: Any) -> set[str]:
    """Collect the status and FCM-specific error codes of an FCM error object."""
    if not isinstance(error, dict):
        return {str(error).upper()} if error else set()

    codes = set()
    if error.get("status"):
        codes.add(str(error["status"]).upper())
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and detail.get("errorCode"):
            codes.add(str(detail["errorCode"]).upper())
    return codes


class DirectProviderChannel:
    """Firebase Cloud Messaging HTTP v1 sender."""

    channel = Channel.DIRECT_PROVIDER

    def __init__(self, project_id: str, *, timeout: float = REQUEST_TIMEOUT):
        self.project_id = project_id
        self.timeout = timeout

    @property
    def send_url(self) -> str:
        return f"{FCM_BASE_URL}/projects/{self.project_id}/messages:send"

    async def send(self, payload: PushPayload, bearer_token: str) -> DispatchOutcome:
        headers = {
            "Authorization": f"Bearer {bearer_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.send_url, json={"message": payload.to_message()}, headers=headers
                )
        except httpx.RequestError as e:
            logger.warning(
                "FCM request failed",
                project_id=self.project_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DispatchOutcome.transient(f"network error: {type(e).__name__}", self.channel)

        logger.info("FCM response received", status_code=response.status_code)
        return self.classify_response(response.status_code, _response_json(response))

    def classify_response(self, status_code: int, body: dict[str, Any]) -> DispatchOutcome:
        if status_code == 200:
            error = body.get("error")
            if not error:
                return DispatchOutcome.delivered_via(self.channel, status_code)
            return self._classify_error_body(error, status_code)

        if status_code in TOKEN_INVALID_STATUS_CODES:
            reason = "token not found" if status_code == 404 else "bad request"
            return DispatchOutcome.permanent(
                reason, self.channel, status_code, invalidates_token=True
            )

        if status_code in CREDENTIAL_REJECTED_STATUS_CODES:
            return DispatchOutcome.permanent("credential rejected", self.channel, status_code)

        if status_code == 429:
            return DispatchOutcome.transient("rate limited", self.channel, status_code)

        if 500 <= status_code <= 599:
            return DispatchOutcome.transient("provider server error", self.channel, status_code)

        return DispatchOutcome.transient("unexpected status", self.channel, status_code)

    def _classify_error_body(self, error: Any, status_code: int) -> DispatchOutcome:
        codes = _fcm_error_codes(error)
        reason = f"provider error: {','.join(sorted(codes)) or 'unknown'}"

        if codes & FCM_TOKEN_INVALID_ERRORS:
            return DispatchOutcome.permanent(
                reason, self.channel, status_code, invalidates_token=True
            )
        if codes & FCM_TRANSIENT_ERRORS:
            return DispatchOutcome.transient(reason, self.channel, status_code)
        return DispatchOutcome.permanent(reason, self.channel, status_code)


class RelayHubChannel:
    """Hosted relay that forwards the payload using the installation identifier."""

    channel = Channel.RELAY_HUB

    def __init__(
        self,
        base_url: str,
        installation_identifier: str | None,
        *,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.installation_identifier = installation_identifier
        self.timeout = timeout

    @property
    def send_url(self) -> str:
        return f"{self.base_url}/send_push"

    async def send(self, payload: PushPayload) -> DispatchOutcome:
        body = {
            "installation_identifier": self.installation_identifier,
            "fcm_options": payload.to_message(),
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.send_url, json=body)
        except httpx.RequestError as e:
            logger.warning(
                "Relay hub request failed",
                hub_url=self.base_url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DispatchOutcome.transient(f"network error: {type(e).__name__}", self.channel)

        logger.info("Relay hub response received", status_code=response.status_code)
        return self.classify_response(response.status_code, _response_json(response))

    def classify_response(self, status_code: int, body: dict[str, Any]) -> DispatchOutcome:
        if status_code == 429 or 500 <= status_code <= 599:
            return DispatchOutcome.transient("relay hub unavailable", self.channel, status_code)

        if not 200 <= status_code <= 299:
            return self._classify_failure(body, status_code, default="relay hub rejected request")

        if body.get("success") is False or body.get("error"):
            return self._classify_failure(body, status_code, default="relay hub reported failure")

        return DispatchOutcome.delivered_via(self.channel, status_code)

    def _classify_failure(
        self, body: dict[str, Any], status_code: int, default: str
    ) -> DispatchOutcome:
        error_text = str(body.get("error") or body.get("message") or "").strip()
        reason = error_text or default
        lowered = error_text.lower()

        if body.get("retryable") is True or any(hint in lowered for hint in RELAY_TRANSIENT_HINTS):
            return DispatchOutcome.transient(reason, self.channel, status_code)

        invalidates = any(hint in lowered for hint in RELAY_TOKEN_INVALID_HINTS)
        return DispatchOutcome.permanent(
            reason, self.channel, status_code, invalidates_token=invalidates
        )
