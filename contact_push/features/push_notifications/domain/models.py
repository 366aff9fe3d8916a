"""
Domain models for contact push notifications.

Messages, conversations and accounts are owned by the conversation service
and are read-only here. Contacts are read here too, except for the push
token, which this feature clears once a provider rejects it for good.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class MessageDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class ConversationStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    PENDING = "pending"
    SNOOZED = "snoozed"


class Channel(str, Enum):
    """Delivery channels, in the order they are tried."""

    DIRECT_PROVIDER = "direct_provider"
    RELAY_HUB = "relay_hub"


class OutcomeKind(str, Enum):
    DELIVERED = "delivered"
    SKIPPED_INELIGIBLE = "skipped_ineligible"
    SKIPPED_NO_TOKEN = "skipped_no_token"
    SKIPPED_INVALID_TOKEN = "skipped_invalid_token"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"
    NO_CHANNEL_CONFIGURED = "no_channel_configured"


@runtime_checkable
class Pushable(Protocol):
    """Anything that owns a device token the dispatcher may deliver to."""

    def get_push_token(self) -> str | None: ...

    def clear_push_token(self) -> None: ...


@dataclass(slots=True)
class Account:
    id: int
    name: str | None = None


@dataclass(slots=True)
class Contact:
    """Contact with an optional device token registered by the mobile/web client."""

    id: int
    name: str | None = None
    push_token: str | None = None
    pubsub_token: str | None = None

    def get_push_token(self) -> str | None:
        return self.push_token

    def clear_push_token(self) -> None:
        self.push_token = None


@dataclass(slots=True)
class Conversation:
    id: int
    status: ConversationStatus = ConversationStatus.OPEN
    contact: Contact | None = None
    account: Account | None = None


@dataclass(slots=True)
class Message:
    """A conversation message as seen by the push feature."""

    id: int
    direction: MessageDirection
    content: str | None = None
    private: bool = False
    content_type: str = "text"
    sender_name: str | None = None
    conversation: Conversation | None = None
    push_notification_sent_at: datetime | None = None
    push_notification_error: str | None = None

    @property
    def is_template(self) -> bool:
        return self.content_type == "template"

    def push_notification_sent(self) -> bool:
        return self.push_notification_sent_at is not None


@dataclass(frozen=True, slots=True)
class PushPayload:
    """Provider-neutral notification envelope shared by both channels."""

    token: str
    title: str
    body: str
    data: dict[str, str]
    android: dict[str, Any] = field(default_factory=lambda: {"priority": "high"})
    apns: dict[str, Any] = field(
        default_factory=lambda: {"payload": {"aps": {"sound": "default", "badge": 1}}}
    )

    def to_message(self) -> dict[str, Any]:
        """Render the envelope in the provider's message shape."""
        return {
            "token": self.token,
            "notification": {"title": self.title, "body": self.body},
            "data": dict(self.data),
            "android": self.android,
            "apns": self.apns,
        }


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    """Result of one dispatch attempt, per channel or for the whole message."""

    kind: OutcomeKind
    reason: str | None = None
    channel: Channel | None = None
    status_code: int | None = None
    invalidates_token: bool = False

    @property
    def delivered(self) -> bool:
        return self.kind is OutcomeKind.DELIVERED

    @property
    def retryable(self) -> bool:
        return self.kind is OutcomeKind.TRANSIENT_FAILURE

    @property
    def skipped(self) -> bool:
        return self.kind in (
            OutcomeKind.SKIPPED_INELIGIBLE,
            OutcomeKind.SKIPPED_NO_TOKEN,
            OutcomeKind.SKIPPED_INVALID_TOKEN,
            OutcomeKind.NO_CHANNEL_CONFIGURED,
        )

    @classmethod
    def delivered_via(cls, channel: Channel, status_code: int | None = None) -> "DispatchOutcome":
        return cls(OutcomeKind.DELIVERED, channel=channel, status_code=status_code)

    @classmethod
    def transient(
        cls, reason: str, channel: Channel | None = None, status_code: int | None = None
    ) -> "DispatchOutcome":
        return cls(
            OutcomeKind.TRANSIENT_FAILURE, reason=reason, channel=channel, status_code=status_code
        )

    @classmethod
    def permanent(
        cls,
        reason: str,
        channel: Channel | None = None,
        status_code: int | None = None,
        invalidates_token: bool = False,
    ) -> "DispatchOutcome":
        return cls(
            OutcomeKind.PERMANENT_FAILURE,
            reason=reason,
            channel=channel,
            status_code=status_code,
            invalidates_token=invalidates_token,
        )

    @classmethod
    def skipped_because(cls, kind: OutcomeKind, reason: str | None = None) -> "DispatchOutcome":
        return cls(kind, reason=reason)
