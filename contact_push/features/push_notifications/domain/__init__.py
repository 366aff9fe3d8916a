"""Domain primitives for contact push notifications."""

from .models import (  # noqa: F401
    Account,
    Channel,
    Contact,
    Conversation,
    ConversationStatus,
    DispatchOutcome,
    Message,
    MessageDirection,
    OutcomeKind,
    Pushable,
    PushPayload,
)
from .stores import ContactStore, MessageNotFoundError, MessageStore  # noqa: F401
