"""
Eligibility rules deciding whether a message should trigger a contact push.
"""

from contact_push.features.push_notifications.domain import (
    ConversationStatus,
    Message,
    MessageDirection,
)


class EligibilityGate:
    """Pure rule set; safe to call any number of times for the same message."""

    def __init__(self, skip_resolved_conversations: bool = True):
        self.skip_resolved_conversations = skip_resolved_conversations

    def ineligibility_reason(self, message: Message | None) -> str | None:
        """Return the first rule the message fails, or None when it may be pushed."""
        if message is None:
            return "message_missing"
        if message.direction != MessageDirection.OUTGOING:
            return "not_outgoing"
        if message.private:
            return "private"
        if message.is_template:
            return "template"

        conversation = message.conversation
        if conversation is None:
            return "conversation_missing"
        if conversation.contact is None:
            return "contact_missing"
        if conversation.account is None:
            return "account_missing"
        if (
            self.skip_resolved_conversations
            and conversation.status == ConversationStatus.RESOLVED
        ):
            return "conversation_resolved"

        return None

    def is_eligible(self, message: Message | None) -> bool:
        return self.ineligibility_reason(message) is None
