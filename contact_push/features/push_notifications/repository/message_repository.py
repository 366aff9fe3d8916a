"""
Postgres persistence for the push feature.

Reads a message together with its conversation, contact and account, clears
rejected device tokens and records per-message delivery tracking. Also
serves the contact and tracking reads behind the push diagnostics.
"""

from typing import Any

from contact_push.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from contact_push.features.push_notifications.domain import (
    Account,
    Contact,
    Conversation,
    ConversationStatus,
    Message,
    MessageDirection,
)
from contact_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 1000

# Conversation message_type column: 0 incoming, 1 outgoing, 2 activity, 3 template
OUTGOING_MESSAGE_TYPES = {1, "outgoing"}
TEMPLATE_MESSAGE_TYPES = {3, "template"}

MESSAGE_GRAPH_QUERY = """
    SELECT
        m.id AS message_id,
        m.message_type,
        m.content,
        m.content_type,
        m.private,
        m.push_notification_sent_at,
        m.push_notification_error,
        COALESCE(u.display_name, u.name) AS sender_name,
        cv.id AS conversation_id,
        cv.status AS conversation_status,
        c.id AS contact_id,
        c.name AS contact_name,
        c.push_token,
        c.pubsub_token,
        a.id AS account_id,
        a.name AS account_name
    FROM messages m
    LEFT JOIN users u ON m.sender_type = 'User' AND u.id = m.sender_id
    LEFT JOIN conversations cv ON cv.id = m.conversation_id
    LEFT JOIN contacts c ON c.id = cv.contact_id
    LEFT JOIN accounts a ON a.id = cv.account_id
    WHERE m.id = %s
"""

CONVERSATION_STATUSES = {
    0: ConversationStatus.OPEN,
    1: ConversationStatus.RESOLVED,
    2: ConversationStatus.PENDING,
    3: ConversationStatus.SNOOZED,
}


def _conversation_status(value: Any) -> ConversationStatus:
    if isinstance(value, int):
        return CONVERSATION_STATUSES.get(value, ConversationStatus.OPEN)
    try:
        return ConversationStatus(str(value))
    except ValueError:
        return ConversationStatus.OPEN


def message_from_row(row: dict[str, Any]) -> Message:
    """Assemble the message graph from a joined row; missing parents stay None."""
    contact = None
    if row.get("contact_id") is not None:
        contact = Contact(
            id=row["contact_id"],
            name=row.get("contact_name"),
            push_token=row.get("push_token"),
            pubsub_token=row.get("pubsub_token"),
        )

    account = None
    if row.get("account_id") is not None:
        account = Account(id=row["account_id"], name=row.get("account_name"))

    conversation = None
    if row.get("conversation_id") is not None:
        conversation = Conversation(
            id=row["conversation_id"],
            status=_conversation_status(row.get("conversation_status")),
            contact=contact,
            account=account,
        )

    message_type = row.get("message_type")
    direction = (
        MessageDirection.OUTGOING
        if message_type in OUTGOING_MESSAGE_TYPES
        else MessageDirection.INCOMING
    )
    content_type = row.get("content_type") or "text"
    if message_type in TEMPLATE_MESSAGE_TYPES:
        content_type = "template"

    return Message(
        id=row["message_id"],
        direction=direction,
        content=row.get("content"),
        private=bool(row.get("private")),
        content_type=str(content_type),
        sender_name=row.get("sender_name"),
        conversation=conversation,
        push_notification_sent_at=row.get("push_notification_sent_at"),
        push_notification_error=row.get("push_notification_error"),
    )


class MessageRepository:
    """Message and contact persistence used by the push job."""

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_message(self, message_id) -> Message | None:
        row = await fetch_one(MESSAGE_GRAPH_QUERY, (message_id,))
        if not row:
            return None
        return message_from_row(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def clear_push_token(self, contact_id) -> None:
        query = """
            UPDATE contacts
            SET push_token = NULL, updated_at = NOW()
            WHERE id = %s AND push_token IS NOT NULL
        """
        affected = await execute_query(query, (contact_id,))
        logger.info("Contact push token cleared", contact_id=contact_id, affected_rows=affected)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def mark_push_sent(self, message_id) -> None:
        query = """
            UPDATE messages
            SET push_notification_sent_at = NOW(), push_notification_error = NULL
            WHERE id = %s
        """
        await execute_query(query, (message_id,))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def mark_push_failed(self, message_id, error: str) -> None:
        query = """
            UPDATE messages
            SET push_notification_sent_at = NULL, push_notification_error = %s
            WHERE id = %s
        """
        await execute_query(query, (error[:MAX_ERROR_LENGTH], message_id))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def contact_push_tokens(self, limit: int = 10000) -> list[str | None]:
        """Push token column for the most recently updated contacts."""
        query = """
            SELECT push_token
            FROM contacts
            ORDER BY updated_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (limit,))
        return [row.get("push_token") for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_contact(self, contact_id) -> Contact | None:
        query = """
            SELECT id, name, push_token, pubsub_token
            FROM contacts
            WHERE id = %s
        """
        row = await fetch_one(query, (contact_id,))
        if not row:
            return None
        return Contact(
            id=row["id"],
            name=row.get("name"),
            push_token=row.get("push_token"),
            pubsub_token=row.get("pubsub_token"),
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def recent_push_tracking(self, window_minutes: int = 60) -> dict[str, int]:
        """Delivery tracking counts for outgoing messages created within the window."""
        query = """
            SELECT
                COUNT(*) AS outgoing,
                COUNT(push_notification_sent_at) AS sent,
                COUNT(push_notification_error) AS failed
            FROM messages
            WHERE message_type = 1
              AND created_at > NOW() - make_interval(mins => %s)
        """
        row = await fetch_one(query, (window_minutes,)) or {}
        return {
            "outgoing": int(row.get("outgoing") or 0),
            "sent": int(row.get("sent") or 0),
            "failed": int(row.get("failed") or 0),
        }


message_repository = MessageRepository()
