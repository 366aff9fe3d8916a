"""Storage contracts the push feature depends on."""

from typing import Protocol

from .models import Message


class MessageNotFoundError(Exception):
    """Raised by a store when a message lookup must not be retried."""

    def __init__(self, message_id):
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


class MessageStore(Protocol):
    async def get_message(self, message_id) -> Message | None: ...

    async def mark_push_sent(self, message_id) -> None: ...

    async def mark_push_failed(self, message_id, error: str) -> None: ...


class ContactStore(Protocol):
    async def clear_push_token(self, contact_id) -> None: ...
