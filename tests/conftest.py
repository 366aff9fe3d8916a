import asyncio
import json

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from contact_push.config import PushConfig
from contact_push.features.push_notifications.domain import (
    Account,
    Contact,
    Conversation,
    ConversationStatus,
    Message,
    MessageDirection,
)
from contact_push.features.push_notifications.services.credential_cache import (
    reset_credential_cache,
)

PROJECT_ID = "demo-project"
VALID_TOKEN = "fGq1x7Zc0Tm:APA91bH-example_device_token_0123456789"
RELAY_HUB_URL = "https://hub.example.com"
INSTALLATION_ID = "installation-123"


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture
def service_account_json(private_key_pem) -> str:
    return json.dumps(
        {
            "type": "service_account",
            "project_id": PROJECT_ID,
            "private_key_id": "key-1",
            "private_key": private_key_pem,
            "client_email": "push@demo-project.iam.gserviceaccount.com",
            "token_uri": "https://oauth2.googleapis.com/token",
        }
    )


@pytest.fixture(autouse=True)
def _reset_shared_credential_cache():
    reset_credential_cache()
    yield
    reset_credential_cache()


@pytest.fixture
def relay_only_config() -> PushConfig:
    return PushConfig(
        relay_hub_enabled=True,
        relay_hub_url=RELAY_HUB_URL,
        installation_identifier=INSTALLATION_ID,
    )


@pytest.fixture
def direct_only_config(service_account_json) -> PushConfig:
    return PushConfig(
        firebase_project_id=PROJECT_ID,
        firebase_credentials=service_account_json,
        relay_hub_enabled=False,
    )


@pytest.fixture
def both_channels_config(service_account_json) -> PushConfig:
    return PushConfig(
        firebase_project_id=PROJECT_ID,
        firebase_credentials=service_account_json,
        relay_hub_enabled=True,
        relay_hub_url=RELAY_HUB_URL,
        installation_identifier=INSTALLATION_ID,
    )


def build_message(
    *,
    message_id: int = 42,
    direction: MessageDirection = MessageDirection.OUTGOING,
    content: str | None = "Your order has shipped",
    private: bool = False,
    content_type: str = "text",
    sender_name: str | None = "Alice",
    push_token: str | None = VALID_TOKEN,
    status: ConversationStatus = ConversationStatus.OPEN,
    with_contact: bool = True,
    with_account: bool = True,
) -> Message:
    contact = Contact(id=7, name="Bob", push_token=push_token) if with_contact else None
    account = Account(id=3, name="Acme Support") if with_account else None
    conversation = Conversation(id=11, status=status, contact=contact, account=account)
    return Message(
        id=message_id,
        direction=direction,
        content=content,
        private=private,
        content_type=content_type,
        sender_name=sender_name,
        conversation=conversation,
    )


@pytest.fixture
def make_message():
    return build_message


class FakeMessageStore:
    """In-memory MessageStore/ContactStore used by the job and orchestrator tests."""

    def __init__(self, messages: dict | None = None):
        self.messages = dict(messages or {})
        self.sent: list = []
        self.failed: list[tuple] = []
        self.cleared_contacts: list = []
        self.lookups = 0

    async def get_message(self, message_id):
        self.lookups += 1
        return self.messages.get(message_id)

    async def mark_push_sent(self, message_id) -> None:
        self.sent.append(message_id)

    async def mark_push_failed(self, message_id, error: str) -> None:
        self.failed.append((message_id, error))

    async def clear_push_token(self, contact_id) -> None:
        self.cleared_contacts.append(contact_id)


@pytest.fixture
def fake_store():
    return FakeMessageStore()


class FakeRedis:
    """Stands in for FastRedisClient's queue operations."""

    def __init__(self):
        self.queues: dict[str, list[str]] = {}
        self.initialized = False

    async def initialize(self):
        self.initialized = True

    async def push_job(self, queue: str, payload: str) -> int:
        self.queues.setdefault(queue, []).insert(0, payload)
        return len(self.queues[queue])

    async def pop_job(self, queue: str, timeout_s: int = 5) -> str | None:
        await asyncio.sleep(0)
        items = self.queues.get(queue) or []
        return items.pop() if items else None

    async def queue_length(self, queue: str) -> int:
        return len(self.queues.get(queue, []))


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def valid_token() -> str:
    return VALID_TOKEN
