import json

import pytest

from contact_push.config import Settings
from contact_push.features.push_notifications.domain import Contact
from contact_push.features.push_notifications.services.credential_cache import DEFAULT_TOKEN_URI
from contact_push.features.push_notifications.services.diagnostics import (
    audit_push_tokens,
    audit_recent_messages,
    check_push_configuration,
    run_test_notification,
)
from contact_push.features.push_notifications.services.dispatcher import TEST_NOTIFICATION_TITLE


def _settings(**overrides) -> Settings:
    values = {
        "FIREBASE_PROJECT_ID": None,
        "FIREBASE_CREDENTIALS": None,
        "ENABLE_PUSH_RELAY_SERVER": True,
        "INSTALLATION_IDENTIFIER": "installation-123",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_relay_only_configuration_is_healthy():
    report = check_push_configuration(_settings())

    assert report["healthy"] is True
    assert report["selected_channels"] == ["relay_hub"]
    assert report["firebase"]["credentials_configured"] is False
    assert report["relay_hub"]["installation_identifier_configured"] is True


def test_nothing_configured_is_unhealthy():
    report = check_push_configuration(_settings(ENABLE_PUSH_RELAY_SERVER=False))

    assert report["healthy"] is False
    assert report["selected_channels"] == []
    assert any("No push channel" in issue for issue in report["issues"])


def test_firebase_credentials_inspected(service_account_json):
    report = check_push_configuration(
        _settings(
            FIREBASE_PROJECT_ID="demo-project",
            FIREBASE_CREDENTIALS=service_account_json,
            ENABLE_PUSH_RELAY_SERVER=False,
        )
    )

    firebase = report["firebase"]
    assert report["healthy"] is True
    assert report["selected_channels"] == ["direct_provider"]
    assert firebase["credentials_valid_json"] is True
    assert firebase["client_email"] == "push@demo-project.iam.gserviceaccount.com"
    assert firebase["warnings"] == []


def test_project_mismatch_reported(service_account_json):
    report = check_push_configuration(
        _settings(FIREBASE_PROJECT_ID="other-project", FIREBASE_CREDENTIALS=service_account_json)
    )

    assert any("mismatch" in warning for warning in report["firebase"]["warnings"])


def test_invalid_credentials_json_makes_direct_only_setup_unhealthy():
    report = check_push_configuration(
        _settings(
            FIREBASE_PROJECT_ID="demo-project",
            FIREBASE_CREDENTIALS="{broken",
            ENABLE_PUSH_RELAY_SERVER=False,
        )
    )

    assert report["healthy"] is False
    assert report["firebase"]["credentials_valid_json"] is False


def test_credentials_without_private_key_warned():
    report = check_push_configuration(
        _settings(
            FIREBASE_PROJECT_ID="demo-project",
            FIREBASE_CREDENTIALS=json.dumps({"client_email": "a@b.c"}),
        )
    )

    assert "Credentials have no private_key" in report["firebase"]["warnings"]


def test_audit_counts_tokens_by_shape(valid_token):
    report = audit_push_tokens([valid_token, None, "", "short", "has a space but is long enough!!"])

    assert report == {
        "total": 5,
        "with_token": 3,
        "without_token": 2,
        "with_token_percent": 60.0,
        "without_token_percent": 40.0,
        "invalid_format": 2,
        "suspiciously_short": 1,
    }


def test_audit_of_no_contacts():
    report = audit_push_tokens([])

    assert report["total"] == 0
    assert report["with_token_percent"] == 0.0


def test_recent_message_tracking_summary():
    report = audit_recent_messages({"outgoing": 20, "sent": 15, "failed": 3}, window_minutes=60)

    assert report == {
        "window_minutes": 60,
        "outgoing": 20,
        "sent": 15,
        "failed": 3,
        "untracked": 2,
        "sent_percent": 75.0,
    }


def test_recent_message_tracking_without_messages():
    report = audit_recent_messages({})

    assert report["outgoing"] == 0
    assert report["sent_percent"] == 0.0


@pytest.mark.asyncio
async def test_test_notification_sent_through_relay_hub(httpx_mock, relay_only_config, valid_token):
    httpx_mock.add_response(
        method="POST", url="https://hub.example.com/send_push", json={"success": True}
    )
    contact = Contact(id=7, name="Bob", push_token=valid_token)

    report = await run_test_notification(contact, relay_only_config)

    assert report["sent"] is True
    assert report["channel"] == "relay_hub"
    assert report["status_code"] == 200
    assert valid_token not in report["token_preview"]

    body = json.loads(httpx_mock.get_requests()[0].content)
    assert body["installation_identifier"] == "installation-123"
    assert body["fcm_options"]["token"] == valid_token
    assert body["fcm_options"]["notification"]["title"] == TEST_NOTIFICATION_TITLE


@pytest.mark.asyncio
async def test_test_notification_reports_provider_rejection(
    httpx_mock, direct_only_config, valid_token
):
    httpx_mock.add_response(
        method="POST",
        url=DEFAULT_TOKEN_URI,
        json={"access_token": "ya29.token", "expires_in": 3600},
    )
    httpx_mock.add_response(
        method="POST",
        url="https://fcm.googleapis.com/v1/projects/demo-project/messages:send",
        status_code=404,
        json={"error": {"code": 404, "status": "NOT_FOUND"}},
    )
    contact = Contact(id=7, push_token=valid_token)

    report = await run_test_notification(contact, direct_only_config)

    assert report["sent"] is False
    assert report["outcome"] == "permanent_failure"
    assert report["status_code"] == 404
    assert contact.push_token is None


@pytest.mark.asyncio
async def test_test_notification_without_token_sends_nothing(relay_only_config):
    report = await run_test_notification(Contact(id=7), relay_only_config)

    assert report["sent"] is False
    assert report["outcome"] == "skipped_no_token"
    assert report["token_preview"] == "none"
