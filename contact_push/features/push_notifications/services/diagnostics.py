"""
Push configuration and token diagnostics.

Checks used by the debug endpoints and by operators investigating missing
notifications. Only run_test_notification() contacts a provider.
"""

import json
from collections.abc import Iterable
from typing import Any

from contact_push.config import PushConfig, Settings
from contact_push.features.push_notifications.domain import Contact
from contact_push.features.push_notifications.services import token_validator
from contact_push.features.push_notifications.services.channel_selector import selected_channels
from contact_push.features.push_notifications.services.orchestrator import (
    NotificationOrchestrator,
)
from contact_push.infrastructure.observability.logging import get_logger, mask_token

logger = get_logger(__name__)

SHORT_TOKEN_THRESHOLD = 20


def _percentage(part: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(part / total * 100, 1)


def _firebase_report(project_id: str | None, credentials: str | None) -> dict[str, Any]:
    report: dict[str, Any] = {
        "project_id_configured": bool(project_id and project_id.strip()),
        "project_id": project_id,
        "credentials_configured": bool(credentials and credentials.strip()),
        "credentials_length": len(credentials) if credentials else 0,
        "credentials_valid_json": False,
        "client_email": None,
        "credentials_project_id": None,
        "warnings": [],
    }

    if not report["credentials_configured"]:
        return report

    try:
        parsed = json.loads(credentials)
    except ValueError as e:
        report["warnings"].append(f"Credentials are invalid JSON: {e}")
        return report

    if not isinstance(parsed, dict):
        report["warnings"].append("Credentials are not a JSON object")
        return report

    report["credentials_valid_json"] = True
    report["client_email"] = parsed.get("client_email")
    report["credentials_project_id"] = parsed.get("project_id")

    if not parsed.get("private_key"):
        report["warnings"].append("Credentials have no private_key")

    creds_project = parsed.get("project_id")
    if creds_project and project_id and creds_project != project_id:
        report["warnings"].append(
            f"Project ID mismatch: env={project_id}, credentials={creds_project}"
        )

    return report


def check_push_configuration(settings: Settings) -> dict[str, Any]:
    """Summarise which push channels are usable with the given settings."""
    config = settings.push_config()
    firebase = _firebase_report(config.firebase_project_id, config.firebase_credentials)

    relay_hub = {
        "enabled": config.relay_hub_enabled,
        "url": config.relay_hub_url,
        "installation_identifier_configured": bool(config.installation_identifier),
    }

    channels = selected_channels(config)
    firebase_usable = config.has_firebase_credentials() and firebase["credentials_valid_json"]

    issues = list(firebase["warnings"])
    if not channels:
        issues.append("No push channel configured, neither Firebase nor relay hub")
    if config.relay_hub_enabled and not config.installation_identifier:
        issues.append("Relay hub enabled without an installation identifier")

    report = {
        "healthy": bool(channels) and (firebase_usable or config.relay_hub_enabled),
        "firebase": firebase,
        "relay_hub": relay_hub,
        "selected_channels": [channel.value for channel in channels],
        "skip_resolved_conversations": config.skip_resolved_conversations,
        "dispatch_timeout_seconds": config.dispatch_timeout_seconds,
        "issues": issues,
    }

    logger.info(
        "Push configuration checked",
        healthy=report["healthy"],
        selected_channels=report["selected_channels"],
        issue_count=len(issues),
    )
    return report


def audit_push_tokens(tokens: Iterable[str | None]) -> dict[str, Any]:
    """Count stored contact tokens by presence and shape."""
    total = 0
    with_token = 0
    invalid_format = 0
    short = 0

    for token in tokens:
        total += 1
        if not token:
            continue

        with_token += 1
        if len(token) < SHORT_TOKEN_THRESHOLD:
            short += 1
        if not token_validator.is_valid_format(token):
            invalid_format += 1

    without_token = total - with_token
    return {
        "total": total,
        "with_token": with_token,
        "without_token": without_token,
        "with_token_percent": _percentage(with_token, total),
        "without_token_percent": _percentage(without_token, total),
        "invalid_format": invalid_format,
        "suspiciously_short": short,
    }


def audit_recent_messages(counts: dict[str, int], window_minutes: int = 60) -> dict[str, Any]:
    """Summarise delivery tracking for recent outgoing messages."""
    outgoing = counts.get("outgoing", 0)
    sent = counts.get("sent", 0)
    failed = counts.get("failed", 0)
    return {
        "window_minutes": window_minutes,
        "outgoing": outgoing,
        "sent": sent,
        "failed": failed,
        "untracked": max(outgoing - sent - failed, 0),
        "sent_percent": _percentage(sent, outgoing),
    }


async def run_test_notification(
    contact: Contact,
    config: PushConfig,
    *,
    orchestrator: NotificationOrchestrator | None = None,
) -> dict[str, Any]:
    """Send a test push to one contact and report what the provider said."""
    orchestrator = orchestrator or NotificationOrchestrator(config)
    # Captured first; a rejected token is cleared during the send
    token_preview = mask_token(contact.get_push_token())
    outcome = await orchestrator.send_test_notification(contact)

    report = {
        "contact_id": contact.id,
        "token_preview": token_preview,
        "sent": outcome.delivered,
        "outcome": outcome.kind.value,
        "channel": outcome.channel.value if outcome.channel else None,
        "status_code": outcome.status_code,
        "reason": outcome.reason,
    }

    logger.info(
        "Test contact push finished",
        contact_id=contact.id,
        outcome=report["outcome"],
        channel=report["channel"],
        status_code=report["status_code"],
    )
    return report
