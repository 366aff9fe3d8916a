"""
Service layer for the contact push feature.
"""

from .channel_selector import selected_channels
from .credential_cache import CredentialCache, CredentialError, get_credential_cache
from .diagnostics import (
    audit_push_tokens,
    audit_recent_messages,
    check_push_configuration,
    run_test_notification,
)
from .dispatcher import DirectProviderChannel, RelayHubChannel, build_payload, build_test_payload
from .eligibility import EligibilityGate
from .orchestrator import NotificationOrchestrator
from .token_validator import is_valid_format

__all__ = [
    "selected_channels",
    "CredentialCache",
    "CredentialError",
    "get_credential_cache",
    "audit_push_tokens",
    "audit_recent_messages",
    "check_push_configuration",
    "run_test_notification",
    "DirectProviderChannel",
    "RelayHubChannel",
    "build_payload",
    "build_test_payload",
    "EligibilityGate",
    "NotificationOrchestrator",
    "is_valid_format",
]
