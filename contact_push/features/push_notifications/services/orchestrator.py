"""
Contact push notification orchestration.

Runs one message through the dispatch state machine:

    Start -> GateChecked -> TokenChecked -> ChannelChosen -> Dispatching -> Done

Expected conditions (ineligible message, missing or malformed token, no
channel configured) come back as outcome values. Channels are tried one at a
time in fallback order and the first delivery wins.
"""

import asyncio

from contact_push.config import PushConfig
from contact_push.features.push_notifications.domain import (
    Channel,
    ContactStore,
    DispatchOutcome,
    Message,
    OutcomeKind,
    Pushable,
    PushPayload,
)
from contact_push.features.push_notifications.services import token_validator
from contact_push.features.push_notifications.services.channel_selector import selected_channels
from contact_push.features.push_notifications.services.credential_cache import (
    CredentialCache,
    CredentialError,
    get_credential_cache,
)
from contact_push.features.push_notifications.services.dispatcher import (
    DirectProviderChannel,
    RelayHubChannel,
    build_payload,
    build_test_payload,
)
from contact_push.features.push_notifications.services.eligibility import EligibilityGate
from contact_push.infrastructure.observability.logging import (
    get_logger,
    log_dispatch_failure,
    mask_token,
)

logger = get_logger(__name__)


class NotificationOrchestrator:
    """
    Composes eligibility, token validation, channel selection and delivery.

    The credential cache is injected so that one instance can be shared for
    the lifetime of the process; when none is given, the process-wide cache
    for the configured credentials is used.
    """

    def __init__(
        self,
        config: PushConfig,
        *,
        contact_store: ContactStore | None = None,
        credential_cache: CredentialCache | None = None,
        direct_channel: DirectProviderChannel | None = None,
        relay_channel: RelayHubChannel | None = None,
    ):
        self.config = config
        self.gate = EligibilityGate(skip_resolved_conversations=config.skip_resolved_conversations)
        self.contact_store = contact_store
        self._credential_cache = credential_cache
        self._direct_channel = direct_channel
        self._relay_channel = relay_channel

    async def dispatch(self, message: Message) -> DispatchOutcome:
        """
        Attempt to notify the contact of a message.

        Returns:
            DispatchOutcome: Terminal outcome for the whole message

        Raises:
            Exception: Unexpected channel errors propagate for the job runner to retry
        """
        # Start -> GateChecked
        reason = self.gate.ineligibility_reason(message)
        if reason is not None:
            logger.info(
                "Skipping contact push, message not eligible",
                message_id=getattr(message, "id", None),
                reason=reason,
            )
            return DispatchOutcome.skipped_because(OutcomeKind.SKIPPED_INELIGIBLE, reason)

        contact = message.conversation.contact

        # GateChecked -> TokenChecked
        token = contact.get_push_token()
        if not token:
            logger.info("Skipping contact push, no push token", contact_id=contact.id)
            return DispatchOutcome.skipped_because(OutcomeKind.SKIPPED_NO_TOKEN)

        if not token_validator.is_valid_format(token):
            logger.info(
                "Skipping contact push, malformed push token",
                contact_id=contact.id,
                token_preview=mask_token(token),
                token_length=len(token),
            )
            return DispatchOutcome.skipped_because(OutcomeKind.SKIPPED_INVALID_TOKEN)

        # TokenChecked -> ChannelChosen
        channels = selected_channels(self.config)
        if not channels:
            logger.warning(
                "No push channel configured, neither Firebase nor relay hub",
                message_id=message.id,
            )
            return DispatchOutcome.skipped_because(OutcomeKind.NO_CHANNEL_CONFIGURED)

        payload = build_payload(message, token)

        logger.info(
            "Dispatching contact push",
            message_id=message.id,
            contact_id=contact.id,
            token_preview=mask_token(token),
            channels=[channel.value for channel in channels],
        )

        # ChannelChosen -> Dispatching -> Done
        return await self._dispatch_with_timeout(message.id, contact, channels, payload)

    async def send_test_notification(self, contact: Pushable) -> DispatchOutcome:
        """
        Send a fixed test notification to one contact through the selected channels.

        Skips the eligibility gate since no message is involved; token and
        channel checks still apply.
        """
        contact_id = getattr(contact, "id", None)
        token = contact.get_push_token()
        if not token:
            return DispatchOutcome.skipped_because(OutcomeKind.SKIPPED_NO_TOKEN)
        if not token_validator.is_valid_format(token):
            return DispatchOutcome.skipped_because(OutcomeKind.SKIPPED_INVALID_TOKEN)

        channels = selected_channels(self.config)
        if not channels:
            return DispatchOutcome.skipped_because(OutcomeKind.NO_CHANNEL_CONFIGURED)

        logger.info(
            "Sending test contact push",
            contact_id=contact_id,
            token_preview=mask_token(token),
            channels=[channel.value for channel in channels],
        )
        return await self._dispatch_with_timeout(
            None, contact, channels, build_test_payload(token)
        )

    async def _dispatch_with_timeout(
        self,
        message_id,
        contact: Pushable,
        channels: list[Channel],
        payload: PushPayload,
    ) -> DispatchOutcome:
        contact_id = getattr(contact, "id", None)
        try:
            return await asyncio.wait_for(
                self._dispatch_in_order(message_id, contact, channels, payload),
                timeout=self.config.dispatch_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "Contact push dispatch timed out",
                message_id=message_id,
                contact_id=contact_id,
                timeout_seconds=self.config.dispatch_timeout_seconds,
            )
            return DispatchOutcome.transient("dispatch timed out")

    async def _dispatch_in_order(
        self,
        message_id,
        contact: Pushable,
        channels: list[Channel],
        payload: PushPayload,
    ) -> DispatchOutcome:
        contact_id = getattr(contact, "id", None)
        failures: list[DispatchOutcome] = []
        token_cleared = False

        for channel in channels:
            outcome = await self._send_via(channel, payload)

            if outcome.delivered:
                logger.info(
                    "Contact push delivered",
                    message_id=message_id,
                    contact_id=contact_id,
                    channel=channel.value,
                    status_code=outcome.status_code,
                )
                return outcome

            failures.append(outcome)
            log_dispatch_failure(
                message_id=message_id,
                contact_id=contact_id,
                channel=channel.value,
                status_code=outcome.status_code,
                reason=outcome.reason or outcome.kind.value,
                push_token=payload.token,
                permanent=not outcome.retryable,
            )

            if outcome.invalidates_token and not token_cleared:
                await self._invalidate_token(contact, outcome)
                token_cleared = True

        return self._combine(failures)

    async def _send_via(self, channel: Channel, payload: PushPayload) -> DispatchOutcome:
        if channel is Channel.DIRECT_PROVIDER:
            try:
                cache = self._get_credential_cache()
                bearer_token = await cache.current_bearer_token()
            except CredentialError as e:
                if e.retryable:
                    logger.warning(
                        "Firebase token endpoint unavailable, direct channel deferred",
                        error=str(e),
                        error_kind=e.kind.value,
                    )
                    return DispatchOutcome.transient(
                        f"credential exchange unavailable: {e.kind.value}", channel
                    )

                logger.error(
                    "Firebase credentials unusable, skipping direct channel",
                    error=str(e),
                    error_kind=e.kind.value,
                )
                return DispatchOutcome.permanent(f"credential error: {e.kind.value}", channel)

            return await self._get_direct_channel().send(payload, bearer_token)

        return await self._get_relay_channel().send(payload)

    def _get_credential_cache(self) -> CredentialCache:
        if self._credential_cache is None:
            self._credential_cache = get_credential_cache(
                self.config.firebase_project_id, self.config.firebase_credentials
            )
        return self._credential_cache

    def _get_direct_channel(self) -> DirectProviderChannel:
        if self._direct_channel is None:
            self._direct_channel = DirectProviderChannel(self.config.firebase_project_id)
        return self._direct_channel

    def _get_relay_channel(self) -> RelayHubChannel:
        if self._relay_channel is None:
            self._relay_channel = RelayHubChannel(
                self.config.relay_hub_url, self.config.installation_identifier
            )
        return self._relay_channel

    async def _invalidate_token(self, contact: Pushable, outcome: DispatchOutcome) -> None:
        """Forget a device token the provider has rejected for good."""
        contact_id = getattr(contact, "id", None)
        logger.info(
            "Clearing invalid push token",
            contact_id=contact_id,
            channel=outcome.channel.value if outcome.channel else None,
            reason=outcome.reason,
        )
        contact.clear_push_token()

        if self.contact_store is None:
            return

        try:
            await self.contact_store.clear_push_token(contact_id)
        except Exception as e:
            logger.error(
                "Failed to persist cleared push token",
                contact_id=contact_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    @staticmethod
    def _combine(failures: list[DispatchOutcome]) -> DispatchOutcome:
        last = failures[-1]
        reason = "; ".join(
            f"{outcome.channel.value if outcome.channel else 'unknown'}: {outcome.reason}"
            for outcome in failures
        )
        invalidated = any(outcome.invalidates_token for outcome in failures)

        if any(outcome.retryable for outcome in failures):
            return DispatchOutcome(
                OutcomeKind.TRANSIENT_FAILURE,
                reason=reason,
                channel=last.channel,
                status_code=last.status_code,
                invalidates_token=invalidated,
            )

        return DispatchOutcome.permanent(
            reason, last.channel, last.status_code, invalidates_token=invalidated
        )
