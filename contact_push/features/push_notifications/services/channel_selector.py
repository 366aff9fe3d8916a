"""Channel selection policy. The returned order is also the fallback order."""

from contact_push.config import PushConfig
from contact_push.features.push_notifications.domain import Channel


def selected_channels(config: PushConfig) -> list[Channel]:
    channels: list[Channel] = []

    if config.has_firebase_credentials():
        channels.append(Channel.DIRECT_PROVIDER)

    if config.relay_hub_enabled:
        channels.append(Channel.RELAY_HUB)

    return channels
