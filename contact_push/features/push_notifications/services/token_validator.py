"""Structural device-token check run before any network call."""

import re

MIN_TOKEN_LENGTH = 30
TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_:\-]+")


def is_valid_format(token: str | None) -> bool:
    """
    Judge whether a device token is worth sending to a provider.

    Passing this check does not mean the provider will accept the token.
    """
    if not token or not token.strip():
        return False
    if len(token) < MIN_TOKEN_LENGTH:
        return False
    return TOKEN_PATTERN.fullmatch(token) is not None
