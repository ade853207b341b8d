"""Registry connection options."""

from __future__ import annotations

from dataclasses import dataclass

USER_AGENT = "timoni"


@dataclass(frozen=True)
class RegistryOptions:
    """Authentication and transport settings for registry calls."""

    user_agent: str = USER_AGENT
    username: str | None = None
    password: str | None = None
    registry_token: str | None = None
    insecure: bool = False


def options(credentials: str = "", insecure: bool = False) -> RegistryOptions:
    """Build options from ``user:password`` or token credentials."""
    username = password = token = None
    if credentials:
        parts = credentials.split(":", 1)
        if len(parts) == 1:
            token = parts[0]
        else:
            username, password = parts
    return RegistryOptions(
        username=username, password=password, registry_token=token, insecure=insecure
    )