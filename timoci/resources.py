"""Options and change-set helpers for server-side apply operations."""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .instances import API_GROUP, INSTANCE_KIND, ObjMetadata, _make_object

FIELD_MANAGER = "timoni"
OWNER_GROUP = f"{INSTANCE_KIND.lower()}.{API_GROUP}"

FORCE_ACTION = f"action.{API_GROUP}/force"
IF_NOT_PRESENT_ACTION = f"action.{API_GROUP}/one-off"
PRUNE_ACTION = f"action.{API_GROUP}/prune"
ENABLED_VALUE = "enabled"
DISABLED_VALUE = "disabled"

PROPAGATION_BACKGROUND = "Background"


class Action(str, enum.Enum):
    CREATED = "created"
    CONFIGURED = "configured"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ChangeSetEntry:
    """The outcome of an apply or delete operation on one object."""

    object_metadata: ObjMetadata
    group_version: str
    subject: str
    action: Action

    def __str__(self) -> str:
        return f"{self.subject} {self.action.value}"


@dataclass
class ApplyOptions:
    """Settings for server-side apply."""

    force: bool = False
    force_selector: dict[str, str] = field(default_factory=dict)
    if_not_present_selector: dict[str, str] = field(default_factory=dict)
    wait_timeout: float = 0.0


@dataclass
class DeleteOptions:
    """Settings for deleting objects."""

    propagation_policy: str = PROPAGATION_BACKGROUND
    inclusions: dict[str, str] = field(default_factory=dict)
    exclusions: dict[str, str] = field(default_factory=dict)


def select_objects_from_set(
    entries: Iterable[ChangeSetEntry], action: Action
) -> list[dict[str, Any]]:
    """Return the objects of the change set that underwent the given action."""
    return [
        _make_object(
            entry.object_metadata.group,
            entry.group_version,
            entry.object_metadata.kind,
            entry.object_metadata.name,
            entry.object_metadata.namespace,
        )
        for entry in entries
        if entry.action == action
    ]


def apply_options(force: bool = False, wait: float = 0.0) -> ApplyOptions:
    """Return the default options for server-side apply; ``wait`` is in seconds."""
    return ApplyOptions(
        force=force,
        force_selector={FORCE_ACTION: ENABLED_VALUE},
        if_not_present_selector={IF_NOT_PRESENT_ACTION: ENABLED_VALUE},
        wait_timeout=wait,
    )


def delete_options(name: str, namespace: str) -> DeleteOptions:
    """Return the default options for deleting the objects of an instance."""
    return DeleteOptions(
        propagation_policy=PROPAGATION_BACKGROUND,
        inclusions={
            f"{OWNER_GROUP}/name": name,
            f"{OWNER_GROUP}/namespace": namespace,
        },
        exclusions={PRUNE_ACTION: DISABLED_VALUE},
    )