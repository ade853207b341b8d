"""Inventory of the Kubernetes objects that belong to an instance."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .listing import ModuleReference

INSTANCE_KIND = "Instance"
API_GROUP = "timoni.sh"
API_VERSION = f"{API_GROUP}/v1alpha1"

_FIELD_SEPARATOR = "_"
_COLON_TRANSCODED = "__"

_FIRST_KINDS = (
    "CustomResourceDefinition",
    "Namespace",
    "ClusterClass",
    "RuntimeClass",
    "PriorityClass",
    "StorageClass",
    "VolumeSnapshotClass",
    "IngressClass",
    "GatewayClass",
    "ResourceQuota",
    "ServiceAccount",
    "Role",
    "ClusterRole",
    "RoleBinding",
    "ClusterRoleBinding",
    "ConfigMap",
    "Secret",
    "Service",
    "LimitRange",
    "Deployment",
    "StatefulSet",
    "CronJob",
    "PodDisruptionBudget",
)
_LAST_KINDS = (
    "MutatingWebhookConfiguration",
    "ValidatingWebhookConfiguration",
)


@dataclass(frozen=True)
class ObjMetadata:
    """The identity of a Kubernetes object: namespace, name, group and kind."""

    namespace: str
    name: str
    group: str
    kind: str

    def __str__(self) -> str:
        name = self.name.replace(":", _COLON_TRANSCODED)
        sep = _FIELD_SEPARATOR
        return f"{self.namespace}{sep}{name}{sep}{self.group}{sep}{self.kind}"

    @classmethod
    def parse(cls, value: str) -> "ObjMetadata":
        """Parse an inventory ID of the form ``namespace_name_group_kind``."""
        error = ValueError(f"unable to parse stored object metadata: {value}")
        namespace, sep, rest = value.partition(_FIELD_SEPARATOR)
        if not sep:
            raise error
        rest, sep, kind = rest.rpartition(_FIELD_SEPARATOR)
        if not sep:
            raise error
        name, sep, group = rest.rpartition(_FIELD_SEPARATOR)
        if not sep:
            raise error
        name = name.replace(_COLON_TRANSCODED, ":")
        if _FIELD_SEPARATOR in name:
            raise error
        return cls(namespace, name, group, kind)


@dataclass(frozen=True)
class ResourceRef:
    """An inventory entry: the object ID and its API version."""

    id: str
    version: str


@dataclass
class Instance:
    """A module instance and the inventory of objects it manages."""

    name: str = ""
    namespace: str = ""
    module: ModuleReference | None = None
    values: str = ""
    inventory: list[ResourceRef] | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    images: list[str] = field(default_factory=list)
    last_transition_time: str = ""
    kind: str = INSTANCE_KIND
    api_version: str = API_VERSION


def _parse_group_version(api_version: str) -> tuple[str, str]:
    if not api_version:
        return "", ""
    parts = api_version.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise ValueError(f"unexpected GroupVersion string: {api_version}")


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _obj_metadata(obj: dict[str, Any]) -> ObjMetadata:
    api_version = obj.get("apiVersion", "")
    group = api_version.rsplit("/", 1)[0] if "/" in api_version else ""
    meta = _metadata(obj)
    return ObjMetadata(
        meta.get("namespace", ""), meta.get("name", ""), group, obj.get("kind", "")
    )


def _make_object(group: str, version: str, kind: str, name: str, namespace: str) -> dict[str, Any]:
    api_version = f"{group}/{version}" if group else version
    metadata: dict[str, str] = {}
    if name:
        metadata["name"] = name
    if namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": api_version, "kind": kind, "metadata": metadata}


def _kind_rank(kind: str) -> int:
    if kind in _FIRST_KINDS:
        return _FIRST_KINDS.index(kind) - len(_FIRST_KINDS)
    if kind in _LAST_KINDS:
        return _LAST_KINDS.index(kind) + 1
    return 0


def _sort_key(obj: dict[str, Any]) -> tuple[int, str, str, str, str]:
    meta = _obj_metadata(obj)
    return (_kind_rank(meta.kind), meta.group, meta.kind, meta.namespace, meta.name)


def sort_objects(objects: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Return the objects in apply order: cluster prerequisites first, webhooks last."""
    return sorted(objects, key=_sort_key)


def _parse_entries(entries: Iterable[ResourceRef]) -> list[ObjMetadata]:
    return [ObjMetadata.parse(entry.id) for entry in entries]


class InstanceManager:
    """Operations on the inventory of an instance."""

    def __init__(
        self,
        name: str,
        namespace: str,
        values: str = "",
        module: ModuleReference | None = None,
    ):
        self.instance = Instance(name=name, namespace=namespace, module=module, values=values)

    def add_objects(self, objects: Iterable[dict[str, Any]]) -> None:
        """Record the given objects in the inventory, which must be empty."""
        entries = []
        for obj in sort_objects(objects):
            _, version = _parse_group_version(obj.get("apiVersion", ""))
            entries.append(ResourceRef(str(_obj_metadata(obj)), version))
        if self.instance.inventory is not None:
            raise ValueError(f"inventory already contains objects: {self.instance.inventory}")
        self.instance.inventory = entries

    def version_of(self, meta: ObjMetadata) -> str:
        """Return the API version recorded for the object, or an empty string."""
        wanted = str(meta)
        for entry in self.instance.inventory or ():
            if entry.id == wanted:
                return entry.version
        return ""

    def list_objects(self) -> list[dict[str, Any]]:
        """Return the inventory entries as minimal unstructured objects."""
        objects = []
        for entry in self.instance.inventory or ():
            meta = ObjMetadata.parse(entry.id)
            objects.append(
                _make_object(meta.group, entry.version, meta.kind, meta.name, meta.namespace)
            )
        return sort_objects(objects)

    def list_meta(self) -> list[ObjMetadata]:
        """Return the inventory entries as object identities."""
        return _parse_entries(self.instance.inventory or ())

    def diff(self, target: list[ResourceRef] | None) -> list[dict[str, Any]]:
        """Return the objects of this inventory that are missing from the target."""
        if self.instance.inventory is None or target is None:
            return []
        present = set(_parse_entries(target))
        missing = [meta for meta in self.list_meta() if meta not in present]
        return sort_objects(
            _make_object(m.group, self.version_of(m), m.kind, m.name, m.namespace)
            for m in missing
        )