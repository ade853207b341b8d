"""Listing of artifact tags and module versions in a repository."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from semver import Version

from .registry import RegistryClient, RegistryError
from .url import DEFAULT_TAG, Reference, parse_artifact_ref


@dataclass
class ArtifactReference:
    """A tagged artifact in a repository."""

    repository: str
    tag: str
    digest: str = ""


@dataclass
class ModuleReference:
    """A module version in a repository."""

    repository: str
    version: str
    digest: str = ""
    annotations: dict[str, str] = field(default_factory=dict)


def _at(ref: Reference, tag: str) -> Reference:
    return replace(ref, tag=tag, digest=None)


def _latest_digest(client: RegistryClient, ref: Reference) -> str | None:
    try:
        return client.digest(_at(ref, DEFAULT_TAG))
    except RegistryError:
        return None


def _list_tags(client: RegistryClient, ref: Reference) -> list[str]:
    try:
        return client.list_tags(ref.context_name())
    except RegistryError as exc:
        raise RegistryError(f"listing tags failed: {exc}", exc.status_code) from exc


def _tag_digest(client: RegistryClient, ref: Reference, tag: str) -> str:
    try:
        return client.digest(_at(ref, tag))
    except RegistryError as exc:
        raise RegistryError(f"failed to get digest for '{tag}': {exc}", exc.status_code) from exc


def list_artifact_tags(
    oci_url: str, with_digest: bool = False, client: RegistryClient | None = None
) -> list[ArtifactReference]:
    """List the tags of an artifact, latest first, then in reverse order."""
    client = client or RegistryClient()
    ref = parse_artifact_ref(oci_url)
    result: list[ArtifactReference] = []

    latest = _latest_digest(client, ref)
    if latest is not None:
        result.append(ArtifactReference(oci_url, DEFAULT_TAG, latest if with_digest else ""))

    for tag in sorted(_list_tags(client, ref), reverse=True):
        if tag == DEFAULT_TAG:
            continue
        digest = _tag_digest(client, ref, tag) if with_digest else ""
        result.append(ArtifactReference(oci_url, tag, digest))
    return result


def _strict_version(tag: str) -> Version | None:
    try:
        return Version.parse(tag)
    except (ValueError, TypeError):
        return None


def list_module_versions(
    oci_url: str, with_digest: bool = False, client: RegistryClient | None = None
) -> list[ModuleReference]:
    """List the semver versions of a module, latest first, then newest to oldest."""
    client = client or RegistryClient()
    ref = parse_artifact_ref(oci_url)
    tags = _list_tags(client, ref)
    versions = sorted(
        (v for v in map(_strict_version, tags) if v is not None), reverse=True
    )

    result: list[ModuleReference] = []
    latest = _latest_digest(client, ref)
    if latest is not None:
        result.append(ModuleReference(oci_url, DEFAULT_TAG, latest if with_digest else ""))

    for version in versions:
        name = str(version)
        digest = _tag_digest(client, ref, name) if with_digest else ""
        result.append(ModuleReference(oci_url, name, digest))
    return result