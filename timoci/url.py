"""Parsing and validation of OpenContainers artifact URLs."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

ARTIFACT_PREFIX = "oci://"
DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_REPO_RE = re.compile(r"^[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*$")
_DIGEST_RE = re.compile(r"^sha256:[a-f0-9]{64}$")
_FORMAT_ERROR = "URL must be in format 'oci://<domain>/<org>/<repo>'"


@dataclass(frozen=True)
class Reference:
    """A container registry reference, either by tag or by digest."""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    def context_name(self) -> str:
        """Return the repository address, including the registry."""
        return f"{self.registry}/{self.repository}"

    def with_digest(self, digest: str) -> "Reference":
        """Return a reference to the same repository pinned to a digest."""
        if not _DIGEST_RE.match(digest):
            raise ValueError(f"invalid digest: {digest!r}")
        return replace(self, tag=None, digest=digest)

    def __str__(self) -> str:
        if self.digest:
            return f"{self.context_name()}@{self.digest}"
        return f"{self.context_name()}:{self.tag or DEFAULT_TAG}"


def parse_reference(url: str) -> Reference:
    """Parse a registry reference such as ``host/org/repo:tag`` or ``host/repo@sha256:...``."""
    digest = None
    base = url
    if "@" in url:
        base, digest = url.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise ValueError(f"invalid digest {digest!r}")

    tag = None
    colon = base.rfind(":")
    if colon > base.rfind("/"):
        tag = base[colon + 1:]
        base = base[:colon]
        if not _TAG_RE.match(tag):
            raise ValueError(f"invalid tag {tag!r}")

    first, sep, rest = base.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        registry, repository = first, rest
    else:
        registry, repository = DEFAULT_REGISTRY, base
    if registry == "docker.io":
        registry = DEFAULT_REGISTRY
    if registry == DEFAULT_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"

    if not repository or not _REPO_RE.match(repository):
        raise ValueError(f"invalid repository {repository!r}")

    if digest:
        return Reference(registry, repository, None, digest)
    return Reference(registry, repository, tag or DEFAULT_TAG, None)


def parse_artifact_ref(oci_url: str) -> Reference:
    """Validate an ``oci://`` URL and return its reference."""
    if not oci_url.startswith(ARTIFACT_PREFIX):
        raise ValueError(_FORMAT_ERROR)
    url = oci_url[len(ARTIFACT_PREFIX):]
    try:
        return parse_reference(url)
    except ValueError as exc:
        raise ValueError(f"'{oci_url}' invalid URL: {exc}") from exc


def parse_artifact_url(oci_url: str) -> str:
    """Return the address of the artifact."""
    return str(parse_artifact_ref(oci_url))


def parse_repository_url(oci_url: str) -> str:
    """Return the address of the artifact repository."""
    return parse_artifact_ref(oci_url).context_name()


def parse_digest(oci_url: str) -> Reference:
    """Return the digest reference of the URL; the URL must name a digest."""
    ref = parse_artifact_ref(oci_url)
    if not ref.digest:
        raise ValueError(f"a digest must contain exactly one '@' separator: {ref}")
    return ref