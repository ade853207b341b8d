"""Download and extraction of artifacts and modules from container registries."""

from __future__ import annotations

import json
import os
import re
import shutil
import tarfile
import tempfile
from collections.abc import Iterator
from contextlib import ExitStack
from pathlib import Path
from typing import Any, BinaryIO

from .listing import ModuleReference
from .push import (
    CONFIG_MEDIA_TYPE,
    CONTENT_MEDIA_TYPE,
    CONTENT_TYPE_ANNOTATION,
    TEMP_PREFIX,
    _registry_client,
)
from .metadata import REVISION_ANNOTATION
from .registry import RegistryClient, RegistryError
from .url import ARTIFACT_PREFIX, Reference, parse_artifact_ref

ANY_CONTENT_TYPE = ""
VERSION_ANNOTATION = "org.opencontainers.image.version"

_DIGEST_RE = re.compile(r"^sha256:([a-f0-9]{64})$")


def _fetch_manifest(client: RegistryClient, ref: Reference) -> dict[str, Any]:
    try:
        data = client.manifest(ref)
    except RegistryError as exc:
        raise RegistryError(f"pulling artifact manifest failed: {exc}", exc.status_code) from exc
    try:
        manifest = json.loads(data)
    except ValueError as exc:
        raise ValueError(f"parsing artifact manifest failed: {exc}") from exc
    if (
        not isinstance(manifest, dict)
        or not isinstance(manifest.get("config") or {}, dict)
        or not isinstance(manifest.get("layers") or [], list)
    ):
        raise ValueError("parsing artifact manifest failed: unexpected manifest structure")
    media_type = (manifest.get("config") or {}).get("mediaType", "")
    if media_type != CONFIG_MEDIA_TYPE:
        raise ValueError(
            f"unsupported artifact type '{media_type}', must be '{CONFIG_MEDIA_TYPE}'"
        )
    return manifest


def _content_layers(manifest: dict[str, Any]) -> Iterator[dict[str, Any]]:
    for layer in manifest.get("layers") or []:
        if isinstance(layer, dict) and layer.get("mediaType") == CONTENT_MEDIA_TYPE:
            yield layer


def _layer_digest(layer: dict[str, Any]) -> tuple[str, str]:
    digest = layer.get("digest", "")
    match = _DIGEST_RE.match(digest)
    if not match:
        raise ValueError(f"invalid layer digest {digest!r}")
    return digest, match.group(1)


def _untar(stream: BinaryIO, dst_path: str) -> None:
    root = Path(dst_path).resolve()
    root.mkdir(parents=True, exist_ok=True)
    with tarfile.open(fileobj=stream, mode="r:gz") as tar:
        for member in tar:
            target = (root / member.name).resolve()
            if target != root and root not in target.parents:
                raise ValueError(f"tar entry {member.name!r} is outside the target directory")
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isreg():
                target.parent.mkdir(parents=True, exist_ok=True)
                src = tar.extractfile(member)
                if src is None:
                    continue
                with src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
                os.chmod(target, (member.mode & 0o777) | 0o600)


def _extract(stream: BinaryIO, dst_path: str, message: str) -> None:
    try:
        _untar(stream, dst_path)
    except (tarfile.TarError, OSError, EOFError, ValueError) as exc:
        raise ValueError(f"{message}: {exc}") from exc


def pull_artifact(
    oci_url: str,
    dst_path: str,
    content_type: str = ANY_CONTENT_TYPE,
    client: RegistryClient | None = None,
) -> None:
    """Extract the artifact's content layers of the given content type into the destination."""
    ref = parse_artifact_ref(oci_url)
    repository = ref.context_name()
    with _registry_client(client) as registry:
        manifest = _fetch_manifest(registry, ref)
        found = False
        for layer in _content_layers(manifest):
            annotations = layer.get("annotations") or {}
            if content_type != ANY_CONTENT_TYPE and (
                annotations.get(CONTENT_TYPE_ANNOTATION) != content_type
            ):
                continue
            found = True
            digest, _ = _layer_digest(layer)
            try:
                blob = registry.pull_blob(repository, digest)
            except RegistryError as exc:
                raise RegistryError(
                    f"pulling artifact layer {digest} failed: {exc}", exc.status_code
                ) from exc
            with tempfile.TemporaryFile() as tmp:
                tmp.write(blob)
                tmp.seek(0)
                _extract(tmp, dst_path, f"extracting artifact layer {digest} failed")

    if not found:
        if content_type:
            raise ValueError(
                f"no layer found in artifact with media type '{CONTENT_MEDIA_TYPE}' "
                f"and content type '{content_type}'"
            )
        raise ValueError(f"no layer found in artifact with media type '{CONTENT_MEDIA_TYPE}'")


def pull_module(
    oci_url: str,
    dst_path: str,
    cache_dir: str = "",
    client: RegistryClient | None = None,
) -> ModuleReference:
    """Extract a module into the destination, caching its layers when a cache dir is given."""
    ref = parse_artifact_ref(oci_url)
    repository = ref.context_name()
    with _registry_client(client) as registry, ExitStack() as stack:
        try:
            digest = registry.digest(ref)
        except RegistryError as exc:
            raise RegistryError(
                f"resolving digest of '{oci_url}' failed: {exc}", exc.status_code
            ) from exc

        manifest = _fetch_manifest(registry, ref)
        annotations = dict(manifest.get("annotations") or {})
        version = annotations.get(VERSION_ANNOTATION, annotations.get(REVISION_ANNOTATION, ""))
        module_ref = ModuleReference(
            repository=f"{ARTIFACT_PREFIX}{repository}",
            version=version,
            digest=digest,
            annotations=annotations,
        )

        if not cache_dir:
            cache_dir = stack.enter_context(tempfile.TemporaryDirectory(prefix=TEMP_PREFIX))

        found = False
        for layer in _content_layers(manifest):
            found = True
            layer_digest, layer_hex = _layer_digest(layer)
            cached = Path(cache_dir) / f"{layer_hex}.tgz"

            if not cached.exists():
                try:
                    blob = registry.pull_blob(repository, layer_digest)
                except RegistryError as exc:
                    raise RegistryError(
                        f"pulling layer {layer_digest} failed: {exc}", exc.status_code
                    ) from exc
                try:
                    cached.write_bytes(blob)
                except OSError as exc:
                    raise OSError(f"writing layer to storage failed: {exc}") from exc

            try:
                reader = open(cached, "rb")
            except OSError as exc:
                raise OSError(f"reading layer from storage failed: {exc}") from exc
            try:
                with reader:
                    _extract(reader, dst_path, f"extracting layer {layer_digest} failed")
            except ValueError:
                cached.unlink(missing_ok=True)
                raise

    if not found:
        raise ValueError(f"no layer found in artifact with media type '{CONTENT_MEDIA_TYPE}'")
    return module_ref