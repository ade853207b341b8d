"""Packaging and upload of artifacts and modules to container registries."""

from __future__ import annotations

import gzip
import hashlib
import json
import tempfile
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .build import build_artifact
from .registry import OCI_MANIFEST, RegistryClient, RegistryError
from .url import ARTIFACT_PREFIX, Reference, parse_artifact_ref

CONFIG_MEDIA_TYPE = "application/vnd.timoni.config.v1+json"
CONTENT_MEDIA_TYPE = "application/vnd.timoni.content.v1.tar+gzip"
CONTENT_TYPE_ANNOTATION = "sh.timoni.content.type"
TIMONI_MOD_CONTENT_TYPE = "module"
TIMONI_MOD_VENDOR_CONTENT_TYPE = "module/vendor"
TEMP_PREFIX = "timoni"

# Keep only the top-level cue.mod directory and everything below it.
_VENDOR_IGNORE = ("*", "!cue.mod")
_MODULE_IGNORE = "cue.mod/"


def _sha256(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class _Layer:
    data: bytes
    content_type: str

    @property
    def digest(self) -> str:
        return _sha256(self.data)

    @property
    def diff_id(self) -> str:
        return _sha256(gzip.decompress(self.data))

    def descriptor(self) -> dict[str, Any]:
        return {
            "mediaType": CONTENT_MEDIA_TYPE,
            "size": len(self.data),
            "digest": self.digest,
            "annotations": {CONTENT_TYPE_ANNOTATION: self.content_type},
        }


@contextmanager
def _registry_client(client: RegistryClient | None) -> Iterator[RegistryClient]:
    if client is not None:
        yield client
        return
    with RegistryClient() as owned:
        yield owned


def _package(
    tmp_dir: str,
    file_name: str,
    content_path: str,
    ignore_paths: Sequence[str],
    content_type: str,
    what: str,
) -> _Layer:
    tgz = Path(tmp_dir) / file_name
    try:
        build_artifact(str(tgz), content_path, list(ignore_paths))
    except OSError as exc:
        raise OSError(f"packaging {what} failed: {exc}") from exc
    return _Layer(tgz.read_bytes(), content_type)


def _upload(
    client: RegistryClient,
    ref: Reference,
    layers: Sequence[_Layer],
    annotations: Mapping[str, str] | None,
) -> str:
    config = json.dumps(
        {
            "architecture": "",
            "os": "",
            "config": {},
            "rootfs": {"type": "layers", "diff_ids": [layer.diff_id for layer in layers]},
        },
        separators=(",", ":"),
    ).encode()
    manifest: dict[str, Any] = {
        "schemaVersion": 2,
        "mediaType": OCI_MANIFEST,
        "config": {
            "mediaType": CONFIG_MEDIA_TYPE,
            "size": len(config),
            "digest": _sha256(config),
        },
        "layers": [layer.descriptor() for layer in layers],
    }
    if annotations:
        manifest["annotations"] = dict(annotations)

    repository = ref.context_name()
    try:
        for layer in layers:
            client.push_blob(repository, layer.data)
        client.push_blob(repository, config)
        digest = client.push_manifest(ref, manifest)
    except RegistryError as exc:
        raise RegistryError(f"pushing artifact failed: {exc}", exc.status_code) from exc
    return f"{ARTIFACT_PREFIX}{ref.with_digest(digest)}"


def push_artifact(
    oci_url: str,
    content_path: str,
    ignore_paths: Sequence[str] = (),
    content_type: str = "",
    annotations: Mapping[str, str] | None = None,
    client: RegistryClient | None = None,
) -> str:
    """Package the content as one tar+gzip layer, push it and return the digest URL."""
    ref = parse_artifact_ref(oci_url)
    with tempfile.TemporaryDirectory(prefix=TEMP_PREFIX) as tmp_dir:
        layer = _package(
            tmp_dir, "artifact.tgz", content_path, ignore_paths, content_type, "content"
        )
        with _registry_client(client) as registry:
            return _upload(registry, ref, [layer], annotations)


def push_module(
    oci_url: str,
    content_path: str,
    ignore_paths: Sequence[str] = (),
    annotations: Mapping[str, str] | None = None,
    client: RegistryClient | None = None,
) -> str:
    """Push a module as a vendored-schemas layer and a module layer; return the digest URL."""
    ref = parse_artifact_ref(oci_url)
    with tempfile.TemporaryDirectory(prefix=TEMP_PREFIX) as tmp_dir:
        vendor = _package(
            tmp_dir, "vendor.tgz", content_path, _VENDOR_IGNORE,
            TIMONI_MOD_VENDOR_CONTENT_TYPE, "vendor layer",
        )
        module = _package(
            tmp_dir, "module.tgz", content_path, [*ignore_paths, _MODULE_IGNORE],
            TIMONI_MOD_CONTENT_TYPE, "module layer",
        )
        with _registry_client(client) as registry:
            return _upload(registry, ref, [vendor, module], annotations)