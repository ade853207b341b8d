import gzip
import hashlib
import io
import json
import re
import tarfile

import httpx
import pytest

from timoci.listing import list_module_versions
from timoci.metadata import REVISION_ANNOTATION, append_git_metadata, parse_annotations
from timoci.pull import VERSION_ANNOTATION, pull_artifact, pull_module
from timoci.push import (
    CONFIG_MEDIA_TYPE,
    CONTENT_MEDIA_TYPE,
    CONTENT_TYPE_ANNOTATION,
    TIMONI_MOD_CONTENT_TYPE,
    TIMONI_MOD_VENDOR_CONTENT_TYPE,
    push_module,
)
from timoci.registry import RegistryClient, tag_artifact
from timoci.url import parse_artifact_ref, parse_reference

REGISTRY = "localhost:5000"


def _sha(data):
    return "sha256:" + hashlib.sha256(data).hexdigest()


class FakeRegistry:
    def __init__(self):
        self.blobs = {}
        self.manifests = {}
        self.tags = {}
        self.uploads = 0
        self.requests = []

    def handler(self, request):
        path = request.url.path
        method = request.method
        self.requests.append((method, path))
        not_found = httpx.Response(404, json={"errors": [{"code": "NOT_FOUND", "message": "not found"}]})

        m = re.match(r"^/v2/(.+)/tags/list$", path)
        if m:
            repo = m.group(1)
            if repo not in self.tags:
                return not_found
            return httpx.Response(200, json={"name": repo, "tags": sorted(self.tags[repo])})

        m = re.match(r"^/v2/(.+)/blobs/uploads/(.*)$", path)
        if m:
            repo = m.group(1)
            if method == "POST":
                self.uploads += 1
                return httpx.Response(
                    202, headers={"Location": f"/v2/{repo}/blobs/uploads/{self.uploads}"}
                )
            digest = request.url.params["digest"]
            data = request.content
            if _sha(data) != digest:
                return httpx.Response(400)
            self.blobs[digest] = data
            return httpx.Response(201)

        m = re.match(r"^/v2/(.+)/blobs/(sha256:[0-9a-f]+)$", path)
        if m:
            digest = m.group(2)
            if digest not in self.blobs:
                return not_found
            data = self.blobs[digest]
            return httpx.Response(200, content=b"" if method == "HEAD" else data)

        m = re.match(r"^/v2/(.+)/manifests/([^/]+)$", path)
        if m:
            repo, ref = m.groups()
            if method == "PUT":
                data = request.content
                digest = _sha(data)
                self.manifests[(repo, digest)] = (data, request.headers.get("content-type"))
                tags = self.tags.setdefault(repo, {})
                if not ref.startswith("sha256:"):
                    tags[ref] = digest
                return httpx.Response(201, headers={"Docker-Content-Digest": digest})
            digest = ref if ref.startswith("sha256:") else self.tags.get(repo, {}).get(ref)
            entry = self.manifests.get((repo, digest)) if digest else None
            if entry is None:
                return not_found
            data, media_type = entry
            return httpx.Response(
                200,
                content=b"" if method == "HEAD" else data,
                headers={"Content-Type": media_type, "Docker-Content-Digest": digest},
            )
        return not_found


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def client(registry):
    with RegistryClient(transport=httpx.MockTransport(registry.handler)) as c:
        yield c


@pytest.fixture
def module_dir(tmp_path):
    root = tmp_path / "module"
    files = {
        "cue.mod/module.cue": 'module: "timoni.sh/test"\n',
        "templates/cm.cue": "package templates\n",
        "templates/config.cue": "package templates\n",
        "README.md": "# test\n",
        "timoni.cue": "package main\n",
        "values.cue": "values: {}\n",
        "timoni.ignore": "*.md\n",
    }
    for rel, text in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text)
    return root


@pytest.fixture
def pushed(client, module_dir):
    annotations = parse_annotations(["org.opencontainers.image.licenses=Apache-2.0"])
    annotations[VERSION_ANNOTATION] = "1.0.0"
    url = f"oci://{REGISTRY}/my-module"
    digest_url = push_module(f"{url}:1.0.0", str(module_dir), ["timoni.ignore"], annotations, client)
    return url, digest_url


def _tgz(entries):
    buf = io.BytesIO()
    with gzip.GzipFile(fileobj=buf, mode="wb", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w") as tar:
            for name, data in entries.items():
                info = tarfile.TarInfo(name)
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def _push_raw(client, repo, tag, config_media_type, blobs, annotations=None):
    repository = f"{REGISTRY}/{repo}"
    config = b"{}"
    client.push_blob(repository, config)
    layers = []
    for blob in blobs:
        client.push_blob(repository, blob)
        layers.append({
            "mediaType": CONTENT_MEDIA_TYPE,
            "size": len(blob),
            "digest": _sha(blob),
            "annotations": {CONTENT_TYPE_ANNOTATION: "generic"},
        })
    manifest = {
        "schemaVersion": 2,
        "config": {"mediaType": config_media_type, "size": 2, "digest": _sha(config)},
        "layers": layers,
    }
    if annotations:
        manifest["annotations"] = annotations
    client.push_manifest(parse_reference(f"{repository}:{tag}"), manifest)
    return f"oci://{repository}:{tag}"


def test_module_operations(client, module_dir, tmp_path):
    img_version = "1.0.0"
    img_url = f"oci://{REGISTRY}/my-module-abcde"
    annotations = parse_annotations(["org.opencontainers.image.licenses=Apache-2.0"])
    annotations[VERSION_ANNOTATION] = img_version
    append_git_metadata(str(module_dir), annotations)

    digest_url = push_module(
        f"{img_url}:{img_version}", str(module_dir), ["timoni.ignore"], annotations, client
    )
    tag_artifact(digest_url, "latest", client)

    listed = list_module_versions(img_url, True, client)
    assert len(listed) == 2
    assert listed[0].version == "latest"
    assert listed[0].digest in digest_url
    assert listed[0].repository in digest_url
    assert listed[1].version == img_version
    assert listed[1].digest in digest_url
    assert listed[1].repository in digest_url

    mod_root = tmp_path / "module-root"
    pull_artifact(img_url, str(mod_root), TIMONI_MOD_CONTENT_TYPE, client)
    assert not (mod_root / "timoni.ignore").exists()
    assert not (mod_root / "mod.cue").exists()
    for entry in ["templates", "templates/cm.cue", "templates/config.cue",
                  "README.md", "timoni.cue", "values.cue"]:
        assert (mod_root / entry).exists()

    vendor_root = tmp_path / "module-vendor"
    pull_artifact(img_url, str(vendor_root), TIMONI_MOD_VENDOR_CONTENT_TYPE, client)
    assert not (vendor_root / "timoni.cue").exists()
    assert not (vendor_root / "templates").exists()
    for entry in ["cue.mod", "cue.mod/module.cue"]:
        assert (vendor_root / entry).exists()

    dst = tmp_path / "artifact"
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    mod_ref = pull_module(digest_url, str(dst), str(cache_dir), client)
    assert mod_ref.version == img_version
    assert not (dst / "timoni.ignore").exists()
    for entry in ["cue.mod", "cue.mod/module.cue", "templates", "templates/cm.cue",
                  "templates/config.cue", "README.md", "timoni.cue", "values.cue"]:
        assert (dst / entry).exists()
    assert len(list(cache_dir.iterdir())) == 2


def test_pull_module_reference(client, pushed, tmp_path):
    url, digest_url = pushed
    mod_ref = pull_module(f"{url}:1.0.0", str(tmp_path / "out"), "", client)
    assert mod_ref.repository == f"oci://{REGISTRY}/my-module"
    assert mod_ref.digest == digest_url.split("@", 1)[1]
    assert mod_ref.annotations["org.opencontainers.image.licenses"] == "Apache-2.0"
    assert (tmp_path / "out" / "timoni.cue").read_text() == "package main\n"


def test_pull_module_reuses_cache(client, registry, pushed, tmp_path):
    _, digest_url = pushed
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()

    def blob_gets():
        return sum(1 for m, p in registry.requests if m == "GET" and "/blobs/sha256:" in p)

    pull_module(digest_url, str(tmp_path / "a"), str(cache_dir), client)
    first = blob_gets()
    pull_module(digest_url, str(tmp_path / "b"), str(cache_dir), client)
    assert first == 2
    assert blob_gets() == first
    assert (tmp_path / "b" / "values.cue").exists()


def test_pull_module_removes_corrupt_cache(client, pushed, tmp_path):
    _, digest_url = pushed
    manifest = json.loads(client.manifest(parse_artifact_ref(digest_url)))
    layer_hex = manifest["layers"][0]["digest"].split(":", 1)[1]
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    corrupt = cache_dir / f"{layer_hex}.tgz"
    corrupt.write_bytes(b"not a tarball")

    with pytest.raises(ValueError, match="extracting layer"):
        pull_module(digest_url, str(tmp_path / "out"), str(cache_dir), client)
    assert not corrupt.exists()


def test_pull_module_legacy_revision_version(client, tmp_path):
    url = _push_raw(
        client, "legacy", "0.13.0", CONFIG_MEDIA_TYPE,
        [_tgz({"timoni.cue": b"package main\n"})],
        {REVISION_ANNOTATION: "0.13.0"},
    )
    mod_ref = pull_module(url, str(tmp_path / "out"), "", client)
    assert mod_ref.version == "0.13.0"
    assert (tmp_path / "out" / "timoni.cue").read_bytes() == b"package main\n"


def test_pull_rejects_unsupported_type(client, tmp_path):
    url = _push_raw(client, "image", "1.0", "application/vnd.oci.image.config.v1+json",
                    [_tgz({"a.txt": b"a"})])
    with pytest.raises(ValueError, match="unsupported artifact type"):
        pull_artifact(url, str(tmp_path / "out"), "", client)
    with pytest.raises(ValueError, match="unsupported artifact type"):
        pull_module(url, str(tmp_path / "out"), "", client)


def test_pull_without_content_layers(client, tmp_path):
    url = _push_raw(client, "empty", "1.0", CONFIG_MEDIA_TYPE, [])
    with pytest.raises(ValueError, match="no layer found in artifact with media type"):
        pull_artifact(url, str(tmp_path / "out"), "", client)
    with pytest.raises(ValueError, match="no layer found in artifact with media type"):
        pull_module(url, str(tmp_path / "out"), "", client)


def test_pull_rejects_path_traversal(client, tmp_path):
    url = _push_raw(client, "evil", "1.0", CONFIG_MEDIA_TYPE, [_tgz({"../escape.txt": b"x"})])
    dst = tmp_path / "out"
    with pytest.raises(ValueError, match="extracting artifact layer"):
        pull_artifact(url, str(dst), "", client)
    assert not (tmp_path / "escape.txt").exists()


def test_pull_rejects_invalid_url(client, tmp_path):
    with pytest.raises(ValueError, match="URL must be in format"):
        pull_module(f"{REGISTRY}/my-module", str(tmp_path), "", client)