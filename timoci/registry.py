"""A small client for the OCI distribution API."""

from __future__ import annotations

import base64
import hashlib
import json
import re
from collections.abc import Mapping
from typing import Any

import httpx

from .options import RegistryOptions
from .url import DEFAULT_TAG, Reference, parse_artifact_ref, parse_reference

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MANIFEST_ACCEPT = ", ".join([OCI_MANIFEST, OCI_INDEX, DOCKER_MANIFEST, DOCKER_MANIFEST_LIST])

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')
_PLAIN_HTTP_HOSTS = {"localhost", "127.0.0.1", "::1"}


class RegistryError(Exception):
    """A registry request failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _sha256(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def _host(registry: str) -> str:
    if registry.startswith("["):
        return registry[1:].split("]", 1)[0]
    return registry.split(":", 1)[0]


def _split_repository(repository: str) -> tuple[str, str]:
    registry, sep, repo = repository.partition("/")
    if not sep or not repo:
        raise ValueError(f"repository must be in format '<domain>/<repo>': {repository!r}")
    return registry, repo


def _error_detail(resp: httpx.Response) -> str:
    try:
        errors = resp.json().get("errors") or []
    except (ValueError, AttributeError):
        return ""
    messages = [e.get("message") or e.get("code", "") for e in errors if isinstance(e, dict)]
    return f": {'; '.join(m for m in messages if m)}" if messages else ""


def _media_type_of(data: bytes) -> str:
    try:
        document = json.loads(data)
    except ValueError:
        return OCI_MANIFEST
    if isinstance(document, dict) and isinstance(document.get("mediaType"), str):
        return document["mediaType"]
    return OCI_MANIFEST


class RegistryClient:
    """Talks to container registries with the given options."""

    def __init__(
        self,
        options: RegistryOptions | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 30.0,
    ):
        self.options = options or RegistryOptions()
        self._http = httpx.Client(
            transport=transport,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": self.options.user_agent},
        )
        self._tokens: dict[tuple[str, str, bool], str] = {}

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _base(self, registry: str) -> str:
        host = _host(registry)
        plain = (
            self.options.insecure
            or host in _PLAIN_HTTP_HOSTS
            or host.endswith(".local")
            or host.endswith(".localhost")
        )
        return f"{'http' if plain else 'https'}://{registry}"

    def _auth_header(self, registry: str, repo: str, push: bool) -> str | None:
        if self.options.registry_token:
            return f"Bearer {self.options.registry_token}"
        token = self._tokens.get((registry, repo, push))
        if token is None and not push:
            token = self._tokens.get((registry, repo, True))
        if token:
            return f"Bearer {token}"
        if self.options.username is not None:
            pair = f"{self.options.username}:{self.options.password or ''}"
            return "Basic " + base64.b64encode(pair.encode()).decode()
        return None

    def _fetch_token(self, resp: httpx.Response, registry: str, repo: str, push: bool) -> str | None:
        challenge = resp.headers.get("www-authenticate", "")
        if not challenge.lower().startswith("bearer"):
            return None
        params = dict(_CHALLENGE_PARAM.findall(challenge))
        realm = params.get("realm")
        if not realm:
            return None
        query = {"scope": f"repository:{repo}:{'pull,push' if push else 'pull'}"}
        if params.get("service"):
            query["service"] = params["service"]
        auth = None
        if self.options.username is not None:
            auth = (self.options.username, self.options.password or "")
        token_resp = self._http.get(realm, params=query, auth=auth)
        if token_resp.status_code >= 400:
            raise RegistryError(
                f"fetching registry token failed: status code {token_resp.status_code}",
                token_resp.status_code,
            )
        body: dict[str, Any] = token_resp.json()
        token = body.get("token") or body.get("access_token")
        if not token:
            raise RegistryError("fetching registry token failed: no token in response")
        self._tokens[(registry, repo, push)] = token
        return token

    def _request(
        self,
        method: str,
        registry: str,
        repo: str,
        path: str,
        *,
        push: bool = False,
        allow: tuple[int, ...] = (),
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        url = path if path.startswith(("http://", "https://")) else f"{self._base(registry)}{path}"
        headers = dict(headers or {})
        auth = self._auth_header(registry, repo, push)
        if auth:
            headers["Authorization"] = auth
        try:
            resp = self._http.request(method, url, headers=headers, **kwargs)
            if resp.status_code == 401 and not self.options.registry_token:
                token = self._fetch_token(resp, registry, repo, push)
                if token:
                    headers["Authorization"] = f"Bearer {token}"
                    resp = self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise RegistryError(f"{method} {url} failed: {exc}") from exc
        if resp.status_code >= 400 and resp.status_code not in allow:
            raise RegistryError(
                f"{method} {url}: unexpected status code {resp.status_code}{_error_detail(resp)}",
                resp.status_code,
            )
        return resp

    @staticmethod
    def _manifest_path(ref: Reference) -> str:
        return f"/v2/{ref.repository}/manifests/{ref.digest or ref.tag or DEFAULT_TAG}"

    def _fetch_manifest(self, ref: Reference) -> tuple[bytes, str]:
        resp = self._request(
            "GET", ref.registry, ref.repository, self._manifest_path(ref),
            headers={"Accept": MANIFEST_ACCEPT},
        )
        data = resp.content
        if ref.digest and ref.digest.startswith("sha256:") and _sha256(data) != ref.digest:
            raise RegistryError(f"manifest digest mismatch for {ref}")
        return data, resp.headers.get("content-type", OCI_MANIFEST)

    def _put_manifest(self, ref: Reference, data: bytes, media_type: str) -> str:
        self._request(
            "PUT", ref.registry, ref.repository, self._manifest_path(ref), push=True,
            content=data, headers={"Content-Type": media_type},
        )
        return _sha256(data)

    def digest(self, ref: Reference) -> str:
        """Return the digest of the manifest the reference points to."""
        resp = self._request(
            "HEAD", ref.registry, ref.repository, self._manifest_path(ref),
            headers={"Accept": MANIFEST_ACCEPT},
        )
        found = resp.headers.get("docker-content-digest")
        if found:
            return found
        data, _ = self._fetch_manifest(ref)
        return _sha256(data)

    def manifest(self, ref: Reference) -> bytes:
        """Return the raw manifest the reference points to."""
        return self._fetch_manifest(ref)[0]

    def list_tags(self, repository: str) -> list[str]:
        """Return every tag of a ``<domain>/<repo>`` repository."""
        registry, repo = _split_repository(repository)
        url: str | None = f"/v2/{repo}/tags/list"
        tags: list[str] = []
        while url:
            resp = self._request("GET", registry, repo, url)
            tags.extend(resp.json().get("tags") or [])
            nxt = resp.links.get("next", {}).get("url")
            url = str(resp.url.join(nxt)) if nxt else None
        return tags

    def pull_blob(self, repository: str, digest: str) -> bytes:
        """Download a blob by digest."""
        registry, repo = _split_repository(repository)
        resp = self._request("GET", registry, repo, f"/v2/{repo}/blobs/{digest}")
        data = resp.content
        if digest.startswith("sha256:") and _sha256(data) != digest:
            raise RegistryError(f"blob digest mismatch for {digest}")
        return data

    def push_blob(self, repository: str, data: bytes) -> str:
        """Upload a blob unless present and return its digest."""
        registry, repo = _split_repository(repository)
        digest = _sha256(data)
        head = self._request(
            "HEAD", registry, repo, f"/v2/{repo}/blobs/{digest}", push=True, allow=(404,)
        )
        if head.status_code == 200:
            return digest
        start = self._request("POST", registry, repo, f"/v2/{repo}/blobs/uploads/", push=True)
        location = start.headers.get("location")
        if not location:
            raise RegistryError("blob upload failed: missing upload location")
        self._request(
            "PUT", registry, repo, str(start.url.join(location)), push=True,
            params={"digest": digest}, content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        return digest

    def push_manifest(self, ref: Reference, manifest: bytes | Mapping[str, Any]) -> str:
        """Upload a manifest under the reference and return its digest.

        The content type is taken from the manifest's ``mediaType`` field,
        defaulting to the OCI image manifest type.
        """
        if isinstance(manifest, Mapping):
            data = json.dumps(manifest, separators=(",", ":")).encode()
            media_type = manifest.get("mediaType")
            if not isinstance(media_type, str):
                media_type = OCI_MANIFEST
        else:
            data = bytes(manifest)
            media_type = _media_type_of(data)
        return self._put_manifest(ref, data, media_type)

    def tag(self, ref: Reference, tag: str) -> str:
        """Point a new tag at the manifest of the reference; return its digest."""
        target = parse_reference(f"{ref.context_name()}:{tag}")
        data, media_type = self._fetch_manifest(ref)
        return self._put_manifest(target, data, media_type)


def tag_artifact(oci_url: str, tag: str, client: RegistryClient | None = None) -> None:
    """Add the tag to the remote artifact."""
    ref = parse_artifact_ref(oci_url)
    (client or RegistryClient()).tag(ref, tag)