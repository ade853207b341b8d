"""Signing and verification of artifacts with cosign."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess

from .url import parse_artifact_ref

_log = logging.getLogger(__name__)


class SignError(Exception):
    """Signing or verification failed."""


def sign_artifact(
    provider: str, oci_url: str, key_ref: str = "", log: logging.Logger | None = None
) -> None:
    """Sign an artifact with the given provider."""
    ref = parse_artifact_ref(oci_url)
    if provider != "cosign":
        raise SignError(f"signer not supported: {provider}")
    sign_cosign(str(ref), key_ref, log)


def verify_artifact(
    provider: str,
    oci_url: str,
    key_ref: str = "",
    cert_identity: str = "",
    cert_identity_regexp: str = "",
    cert_oidc_issuer: str = "",
    cert_oidc_issuer_regexp: str = "",
    log: logging.Logger | None = None,
) -> None:
    """Verify an artifact with the given provider."""
    ref = parse_artifact_ref(oci_url)
    if provider != "cosign":
        raise SignError(f"verifier not supported: {provider}")
    verify_cosign(
        str(ref), key_ref, cert_identity, cert_identity_regexp,
        cert_oidc_issuer, cert_oidc_issuer_regexp, log,
    )


def _cosign() -> str:
    executable = shutil.which("cosign")
    if executable is None:
        raise SignError("executing cosign failed: cosign executable not found in PATH")
    return executable


def _run_cosign(args: list[str], log: logging.Logger | None) -> None:
    log = log or _log
    try:
        proc = subprocess.Popen(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            env=os.environ.copy(),
        )
    except OSError as exc:
        raise SignError(f"executing cosign failed: {exc}") from exc
    try:
        for line in proc.stdout:
            log.info("cosign: %s", line.rstrip("\n"))
    finally:
        proc.stdout.close()
    code = proc.wait()
    if code != 0:
        raise SignError(f"cosign exited with status {code}")


def sign_cosign(image_ref: str, key_ref: str = "", log: logging.Logger | None = None) -> None:
    """Sign an image with a cosign private key, or keyless when no key is given."""
    args = [_cosign(), "sign"]
    if key_ref:
        args += ["--key", key_ref]
    args += ["--yes", image_ref]
    _run_cosign(args, log)


def verify_cosign(
    image_ref: str,
    key_ref: str = "",
    cert_identity: str = "",
    cert_identity_regexp: str = "",
    cert_oidc_issuer: str = "",
    cert_oidc_issuer_regexp: str = "",
    log: logging.Logger | None = None,
) -> None:
    """Verify an image with a cosign public key, or keyless with certificate constraints."""
    args = [_cosign(), "verify"]
    if key_ref:
        args += ["--key", key_ref]
    else:
        if not cert_identity and not cert_identity_regexp:
            raise SignError(
                "--certificate-identity or --certificate-identity-regexp is required "
                "for Cosign verification in keyless mode"
            )
        if cert_identity:
            args += ["--certificate-identity", cert_identity]
        if cert_identity_regexp:
            args += ["--certificate-identity-regexp", cert_identity_regexp]
        if not cert_oidc_issuer and not cert_oidc_issuer_regexp:
            raise SignError(
                "--certificate-oidc-issuer or --certificate-oidc-issuer-regexp is required "
                "for Cosign verification in keyless mode"
            )
        if cert_oidc_issuer:
            args += ["--certificate-oidc-issuer", cert_oidc_issuer]
        if cert_oidc_issuer_regexp:
            args += ["--certificate-oidc-issuer-regexp", cert_oidc_issuer_regexp]
    args.append(image_ref)
    _run_cosign(args, log)