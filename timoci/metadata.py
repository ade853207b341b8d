"""OpenContainers annotations built from arguments and Git metadata."""

from __future__ import annotations

import subprocess
from datetime import datetime, timezone

CREATED_ANNOTATION = "org.opencontainers.image.created"
SOURCE_ANNOTATION = "org.opencontainers.image.source"
REVISION_ANNOTATION = "org.opencontainers.image.revision"

_GIT_TIMEOUT = 10.0


def parse_annotations(args: list[str]) -> dict[str, str]:
    """Parse ``key=value`` arguments into annotations."""
    annotations: dict[str, str] = {}
    for annotation in args:
        kv = annotation.split("=")
        if len(kv) != 2:
            raise ValueError(f"invalid annotation {annotation}, must be in the format key=value")
        annotations[kv[0]] = kv[1]
    return annotations


def _rfc3339(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _git(repo_path: str, *args: str) -> str | None:
    try:
        out = subprocess.run(
            ["git", *args],
            cwd=repo_path,
            capture_output=True,
            text=True,
            timeout=_GIT_TIMEOUT,
            check=True,
        ).stdout
    except (OSError, subprocess.SubprocessError):
        return None
    return out if len(out) > 1 else None


def append_git_metadata(repo_path: str, annotations: dict[str, str]) -> dict[str, str]:
    """Set the created, source and revision annotations from Git.

    Without git or a repository, only the created date is set, to the current time.
    """
    ts = _git(repo_path, "--no-pager", "log", "-1", "--format=%ct")
    if ts is None:
        annotations[CREATED_ANNOTATION] = _rfc3339(datetime.now(timezone.utc))
        return annotations
    try:
        annotations[CREATED_ANNOTATION] = _rfc3339(
            datetime.fromtimestamp(int(ts.removesuffix("\n")), timezone.utc)
        )
    except ValueError:
        pass

    if SOURCE_ANNOTATION not in annotations:
        repo = _git(repo_path, "config", "--get", "remote.origin.url")
        if repo is not None:
            annotations[SOURCE_ANNOTATION] = repo.removesuffix("\n")

    if REVISION_ANNOTATION not in annotations:
        commit = _git(repo_path, "show", "-s", "--format=%H")
        if commit is not None:
            annotations[REVISION_ANNOTATION] = commit.removesuffix("\n")
    return annotations