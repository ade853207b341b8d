"""Packaging of a directory into a reproducible tar+gzip artifact."""

from __future__ import annotations

import gzip
import os
import stat
import tarfile
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path


@dataclass(frozen=True)
class _Pattern:
    parts: tuple[str, ...]
    domain: tuple[str, ...]
    negate: bool
    dir_only: bool

    def match(self, path: list[str], is_dir: bool) -> bool:
        if len(path) <= len(self.domain) or tuple(path[: len(self.domain)]) != self.domain:
            return False
        rel = path[len(self.domain):]
        if len(self.parts) == 1:
            for i, name in enumerate(rel):
                if fnmatchcase(name, self.parts[0]):
                    return not (self.dir_only and not is_dir and i == len(rel) - 1)
            return False
        return self._glob(rel, 0, 0, is_dir)

    def _glob(self, rel: list[str], pi: int, si: int, is_dir: bool) -> bool:
        if pi == len(self.parts):
            return si < len(rel) or not self.dir_only or is_dir
        if si == len(rel):
            return False
        if self.parts[pi] == "**":
            return self._glob(rel, pi + 1, si, is_dir) or self._glob(rel, pi, si + 1, is_dir)
        return fnmatchcase(rel[si], self.parts[pi]) and self._glob(rel, pi + 1, si + 1, is_dir)


class IgnoreMatcher:
    """Gitignore-style matcher whose patterns apply below a domain path."""

    def __init__(self, patterns: list[str], domain: list[str]):
        self._patterns: list[_Pattern] = []
        for line in patterns:
            line = line.rstrip()
            if not line or line.startswith("#"):
                continue
            negate = line.startswith("!")
            if negate:
                line = line[1:]
            dir_only = line.endswith("/")
            line = line.rstrip("/")
            parts = line.split("/")
            if len(parts) > 1 and parts[0] == "":
                parts = parts[1:]
            if len(parts) == 1 and line.startswith("/"):
                parts = ["", *parts]
            self._patterns.append(_Pattern(tuple(parts), tuple(domain), negate, dir_only))

    def match(self, path_parts: list[str], is_dir: bool) -> bool:
        """Return True when the path is excluded."""
        for pattern in reversed(self._patterns):
            if pattern.match(list(path_parts), is_dir):
                return not pattern.negate
        return False


def _walk(root: Path):
    yield root
    if root.is_dir() and not root.is_symlink():
        for child in sorted(root.iterdir(), key=lambda p: p.name):
            yield from _walk(child)


def build_artifact(dst_file: str, content_path: str, ignore_paths: list[str]) -> None:
    """Package the content, except symlinks and ignored paths, as tar+gzip."""
    abs_dir = Path(os.path.abspath(content_path))
    if not abs_dir.exists():
        raise FileNotFoundError(f"invalid source dir path: {abs_dir}")
    is_dir_source = abs_dir.is_dir()
    matcher = IgnoreMatcher(ignore_paths, str(abs_dir).split(os.sep))

    with open(dst_file, "wb") as raw, gzip.GzipFile(
        filename="", mode="wb", fileobj=raw, mtime=0
    ) as gz, tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for path in _walk(abs_dir):
            st = path.lstat()
            regular, directory = stat.S_ISREG(st.st_mode), stat.S_ISDIR(st.st_mode)
            if not (regular or directory):
                continue
            if ignore_paths and matcher.match(str(path).split(os.sep), directory):
                continue
            name = path.relative_to(abs_dir).as_posix() if is_dir_source else path.name
            info = tarfile.TarInfo(name)
            info.mode = stat.S_IMODE(st.st_mode)
            info.uid = info.gid = 0
            info.uname = info.gname = ""
            info.mtime = 0
            if directory:
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
            else:
                info.size = st.st_size
                with open(path, "rb") as fh:
                    tar.addfile(info, fh)