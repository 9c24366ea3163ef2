"""File-system snapshots shared by the material and product attestors."""

from __future__ import annotations

import fnmatch
import hashlib
from pathlib import Path

SKIPPED_DIRS = {".git"}


class UnsafePathError(Exception):
    """Path resolves outside the snapshot root."""
    pass


class FileTooLargeError(Exception):
    """A selected file exceeds the configured size limit."""
    pass


def check_path_safety(path: Path, base_dir: Path) -> Path:
    """Verify path does not escape base_dir (e.g. through a symlink).

    Returns:
        Resolved path

    Raises:
        UnsafePathError: If path traversal detected
    """
    resolved = path.resolve()
    try:
        resolved.relative_to(base_dir.resolve())
    except ValueError:
        raise UnsafePathError(f"Path traversal detected: {path} is outside {base_dir}")
    return resolved


def hash_file(path: Path) -> str:
    """Hex SHA-256 of a file, read in chunks."""
    sha256_hash = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(65536):
            sha256_hash.update(chunk)
    return sha256_hash.hexdigest()


def _matches(rel_path: str, pattern: str) -> bool:
    return fnmatch.fnmatch(rel_path, pattern)


def snapshot(
    base_dir: Path,
    include_glob: str = "*",
    exclude_glob: str = "",
    max_file_size: int = 0,
    ignored_paths: frozenset[Path] | set[Path] = frozenset(),
) -> dict[str, dict[str, str]]:
    """Record the SHA-256 of every regular file under base_dir.

    Files reached through symlinks that point outside base_dir,
    ignored_paths and anything under a ``.git`` directory are skipped.
    A max_file_size of 0 means no limit.

    Returns:
        Mapping of forward-slash relative path to ``{"sha256": hex}``,
        sorted by path

    Raises:
        FileTooLargeError: If a selected file exceeds max_file_size
    """
    base_dir = base_dir.resolve()
    result: dict[str, dict[str, str]] = {}

    for path in sorted(base_dir.rglob("*")):
        rel = path.relative_to(base_dir)
        if any(part in SKIPPED_DIRS for part in rel.parts):
            continue
        if not path.is_file():
            continue

        rel_path = rel.as_posix()
        if include_glob and not _matches(rel_path, include_glob):
            continue
        if exclude_glob and _matches(rel_path, exclude_glob):
            continue

        try:
            safe_path = check_path_safety(path, base_dir)
        except UnsafePathError:
            continue
        if safe_path in ignored_paths:
            continue

        if max_file_size:
            size = safe_path.stat().st_size
            if size > max_file_size:
                raise FileTooLargeError(f"{rel_path} is {size} bytes, over the {max_file_size} byte limit")

        result[rel_path] = {"sha256": hash_file(safe_path)}

    return result
