"""Utility functions for keys, paths and file trees."""

import os
import re
from pathlib import Path
from typing import Iterable, List, Union

from cacher.errors import InvalidKeyError, InvalidVersionError

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_:-]+$")


def validate_key(key: str) -> None:
    """Validate that a cache key is usable as a storage path.

    Keys are ``:``-separated segments of ``[A-Za-z0-9_-]``.

    Args:
        key: Cache key to validate

    Raises:
        InvalidKeyError: If the key is empty, has an empty segment or
            contains other characters

    Examples:
        >>> validate_key("team:service:asset")  # OK
        >>> validate_key("team/asset")  # Raises InvalidKeyError
        Traceback (most recent call last):
            ...
        cacher.errors.InvalidKeyError: cache key contains invalid characters: team/asset
    """
    if not key:
        raise InvalidKeyError("cache key cannot be empty")

    if not _KEY_PATTERN.match(key):
        raise InvalidKeyError(f"cache key contains invalid characters: {key}")

    if any(segment == "" for segment in key.split(":")):
        raise InvalidKeyError(f"cache key has an empty segment: {key}")


def validate_version(version: str) -> None:
    """Validate that a version string can be used as a single path component.

    Raises:
        InvalidVersionError: If the version is empty, contains a path
            separator or is ``.``/``..``
    """
    if not version:
        raise InvalidVersionError("version cannot be empty")

    if "/" in version or "\\" in version or version in (".", ".."):
        raise InvalidVersionError(f"version cannot be used as a path: {version}")


def item2path(key: str) -> str:
    """Convert a cache key to a relative storage path.

    Examples:
        >>> item2path("team:service:asset")
        'team/service/asset'
    """
    validate_key(key)
    return key.replace(":", "/")


def path_join(*parts: str) -> str:
    """Join cloudpath or filesystem fragments with single slashes.

    The first part keeps its leading slash (and scheme); every part loses its
    trailing slash.

    Examples:
        >>> path_join("s3://bucket/", "team/asset", "1.0")
        's3://bucket/team/asset/1.0'
    """
    if not parts:
        return ""

    cleaned = []
    for i, part in enumerate(parts):
        part = str(part)
        if not part:
            raise ValueError("path_join: part can't be empty")
        cleaned.append(part.rstrip("/") if i == 0 else part.strip("/"))

    return "/".join(cleaned)


def is_cloud_path(path: Union[str, Path]) -> bool:
    """Check if a path is a cloud storage path.

    Examples:
        >>> is_cloud_path('s3://bucket/team/asset')
        True
        >>> is_cloud_path('/var/cache/cacher')
        False
    """
    path_str = str(path)
    cloud_prefixes = (
        "s3://",
        "gs://",
        "gcs://",
        "az://",
        "azure://",
        "https://",
        "http://",
        "file://",
        "mem://",
    )
    return path_str.startswith(cloud_prefixes)


def resolve_path(path: Union[str, Path]) -> str:
    """Return a cloudpath for ``path``.

    Cloud paths are returned as-is; filesystem paths become absolute
    ``file://`` paths.

    Examples:
        >>> resolve_path('s3://bucket')
        's3://bucket'
    """
    if is_cloud_path(path):
        return str(path)

    return "file://" + str(Path(path).expanduser().resolve())


def list_files(root: Union[str, Path]) -> List[str]:
    """List files below ``root`` as sorted, relative, slash-separated paths.

    Symlinked directories are not followed.
    """
    root = Path(root)
    files = []
    for dirpath, _dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for filename in filenames:
            files.append((base / filename).relative_to(root).as_posix())
    return sorted(files)


def _is_relative(relative: str) -> bool:
    parts = Path(relative).parts
    return bool(parts) and not Path(relative).is_absolute() and ".." not in parts


def prune_empty_dirs(root: Union[str, Path], start: Union[str, Path]) -> int:
    """Remove ``start`` and its parents while empty, stopping below ``root``.

    Returns:
        Number of directories removed
    """
    root = Path(root)
    current = Path(start)
    removed = 0
    while current != root and root in current.parents:
        try:
            current.rmdir()
        except FileNotFoundError:
            pass
        except OSError:
            # Not empty (or not ours to remove): stop walking up
            break
        else:
            removed += 1
        current = current.parent
    return removed


def remove_files(root: Union[str, Path], files: Iterable[str], prune: bool = True) -> int:
    """Remove relative ``files`` from ``root``.

    With ``prune``, directories left empty by a removal are removed too,
    walking up toward (but never removing) ``root``.

    Args:
        root: Directory the files are relative to
        files: Relative file paths
        prune: Remove emptied parent directories

    Returns:
        Number of files removed
    """
    root = Path(root)
    removed = 0
    parents = set()
    for relative in files:
        if not _is_relative(relative):
            continue
        target = root / relative
        if target.is_symlink() or target.is_file():
            target.unlink()
            removed += 1
        elif target.exists():
            continue
        parents.add(target.parent)

    if prune:
        # Deepest first so a parent is tried after its children
        for parent in sorted(parents, key=lambda p: len(p.parts), reverse=True):
            prune_empty_dirs(root, parent)

    return removed
