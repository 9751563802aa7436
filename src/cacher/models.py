"""In-memory data model for cache items.

An :class:`ItemVersion` is one (key, version) row from an index. An :class:`Item`
groups every version of a key, newest first, and an :class:`ItemSet` groups Items
by key. Items and ItemSets are rebuilt from index rows on every query; they are
never persisted themselves.
"""

import functools
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

# Ordering of non-numeric version segments; "#" stands for any number.
_SPECIAL_FORMS = (
    ("dev", 0),
    ("alpha", 1),
    ("a", 1),
    ("beta", 2),
    ("b", 2),
    ("RC", 3),
    ("rc", 3),
    ("#", 4),
    ("pl", 5),
    ("p", 5),
)
_NUMBER = "#N#"


def _isdigit(ch: str) -> bool:
    return "0" <= ch <= "9"


def _isalnum(ch: str) -> bool:
    return _isdigit(ch) or "a" <= ch <= "z" or "A" <= ch <= "Z"


def _split_version(version: str) -> List[str]:
    """Split a version into segments at separators and digit/letter boundaries.

    Examples:
        >>> _split_version("1.10rc2")
        ['1', '10', 'rc', '2']
        >>> _split_version("2024_01-beta")
        ['2024', '01', 'beta']
    """
    if not version:
        return []

    buf = [version[0]]
    prev = version[0]
    for ch in version[1:]:
        if not _isalnum(ch):
            if buf[-1] != ".":
                buf.append(".")
        elif (_isdigit(prev) and not _isdigit(ch)) or (
            not _isdigit(prev) and prev != "." and _isdigit(ch)
        ):
            if buf[-1] != ".":
                buf.append(".")
            buf.append(ch)
        else:
            buf.append(ch)
        prev = ch

    return [segment for segment in "".join(buf).split(".") if segment]


def _special_rank(form: str) -> int:
    for name, rank in _SPECIAL_FORMS:
        if form.startswith(name):
            return rank
    return -6


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _compare_segments(left: str, right: str) -> int:
    if _isdigit(left[0]) and _isdigit(right[0]):
        return _cmp(int(left), int(right))
    if not _isdigit(left[0]) and not _isdigit(right[0]):
        return _cmp(_special_rank(left), _special_rank(right))
    if _isdigit(left[0]):
        return _cmp(_special_rank(_NUMBER), _special_rank(right))
    return _cmp(_special_rank(left), _special_rank(_NUMBER))


def version_compare(a: str, b: str) -> int:
    """Compare two version strings segment by segment.

    Numeric segments compare as integers, so ``1.10`` sorts after ``1.2``.
    Word segments follow ``dev < alpha < beta < RC < number < pl``.

    Args:
        a: First version
        b: Second version

    Returns:
        -1 if a < b, 0 if equal, 1 if a > b

    Examples:
        >>> version_compare("1.2", "1.10")
        -1
        >>> version_compare("1.0rc1", "1.0")
        -1
        >>> version_compare("1700000000", "2024.1")
        1
    """
    left = _split_version(a)
    right = _split_version(b)

    for left_segment, right_segment in zip(left, right):
        result = _compare_segments(left_segment, right_segment)
        if result:
            return result

    if len(left) == len(right):
        return 0

    # One side has trailing segments: a trailing number makes it newer,
    # a trailing word is ranked against a number.
    if len(left) < len(right):
        extra = right[len(left)]
        if _isdigit(extra[0]):
            return -1
        return _cmp(_special_rank(_NUMBER), _special_rank(extra))

    extra = left[len(right)]
    if _isdigit(extra[0]):
        return 1
    return _cmp(_special_rank(extra), _special_rank(_NUMBER))


def sort_versions(versions: List[str], descending: bool = True) -> List[str]:
    """Sort version strings with :func:`version_compare`."""
    return sorted(
        versions, key=functools.cmp_to_key(version_compare), reverse=descending
    )


@dataclass
class ItemVersion:
    """One concrete (key, version) record from an index.

    Attributes:
        key: Cache key (e.g. ``team:service:asset``)
        version: Version string
        path: Remote cloudpath, local cache directory or install target
        created_at: Unix timestamp the row was created
        files: Relative paths of the files making up this version
        is_symlink: Installed via hard-linked copy instead of a full copy
        touched_at: Last time the local copy was used for an install
        username: Owner of an installed record
    """

    key: str
    version: str
    path: str
    created_at: float
    files: List[str] = field(default_factory=list)
    is_symlink: bool = False
    touched_at: Optional[float] = None
    username: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            "key": self.key,
            "version": self.version,
            "path": self.path,
            "created_at": self.created_at,
            "files": list(self.files),
        }
        if self.username is not None:
            data["username"] = self.username
            data["is_symlink"] = self.is_symlink
        return data


class Item:
    """All versions of one key, ordered newest first."""

    def __init__(self, key: str):
        self.key = key
        self._versions: List[ItemVersion] = []

    def add(self, item_version: ItemVersion) -> None:
        item_version.key = self.key
        self._versions.append(item_version)
        self._versions.sort(
            key=functools.cmp_to_key(lambda a, b: version_compare(a.version, b.version)),
            reverse=True,
        )

    def get(self, version: Optional[str] = None) -> Optional[ItemVersion]:
        """Return the newest version, or the exact ``version`` if given."""
        for item_version in self._versions:
            if version is None or item_version.version == version:
                return item_version
        return None

    def newest(self) -> Optional[ItemVersion]:
        return self.get()

    def versions(self) -> List[str]:
        return [item_version.version for item_version in self._versions]

    def version(self) -> Optional[str]:
        """Newest version string, or None for an empty Item."""
        if self._versions:
            return self._versions[0].version
        return None

    def __iter__(self) -> Iterator[ItemVersion]:
        return iter(list(self._versions))

    def __len__(self) -> int:
        return len(self._versions)

    def __repr__(self) -> str:
        return f"Item({self.key!r}, versions={self.versions()!r})"


class ItemSet:
    """Items keyed by cache key, in insertion order."""

    def __init__(self):
        self._items: Dict[str, Item] = {}

    def add(self, item_version: ItemVersion) -> None:
        key = item_version.key
        if key not in self._items:
            self._items[key] = Item(key)
        self._items[key].add(item_version)

    def get(self, key: str) -> Optional[Item]:
        return self._items.get(key)

    def keys(self) -> List[str]:
        return list(self._items)

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[Item]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"ItemSet({self.keys()!r})"
