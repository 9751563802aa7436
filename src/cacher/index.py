"""SQLite-backed indices for the three cache tiers.

- :class:`RemoteIndex`: versions pushed to the object store
- :class:`LocalIndex`: versions pulled into this machine's cache
- :class:`InstalledIndex`: the one version of each key a user has deployed

Remote and local tables hold many versions per key, unique on
``(key, version)``. The installed table holds at most one row per
``(username, key)``; adding replaces the existing row.
"""

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from cacher.errors import AlreadyExistsError
from cacher.keycache import KeyCache
from cacher.models import Item, ItemSet, ItemVersion, version_compare

logger = logging.getLogger(__name__)

SETTLE_SECONDS = 24 * 3600

KeyQuery = Union[None, str, Sequence[str]]


def connect(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Open (creating if needed) an index database."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    if not db_path.exists():
        db_path.touch(mode=0o600)
    conn = sqlite3.connect(str(db_path), timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class BaseIndex:
    """Shared add/get/search/delete/versions logic for one index table.

    Subclasses set ``table`` and may add filter columns through
    :meth:`_scope`.
    """

    table: str = ""

    def __init__(
        self,
        conn: Union[sqlite3.Connection, str, Path],
        clock: Callable[[], float] = time.time,
    ):
        if isinstance(conn, sqlite3.Connection):
            self._conn = conn
        else:
            self._conn = connect(conn)
        self._clock = clock
        self._init_db()

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def _init_db(self) -> None:
        self._conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                key TEXT NOT NULL,
                version TEXT NOT NULL,
                path TEXT NOT NULL,
                files TEXT NOT NULL DEFAULT '[]',
                created_at REAL NOT NULL,
                touched_at REAL,
                UNIQUE (key, version)
            )
        """)
        self._conn.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{self.table}_key
            ON {self.table}(key)
        """)
        self._conn.commit()

    def _scope(self):
        """Extra WHERE clause and params restricting this index's rows."""
        return "", []

    def _where(self, clause: str = "", params: Optional[list] = None):
        scope_clause, scope_params = self._scope()
        clauses = [c for c in (scope_clause, clause) if c]
        sql = " WHERE " + " AND ".join(clauses) if clauses else ""
        return sql, scope_params + list(params or [])

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _to_item_version(self, row: sqlite3.Row) -> ItemVersion:
        keys = row.keys()
        return ItemVersion(
            key=row["key"],
            version=row["version"],
            path=row["path"],
            created_at=row["created_at"],
            files=json.loads(row["files"] or "[]"),
            is_symlink=bool(row["is_symlink"]) if "is_symlink" in keys else False,
            touched_at=row["touched_at"],
            username=row["username"] if "username" in keys else None,
        )

    def _select(self, clause: str = "", params: Optional[list] = None) -> ItemSet:
        where, args = self._where(clause, params)
        rows = self._conn.execute(f"SELECT * FROM {self.table}{where}", args).fetchall()
        item_set = ItemSet()
        for row in rows:
            item_set.add(self._to_item_version(row))
        return item_set

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add(
        self,
        key: str,
        version: str,
        path: str,
        files: Optional[List[str]] = None,
        created_at: Optional[float] = None,
    ) -> ItemVersion:
        """Insert a new (key, version) row.

        Args:
            key: Cache key
            version: Version string
            path: Storage location of this version
            files: Relative file paths making up the version
            created_at: Creation timestamp (defaults to now)

        Returns:
            The stored ItemVersion

        Raises:
            AlreadyExistsError: If (key, version) is already present
        """
        files = list(files or [])
        created_at = self._clock() if created_at is None else created_at
        try:
            self._conn.execute(
                f"""
                INSERT INTO {self.table} (key, version, path, files, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (key, version, str(path), json.dumps(files), created_at),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            raise AlreadyExistsError(
                f"{key} version {version} already exists in {self.table}"
            ) from e

        return ItemVersion(
            key=key, version=version, path=str(path), created_at=created_at, files=files
        )

    def delete(self, key: str, version: Optional[str] = None) -> int:
        """Delete one version of ``key``, or every version if ``version`` is None.

        Returns:
            Number of rows deleted
        """
        if version is None:
            where, args = self._where("key = ?", [key])
        else:
            where, args = self._where("key = ? AND version = ?", [key, version])
        cursor = self._conn.execute(f"DELETE FROM {self.table}{where}", args)
        self._conn.commit()
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, key: str) -> Optional[Item]:
        """Return every version of ``key``, or None if unknown."""
        return self._select("key = ?", [key]).get(key)

    def get_version(self, key: str, version: str) -> Optional[ItemVersion]:
        """Return the exact (key, version) row, or None."""
        item = self._select("key = ? AND version = ?", [key, version]).get(key)
        return item.get(version) if item else None

    def version(self, key: str) -> Optional[str]:
        """Newest version of ``key``, or None if unknown."""
        versions = self.versions(key)
        return versions[0] if versions else None

    def versions(self, key: str) -> List[str]:
        """Versions of ``key``, newest first."""
        item = self.get(key)
        return item.versions() if item else []

    def search(self, keys: KeyQuery = None, substring: bool = False) -> ItemSet:
        """Find Items by key.

        Args:
            keys: One key or a list of keys. An empty argument matches nothing.
            substring: With a single key, match every key starting with it

        Returns:
            ItemSet of matching Items
        """
        if not keys:
            return ItemSet()

        if isinstance(keys, str):
            if substring:
                return self._select("key LIKE ? ESCAPE '\\'", [_escape_like(keys) + "%"])
            return self._select("key = ?", [keys])

        keys = list(dict.fromkeys(keys))
        placeholders = ", ".join("?" for _ in keys)
        return self._select(f"key IN ({placeholders})", keys)

    def all(self) -> ItemSet:
        """Every Item in this index."""
        return self._select()

    def close(self) -> None:
        self._conn.close()


class VersionedIndex(BaseIndex):
    """Index holding many versions per key, with retention scanning."""

    def old(
        self, now: Optional[float] = None, settle_seconds: float = SETTLE_SECONDS
    ) -> List[ItemVersion]:
        """Find superseded versions that are safe to purge.

        For each key, versions are scanned newest first; the first one at
        least ``settle_seconds`` old is the settled version. Every version
        strictly older than the settled one is returned. Keys with no settled
        version contribute nothing, and the settled version itself and
        anything newer are always kept.

        Args:
            now: Reference timestamp (defaults to the index clock)
            settle_seconds: Grace period before a version counts as settled

        Returns:
            Purgeable ItemVersions
        """
        now = self._clock() if now is None else now
        old = []
        for item in self.all():
            settled = None
            for item_version in item:
                if settled is None:
                    if now - item_version.created_at >= settle_seconds:
                        settled = item_version
                elif version_compare(item_version.version, settled.version) < 0:
                    old.append(item_version)
        logger.debug(f"Found {len(old)} old versions in {self.table}")
        return old


class RemoteIndex(VersionedIndex):
    """Index of versions in the object store.

    Remote searches fill the :class:`KeyCache`, and :meth:`get` consults it
    before querying.
    """

    table = "remote_items"

    def __init__(self, conn, keycache: Optional[KeyCache] = None, **kwargs):
        self.keycache = keycache if keycache is not None else KeyCache()
        super().__init__(conn, **kwargs)

    def add(self, key, version, path, files=None, created_at=None) -> ItemVersion:
        item_version = super().add(key, version, path, files, created_at)
        self.keycache.discard(key)
        return item_version

    def delete(self, key: str, version: Optional[str] = None) -> int:
        deleted = super().delete(key, version)
        self.keycache.discard(key)
        return deleted

    def get(self, key: str) -> Optional[Item]:
        cached = self.keycache.get(key)
        if cached is not None:
            return cached
        return self.search(key).get(key)

    def search(self, keys: KeyQuery = None, substring: bool = False) -> ItemSet:
        item_set = super().search(keys, substring)
        self.keycache.add(item_set)
        return item_set

    def all(self) -> ItemSet:
        item_set = super().all()
        self.keycache.add(item_set)
        return item_set


class LocalIndex(VersionedIndex):
    """Index of versions pulled into the local cache."""

    table = "local_items"

    def touch(self, key: str, version: str) -> None:
        """Record that (key, version) was just used for an install.

        ``touched_at`` is maintained but not read by :meth:`old`.
        """
        self._conn.execute(
            f"UPDATE {self.table} SET touched_at = ? WHERE key = ? AND version = ?",
            (self._clock(), key, version),
        )
        self._conn.commit()


class InstalledIndex(BaseIndex):
    """Per-user index of deployed versions, one row per (username, key)."""

    table = "installed_items"

    def __init__(self, conn, username: str, **kwargs):
        self.username = username
        super().__init__(conn, **kwargs)

    def _init_db(self) -> None:
        self._conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                username TEXT NOT NULL,
                key TEXT NOT NULL,
                version TEXT NOT NULL,
                path TEXT NOT NULL,
                files TEXT NOT NULL DEFAULT '[]',
                is_symlink INTEGER NOT NULL DEFAULT 0,
                created_at REAL NOT NULL,
                touched_at REAL,
                UNIQUE (username, key)
            )
        """)
        self._conn.commit()

    def _scope(self):
        return "username = ?", [self.username]

    def for_user(self, username: str) -> "InstalledIndex":
        """View of another user's installed items on the same database."""
        return InstalledIndex(self._conn, username, clock=self._clock)

    def add(
        self,
        key: str,
        version: str,
        path: str,
        files: Optional[List[str]] = None,
        is_symlink: bool = False,
    ) -> ItemVersion:
        """Record ``version`` as this user's installation of ``key``.

        Replaces any existing record for (username, key).
        """
        files = list(files or [])
        created_at = self._clock()
        self._conn.execute(
            f"""
            INSERT OR REPLACE INTO {self.table}
            (username, key, version, path, files, is_symlink, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self.username,
                key,
                version,
                str(path),
                json.dumps(files),
                int(is_symlink),
                created_at,
            ),
        )
        self._conn.commit()
        return ItemVersion(
            key=key,
            version=version,
            path=str(path),
            created_at=created_at,
            files=files,
            is_symlink=is_symlink,
            username=self.username,
        )

    def delete(self, key: str) -> int:
        """Delete this user's record for ``key``."""
        return super().delete(key)

    def installed(self, key: str) -> Optional[ItemVersion]:
        """This user's installed version of ``key``, or None."""
        item = self.get(key)
        return item.newest() if item else None

    def list_users(self) -> List[str]:
        """Every username with at least one installed record."""
        rows = self._conn.execute(
            f"SELECT DISTINCT username FROM {self.table} ORDER BY username"
        ).fetchall()
        return [row["username"] for row in rows]
