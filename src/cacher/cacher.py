"""Cacher orchestrator.

Coordinates the three tiers of a cache item:

- remote: versions pushed to the object store (shared by all machines)
- local: versions pulled into this machine's cache directory
- installed: the version of a key deployed to a path for one user

``push`` uploads a directory as a new remote version. ``pull`` brings the
newest remote version into the local cache. ``install``/``upgrade``/``copy``
materialize the local version into a target path and ``uninstall`` removes
it again. ``cleanlocal``/``cleanremote`` purge superseded versions once a
newer one has settled.

Pulls hold a per-key lock; install-family operations hold a per-user lock.
Deletes and cleans take no lock and are expected not to overlap a pull of
the same key.
"""

import getpass
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from cacher.archive import is_archive, pack_directory, unpack_directory
from cacher.config import CacherConfig
from cacher.errors import (
    AlreadyExistsError,
    AlreadyInstalledError,
    EmptyDirectoryError,
    InvalidPathError,
    ItemNotFoundError,
    NotInstalledError,
    PathNotDirectoryError,
    PathNotReadableError,
)
from cacher.index import InstalledIndex, LocalIndex, RemoteIndex, connect
from cacher.keycache import KeyCache
from cacher.locks import LockManager
from cacher.models import ItemSet, ItemVersion, version_compare
from cacher.shell import ShellRunner
from cacher.storage import RemoteStorage
from cacher.utils import (
    item2path,
    list_files,
    remove_files,
    validate_key,
    validate_version,
)

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of an operation on one (key, version).

    ``action`` is one of: pushed, pulled, up-to-date, installed, upgraded,
    copied, already-latest, uninstalled, deleted, removed-dead.
    """

    key: str
    version: Optional[str]
    action: str
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "version": self.version,
            "action": self.action,
            "path": self.path,
        }


class Cacher:
    """Push, pull, install and clean cache items.

    All collaborators can be injected; anything not given is built from
    ``config``.

    Args:
        config: Configuration (loaded from file/environment if None)
        username: User whose installed items are managed (defaults to the
            current login)
        storage: Object store client
        locks: Lock manager
        runner: Shell runner for privileged copies
        remote_index: Remote index
        local_index: Local index
        installed_index: Installed index for ``username``

    Examples:
        >>> cacher = Cacher(CacherConfig(remote_root="s3://artifacts"), "deploy")
        >>> cacher.pull("team:service")
        OperationResult(key='team:service', version='1700000000', action='pulled', ...)
    """

    def __init__(
        self,
        config: Optional[CacherConfig] = None,
        username: Optional[str] = None,
        *,
        storage: Optional[RemoteStorage] = None,
        locks: Optional[LockManager] = None,
        runner: Optional[ShellRunner] = None,
        remote_index: Optional[RemoteIndex] = None,
        local_index: Optional[LocalIndex] = None,
        installed_index: Optional[InstalledIndex] = None,
    ):
        self.config = config or CacherConfig.load()
        self.username = username or getpass.getuser()

        self.runner = runner or ShellRunner(dev_mode=self.config.dev_mode)
        self.runner.check_privileges(username)

        self.locks = locks or LockManager(
            self.config.lock_dir, timeout=self.config.lock_timeout
        )
        self._storage = storage
        self.keycache = KeyCache(self.config.keycache_size)

        if remote_index is None:
            remote_index = RemoteIndex(self.config.remote_db, keycache=self.keycache)
        self.remote_index = remote_index

        if local_index is None or installed_index is None:
            conn = connect(self.config.local_db)
            local_index = local_index or LocalIndex(conn)
            installed_index = installed_index or InstalledIndex(conn, self.username)
        self.local_index = local_index
        self.installed_index = installed_index

    @property
    def storage(self) -> RemoteStorage:
        """Object store client, created on first use."""
        if self._storage is None:
            self._storage = RemoteStorage(self.config.require_remote_root())
        return self._storage

    def local_cache_path(self, key: str, version: str) -> Path:
        """Directory holding the local copy of (key, version)."""
        validate_version(version)
        return self.config.items_dir / item2path(key) / version

    # =========================================================================
    # Remote tier
    # =========================================================================

    def push(
        self, path: Union[str, Path], key: str, version: Optional[str] = None
    ) -> OperationResult:
        """Upload a directory as a new remote version of ``key``.

        Args:
            path: Non-empty, readable directory
            key: Cache key
            version: Version string (defaults to the current Unix timestamp)

        Returns:
            OperationResult with action ``pushed``

        Raises:
            PathNotDirectoryError: If path is not a directory
            PathNotReadableError: If path cannot be read
            EmptyDirectoryError: If path has no files in it
            AlreadyExistsError: If the remote already has (key, version)
        """
        path = Path(path)
        validate_key(key)

        if not path.is_dir():
            raise PathNotDirectoryError(f"{path} is not a directory")
        if not os.access(path, os.R_OK | os.X_OK):
            raise PathNotReadableError(f"{path} is not readable")
        source_files = list_files(path)
        if not source_files:
            raise EmptyDirectoryError(f"{path} has no files in it")

        version = str(version) if version else str(int(time.time()))
        validate_version(version)

        if self.remote_index.get_version(key, version) is not None:
            raise AlreadyExistsError(f"{key} version {version} already exists remotely")

        remote_path = self.storage.remote_path(key, version)

        if self.config.compress:
            with tempfile.TemporaryDirectory(prefix="cacher-push-") as tmpdir:
                archive_path = pack_directory(path, tmpdir)
                files = [archive_path.name]
                self.storage.upload_tree(tmpdir, remote_path, files)
        else:
            files = source_files
            self.storage.upload_tree(path, remote_path, files)

        self.remote_index.add(key, version, remote_path, files)
        logger.info(f"Pushed {key} ({version}) to {remote_path}")
        return OperationResult(key, version, "pushed", remote_path)

    def delete_remote_version(self, key: str, version: str) -> OperationResult:
        """Delete one remote version: its objects, then its index row.

        Raises:
            ItemNotFoundError: If the remote has no such (key, version)
        """
        item_version = self.remote_index.get_version(key, version)
        if item_version is None:
            raise ItemNotFoundError(key, version, tier="remote")

        self.storage.delete_tree(item_version.path)
        self.remote_index.delete(key, version)
        logger.info(f"Deleted remote {key} ({version})")
        return OperationResult(key, version, "deleted", item_version.path)

    def delete_remote_all(self, key: str) -> List[OperationResult]:
        """Delete every remote version of ``key``.

        Raises:
            ItemNotFoundError: If the key is unknown remotely
        """
        versions = self.remote_index.versions(key)
        if not versions:
            raise ItemNotFoundError(key, tier="remote")
        return [self.delete_remote_version(key, version) for version in versions]

    def deleteremote(self, key: str, version: Optional[str] = None) -> List[OperationResult]:
        """Delete ``version`` of ``key`` remotely, or all versions if omitted."""
        if version is None:
            return self.delete_remote_all(key)
        return [self.delete_remote_version(key, version)]

    def cleanremote(self) -> List[OperationResult]:
        """Delete every remote version superseded by a settled one."""
        results = []
        for item_version in self.remote_index.old(
            settle_seconds=self.config.settle_seconds
        ):
            results.append(
                self.delete_remote_version(item_version.key, item_version.version)
            )
        return results

    # =========================================================================
    # Local tier
    # =========================================================================

    def pull(self, key: str) -> OperationResult:
        """Bring the newest remote version of ``key`` into the local cache.

        Local versions newer than the remote one are deleted. Pulling a
        version that is already local does nothing.

        Returns:
            OperationResult with action ``pulled`` or ``up-to-date``

        Raises:
            ItemNotFoundError: If the key is unknown remotely
        """
        validate_key(key)
        with self.locks.key_lock(key):
            return self._pull_locked(key)

    def _pull_locked(self, key: str) -> OperationResult:
        remote = self.remote_index.get(key)
        remote_version = remote.newest() if remote else None
        if remote_version is None:
            raise ItemNotFoundError(key, tier="remote")

        for local_version in self.local_index.versions(key):
            if version_compare(local_version, remote_version.version) > 0:
                logger.warning(
                    f"Local {key} ({local_version}) is newer than remote "
                    f"({remote_version.version}); deleting local copy"
                )
                self.delete_local_version(key, local_version)

        existing = self.local_index.get_version(key, remote_version.version)
        if existing is not None:
            logger.info(f"{key} ({existing.version}) is already up to date")
            return OperationResult(key, existing.version, "up-to-date", existing.path)

        local_path = self.local_cache_path(key, remote_version.version)
        self._clear_path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self.storage.download_tree(
                remote_version.path, local_path, remote_version.files
            )
            if is_archive(list_files(local_path)):
                unpack_directory(local_path)
            files = list_files(local_path)
        except Exception:
            # Never leave a partial download behind
            self._clear_path(local_path)
            raise

        self.local_index.add(key, remote_version.version, str(local_path), files)
        logger.info(f"Pulled {key} ({remote_version.version}) into {local_path}")
        return OperationResult(key, remote_version.version, "pulled", str(local_path))

    @staticmethod
    def _clear_path(path: Path) -> None:
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path)

    def delete_local_version(self, key: str, version: str) -> OperationResult:
        """Delete one local version: its directory, then its index row.

        Raises:
            ItemNotFoundError: If the local cache has no such (key, version)
        """
        item_version = self.local_index.get_version(key, version)
        if item_version is None:
            raise ItemNotFoundError(key, version, tier="local")

        self._clear_path(Path(item_version.path))
        self.local_index.delete(key, version)
        logger.info(f"Deleted local {key} ({version})")
        return OperationResult(key, version, "deleted", item_version.path)

    def delete_local_all(self, key: str) -> List[OperationResult]:
        """Delete every local version of ``key``.

        Raises:
            ItemNotFoundError: If the key is not in the local cache
        """
        versions = self.local_index.versions(key)
        if not versions:
            raise ItemNotFoundError(key, tier="local")
        return [self.delete_local_version(key, version) for version in versions]

    def deletelocal(self, key: str, version: Optional[str] = None) -> List[OperationResult]:
        """Delete ``version`` of ``key`` locally, or all versions if omitted."""
        if version is None:
            return self.delete_local_all(key)
        return [self.delete_local_version(key, version)]

    def cleanlocal(self) -> List[OperationResult]:
        """Purge dead installed records and superseded local versions.

        Installed records whose target path no longer exists are deleted for
        every user. Local versions still used by a symlink-mode install share
        inodes with that deployment and are never purged.
        """
        results = []
        in_use = set()

        for username in self.installed_index.list_users():
            user_index = self.installed_index.for_user(username)
            for item in user_index.all():
                installed = item.newest()
                if not Path(installed.path).exists():
                    logger.warning(
                        f"Removing dead install of {installed.key} for {username}: "
                        f"{installed.path} no longer exists"
                    )
                    user_index.delete(installed.key)
                    results.append(
                        OperationResult(
                            installed.key, installed.version, "removed-dead", installed.path
                        )
                    )
                elif installed.is_symlink:
                    in_use.add((installed.key, installed.version))

        for item_version in self.local_index.old(
            settle_seconds=self.config.settle_seconds
        ):
            if (item_version.key, item_version.version) in in_use:
                logger.info(
                    f"Keeping {item_version.key} ({item_version.version}): "
                    "in use by a symlink install"
                )
                continue
            results.append(
                self.delete_local_version(item_version.key, item_version.version)
            )

        return results

    # =========================================================================
    # Installed tier
    # =========================================================================

    def install(
        self, key: str, path: Union[str, Path], use_symlink: bool = False
    ) -> OperationResult:
        """Install ``key`` into ``path`` for this user.

        Raises:
            AlreadyInstalledError: If the key is already installed (use upgrade)
        """
        validate_key(key)
        with self.locks.user_lock(self.username):
            if self.installed_index.installed(key) is not None:
                raise AlreadyInstalledError(
                    f"{key} is already installed for {self.username}; use upgrade"
                )
            return self._install(key, path, copy_only=False, use_symlink=use_symlink)

    def copy(self, key: str, path: Union[str, Path]) -> OperationResult:
        """Copy the local version of ``key`` into ``path`` without recording it.

        Copies are never upgraded.
        """
        validate_key(key)
        with self.locks.user_lock(self.username):
            return self._install(key, path, copy_only=True, use_symlink=False)

    def upgrade(self, keys: Optional[List[str]] = None) -> List[OperationResult]:
        """Re-install installed keys at the newest version.

        Args:
            keys: Keys to upgrade (defaults to everything installed for the user)

        Raises:
            NotInstalledError: If a given key is not installed
        """
        with self.locks.user_lock(self.username):
            if keys is None:
                keys = self.installed_index.all().keys()

            results = []
            for key in keys:
                installed = self.installed_index.installed(key)
                if installed is None:
                    raise NotInstalledError(f"{key} is not installed for {self.username}")
                results.append(
                    self._install(
                        key,
                        installed.path,
                        copy_only=False,
                        use_symlink=installed.is_symlink,
                    )
                )
            return results

    def uninstall(self, key: str) -> OperationResult:
        """Remove the installed files of ``key`` and its installed record.

        Raises:
            NotInstalledError: If the key is not installed
        """
        with self.locks.user_lock(self.username):
            installed = self.installed_index.installed(key)
            if installed is None:
                raise NotInstalledError(f"{key} is not installed for {self.username}")

            removed = remove_files(installed.path, installed.files)
            self.installed_index.delete(key)
            logger.info(
                f"Uninstalled {key} ({installed.version}) from {installed.path}: "
                f"{removed} files removed"
            )
            return OperationResult(key, installed.version, "uninstalled", installed.path)

    def _validate_target(self, path: Union[str, Path, None]) -> Path:
        if path is None:
            raise InvalidPathError("no install path given")
        # Recorded paths are reused from other working directories
        target = Path(path).expanduser().resolve()
        if not target.is_dir():
            raise InvalidPathError(f"{target} does not exist or is not a directory")
        if not os.access(target, os.W_OK):
            raise InvalidPathError(f"{target} is not writable")
        return target

    def _ensure_local(self, key: str) -> ItemVersion:
        """Pull ``key`` if the local copy differs from remote, then return it."""
        remote_version = self.remote_index.version(key)
        local_version = self.local_index.version(key)
        if remote_version is not None and local_version != remote_version:
            self.pull(key)

        local = self.local_index.get(key)
        item_version = local.newest() if local else None
        if item_version is None:
            raise ItemNotFoundError(key, tier="local")
        return item_version

    def _install(
        self,
        key: str,
        path: Union[str, Path, None],
        copy_only: bool,
        use_symlink: bool,
    ) -> OperationResult:
        """Materialize the local version of ``key`` into a target path.

        Shared by install, upgrade and copy. An existing installed record
        supplies the target path and the list of files to clean up.
        """
        installed = None
        if not copy_only:
            installed = self.installed_index.installed(key)
            if installed is not None:
                path = installed.path

        target = self._validate_target(path)
        local = self._ensure_local(key)

        if installed is not None and installed.version == local.version:
            logger.info(f"{key} ({local.version}) is already the latest version")
            return OperationResult(key, local.version, "already-latest", str(target))

        if installed is not None:
            stale = set(installed.files) - set(local.files)
            removed = remove_files(target, sorted(stale))
            logger.info(f"Removed {removed} stale files of {key} from {target}")

        self.local_index.touch(key, local.version)

        if use_symlink:
            remove_files(target, local.files, prune=False)
            self.runner.link_tree(self.username, local.path, target)
        else:
            self.runner.sync_tree(self.username, local.path, target)

        if copy_only:
            action = "copied"
        else:
            self.installed_index.add(
                key, local.version, str(target), local.files, is_symlink=use_symlink
            )
            action = "upgraded" if installed is not None else "installed"

        logger.info(f"{action.capitalize()} {key} ({local.version}) into {target}")
        return OperationResult(key, local.version, action, str(target))

    # =========================================================================
    # Reporting
    # =========================================================================

    def _search(self, index, match: Optional[str], exact: bool) -> ItemSet:
        if not match:
            return index.all()
        return index.search(match, substring=not exact)

    def localinfo(
        self, match: Optional[str] = None, exact: bool = False
    ) -> Dict[str, Dict[str, Any]]:
        """Local items with their remote version and up-to-date status.

        Args:
            match: Key prefix to filter on (everything if None)
            exact: Match ``match`` as a whole key instead of a prefix
        """
        local = self._search(self.local_index, match, exact)
        remote = self.remote_index.search(local.keys())

        results = {}
        for item in local:
            remote_item = remote.get(item.key)
            remote_version = remote_item.version() if remote_item else None
            results[item.key] = {
                "local_version": item.version(),
                "local_versions": item.versions(),
                "remote_version": remote_version,
                "path": item.newest().path,
                "up_to_date": item.version() == remote_version,
            }
        return results

    def remoteinfo(
        self, match: Optional[str] = None, exact: bool = False
    ) -> Dict[str, Dict[str, Any]]:
        """Remote items with their local version and up-to-date status."""
        remote = self._search(self.remote_index, match, exact)
        local = self.local_index.search(remote.keys())

        results = {}
        for item in remote:
            local_item = local.get(item.key)
            local_version = local_item.version() if local_item else None
            results[item.key] = {
                "version": item.version(),
                "versions": item.versions(),
                "local_version": local_version,
                "files": len(item.newest().files),
                "up_to_date": item.version() == local_version,
            }
        return results

    def installedinfo(self) -> Dict[str, Dict[str, Any]]:
        """This user's installed items against the local and remote tiers."""
        installed = self.installed_index.all()
        keys = installed.keys()
        local = self.local_index.search(keys)
        remote = self.remote_index.search(keys)

        results = {}
        for item in installed:
            record = item.newest()
            local_item = local.get(item.key)
            remote_item = remote.get(item.key)
            local_version = local_item.version() if local_item else None
            remote_version = remote_item.version() if remote_item else None
            results[item.key] = {
                "installed_version": record.version,
                "local_version": local_version,
                "remote_version": remote_version,
                "path": record.path,
                "is_symlink": record.is_symlink,
                "up_to_date": record.version == local_version
                and record.version == remote_version,
            }
        return results
