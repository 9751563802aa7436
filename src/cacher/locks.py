"""Named inter-process locks backed by lock files.

Two lock domains are used: ``key:<key>`` serializes pulls of one key and
``username:<user>`` serializes install-family operations of one user. Lock
files live in one directory and are named after the (quoted) lock name, so
unrelated keys or users never contend. The OS drops a flock when the holding
process exits, so a killed process does not leave a lock behind.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union
from urllib.parse import quote

from filelock import FileLock, Timeout

from cacher.errors import CacherError, LockTimeoutError

logger = logging.getLogger(__name__)


class LockManager:
    """Hands out blocking, exclusive locks by name.

    Args:
        lock_dir: Directory for lock files (created if missing)
        timeout: Seconds to wait; negative waits forever

    Examples:
        >>> locks = LockManager("/tmp/cacher-locks")
        >>> with locks.key_lock("team:asset"):
        ...     pass
    """

    def __init__(self, lock_dir: Union[str, Path], timeout: float = -1):
        self.lock_dir = Path(lock_dir)
        self.timeout = timeout
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacherError(f"Cannot create lock directory {self.lock_dir}: {e}") from e

    def _get_lock_path(self, name: str) -> Path:
        # quote() maps ':' to '%3A'; '%' never appears in keys or usernames
        return self.lock_dir / f"{quote(name, safe='')}.lock"

    @contextmanager
    def acquire(self, name: str) -> Iterator[FileLock]:
        """Hold the lock called ``name`` for the duration of the block.

        Raises:
            LockTimeoutError: If a non-negative timeout elapses first
        """
        lock = FileLock(self._get_lock_path(name), timeout=self.timeout)
        logger.debug(f"Acquiring lock {name}")
        try:
            lock.acquire()
        except Timeout as e:
            raise LockTimeoutError(
                f"Timeout acquiring lock {name} after {self.timeout} seconds"
            ) from e
        try:
            yield lock
        finally:
            lock.release()
            logger.debug(f"Released lock {name}")

    def key_lock(self, key: str):
        """Lock held while pulling ``key`` into the local cache."""
        return self.acquire(f"key:{key}")

    def user_lock(self, username: str):
        """Lock held while changing ``username``'s installed items."""
        return self.acquire(f"username:{username}")
