"""Configuration management."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cacher.errors import ConfigError
from cacher.utils import resolve_path

DEFAULT_CACHE_DIR = Path.home() / ".cacher"


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CacherConfig:
    """Configuration for a cacher installation.

    Attributes:
        cache_dir: Root of the local cache. Pulled items are stored under
            ``items/`` and lock files under ``.locks/``.
        local_db: SQLite file holding the local and installed indices
            (defaults to ``cache_dir/local.sqlite``)
        remote_db: SQLite file holding the remote index. Point this at shared
            storage so all machines see the same remote items
            (defaults to ``cache_dir/remote.sqlite``)
        remote_root: Object store root as a cloudpath (``s3://bucket``,
            ``gs://bucket``, ``file:///srv/bucket``). Plain paths are
            converted to ``file://``.
        compress: Archive pushed directories into one cacher.tgz object
        dev_mode: Skip root/user checks and run file operations in-process
        settle_hours: Age after which a version counts as settled
        lock_timeout: Seconds to wait for a lock (negative = wait forever)
        keycache_size: Maximum number of remote Items memoized per run
    """

    cache_dir: Path = DEFAULT_CACHE_DIR
    local_db: Optional[Path] = None
    remote_db: Optional[Path] = None
    remote_root: Optional[str] = None
    compress: bool = False
    dev_mode: bool = False
    settle_hours: float = 24.0
    lock_timeout: float = -1
    keycache_size: int = 1024

    def __post_init__(self):
        """Normalize paths and fill in database defaults."""
        self.cache_dir = Path(self.cache_dir).expanduser()
        self.local_db = (
            Path(self.local_db).expanduser()
            if self.local_db
            else self.cache_dir / "local.sqlite"
        )
        self.remote_db = (
            Path(self.remote_db).expanduser()
            if self.remote_db
            else self.cache_dir / "remote.sqlite"
        )
        if self.remote_root:
            self.remote_root = resolve_path(self.remote_root)

    @property
    def items_dir(self) -> Path:
        return self.cache_dir / "items"

    @property
    def lock_dir(self) -> Path:
        return self.cache_dir / ".locks"

    @property
    def settle_seconds(self) -> float:
        return self.settle_hours * 3600

    def require_remote_root(self) -> str:
        """Return ``remote_root`` or raise if it is not configured."""
        if not self.remote_root:
            raise ConfigError(
                "No remote store configured (set remote_root or CACHER_REMOTE_ROOT)"
            )
        return self.remote_root

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "CacherConfig":
        """Load configuration from file, then apply environment overrides.

        Args:
            config_path: Path to a JSON config file. If None, uses
                ``~/.cacher/config.json``. A missing file yields defaults.

        Returns:
            CacherConfig instance
        """
        if config_path is None:
            config_path = DEFAULT_CACHE_DIR / "config.json"

        data = {}
        if Path(config_path).exists():
            with open(config_path, "r") as f:
                data = json.load(f)

        return cls.from_env(cls(**data))

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to a JSON file.

        Args:
            config_path: Path to config file. If None, uses ``cache_dir/config.json``.
        """
        if config_path is None:
            config_path = self.cache_dir / "config.json"

        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "cache_dir": str(self.cache_dir),
            "local_db": str(self.local_db),
            "remote_db": str(self.remote_db),
            "remote_root": self.remote_root,
            "compress": self.compress,
            "dev_mode": self.dev_mode,
            "settle_hours": self.settle_hours,
            "lock_timeout": self.lock_timeout,
            "keycache_size": self.keycache_size,
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls, base: Optional["CacherConfig"] = None) -> "CacherConfig":
        """Create configuration from environment variables.

        Environment variables:
            CACHER_CACHE_DIR: Local cache root
            CACHER_LOCAL_DB: Local/installed index database file
            CACHER_REMOTE_DB: Remote index database file
            CACHER_REMOTE_ROOT: Object store root cloudpath
            CACHER_COMPRESS: Archive pushes (true/false)
            CACHER_DEV: Development mode (true/false)
            CACHER_SETTLE_HOURS: Retention grace period in hours
            CACHER_LOCK_TIMEOUT: Lock timeout in seconds

        Args:
            base: Configuration to override; defaults are used if None

        Returns:
            CacherConfig instance
        """
        config = base or cls()
        values = {
            "cache_dir": config.cache_dir,
            "local_db": config.local_db,
            "remote_db": config.remote_db,
            "remote_root": config.remote_root,
            "compress": config.compress,
            "dev_mode": config.dev_mode,
            "settle_hours": config.settle_hours,
            "lock_timeout": config.lock_timeout,
            "keycache_size": config.keycache_size,
        }

        if os.getenv("CACHER_CACHE_DIR"):
            values["cache_dir"] = Path(os.environ["CACHER_CACHE_DIR"])
            # Database defaults follow the cache dir unless set explicitly
            if base is None or base.local_db == base.cache_dir / "local.sqlite":
                values["local_db"] = None
            if base is None or base.remote_db == base.cache_dir / "remote.sqlite":
                values["remote_db"] = None

        if os.getenv("CACHER_LOCAL_DB"):
            values["local_db"] = Path(os.environ["CACHER_LOCAL_DB"])

        if os.getenv("CACHER_REMOTE_DB"):
            values["remote_db"] = Path(os.environ["CACHER_REMOTE_DB"])

        if os.getenv("CACHER_REMOTE_ROOT"):
            values["remote_root"] = os.environ["CACHER_REMOTE_ROOT"]

        if os.getenv("CACHER_COMPRESS"):
            values["compress"] = _env_flag(os.environ["CACHER_COMPRESS"])

        if os.getenv("CACHER_DEV"):
            values["dev_mode"] = _env_flag(os.environ["CACHER_DEV"])

        if os.getenv("CACHER_SETTLE_HOURS"):
            values["settle_hours"] = float(os.environ["CACHER_SETTLE_HOURS"])

        if os.getenv("CACHER_LOCK_TIMEOUT"):
            values["lock_timeout"] = float(os.environ["CACHER_LOCK_TIMEOUT"])

        return cls(**values)
