"""Exceptions raised by cacher operations.

Every precondition failure has its own class so callers (and the CLI) can tell
them apart without parsing messages. None of them are retried internally.
"""

from typing import Optional


class CacherError(Exception):
    """Base exception for cacher errors."""

    pass


# Validation errors


class InvalidKeyError(CacherError, ValueError):
    """Raised when a cache key contains characters outside [A-Za-z0-9_:-]."""

    pass


class InvalidVersionError(CacherError, ValueError):
    """Raised when a version string cannot be used as a path component."""

    pass


class InvalidPathError(CacherError, ValueError):
    """Raised when an install target does not exist or is not writable."""

    pass


class PathNotDirectoryError(CacherError, ValueError):
    """Raised when a push source is not a directory."""

    pass


class PathNotReadableError(CacherError, ValueError):
    """Raised when a push source cannot be read."""

    pass


class EmptyDirectoryError(CacherError, ValueError):
    """Raised when a push source has no files in it."""

    pass


class ConfigError(CacherError):
    """Raised when required configuration is missing."""

    pass


# State conflicts


class AlreadyExistsError(CacherError):
    """Raised when a (key, version) is already present in an index."""

    pass


class AlreadyInstalledError(CacherError):
    """Raised by install when the key is already installed for the user."""

    pass


class NotInstalledError(CacherError):
    """Raised by upgrade/uninstall when the key is not installed for the user."""

    pass


# Lookups


class ItemNotFoundError(CacherError):
    """Raised when a key (or a specific version of it) is unknown in a tier."""

    def __init__(self, key: str, version: Optional[str] = None, tier: str = "remote"):
        self.key = key
        self.version = version
        self.tier = tier
        if version is None:
            message = f"{key} not found in {tier} cache"
        else:
            message = f"{key} version {version} not found in {tier} cache"
        super().__init__(message)


# Environment


class PrivilegeError(CacherError):
    """Raised when not running as root or the target user does not exist."""

    pass


class ShellCommandError(CacherError):
    """Raised when an external command exits nonzero."""

    def __init__(self, command: list, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(
            f"Command {' '.join(command)!r} failed with exit code {returncode}{detail}"
        )


class LockTimeoutError(CacherError):
    """Raised when a lock could not be acquired within the configured timeout."""

    pass
