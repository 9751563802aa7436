"""Object store access.

This module provides the transfer client used to move version trees between
the local cache and the remote object store.
"""

from cacher.storage.backend import RemoteStorage

__all__ = ["RemoteStorage"]
