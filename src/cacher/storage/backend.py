"""Object store transfer client.

Moves whole directory trees between the local filesystem and a cloudpath
(``s3://``, ``gs://``, ``file://`` ...) using cloudfiles. Remote layout is
``<remote_root>/<key with ':' as '/'>/<version>/<relative file path>``.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from cloudfiles import CloudFiles

from cacher.utils import item2path, path_join, resolve_path, validate_version

logger = logging.getLogger(__name__)


class RemoteStorage:
    """Uploads, downloads and deletes version trees under one remote root.

    Args:
        root: Object store root as a cloudpath, or a local directory

    Examples:
        >>> storage = RemoteStorage("s3://artifacts")
        >>> storage.remote_path("team:service", "1.0")
        's3://artifacts/team/service/1.0'
    """

    def __init__(self, root: str):
        self.root = resolve_path(root).rstrip("/")

    def remote_path(self, key: str, version: str) -> str:
        """Cloudpath where (key, version) is stored."""
        validate_version(version)
        return path_join(self.root, item2path(key), version)

    def _prefix(self, remote_uri: str) -> str:
        """Path of ``remote_uri`` relative to the root, with a trailing slash.

        The trailing slash keeps version ``1`` from matching ``11``.
        """
        if not remote_uri.startswith(self.root + "/"):
            raise ValueError(f"{remote_uri} is not under {self.root}")
        return remote_uri[len(self.root) + 1 :].strip("/") + "/"

    def upload_tree(
        self, local_dir: Union[str, Path], remote_uri: str, files: List[str]
    ) -> int:
        """Upload ``files`` (relative to ``local_dir``) below ``remote_uri``.

        Files are streamed from disk by cloudfiles rather than read into
        memory first.

        Returns:
            Number of files uploaded

        Raises:
            FileNotFoundError: If a listed file is missing locally
        """
        cf = CloudFiles(remote_uri)
        cf.transfer_from(resolve_path(local_dir), paths=list(files))
        logger.info(f"Uploaded {len(files)} files to {remote_uri}")
        return len(files)

    def download_tree(
        self,
        remote_uri: str,
        local_dir: Union[str, Path],
        files: Optional[List[str]] = None,
    ) -> int:
        """Download the objects below ``remote_uri`` into ``local_dir``.

        Args:
            remote_uri: Cloudpath of a version
            local_dir: Destination directory (created if needed)
            files: Object names to fetch; lists the prefix if empty

        Returns:
            Number of files downloaded

        Raises:
            FileNotFoundError: If a listed object is missing remotely
        """
        local_dir = Path(local_dir)
        local_dir.mkdir(parents=True, exist_ok=True)
        cf = CloudFiles(remote_uri)
        if not files:
            files = [name.lstrip("/") for name in cf.list()]

        cf.transfer_to(resolve_path(local_dir), paths=list(files))
        logger.info(f"Downloaded {len(files)} files from {remote_uri}")
        return len(files)

    def delete_tree(self, remote_uri: str) -> int:
        """Delete every object under ``remote_uri``.

        Returns:
            Number of objects deleted
        """
        prefix = self._prefix(remote_uri)
        cf = CloudFiles(self.root)
        names = list(cf.list(prefix=prefix))
        if names:
            cf.delete(names)
        logger.info(f"Deleted {len(names)} objects under {remote_uri}")
        return len(names)
