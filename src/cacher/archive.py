"""Single-object archives for pushed directories.

With compression enabled, ``push`` packs the whole directory into one
``cacher.tgz`` so the object store holds one object per version instead of
one per file. ``pull`` recognizes a download consisting of exactly that file
and unpacks it in place.
"""

import logging
import tarfile
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "cacher.tgz"


def pack_directory(source: Union[str, Path], dest_dir: Union[str, Path]) -> Path:
    """Archive the contents of ``source`` into ``dest_dir/cacher.tgz``.

    Members are stored relative to ``source`` so unpacking reproduces the
    tree directly in the target directory.

    Returns:
        Path to the archive
    """
    source = Path(source)
    archive_path = Path(dest_dir) / ARCHIVE_NAME
    with tarfile.open(archive_path, "w:gz") as tar:
        for child in sorted(source.iterdir()):
            tar.add(child, arcname=child.name)
    logger.debug(f"Packed {source} into {archive_path}")
    return archive_path


def is_archive(files: List[str]) -> bool:
    """True if a downloaded file list is a single cacher archive."""
    return files == [ARCHIVE_NAME]


def unpack_directory(directory: Union[str, Path]) -> None:
    """Extract ``directory/cacher.tgz`` into ``directory`` and remove it."""
    directory = Path(directory)
    archive_path = directory / ARCHIVE_NAME
    with tarfile.open(archive_path, "r:gz") as tar:
        if hasattr(tarfile, "data_filter"):
            tar.extractall(directory, filter="data")
        else:
            for member in tar.getmembers():
                if member.name.startswith("/") or ".." in Path(member.name).parts:
                    raise tarfile.TarError(f"Unsafe path in archive: {member.name}")
            tar.extractall(directory)
    archive_path.unlink()
    logger.debug(f"Unpacked {archive_path}")
