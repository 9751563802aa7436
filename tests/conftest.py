"""Shared fixtures for cacher tests.

The remote tier is a ``file://`` bucket inside the test's temporary
directory and every Cacher runs in dev mode, so no root or sudo is needed.
"""

import getpass
from pathlib import Path

import pytest

from cacher.cacher import Cacher
from cacher.config import CacherConfig


def write_tree(root: Path, files: dict) -> Path:
    """Create ``files`` (relative path -> text) under ``root``."""
    root.mkdir(parents=True, exist_ok=True)
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def config(tmp_path):
    """Dev-mode configuration with a file:// remote store."""
    return CacherConfig(
        cache_dir=tmp_path / "cache",
        remote_db=tmp_path / "shared" / "remote.sqlite",
        remote_root=str(tmp_path / "bucket"),
        dev_mode=True,
    )


@pytest.fixture
def username():
    return getpass.getuser()


@pytest.fixture
def cacher(config, username):
    """Cacher for the current user."""
    return Cacher(config, username)


@pytest.fixture
def source_dir(tmp_path):
    """Directory with a small artifact tree."""
    return write_tree(
        tmp_path / "build",
        {
            "bin/app": "#!/bin/sh\necho app\n",
            "lib/core.py": "VALUE = 1\n",
            "README": "artifact\n",
        },
    )


@pytest.fixture
def target_dir(tmp_path):
    """Empty, writable install target."""
    target = tmp_path / "target"
    target.mkdir()
    return target
