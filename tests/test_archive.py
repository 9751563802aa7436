"""Tests for packing pushed directories into a single archive."""

from cacher.archive import ARCHIVE_NAME, is_archive, pack_directory, unpack_directory
from cacher.utils import list_files

from conftest import write_tree


def test_pack_and_unpack_in_place(tmp_path):
    source = write_tree(tmp_path / "src", {"bin/app": "run", "lib/x/y.py": "y", "README": "r"})
    staging = tmp_path / "staging"
    staging.mkdir()

    archive = pack_directory(source, staging)

    assert archive.name == ARCHIVE_NAME
    assert list_files(staging) == [ARCHIVE_NAME]

    unpack_directory(staging)

    assert list_files(staging) == ["README", "bin/app", "lib/x/y.py"]
    assert (staging / "lib" / "x" / "y.py").read_text() == "y"


def test_is_archive():
    assert is_archive([ARCHIVE_NAME])
    assert not is_archive([ARCHIVE_NAME, "other"])
    assert not is_archive(["data.tar.gz"])
    assert not is_archive([])
