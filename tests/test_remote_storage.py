"""Tests for RemoteStorage against a file:// object store."""

import pytest

from cacher.errors import InvalidKeyError, InvalidVersionError
from cacher.storage import RemoteStorage
from cacher.utils import list_files

from conftest import write_tree


@pytest.fixture
def storage(tmp_path):
    return RemoteStorage(str(tmp_path / "bucket"))


class TestRemotePath:
    """Test remote layout."""

    def test_key_segments_become_directories(self):
        storage = RemoteStorage("s3://artifacts/")
        assert storage.remote_path("team:service", "1.0") == "s3://artifacts/team/service/1.0"

    def test_local_root_becomes_file_url(self, tmp_path):
        storage = RemoteStorage(str(tmp_path / "bucket"))
        assert storage.root == f"file://{(tmp_path / 'bucket').resolve()}"

    def test_rejects_bad_key_and_version(self, storage):
        with pytest.raises(InvalidKeyError):
            storage.remote_path("team/asset", "1")
        with pytest.raises(InvalidVersionError):
            storage.remote_path("team:asset", "../1")


class TestTransfers:
    """Test upload, download and delete of version trees."""

    def test_upload_then_download(self, storage, tmp_path):
        source = write_tree(tmp_path / "src", {"bin/app": "#!/bin/sh\n", "README": "hi"})
        files = list_files(source)
        uri = storage.remote_path("team:asset", "1")

        assert storage.upload_tree(source, uri, files) == 2

        dest = tmp_path / "dest"
        assert storage.download_tree(uri, dest, files) == 2
        assert (dest / "bin" / "app").read_text() == "#!/bin/sh\n"
        assert (dest / "README").read_text() == "hi"

    def test_download_lists_when_files_unknown(self, storage, tmp_path):
        source = write_tree(tmp_path / "src", {"a/b.txt": "b", "c.txt": "c"})
        uri = storage.remote_path("k", "1")
        storage.upload_tree(source, uri, list_files(source))

        dest = tmp_path / "dest"
        storage.download_tree(uri, dest)

        assert list_files(dest) == ["a/b.txt", "c.txt"]

    def test_download_missing_object_raises(self, storage, tmp_path):
        uri = storage.remote_path("k", "1")
        with pytest.raises(FileNotFoundError):
            storage.download_tree(uri, tmp_path / "dest", ["missing.txt"])

    def test_upload_missing_file_raises(self, storage, tmp_path):
        source = write_tree(tmp_path / "src", {"a.txt": "a"})
        uri = storage.remote_path("k", "1")
        with pytest.raises(FileNotFoundError):
            storage.upload_tree(source, uri, ["a.txt", "gone.txt"])

    def test_delete_does_not_touch_sibling_versions(self, storage, tmp_path):
        """Deleting version 1 leaves version 11 alone."""
        source = write_tree(tmp_path / "src", {"f.txt": "x"})
        files = list_files(source)
        one = storage.remote_path("k", "1")
        eleven = storage.remote_path("k", "11")
        storage.upload_tree(source, one, files)
        storage.upload_tree(source, eleven, files)

        assert storage.delete_tree(one) == 1

        assert not (tmp_path / "bucket" / "k" / "1" / "f.txt").exists()
        assert (tmp_path / "bucket" / "k" / "11" / "f.txt").exists()

    def test_delete_outside_root_rejected(self, storage):
        with pytest.raises(ValueError):
            storage.delete_tree("s3://elsewhere/k/1")
