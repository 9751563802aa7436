"""Tests for key and file-tree utilities."""

import os

import pytest

from cacher.errors import InvalidKeyError, InvalidVersionError
from cacher.utils import (
    is_cloud_path,
    item2path,
    list_files,
    path_join,
    prune_empty_dirs,
    remove_files,
    resolve_path,
    validate_key,
    validate_version,
)

from conftest import write_tree


class TestKeys:
    """Test key validation and key-to-path mapping."""

    def test_item2path_replaces_colons(self):
        assert item2path("team:service:asset") == "team/service/asset"
        assert item2path("single") == "single"
        assert item2path("a-b_c:D9") == "a-b_c/D9"

    @pytest.mark.parametrize(
        "key", ["team/asset", "team asset", "team.asset", "tëam", "a:b;c", ""]
    )
    def test_invalid_characters_rejected(self, key):
        with pytest.raises(InvalidKeyError):
            item2path(key)

    @pytest.mark.parametrize("key", [":team", "team:", "team::asset"])
    def test_empty_segments_rejected(self, key):
        with pytest.raises(InvalidKeyError):
            validate_key(key)

    def test_invalid_key_is_value_error(self):
        with pytest.raises(ValueError):
            validate_key("bad/key")


class TestVersions:
    """Test version validation."""

    @pytest.mark.parametrize("version", ["1.0", "2024.1", "1700000000", "v1-rc2"])
    def test_valid_versions(self, version):
        validate_version(version)

    @pytest.mark.parametrize("version", ["", "1/2", "..", ".", "a\\b"])
    def test_invalid_versions(self, version):
        with pytest.raises(InvalidVersionError):
            validate_version(version)


class TestPaths:
    """Test path joining and cloudpath detection."""

    def test_path_join(self):
        assert path_join("s3://bucket/", "team/asset", "1.0") == "s3://bucket/team/asset/1.0"
        assert path_join("/var/cache", "/items/", "x") == "/var/cache/items/x"

    def test_path_join_rejects_empty_part(self):
        with pytest.raises(ValueError):
            path_join("s3://bucket", "", "1.0")

    def test_is_cloud_path(self):
        assert is_cloud_path("s3://bucket")
        assert is_cloud_path("file:///tmp/bucket")
        assert not is_cloud_path("/tmp/bucket")

    def test_resolve_path(self, tmp_path):
        assert resolve_path("gs://bucket") == "gs://bucket"
        assert resolve_path(tmp_path) == f"file://{tmp_path.resolve()}"


class TestFileTrees:
    """Test file listing, removal and empty-directory pruning."""

    def test_list_files_ignores_empty_directories(self, tmp_path):
        (tmp_path / "a" / "b").mkdir(parents=True)
        assert list_files(tmp_path) == []
        (tmp_path / ".hidden").write_text("x")
        assert list_files(tmp_path) == [".hidden"]

    def test_list_files_is_relative_and_sorted(self, tmp_path):
        write_tree(tmp_path, {"b.txt": "b", "a/x.txt": "x", "a/deep/y.txt": "y"})
        assert list_files(tmp_path) == ["a/deep/y.txt", "a/x.txt", "b.txt"]

    def test_list_files_includes_file_symlinks(self, tmp_path):
        write_tree(tmp_path, {"real.txt": "r"})
        os.symlink(tmp_path / "real.txt", tmp_path / "link.txt")
        assert list_files(tmp_path) == ["link.txt", "real.txt"]

    def test_remove_files_prunes_empty_parents(self, tmp_path):
        write_tree(tmp_path, {"a/b/c.txt": "c", "a/keep.txt": "k", "top.txt": "t"})

        removed = remove_files(tmp_path, ["a/b/c.txt", "top.txt"])

        assert removed == 2
        assert not (tmp_path / "a" / "b").exists()
        assert (tmp_path / "a" / "keep.txt").exists()
        assert tmp_path.exists()

    def test_remove_files_never_removes_root(self, tmp_path):
        root = tmp_path / "root"
        write_tree(root, {"only.txt": "x"})

        remove_files(root, ["only.txt"])

        assert root.exists()
        assert list(root.iterdir()) == []

    def test_remove_files_ignores_missing_and_unsafe_paths(self, tmp_path):
        root = write_tree(tmp_path / "root", {"x.txt": "x"})
        outside = write_tree(tmp_path / "outside", {"secret.txt": "s"})

        removed = remove_files(root, ["missing.txt", "../outside/secret.txt", "/etc/passwd"])

        assert removed == 0
        assert (outside / "secret.txt").exists()
        assert (root / "x.txt").exists()

    def test_remove_files_without_pruning(self, tmp_path):
        write_tree(tmp_path, {"a/b.txt": "b"})
        remove_files(tmp_path, ["a/b.txt"], prune=False)
        assert (tmp_path / "a").is_dir()

    def test_prune_stops_at_non_empty_directory(self, tmp_path):
        write_tree(tmp_path, {"a/keep.txt": "k"})
        (tmp_path / "a" / "b" / "c").mkdir(parents=True)

        removed = prune_empty_dirs(tmp_path, tmp_path / "a" / "b" / "c")

        assert removed == 2
        assert (tmp_path / "a").exists()
