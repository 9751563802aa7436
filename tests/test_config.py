"""Tests for CacherConfig defaults, environment overrides and persistence."""

import json

import pytest

from cacher.config import CacherConfig
from cacher.errors import ConfigError

ENV_VARS = [
    "CACHER_CACHE_DIR",
    "CACHER_LOCAL_DB",
    "CACHER_REMOTE_DB",
    "CACHER_REMOTE_ROOT",
    "CACHER_COMPRESS",
    "CACHER_DEV",
    "CACHER_SETTLE_HOURS",
    "CACHER_LOCK_TIMEOUT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Test default values and derived paths."""

    def test_databases_default_inside_cache_dir(self, tmp_path):
        config = CacherConfig(cache_dir=tmp_path)

        assert config.local_db == tmp_path / "local.sqlite"
        assert config.remote_db == tmp_path / "remote.sqlite"
        assert config.items_dir == tmp_path / "items"
        assert config.lock_dir == tmp_path / ".locks"

    def test_settle_seconds(self):
        assert CacherConfig().settle_seconds == 24 * 3600
        assert CacherConfig(settle_hours=0.5).settle_seconds == 1800

    def test_plain_remote_root_becomes_file_url(self, tmp_path):
        config = CacherConfig(remote_root=str(tmp_path / "bucket"))
        assert config.remote_root == f"file://{(tmp_path / 'bucket').resolve()}"

    def test_cloud_remote_root_is_kept(self):
        assert CacherConfig(remote_root="s3://bucket/cache").remote_root == "s3://bucket/cache"

    def test_require_remote_root(self):
        with pytest.raises(ConfigError):
            CacherConfig().require_remote_root()
        assert CacherConfig(remote_root="gs://b").require_remote_root() == "gs://b"


class TestFromEnv:
    """Test CACHER_* environment overrides."""

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CACHER_CACHE_DIR", str(tmp_path / "cache"))
        monkeypatch.setenv("CACHER_REMOTE_ROOT", "s3://bucket")
        monkeypatch.setenv("CACHER_COMPRESS", "true")
        monkeypatch.setenv("CACHER_DEV", "1")
        monkeypatch.setenv("CACHER_SETTLE_HOURS", "2")
        monkeypatch.setenv("CACHER_LOCK_TIMEOUT", "5")

        config = CacherConfig.from_env()

        assert config.cache_dir == tmp_path / "cache"
        assert config.local_db == tmp_path / "cache" / "local.sqlite"
        assert config.remote_root == "s3://bucket"
        assert config.compress is True
        assert config.dev_mode is True
        assert config.settle_hours == 2.0
        assert config.lock_timeout == 5.0

    def test_false_flags(self, monkeypatch):
        monkeypatch.setenv("CACHER_DEV", "no")
        assert CacherConfig.from_env(CacherConfig(dev_mode=True)).dev_mode is False

    def test_explicit_database_survives_cache_dir_override(self, tmp_path, monkeypatch):
        base = CacherConfig(cache_dir=tmp_path / "a", remote_db=tmp_path / "shared.sqlite")
        monkeypatch.setenv("CACHER_CACHE_DIR", str(tmp_path / "b"))

        config = CacherConfig.from_env(base)

        assert config.remote_db == tmp_path / "shared.sqlite"
        assert config.local_db == tmp_path / "b" / "local.sqlite"

    def test_database_env_vars(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CACHER_LOCAL_DB", str(tmp_path / "l.sqlite"))
        monkeypatch.setenv("CACHER_REMOTE_DB", str(tmp_path / "r.sqlite"))

        config = CacherConfig.from_env()

        assert config.local_db == tmp_path / "l.sqlite"
        assert config.remote_db == tmp_path / "r.sqlite"


class TestPersistence:
    """Test save/load round trips through JSON."""

    def test_save_and_load(self, tmp_path):
        config_path = tmp_path / "config.json"
        original = CacherConfig(
            cache_dir=tmp_path / "cache",
            remote_root="s3://bucket",
            compress=True,
            settle_hours=6,
        )

        original.save(config_path)
        loaded = CacherConfig.load(config_path)

        assert loaded == original
        assert json.loads(config_path.read_text())["remote_root"] == "s3://bucket"

    def test_load_missing_file_uses_defaults(self, tmp_path):
        config = CacherConfig.load(tmp_path / "missing.json")
        assert config.remote_root is None
        assert config.compress is False

    def test_env_wins_over_file(self, tmp_path, monkeypatch):
        config_path = tmp_path / "config.json"
        CacherConfig(cache_dir=tmp_path, remote_root="s3://file-bucket").save(config_path)
        monkeypatch.setenv("CACHER_REMOTE_ROOT", "s3://env-bucket")

        assert CacherConfig.load(config_path).remote_root == "s3://env-bucket"
