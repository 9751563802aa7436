"""Tests for named lock-file locks."""

import pytest

from cacher.errors import LockTimeoutError
from cacher.locks import LockManager


def test_lock_files_are_per_name(tmp_path):
    locks = LockManager(tmp_path / "locks")

    key_path = locks._get_lock_path("key:team:asset")
    user_path = locks._get_lock_path("username:team")

    assert key_path != user_path
    assert key_path.parent == tmp_path / "locks"
    assert "/" not in key_path.name


def test_creates_lock_dir(tmp_path):
    LockManager(tmp_path / "nested" / "locks")
    assert (tmp_path / "nested" / "locks").is_dir()


def test_lock_is_released_after_block(tmp_path):
    locks = LockManager(tmp_path, timeout=0)

    with locks.key_lock("k") as lock:
        assert lock.is_locked
    with locks.key_lock("k") as lock:
        assert lock.is_locked


def test_held_lock_times_out(tmp_path):
    holder = LockManager(tmp_path)
    waiter = LockManager(tmp_path, timeout=0.1)

    with holder.user_lock("alice"):
        with pytest.raises(LockTimeoutError):
            with waiter.user_lock("alice"):
                pass


def test_different_names_do_not_contend(tmp_path):
    holder = LockManager(tmp_path)
    waiter = LockManager(tmp_path, timeout=0.1)

    with holder.key_lock("a"):
        with waiter.key_lock("b"):
            pass
        with waiter.user_lock("a"):
            pass
