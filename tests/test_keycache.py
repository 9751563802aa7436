"""Tests for the per-run KeyCache."""

import pytest

from cacher.keycache import KeyCache
from cacher.models import ItemSet, ItemVersion


def item_set(*keys):
    result = ItemSet()
    for key in keys:
        result.add(ItemVersion(key=key, version="1", path="s3://b/x", created_at=0.0))
    return result


def test_add_and_get():
    cache = KeyCache()
    cache.add(item_set("a", "b"))

    assert cache.get("a").key == "a"
    assert "b" in cache
    assert cache.get("c") is None
    assert len(cache) == 2


def test_evicts_oldest_when_full():
    cache = KeyCache(maxsize=2)
    cache.add(item_set("a", "b"))
    cache.add(item_set("c"))

    assert "a" not in cache
    assert "b" in cache
    assert "c" in cache


def test_discard_and_clear():
    cache = KeyCache()
    cache.add(item_set("a", "b"))

    cache.discard("a")
    cache.discard("missing")
    assert "a" not in cache

    cache.clear()
    assert len(cache) == 0


def test_rejects_non_positive_size():
    with pytest.raises(ValueError):
        KeyCache(maxsize=0)
