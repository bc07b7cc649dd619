"""
Tests for the file-backed response cache.
"""

import time

from toonkit.cache import ResponseCache, build_cache_key


def test_set_and_get(tmp_path):
    cache = ResponseCache(tmp_path)
    cache.set("k", {"rows": [1, 2]})

    assert cache.get("k") == {"rows": [1, 2]}
    assert cache.has("k")
    assert cache.get("missing") is None
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1


def test_expired_entries_are_misses(tmp_path):
    cache = ResponseCache(tmp_path)
    cache.set("k", "v", ttl=0)
    time.sleep(0.01)

    assert cache.get("k") is None
    assert not cache.has("k")
    assert cache.size() == 0
    assert list(tmp_path.glob("*.lock")) == []


def test_delete_and_clear(tmp_path):
    cache = ResponseCache(tmp_path)
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.delete("a")
    assert not cache.delete("a")
    assert cache.size() == 1
    assert not cache.get_cache_path("a").with_suffix(".lock").exists()

    cache.clear()
    assert cache.size() == 0
    assert cache.stats() == {"hits": 0, "misses": 0, "size": 0, "hit_rate": 0.0}


def test_delete_pattern(tmp_path):
    cache = ResponseCache(tmp_path)
    cache.set(build_cache_key("schoolinfo", "class-days", {"year": 2024}), 1)
    cache.set(build_cache_key("schoolinfo", "enrollment", {"year": 2024}), 2)
    cache.set(build_cache_key("other", "class-days", {}), 3)

    assert cache.delete_pattern(r"^api:schoolinfo:") == 2
    assert cache.size() == 1


def test_corrupt_entry_is_a_miss(tmp_path):
    cache = ResponseCache(tmp_path)
    cache.get_cache_path("k").write_text("{not json", encoding="utf-8")

    assert cache.get("k") is None


def test_cache_key_is_order_independent():
    assert build_cache_key("p", "e", {"a": 1, "b": 2}) == build_cache_key("p", "e", {"b": 2, "a": 1})
    assert build_cache_key("p", "e", {"a": 1}) == 'api:p:e:{"a": 1}'


def test_misses_leave_no_lock_files(tmp_path):
    cache = ResponseCache(tmp_path)

    assert cache.get("missing") is None
    assert not cache.has("missing")
    assert not cache.delete("missing")
    assert list(tmp_path.glob("*.lock")) == []
