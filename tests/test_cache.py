from detection_refinery.pipelines.cache import CacheParams, DetectionCache, content_key


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_hit_and_miss_counts() -> None:
    cache = DetectionCache()
    assert cache.get("a") is None
    cache.put("a", "result")
    assert cache.get("a") == "result"
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)
    assert stats.hit_rate == 0.5


def test_expired_entry_is_a_miss() -> None:
    clock = _Clock()
    cache = DetectionCache(CacheParams(ttl_s=10.0), clock=clock)
    cache.put("a", 1)
    clock.now = 10.0
    assert cache.get("a") == 1
    clock.now = 10.5
    assert cache.get("a") is None
    assert len(cache) == 0
    assert cache.stats().misses == 1


def test_full_cache_evicts_least_recently_used() -> None:
    cache = DetectionCache(CacheParams(max_size=3))
    for key in ("a", "b", "c"):
        cache.put(key, key)
    cache.get("a")
    cache.put("d", "d")
    assert cache.get("b") is None
    assert [cache.get(k) for k in ("a", "c", "d")] == ["a", "c", "d"]
    assert cache.stats().evictions == 1


def test_put_existing_key_replaces_without_evicting() -> None:
    cache = DetectionCache(CacheParams(max_size=2))
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("a", 3)
    assert cache.get("a") == 3
    assert cache.stats().evictions == 0
    assert cache.clear() == 2
    assert len(cache) == 0


def test_content_key() -> None:
    assert content_key("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert content_key(b"abc") == content_key("abc")
