import unittest

from blastcasualties.cache import NullCache, TTLCache
from blastcasualties.cancellation import CancellationToken, ComputationCancelled


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestTTLCache(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = TTLCache(300, clock=self.clock)

    def test_hit_within_ttl(self):
        self.cache.set("key", "grid")
        self.clock.now = 299.9
        self.assertEqual(self.cache.get("key"), "grid")

    def test_expired_entry_is_a_miss_and_evicted(self):
        self.cache.set("key", "grid")
        self.clock.now = 300.0
        self.assertIsNone(self.cache.get("key"))
        self.assertEqual(len(self.cache), 0)

    def test_set_refreshes_timestamp(self):
        self.cache.set("key", "old")
        self.clock.now = 200.0
        self.cache.set("key", "new")
        self.clock.now = 450.0
        self.assertEqual(self.cache.get("key"), "new")

    def test_clear(self):
        self.cache.set("a", 1)
        self.cache.set("b", 2)
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)
        self.assertIsNone(self.cache.get("a"))

    def test_evict_expired(self):
        self.cache.set("old", 1)
        self.clock.now = 200.0
        self.cache.set("fresh", 2)
        self.clock.now = 350.0
        self.assertEqual(self.cache.evict_expired(), 1)
        self.assertEqual(self.cache.get("fresh"), 2)

    def test_stats(self):
        self.cache.set("key", 1)
        self.cache.get("key")
        self.cache.get("missing")
        self.assertEqual(self.cache.stats(), {"hits": 1, "misses": 1, "size": 1})

    def test_invalid_ttl(self):
        with self.assertRaises(ValueError):
            TTLCache(0)


class TestNullCache(unittest.TestCase):
    def test_never_stores(self):
        cache = NullCache()
        cache.set("key", "grid")
        self.assertIsNone(cache.get("key"))
        self.assertEqual(len(cache), 0)


class TestCancellationToken(unittest.TestCase):
    def test_cancel(self):
        token = CancellationToken(4)
        self.assertFalse(token.cancelled)
        token.raise_if_cancelled()

        token.cancel()
        self.assertTrue(token.cancelled)
        with self.assertRaises(ComputationCancelled):
            token.raise_if_cancelled()


if __name__ == '__main__':
    unittest.main()
