import unittest

from carfinder.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TTLCacheTests(unittest.TestCase):
    def test_set_and_get(self):
        cache = TTLCache()
        cache.set("a", 1)
        self.assertEqual(cache.get("a"), 1)
        self.assertIsNone(cache.get("missing"))
        self.assertEqual(cache.get("missing", "d"), "d")

    def test_expiry(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("a", 1)
        clock.now = 10
        self.assertEqual(cache.get("a"), 1)
        clock.now = 10.5
        self.assertIsNone(cache.get("a"))
        self.assertEqual(len(cache), 0)

    def test_per_entry_ttl(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("short", 1, ttl=1)
        cache.set("long", 2)
        clock.now = 5
        self.assertIsNone(cache.get("short"))
        self.assertEqual(cache.get("long"), 2)

    def test_set_prunes_expired_entries(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        for i in range(5):
            cache.set(f"once-{i}", i)
        clock.now = 11
        cache.set("fresh", 1)
        self.assertEqual(len(cache), 1)
        self.assertEqual(cache.get("fresh"), 1)

    def test_make_key_normalizes_strings(self):
        self.assertEqual(TTLCache.make_key("images", "  Toyota Corolla ", 4), "images:toyota corolla|4")

    def test_clear(self):
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)
        self.assertEqual(len(cache), 2)
        cache.clear()
        self.assertEqual(len(cache), 0)


if __name__ == "__main__":
    unittest.main()
