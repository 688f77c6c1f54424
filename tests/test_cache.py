from unittest.mock import MagicMock

import pytest
import redis

from shared.cache import FreshnessCache
from shared.constants import PRICE, SENTIMENT
from shared.errors import PersistenceFailure


class TestQuoteEntries:
    """Freshness is decided from the stored timestamp, not Redis expiry."""

    def test_fresh_hit(self, cache, clock):
        cache.put("PHA", PRICE, {"price": 0.24})
        clock.advance(10)
        hit = cache.get("PHA", PRICE)
        assert hit.value == {"price": 0.24}
        assert hit.age == pytest.approx(10)

    def test_expired_entry_is_a_miss(self, cache, clock):
        cache.put("PHA", PRICE, {"price": 0.24})
        clock.advance(301)
        assert cache.get("PHA", PRICE) is None

    def test_expired_entry_served_when_stale_allowed(self, cache, clock):
        cache.put("PHA", PRICE, {"price": 0.24})
        clock.advance(3000)
        hit = cache.get("PHA", PRICE, allow_stale=True)
        assert hit.value["price"] == 0.24
        assert hit.age == pytest.approx(3000)

    def test_categories_have_independent_ttls(self, cache, clock):
        cache.put("PHA", PRICE, {"price": 0.24})
        cache.put("PHA", SENTIMENT, {"score": 0.5})
        clock.advance(600)
        assert cache.get("PHA", PRICE) is None
        assert cache.get("PHA", SENTIMENT) is not None

    def test_caller_ttl_override(self, cache, clock):
        cache.put("PHA", PRICE, {"price": 0.24})
        clock.advance(100)
        assert cache.get("PHA", PRICE, ttl=60) is None
        assert cache.get("PHA", PRICE, ttl=120) is not None

    def test_physical_expiry_is_retention(self, cache, rds):
        cache.put("PHA", PRICE, {"price": 0.24})
        assert rds.ttl("cache:price:PHA") == 86400

    def test_corrupt_entry_is_a_miss(self, cache, rds):
        rds.set("cache:price:PHA", "not-json")
        assert cache.get("PHA", PRICE) is None

    def test_unknown_category_rejected(self, cache):
        with pytest.raises(ValueError):
            cache.put("PHA", "volume", {"v": 1})

    def test_sweep_removes_entries_past_retention(self, rds, clock):
        cache = FreshnessCache(rds, retention=1000, clock=clock)
        cache.put("PHA", PRICE, {"price": 0.24})
        clock.advance(500)
        cache.put("SUI", PRICE, {"price": 3.0})
        clock.advance(600)
        assert cache.sweep() == 1
        assert cache.get("SUI", PRICE, allow_stale=True) is not None

    def test_redis_error_becomes_persistence_failure(self, clock):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        with pytest.raises(PersistenceFailure):
            FreshnessCache(client, clock=clock).get("PHA", PRICE)


class TestNotificationMarks:
    def test_mark_then_seen_within_window(self, cache, clock):
        assert not cache.seen_notification("k", 3600)
        cache.mark_notification("k", 3600)
        clock.advance(3599)
        assert cache.seen_notification("k", 3600)

    def test_eligible_again_after_window(self, cache, clock):
        cache.mark_notification("k", 3600)
        clock.advance(3601)
        assert not cache.seen_notification("k", 3600)

    def test_claim_is_exclusive_within_window(self, cache):
        assert cache.claim_notification("k", 3600) is True
        assert cache.claim_notification("k", 3600) is False

    def test_claim_replaces_logically_expired_mark(self, cache, clock):
        assert cache.claim_notification("k", 3600)
        clock.advance(3601)
        # key is still physically present in Redis
        assert cache.claim_notification("k", 3600) is True
        assert cache.claim_notification("k", 3600) is False

    def test_forget_releases_claim(self, cache):
        cache.claim_notification("k", 3600)
        cache.forget_notification("k")
        assert cache.claim_notification("k", 3600) is True
