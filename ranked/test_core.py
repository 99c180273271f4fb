"""
Core test suite: the parts with no network.

Covers:
- Rating engine (weighted index, z-score, rating, tiers, divisions, progress)
- Seasonal decay and totals
- Credential pool selection and accounting
- Cache keys, TTL policy, entry round-trip and expiry re-check
- Environment configuration
"""

import math
import threading
from unittest.mock import AsyncMock

import pytest

from ranked.aggregator import (
    apply_decay, decay_multiplier, empty_stats, season_stats, summarize,
)
from ranked.cache import (
    CACHE_TTL, MemoryStore, RedisStore, ResultCache, cache_headers, cache_key,
    determine_ttl, deserialize_entry, serialize_entry, year_cache_key,
)
from ranked.config import load_tokens
from ranked.credentials import CredentialPool
from ranked.engine import (
    DEFAULT_TIERS, MetricWeights, RatingConfig, TierThreshold,
    calculate_rating, division_for, percentile_for, progress_for,
    rating_from_score, standardized_score, tier_for, weighted_index,
)
from ranked.errors import PoolExhausted
from ranked.models import (
    ActivityTotals, AggregatedStats, CacheEntry, PeriodStats, ProfileMeta,
)


CONFIG = RatingConfig()


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def totals(**kw) -> ActivityTotals:
    return ActivityTotals(**kw)


def stats_with(stars=0, **kw) -> AggregatedStats:
    t = totals(**kw)
    return AggregatedStats(decayed=t, raw=t, total_stars=stars)


def tier_named(name: str) -> TierThreshold:
    return next(t for t in DEFAULT_TIERS if t.name == name)


# ---------------------------------------------------------------------------
# Weighted index
# ---------------------------------------------------------------------------

class TestWeightedIndex:

    def test_each_metric_uses_its_weight(self):
        assert weighted_index(totals(merged_prs=10), 0, CONFIG) == 270
        assert weighted_index(totals(reviews=10), 0, CONFIG) == 270
        assert weighted_index(totals(issues_closed=10), 0, CONFIG) == 180
        assert weighted_index(totals(commits=10), 0, CONFIG) == 130
        assert weighted_index(totals(), 10, CONFIG) == 150

    def test_exact_weighted_sum(self):
        t = totals(commits=100, merged_prs=50, reviews=30, issues_closed=20)
        expected = 100 * 13 + 50 * 27 + 30 * 27 + 20 * 18 + 250 * 15
        assert weighted_index(t, 250, CONFIG) == expected

    def test_zero_activity_floors_at_one(self):
        assert weighted_index(totals(), 0, CONFIG) == 1

    def test_stars_capped(self):
        at_cap = weighted_index(totals(), 10_000, CONFIG)
        above = weighted_index(totals(), 250_000, CONFIG)
        assert at_cap == above == 150_000

    def test_stars_monotonic_below_cap(self):
        values = [weighted_index(totals(), s, CONFIG)
                  for s in range(0, 12_000, 500)]
        assert values == sorted(values)

    def test_custom_weights(self):
        config = RatingConfig(weights=MetricWeights(commits=1, merged_prs=0,
                                                    reviews=0, issues_closed=0,
                                                    stars=0))
        assert weighted_index(totals(commits=42, merged_prs=9), 5,
                              config) == 42


# ---------------------------------------------------------------------------
# Z-score and rating
# ---------------------------------------------------------------------------

class TestScore:

    def test_known_value(self):
        z = standardized_score(5000, CONFIG)
        assert z == pytest.approx((math.log(5000) - 6.5) / 1.5)
        assert z == pytest.approx(1.345, abs=1e-3)

    def test_zero_at_mean(self):
        assert standardized_score(math.exp(6.5), CONFIG) == \
            pytest.approx(0, abs=1e-12)

    def test_strictly_increasing(self):
        scores = [standardized_score(w, CONFIG) for w in (1, 2, 10, 1e3, 1e6)]
        assert all(a < b for a, b in zip(scores, scores[1:]))

    def test_rating_from_score(self):
        assert rating_from_score(0, CONFIG) == 1200
        assert rating_from_score(1.5, CONFIG) == 1800
        assert rating_from_score(-1, CONFIG) == 800

    def test_rating_floored_at_zero(self):
        assert rating_from_score(-10, CONFIG) == 0

    def test_rating_unbounded_above(self):
        assert rating_from_score(10, CONFIG) == 5200

    def test_rating_rounds_half_up(self):
        config = RatingConfig(scale_per_sigma=1)
        assert rating_from_score(0.5, config) == 1201     # 1200.5
        assert rating_from_score(-0.5, config) == 1200    # 1199.5


# ---------------------------------------------------------------------------
# Tiers, divisions, progress
# ---------------------------------------------------------------------------

class TestTiers:

    def test_partition_has_no_gaps(self):
        tiers = CONFIG.tiers
        assert tiers[0].min == 0
        for lower, upper in zip(tiers, tiers[1:]):
            assert lower.max == upper.min
        assert tiers[-1].max == math.inf

    @pytest.mark.parametrize("rating,name", [
        (0, "Iron"), (599, "Iron"), (600, "Bronze"), (1199, "Silver"),
        (1200, "Gold"), (2399, "Diamond"), (2400, "Master"),
        (2999, "Grandmaster"), (3000, "Challenger"), (99_999, "Challenger"),
    ])
    def test_tier_boundaries(self, rating, name):
        assert tier_for(rating, CONFIG).name == name

    def test_gap_rejected(self):
        tiers = (TierThreshold("A", 0, 100),
                 TierThreshold("B", 150, math.inf))
        with pytest.raises(ValueError, match="gap or overlap"):
            RatingConfig(tiers=tiers)

    def test_bounded_top_rejected(self):
        tiers = (TierThreshold("A", 0, 100), TierThreshold("B", 100, 200))
        with pytest.raises(ValueError, match="unbounded"):
            RatingConfig(tiers=tiers)

    def test_nonzero_start_rejected(self):
        tiers = (TierThreshold("A", 10, math.inf),)
        with pytest.raises(ValueError, match="start at 0"):
            RatingConfig(tiers=tiers)

    def test_gold_divisions(self):
        gold = tier_named("Gold")   # 1200-1500, bands of 75
        assert division_for(1200, gold) == "IV"
        assert division_for(1274, gold) == "IV"
        assert division_for(1275, gold) == "III"
        assert division_for(1350, gold) == "II"
        assert division_for(1499, gold) == "I"

    def test_gold_progress(self):
        gold = tier_named("Gold")
        assert progress_for(1200, gold) == 0
        assert progress_for(1274, gold) == 98
        assert progress_for(1275, gold) == 0
        assert progress_for(1312, gold) == 49

    def test_progress_caps_at_99(self):
        iron = tier_named("Iron")   # bands of 150
        assert progress_for(149, iron) == 99
        assert progress_for(599, iron) == 99

    def test_top_tiers_have_no_division(self):
        for name, rating in (("Master", 2500), ("Grandmaster", 2700),
                             ("Challenger", 4000)):
            tier = tier_named(name)
            assert division_for(rating, tier) is None
            assert progress_for(rating, tier) == 0

    def test_progress_always_in_range(self):
        for rating in range(0, 3600, 7):
            tier = tier_for(rating, CONFIG)
            progress = progress_for(rating, tier)
            assert 0 <= progress <= 99
            if not tier.has_divisions:
                assert progress == 0


# ---------------------------------------------------------------------------
# Full rating
# ---------------------------------------------------------------------------

class TestCalculateRating:

    def test_zero_activity(self):
        result = calculate_rating(stats_with(), CONFIG)
        assert result.weighted_index == 1
        assert result.rating == 0
        assert result.tier == "Iron"
        assert result.division == "IV"
        assert result.progress == 0

    def test_median_developer_is_gold_iv(self):
        # 52 commits = 676, just above e^6.5 (665.1)
        result = calculate_rating(stats_with(commits=52), CONFIG)
        assert result.rating == 1204
        assert result.tier == "Gold"
        assert result.division == "IV"
        assert 50 < result.percentile < 51

    def test_uses_decayed_totals_not_raw(self):
        stats = AggregatedStats(decayed=totals(commits=10),
                                raw=totals(commits=10_000))
        assert calculate_rating(stats, CONFIG).weighted_index == 130

    def test_heavy_contributor(self):
        stats = stats_with(stars=50_000, commits=5000, merged_prs=2000,
                           reviews=3000, issues_closed=1000)
        result = calculate_rating(stats, CONFIG)
        assert result.tier in ("Grandmaster", "Challenger")
        assert result.division is None
        assert result.progress == 0

    def test_percentile(self):
        assert percentile_for(0) == 50.0
        assert percentile_for(-50) == 0.0
        assert percentile_for(50) == 100.0

    def test_from_env_overrides(self):
        config = RatingConfig.from_env({
            "RANKED_WEIGHT_COMMITS": "20",
            "RANKED_BASE_RATING": "1000",
            "RANKED_STAR_CAP": "500",
        })
        assert config.weights.commits == 20
        assert config.weights.merged_prs == 27
        assert config.base_rating == 1000
        assert config.star_cap == 500
        assert rating_from_score(0, config) == 1000

    def test_from_env_rejects_garbage(self):
        with pytest.raises(ValueError, match="RANKED_STD_DEV"):
            RatingConfig.from_env({"RANKED_STD_DEV": "wide"})


# ---------------------------------------------------------------------------
# Seasonal decay
# ---------------------------------------------------------------------------

class TestDecay:

    def test_multipliers(self):
        assert decay_multiplier(2026, 2026) == 1.0
        assert decay_multiplier(2025, 2026) == 0.6
        assert decay_multiplier(2024, 2026) == 0.35
        assert decay_multiplier(2023, 2026) == 0.2
        assert decay_multiplier(2022, 2026) == 0.1
        assert decay_multiplier(2008, 2026) == 0.1

    def test_future_year_gets_full_weight(self):
        assert decay_multiplier(2027, 2026) == 1.0

    def test_non_increasing(self):
        values = [decay_multiplier(2026 - ago, 2026) for ago in range(12)]
        assert all(a >= b for a, b in zip(values, values[1:]))

    def test_apply_decay_floors_each_counter(self):
        d = apply_decay(PeriodStats(2024, commits=20, merged_prs=4,
                                    reviews=2, issues_closed=3,
                                    private_contributions=7), 0.35)
        assert (d.commits, d.merged_prs, d.reviews, d.issues_closed) == \
            (7, 1, 0, 1)
        assert d.private_contributions == 7

    def test_two_year_scenario(self):
        periods = [
            PeriodStats(2024, commits=20, merged_prs=4, reviews=2,
                        issues_closed=3),
            PeriodStats(2023, commits=10, merged_prs=2, reviews=1,
                        issues_closed=1),
        ]
        stats = summarize(periods, ProfileMeta(12, 3), current_year=2026)
        assert stats.decayed.commits == 9       # 7 + 2
        assert stats.decayed.merged_prs == 1    # 1 + 0
        assert stats.decayed.reviews == 0
        assert stats.decayed.issues_closed == 1
        assert stats.raw.commits == 30
        assert stats.raw.merged_prs == 6
        assert stats.first_year == 2023
        assert stats.last_year == 2024
        assert stats.years_active == 2
        assert stats.total_stars == 12
        assert stats.total_followers == 3
        assert [p.year for p in stats.yearly] == [2023, 2024]
        assert [d.multiplier for d in stats.decayed_yearly] == [0.2, 0.35]

    def test_floor_per_year_before_summing(self):
        periods = [PeriodStats(2025, commits=1), PeriodStats(2024, commits=2)]
        stats = summarize(periods, ProfileMeta(), current_year=2026)
        # floor(0.6) + floor(0.7) = 0, not floor(1.3) = 1
        assert stats.decayed.commits == 0
        assert stats.raw.commits == 3

    def test_failed_years_carried(self):
        stats = summarize([PeriodStats(2026, commits=5)], ProfileMeta(),
                          2026, failed_years=(2025, 2021))
        assert stats.failed_years == (2021, 2025)

    def test_empty_stats(self):
        stats = empty_stats(2026)
        assert stats.decayed == ActivityTotals()
        assert stats.years_active == 0
        assert stats.first_year == stats.last_year == 2026

    def test_season_stats_not_decayed(self):
        stats = season_stats(PeriodStats(2019, commits=40, reviews=4))
        assert stats.decayed.commits == 40
        assert stats.total_stars == 0
        assert stats.years_active == 1
        assert stats.first_year == stats.last_year == 2019


# ---------------------------------------------------------------------------
# Credential pool
# ---------------------------------------------------------------------------

class TestCredentialPool:

    def test_empty_pool_rejected(self):
        with pytest.raises(ValueError, match="No GitHub tokens"):
            CredentialPool([])

    def test_round_robin(self):
        pool = CredentialPool(["t1", "t2", "t3"])
        assert [pool.select() for _ in range(4)] == ["t1", "t2", "t3", "t1"]

    def test_every_credential_visited_within_n(self):
        tokens = [f"t{i}" for i in range(7)]
        pool = CredentialPool(tokens)
        pool.select()
        pool.select()
        assert set(pool.select() for _ in range(7)) == set(tokens)

    def test_skips_exhausted(self):
        clock = FakeClock()
        pool = CredentialPool(["t1", "t2"], clock=clock)
        pool.update_limit("t1", 0, clock.now + 3600)
        assert pool.select() == "t2"
        assert pool.select() == "t2"

    def test_cursor_advances_past_unavailable(self):
        clock = FakeClock()
        pool = CredentialPool(["a", "b", "c"], clock=clock)
        pool.update_limit("b", 0, clock.now + 3600)
        assert [pool.select() for _ in range(4)] == ["a", "c", "a", "c"]

    def test_all_exhausted(self):
        clock = FakeClock()
        pool = CredentialPool(["t1", "t2"], clock=clock)
        pool.update_limit("t1", 0, clock.now + 3600)
        pool.update_limit("t2", 0, clock.now + 600)
        result = pool.select()
        assert isinstance(result, PoolExhausted)
        assert 600 <= result.retry_after <= 602

    def test_reset_time_passed_restores_budget(self):
        clock = FakeClock()
        pool = CredentialPool(["t1"], clock=clock)
        pool.update_limit("t1", 0, clock.now - 100)
        assert pool.is_available("t1")
        assert pool.entries[0].remaining == 5000

    def test_exhausted_then_clock_passes_reset(self):
        clock = FakeClock()
        pool = CredentialPool(["t1"], clock=clock)
        pool.update_limit("t1", 0, clock.now + 60)
        assert isinstance(pool.select(), PoolExhausted)
        clock.now += 61
        assert pool.select() == "t1"

    def test_unknown_token(self):
        pool = CredentialPool(["t1"])
        assert not pool.is_available("nope")
        with pytest.raises(KeyError):
            pool.record_usage("nope", 1)
        with pytest.raises(KeyError):
            pool.update_limit("nope", 1, 0)

    def test_record_usage_floors_at_zero(self):
        clock = FakeClock()
        pool = CredentialPool(["t1"], clock=clock)
        pool.record_usage("t1", 10)
        assert pool.entries[0].remaining == 4990
        pool.record_usage("t1", 6000)
        assert pool.entries[0].remaining == 0

    def test_available_count(self):
        clock = FakeClock()
        pool = CredentialPool(["t1", "t2", "t3"], clock=clock)
        assert pool.available_count() == 3
        pool.update_limit("t1", 0, clock.now + 3600)
        pool.update_limit("t2", 0, clock.now + 3600)
        assert pool.available_count() == 1

    def test_refresh_keeps_counters(self):
        pool = CredentialPool(["t1", "t2"])
        pool.record_usage("t1", 100)
        pool.refresh(["t1", "t3"])
        assert len(pool) == 2
        assert [e.token for e in pool.entries] == ["t1", "t3"]
        assert pool.entries[0].remaining == 4900
        assert pool.entries[1].remaining == 5000

    def test_concurrent_usage_accounting(self):
        pool = CredentialPool(["t1"])

        def worker():
            for _ in range(100):
                pool.select()
                pool.record_usage("t1", 1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert pool.entries[0].remaining == 5000 - 800


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class BrokenStore:
    async def get(self, key):
        raise ConnectionError("down")

    async def set(self, key, value, ttl):
        raise ConnectionError("down")

    async def delete(self, key):
        raise ConnectionError("down")

    async def ping(self):
        raise ConnectionError("down")


def _rating():
    return calculate_rating(stats_with(commits=120, merged_prs=10), CONFIG)


class TestCacheKeys:

    def test_format(self):
        assert cache_key("octocat") == "rank:octocat:all:default"
        assert cache_key("octocat", 2024) == "rank:octocat:2024:default"
        assert cache_key("octocat", 2024, "dark") == "rank:octocat:2024:dark"
        assert year_cache_key(" OctoCat ", 2020) == "year:octocat:2020"

    def test_case_and_whitespace_insensitive(self):
        assert cache_key("  OctoCat ") == cache_key("octocat")

    def test_scope_and_variant_sensitive(self):
        keys = {cache_key("octocat"), cache_key("octocat", 2024),
                cache_key("octocat", 2025), cache_key("octocat", None, "dark")}
        assert len(keys) == 4

    def test_ttl_policy(self):
        assert determine_ttl(None, 2026) == CACHE_TTL["default"]
        assert determine_ttl(2025, 2026) == CACHE_TTL["historical_year"]
        assert determine_ttl(2026, 2026) == CACHE_TTL["current_year"]
        assert CACHE_TTL["current_year"] < CACHE_TTL["historical_year"]

    def test_headers(self):
        h = cache_headers(True, 3600)
        assert h["X-Cache"] == "HIT"
        assert h["X-Cache-TTL"] == "3600"
        assert "stale-while-revalidate=1800" in h["Cache-Control"]


class TestCacheEntries:

    def test_serialize_round_trip(self):
        stats = summarize([PeriodStats(2025, commits=10, reviews=3)],
                          ProfileMeta(5, 2), 2026, failed_years=(2024,))
        entry = CacheEntry("octocat", _rating(), stats, 100.0, 200.0)
        loaded = deserialize_entry(serialize_entry(entry))
        assert loaded == entry

    def test_malformed_is_none(self):
        assert deserialize_entry("not json") is None
        assert deserialize_entry('{"version": 1}') is None
        assert deserialize_entry("[]") is None

    def test_other_version_is_none(self):
        entry = CacheEntry("octocat", _rating(), stats_with(), 1.0, 2.0,
                           version=99)
        assert deserialize_entry(serialize_entry(entry)) is None


class TestResultCache:

    async def test_set_then_get(self):
        clock = FakeClock()
        cache = ResultCache(MemoryStore(clock), clock)
        rating = _rating()
        assert await cache.set("OctoCat", None, "default", rating,
                               stats_with(commits=1), ttl=60)
        lookup = await cache.get("octocat")
        assert lookup.hit
        assert lookup.entry.rating == rating
        assert lookup.entry.expires_at == clock.now + 60
        assert lookup.key == "rank:octocat:all:default"

    async def test_miss_on_other_scope(self):
        clock = FakeClock()
        cache = ResultCache(MemoryStore(clock), clock)
        await cache.set("octocat", None, "default", _rating(), stats_with())
        assert not (await cache.get("octocat", 2024)).hit
        assert not (await cache.get("octocat", None, "dark")).hit

    async def test_embedded_expiry_rechecked(self):
        store_clock = FakeClock()
        cache_clock = FakeClock()
        store = MemoryStore(store_clock)
        cache = ResultCache(store, cache_clock)
        await cache.set("octocat", None, "default", _rating(), stats_with(),
                        ttl=60)
        # store never advances, so it still returns the value
        cache_clock.now += 61
        assert await store.get(cache_key("octocat")) is not None
        assert not (await cache.get("octocat")).hit

    async def test_store_ttl_evicts(self):
        clock = FakeClock()
        store = MemoryStore(clock)
        await store.set("k", "v", 10)
        clock.now += 11
        assert await store.get("k") is None
        assert "k" not in store.items

    async def test_malformed_entry_is_miss(self):
        store = MemoryStore()
        await store.set(cache_key("octocat"), "{broken", 60)
        assert not (await ResultCache(store).get("octocat")).hit

    async def test_store_errors_degrade(self):
        cache = ResultCache(BrokenStore())
        assert not (await cache.get("octocat")).hit
        assert await cache.set("octocat", None, "default", _rating(),
                               stats_with()) is False
        assert await cache.get_year("octocat", 2020) is None
        assert await cache.set_year("octocat", PeriodStats(2020)) is False
        assert await cache.ping() is False
        assert await cache.invalidate("octocat") is False

    async def test_year_round_trip(self):
        clock = FakeClock()
        cache = ResultCache(MemoryStore(clock), clock)
        period = PeriodStats(2020, commits=3, merged_prs=1,
                             private_contributions=9)
        assert await cache.set_year("octocat", period, current_year=2026)
        assert await cache.get_year("OCTOCAT", 2020) == period
        assert await cache.get_year("octocat", 2021) is None

    async def test_invalidate(self):
        cache = ResultCache(MemoryStore())
        await cache.set("octocat", None, "default", _rating(), stats_with())
        await cache.invalidate("octocat")
        assert not (await cache.get("octocat")).hit

    async def test_redis_store_uses_ex(self):
        client = AsyncMock()
        client.get.return_value = b"payload"
        client.ping.return_value = True
        store = RedisStore(client)
        await store.set("k", "v", 90)
        client.set.assert_awaited_once_with("k", "v", ex=90)
        assert await store.get("k") == b"payload"
        assert await store.ping() is True
        await store.delete("k")
        client.delete.assert_awaited_once_with("k")

    async def test_close_releases_redis(self):
        client = AsyncMock()
        cache = ResultCache(RedisStore(client))
        await cache.aclose()
        client.aclose.assert_awaited_once()

    async def test_close_memory_store_is_noop(self):
        await ResultCache(MemoryStore()).aclose()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestConfig:

    def test_numbered_tokens_in_order(self):
        env = {"GITHUB_TOKEN_10": "c", "GITHUB_TOKEN_2": "b",
               "GITHUB_TOKEN_1": "a", "OTHER": "x"}
        assert load_tokens(env) == ["a", "b", "c"]

    def test_comma_list_and_dedupe(self):
        env = {"GITHUB_TOKEN_1": "a", "GITHUB_TOKENS": "b, a ,,c"}
        assert load_tokens(env) == ["a", "b", "c"]

    def test_blank_values_ignored(self):
        assert load_tokens({"GITHUB_TOKEN_1": "  "}) == []
