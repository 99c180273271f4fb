"""
Result cache. JSON entries in a TTL key-value store.

Key layout:
    rank:<login>:<season|all>:<variant>     rating + stats envelope
    year:<login>:<year>                     one historical year's counts

The store's own TTL is the primary expiry. Every entry also embeds an
absolute expires_at, re-checked on read, so a store that keeps keys a little
longer than asked never serves a stale rating.

The cache is an optimization. A store error is logged and becomes a miss
(get) or a no-op (set); it never reaches the caller.
"""

import dataclasses
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol

from ranked.models import (
    ActivityTotals, AggregatedStats, CacheEntry, DecayedPeriod, PeriodStats,
    RatingResult,
)


logger = logging.getLogger(__name__)


CACHE_TTL = {
    "default": 24 * 60 * 60,             # all-time ratings
    "current_year": 60 * 60,
    "historical_year": 30 * 24 * 60 * 60,
    "not_found": 60 * 60,
    "error": 5 * 60,
}

RANK_PREFIX = "rank"
YEAR_PREFIX = "year"
ALL_TIME = "all"
DEFAULT_VARIANT = "default"

CURRENT_VERSION = 1


# ---------------------------------------------------------------------------
# Keys and TTLs
# ---------------------------------------------------------------------------

def normalize_subject(subject: str) -> str:
    return subject.strip().lower()


def cache_key(subject: str, season: int | None = None,
              variant: str = DEFAULT_VARIANT) -> str:
    scope = ALL_TIME if season is None else str(season)
    return f"{RANK_PREFIX}:{normalize_subject(subject)}:{scope}:{variant}"


def year_cache_key(subject: str, year: int) -> str:
    return f"{YEAR_PREFIX}:{normalize_subject(subject)}:{year}"


def determine_ttl(season: int | None = None,
                  current_year: int | None = None) -> int:
    """All-time: default. Elapsed year: effectively permanent. Else short."""
    if season is None:
        return CACHE_TTL["default"]
    if current_year is None:
        current_year = datetime.now(timezone.utc).year
    if season < current_year:
        return CACHE_TTL["historical_year"]
    return CACHE_TTL["current_year"]


def cache_headers(hit: bool, ttl: int = CACHE_TTL["default"]) -> dict:
    return {
        "Cache-Control": (f"public, max-age={ttl}, s-maxage={ttl}, "
                          f"stale-while-revalidate={ttl // 2}"),
        "X-Cache": "HIT" if hit else "MISS",
        "X-Cache-TTL": str(ttl),
    }


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def _serialize(obj):
    """Recursively turn dataclasses and tuples into JSON-safe types."""
    if dataclasses.is_dataclass(obj):
        return {
            f.name: _serialize(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, (list, tuple)):
        return [_serialize(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): _serialize(v) for k, v in obj.items()}
    return obj


def _load_totals(d: dict) -> ActivityTotals:
    return ActivityTotals(
        commits=d["commits"],
        merged_prs=d["merged_prs"],
        reviews=d["reviews"],
        issues_closed=d["issues_closed"],
        private_contributions=d.get("private_contributions", 0),
    )


def _load_period(d: dict) -> PeriodStats:
    return PeriodStats(
        year=d["year"],
        commits=d["commits"],
        merged_prs=d["merged_prs"],
        reviews=d["reviews"],
        issues_closed=d["issues_closed"],
        private_contributions=d.get("private_contributions", 0),
    )


def _load_decayed(d: dict) -> DecayedPeriod:
    return DecayedPeriod(
        year=d["year"],
        multiplier=d["multiplier"],
        commits=d["commits"],
        merged_prs=d["merged_prs"],
        reviews=d["reviews"],
        issues_closed=d["issues_closed"],
        private_contributions=d.get("private_contributions", 0),
    )


def _load_stats(d: dict) -> AggregatedStats:
    return AggregatedStats(
        decayed=_load_totals(d["decayed"]),
        raw=_load_totals(d["raw"]),
        total_stars=d["total_stars"],
        total_followers=d["total_followers"],
        first_year=d["first_year"],
        last_year=d["last_year"],
        years_active=d["years_active"],
        yearly=tuple(_load_period(p) for p in d.get("yearly", [])),
        decayed_yearly=tuple(_load_decayed(p)
                             for p in d.get("decayed_yearly", [])),
        failed_years=tuple(d.get("failed_years", [])),
    )


def _load_rating(d: dict) -> RatingResult:
    return RatingResult(
        tier=d["tier"],
        division=d.get("division"),
        rating=d["rating"],
        progress=d["progress"],
        percentile=d["percentile"],
        weighted_index=d["weighted_index"],
        z_score=d["z_score"],
    )


def serialize_entry(entry: CacheEntry) -> str:
    return json.dumps(_serialize(entry))


def deserialize_entry(raw: str | bytes) -> CacheEntry | None:
    """Parse a stored entry. Anything malformed or from another version is None."""
    try:
        d = json.loads(raw)
        if not isinstance(d, dict) or d.get("version") != CURRENT_VERSION:
            return None
        if not d.get("subject"):
            return None
        return CacheEntry(
            subject=d["subject"],
            rating=_load_rating(d["rating"]),
            stats=_load_stats(d["stats"]),
            cached_at=float(d["cached_at"]),
            expires_at=float(d["expires_at"]),
            version=d["version"],
        )
    except (ValueError, KeyError, TypeError):
        return None


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class CacheStore(Protocol):
    async def get(self, key: str) -> str | bytes | None: ...
    async def set(self, key: str, value: str, ttl: int) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def ping(self) -> bool: ...


class MemoryStore:
    """In-process store with lazy TTL eviction. One per process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.items: dict[str, tuple[str, float]] = {}   # key -> (value, deadline)

    async def get(self, key: str) -> str | None:
        item = self.items.get(key)
        if item is None:
            return None
        value, deadline = item
        if self.clock() >= deadline:
            self.items.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self.items[key] = (value, self.clock() + ttl)

    async def delete(self, key: str) -> None:
        self.items.pop(key, None)

    async def ping(self) -> bool:
        return True


class RedisStore:
    """redis-py asyncio client. SET with EX so Redis evicts on its own."""

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        import redis.asyncio as redis
        return cls(redis.Redis.from_url(
            url, socket_timeout=2.0, socket_connect_timeout=2.0))

    async def get(self, key: str) -> bytes | None:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self.client.set(key, value, ex=ttl)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def aclose(self) -> None:
        await self.client.aclose()


def store_from_env(redis_url: str | None = None) -> CacheStore:
    from ranked.config import REDIS_URL
    url = REDIS_URL if redis_url is None else redis_url
    if url:
        return RedisStore.from_url(url)
    return MemoryStore()


# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CacheLookup:
    hit: bool
    entry: CacheEntry | None
    key: str


class ResultCache:

    def __init__(self, store: CacheStore,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    async def get(self, subject: str, season: int | None = None,
                  variant: str = DEFAULT_VARIANT) -> CacheLookup:
        key = cache_key(subject, season, variant)
        try:
            raw = await self.store.get(key)
        except Exception:
            logger.warning("cache get failed for %s", key, exc_info=True)
            return CacheLookup(False, None, key)
        if raw is None:
            return CacheLookup(False, None, key)

        entry = deserialize_entry(raw)
        if entry is None:
            logger.info("discarding malformed cache entry %s", key)
            return CacheLookup(False, None, key)
        if entry.expired(self.clock()):
            return CacheLookup(False, None, key)
        return CacheLookup(True, entry, key)

    async def set(self, subject: str, season: int | None, variant: str,
                  rating: RatingResult, stats: AggregatedStats,
                  ttl: int = CACHE_TTL["default"]) -> bool:
        key = cache_key(subject, season, variant)
        now = self.clock()
        entry = CacheEntry(
            subject=subject,
            rating=rating,
            stats=stats,
            cached_at=now,
            expires_at=now + ttl,
            version=CURRENT_VERSION,
        )
        try:
            await self.store.set(key, serialize_entry(entry), ttl)
        except Exception:
            logger.warning("cache set failed for %s", key, exc_info=True)
            return False
        return True

    async def invalidate(self, subject: str, season: int | None = None,
                         variant: str = DEFAULT_VARIANT) -> bool:
        key = cache_key(subject, season, variant)
        try:
            await self.store.delete(key)
        except Exception:
            logger.warning("cache delete failed for %s", key, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Per-year stats (historical years never change)
    # ------------------------------------------------------------------

    async def get_year(self, subject: str, year: int) -> PeriodStats | None:
        key = year_cache_key(subject, year)
        try:
            raw = await self.store.get(key)
        except Exception:
            logger.warning("cache get failed for %s", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            d = json.loads(raw)
            if self.clock() > float(d["expires_at"]):
                return None
            return _load_period(d["stats"])
        except (ValueError, KeyError, TypeError):
            return None

    async def set_year(self, subject: str, period: PeriodStats,
                       current_year: int | None = None) -> bool:
        key = year_cache_key(subject, period.year)
        ttl = determine_ttl(period.year, current_year)
        now = self.clock()
        payload = json.dumps({
            "stats": _serialize(period),
            "cached_at": now,
            "expires_at": now + ttl,
        })
        try:
            await self.store.set(key, payload, ttl)
        except Exception:
            logger.warning("cache set failed for %s", key, exc_info=True)
            return False
        return True

    async def ping(self) -> bool:
        try:
            return await self.store.ping()
        except Exception:
            logger.warning("cache ping failed", exc_info=True)
            return False

    async def aclose(self) -> None:
        """Release the store's connections, if it holds any."""
        close = getattr(self.store, "aclose", None)
        if close is not None:
            await close()
