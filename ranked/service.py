"""
Rank service: the one entry point the HTTP layer and CLI call.

    get_rank(login, season=None, variant="default", force=False, token=None)
        -> RankOutcome | RankError

Flow: validate → cache → (miss) aggregate → rate → cache → return.

All-time requests reuse cached historical years and only query the years
that are missing. Single-season requests fetch just that year with no
decay and no lifetime stars/followers.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from ranked.aggregator import (
    Aggregator, current_utc_year, empty_stats, season_stats, summarize,
)
from ranked.cache import CACHE_TTL, ResultCache, determine_ttl
from ranked.client import GraphQLClient
from ranked.credentials import CredentialPool
from ranked.engine import RatingConfig, calculate_rating
from ranked.errors import (
    MissingCredentials, PartialAggregationFailure, RankError,
)
from ranked.models import AggregatedStats, PeriodStats, RatingResult
from ranked.validation import (
    normalize_variant, validate_season, validate_token, validate_username,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankOutcome:
    subject: str
    rating: RatingResult
    stats: AggregatedStats
    cache_hit: bool
    ttl: int
    season: int | None = None
    variant: str = "default"
    partial: PartialAggregationFailure | None = None


class RankService:

    def __init__(self, client: GraphQLClient, pool: CredentialPool | None,
                 cache: ResultCache, config: RatingConfig | None = None,
                 clock: Callable[[], float] = time.time,
                 current_year: Callable[[], int] = current_utc_year):
        self.client = client
        self.pool = pool
        self.cache = cache
        self.config = config or RatingConfig()
        self.clock = clock
        self.current_year = current_year

    async def get_rank(self, subject: str, season=None,
                       variant: str | None = "default", force: bool = False,
                       token: str | None = None) -> RankOutcome | RankError:
        year = self.current_year()

        error = validate_username(subject)
        if error:
            return error
        if season is not None:
            season = validate_season(season, year)
            if isinstance(season, RankError):
                return season
        if token is not None:
            error = validate_token(token)
            if error:
                return error
        variant = normalize_variant(variant)

        if not force:
            lookup = await self.cache.get(subject, season, variant)
            if lookup.hit:
                entry = lookup.entry
                partial = None
                if entry.stats.failed_years:
                    partial = PartialAggregationFailure(
                        entry.stats.failed_years)
                return RankOutcome(
                    subject=entry.subject, rating=entry.rating,
                    stats=entry.stats, cache_hit=True,
                    ttl=entry.remaining_ttl(self.clock()),
                    season=season, variant=variant, partial=partial,
                )

        if token is None and self.pool is None:
            return MissingCredentials(
                "No GitHub tokens configured; pass a token or set "
                "GITHUB_TOKEN_1")

        aggregator = Aggregator(self.client, self.pool, token)
        if season is not None:
            stats = await self._season(aggregator, subject, season)
        else:
            stats = await self._all_time(aggregator, subject, year)
        if isinstance(stats, RankError):
            logger.info("rank for %s failed: %s (%s)", subject, stats.code,
                        stats.message)
            return stats

        rating = calculate_rating(stats, self.config)
        partial = None
        ttl = determine_ttl(season, year)
        if stats.failed_years:
            partial = PartialAggregationFailure(stats.failed_years)
            ttl = CACHE_TTL["error"]

        await self.cache.set(subject, season, variant, rating, stats, ttl)

        return RankOutcome(
            subject=subject, rating=rating, stats=stats, cache_hit=False,
            ttl=ttl, season=season, variant=variant, partial=partial,
        )

    async def _season(self, aggregator: Aggregator, subject: str,
                      season: int) -> AggregatedStats | RankError:
        period = await aggregator.fetch_year(subject, season)
        if isinstance(period, RankError):
            return period
        return season_stats(period)

    async def _all_time(self, aggregator: Aggregator, subject: str,
                        year: int) -> AggregatedStats | RankError:
        years = await aggregator.fetch_contribution_years(subject)
        if isinstance(years, RankError):
            return years
        if not years:
            return empty_stats(year)

        cached: list[PeriodStats] = []
        missing: list[int] = []
        for y in years:
            hit = await self.cache.get_year(subject, y) if y < year else None
            if hit is not None:
                cached.append(hit)
            else:
                missing.append(y)

        fetched = await aggregator.fetch_all(subject, missing, year,
                                             known=len(cached))
        if isinstance(fetched, RankError):
            return fetched

        for period in fetched.stats:
            if period.year < year:
                await self.cache.set_year(subject, period, year)

        return summarize(cached + list(fetched.stats), fetched.meta, year,
                         fetched.failed_years)
