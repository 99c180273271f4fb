"""
Contribution aggregation.

Pipeline for an all-time rating:
  1. contribution years for the login (one query)
  2. one stats query per year + one metadata query, all in flight at once
  3. seasonal decay per year, then totals

Every fetch returns a value or a RankError; nothing is raised across the
gather, so the join always sees every task's outcome. A SubjectNotFound from
any task wins over everything else. Other per-year failures are collected
in failed_years and the rating is built from the remaining years.

Decay floors each counter of each year independently before summing. That
rounding order changes totals versus flooring once at the end, and every
published rating depends on it.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from ranked.client import GraphQLClient
from ranked.credentials import CredentialPool
from ranked.errors import (
    RankError, SubjectNotFound, UpstreamUnavailable, QueryError,
    PoolExhausted, to_rank_error,
)
from ranked.models import (
    ActivityTotals, AggregatedStats, DecayedPeriod, PeriodStats, ProfileMeta,
)
from ranked.queries import (
    contribution_years_request, user_stats_request, year_dates,
)


logger = logging.getLogger(__name__)


def current_utc_year() -> int:
    return datetime.now(timezone.utc).year


# ---------------------------------------------------------------------------
# Seasonal decay
# ---------------------------------------------------------------------------

SEASONAL_DECAY: tuple[float, ...] = (1.0, 0.6, 0.35, 0.2)
LEGACY_DECAY = 0.1


def decay_multiplier(year: int, current_year: int) -> float:
    """Step function of seasons elapsed: 1.0, 0.6, 0.35, 0.2, then 0.1."""
    years_ago = max(0, current_year - year)
    if years_ago < len(SEASONAL_DECAY):
        return SEASONAL_DECAY[years_ago]
    return LEGACY_DECAY


def apply_decay(period: PeriodStats, multiplier: float) -> DecayedPeriod:
    return DecayedPeriod(
        year=period.year,
        multiplier=multiplier,
        commits=math.floor(period.commits * multiplier),
        merged_prs=math.floor(period.merged_prs * multiplier),
        reviews=math.floor(period.reviews * multiplier),
        issues_closed=math.floor(period.issues_closed * multiplier),
        private_contributions=period.private_contributions,
    )


def empty_stats(current_year: int) -> AggregatedStats:
    """All-zero statistics for a login with no contribution years."""
    return AggregatedStats(first_year=current_year, last_year=current_year)


def summarize(periods: list[PeriodStats], meta: ProfileMeta,
              current_year: int,
              failed_years: tuple[int, ...] = ()) -> AggregatedStats:
    """Decayed totals (for rating) and raw totals (for display)."""
    if not periods:
        return AggregatedStats(
            total_stars=meta.total_stars,
            total_followers=meta.total_followers,
            first_year=current_year,
            last_year=current_year,
            failed_years=tuple(sorted(failed_years)),
        )

    yearly = tuple(sorted(periods, key=lambda p: p.year))
    decayed_yearly = tuple(
        apply_decay(p, decay_multiplier(p.year, current_year)) for p in yearly
    )

    decayed = ActivityTotals()
    for d in decayed_yearly:
        decayed = decayed + ActivityTotals(
            commits=d.commits, merged_prs=d.merged_prs, reviews=d.reviews,
            issues_closed=d.issues_closed,
            private_contributions=d.private_contributions,
        )
    raw = ActivityTotals()
    for p in yearly:
        raw = raw + ActivityTotals.of(p)

    return AggregatedStats(
        decayed=decayed,
        raw=raw,
        total_stars=meta.total_stars,
        total_followers=meta.total_followers,
        first_year=yearly[0].year,
        last_year=yearly[-1].year,
        years_active=len(yearly),
        yearly=yearly,
        decayed_yearly=decayed_yearly,
        failed_years=tuple(sorted(failed_years)),
    )


def season_stats(period: PeriodStats) -> AggregatedStats:
    """Single-season view: no decay, no lifetime stars or followers."""
    totals = ActivityTotals.of(period)
    return AggregatedStats(
        decayed=totals,
        raw=totals,
        first_year=period.year,
        last_year=period.year,
        years_active=1,
        yearly=(period,),
        decayed_yearly=(apply_decay(period, 1.0),),
    )


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FetchResult:
    stats: tuple[PeriodStats, ...]
    failed_years: tuple[int, ...]
    meta: ProfileMeta


class Aggregator:
    """Fetches a login's history through one client and one pool."""

    def __init__(self, client: GraphQLClient, pool: CredentialPool | None,
                 token: str | None = None):
        self.client = client
        self.pool = pool
        self.token = token

    async def _query(self, request: dict,
                     subject: str) -> dict | RankError:
        result = await self.client.run_query(request, self.pool, self.token)
        if isinstance(result, PoolExhausted):
            return result
        if isinstance(result, QueryError):
            return to_rank_error(result, subject)
        user = (result.get("data") or {}).get("user")
        if not user:
            return SubjectNotFound.for_subject(subject)
        return user

    async def fetch_contribution_years(self,
                                       subject: str) -> list[int] | RankError:
        user = await self._query(contribution_years_request(subject), subject)
        if isinstance(user, RankError):
            return user
        collection = user.get("contributionsCollection") or {}
        years = collection.get("contributionYears") or []
        return sorted(set(int(y) for y in years))

    async def fetch_year(self, subject: str,
                         year: int) -> PeriodStats | RankError:
        from_, to = year_dates(year)
        user = await self._query(user_stats_request(subject, from_, to),
                                 subject)
        if isinstance(user, RankError):
            return user
        c = user.get("contributionsCollection") or {}
        return PeriodStats(
            year=year,
            commits=c.get("totalCommitContributions", 0),
            merged_prs=c.get("totalPullRequestContributions", 0),
            reviews=c.get("totalPullRequestReviewContributions", 0),
            issues_closed=c.get("totalIssueContributions", 0),
            private_contributions=c.get("restrictedContributionsCount", 0),
        )

    async def fetch_meta(self, subject: str,
                         current_year: int | None = None
                         ) -> ProfileMeta | RankError:
        year = current_year or current_utc_year()
        from_, to = year_dates(year)
        user = await self._query(user_stats_request(subject, from_, to),
                                 subject)
        if isinstance(user, RankError):
            return user
        nodes = (user.get("repositories") or {}).get("nodes") or []
        stars = sum((n.get("stargazers") or {}).get("totalCount", 0)
                    for n in nodes if n)
        followers = (user.get("followers") or {}).get("totalCount", 0)
        return ProfileMeta(total_stars=stars, total_followers=followers)

    async def fetch_all(self, subject: str, years: list[int],
                        current_year: int | None = None,
                        known: int = 0) -> FetchResult | RankError:
        """
        One task per year plus the metadata task, joined together.

        Short-circuits on SubjectNotFound from any task. Fails if metadata
        fails, or if years were requested and none came back. `known` counts
        years the caller already holds (e.g. from cache); while it is
        non-zero, failed years are reported rather than failing the call.
        """
        outcomes = await asyncio.gather(
            self.fetch_meta(subject, current_year),
            *(self.fetch_year(subject, y) for y in years),
        )
        meta, per_year = outcomes[0], list(zip(years, outcomes[1:]))

        for outcome in outcomes:
            if isinstance(outcome, SubjectNotFound):
                return outcome
        if isinstance(meta, RankError):
            return meta

        stats = [o for _, o in per_year if isinstance(o, PeriodStats)]
        failed = tuple(y for y, o in per_year if isinstance(o, RankError))
        if failed:
            logger.warning("stats fetch failed for %s in %s", subject,
                           ", ".join(str(y) for y in failed))

        if years and not stats and not known:
            pool_error = next((o for _, o in per_year
                               if isinstance(o, PoolExhausted)), None)
            if pool_error is not None:
                return pool_error
            return UpstreamUnavailable(
                "Failed to fetch yearly stats for all requested years",
                {"years": list(years)})

        return FetchResult(stats=tuple(stats), failed_years=failed, meta=meta)

    async def aggregate_all_time(self, subject: str,
                                 current_year: int | None = None
                                 ) -> AggregatedStats | RankError:
        year = current_year or current_utc_year()
        years = await self.fetch_contribution_years(subject)
        if isinstance(years, RankError):
            return years
        if not years:
            return empty_stats(year)

        fetched = await self.fetch_all(subject, years, year)
        if isinstance(fetched, RankError):
            return fetched
        return summarize(list(fetched.stats), fetched.meta, year,
                         fetched.failed_years)
