"""
Pydantic response models for the API.
Field names are the public JSON contract; domain dataclasses stay internal.
"""

from pydantic import BaseModel

from ranked.models import AggregatedStats, ActivityTotals, RatingResult
from ranked.service import RankOutcome


class RatingModel(BaseModel):
    tier: str
    division: str | None
    rating: int
    progress: int
    percentile: float
    weighted_index: float
    z_score: float

class TotalsModel(BaseModel):
    commits: int
    merged_prs: int
    reviews: int
    issues_closed: int
    private_contributions: int

class YearModel(TotalsModel):
    year: int
    multiplier: float | None = None

class StatsModel(BaseModel):
    decayed: TotalsModel
    raw: TotalsModel
    total_stars: int
    total_followers: int
    first_year: int
    last_year: int
    years_active: int
    yearly: list[YearModel]
    decayed_yearly: list[YearModel]
    failed_years: list[int]

class RankResponse(BaseModel):
    username: str
    season: int | str
    variant: str
    rating: RatingModel
    stats: StatsModel
    cached: bool
    partial: bool
    failed_years: list[int]

class HealthResponse(BaseModel):
    status: str
    credentials: int
    credentials_available: int
    cache: bool


# --- Conversions ---

def _totals(t: ActivityTotals) -> TotalsModel:
    return TotalsModel(
        commits=t.commits, merged_prs=t.merged_prs, reviews=t.reviews,
        issues_closed=t.issues_closed,
        private_contributions=t.private_contributions,
    )


def _rating(r: RatingResult) -> RatingModel:
    return RatingModel(
        tier=r.tier, division=r.division, rating=r.rating,
        progress=r.progress, percentile=r.percentile,
        weighted_index=r.weighted_index, z_score=r.z_score,
    )


def _stats(s: AggregatedStats) -> StatsModel:
    return StatsModel(
        decayed=_totals(s.decayed),
        raw=_totals(s.raw),
        total_stars=s.total_stars,
        total_followers=s.total_followers,
        first_year=s.first_year,
        last_year=s.last_year,
        years_active=s.years_active,
        yearly=[
            YearModel(year=p.year, commits=p.commits,
                      merged_prs=p.merged_prs, reviews=p.reviews,
                      issues_closed=p.issues_closed,
                      private_contributions=p.private_contributions)
            for p in s.yearly
        ],
        decayed_yearly=[
            YearModel(year=d.year, multiplier=d.multiplier,
                      commits=d.commits, merged_prs=d.merged_prs,
                      reviews=d.reviews, issues_closed=d.issues_closed,
                      private_contributions=d.private_contributions)
            for d in s.decayed_yearly
        ],
        failed_years=list(s.failed_years),
    )


def rank_response(outcome: RankOutcome) -> RankResponse:
    failed = list(outcome.partial.failed_years) if outcome.partial else []
    return RankResponse(
        username=outcome.subject,
        season=outcome.season if outcome.season is not None else "all",
        variant=outcome.variant,
        rating=_rating(outcome.rating),
        stats=_stats(outcome.stats),
        cached=outcome.cache_hit,
        partial=outcome.partial is not None,
        failed_years=failed,
    )
