"""
Data models for the rating service.

Three groups:
- Fetch side: per-year contribution counts and profile metadata, as read
  from the GraphQL API
- Aggregate side: decayed and raw totals across all years
- Rating side: the tier/division/progress result and its cache envelope

Everything here is immutable once constructed. Aggregates and ratings are
recomputed from scratch on every miss, never updated in place.
"""

from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Fetch side
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PeriodStats:
    """One calendar year of activity for one subject."""
    year: int
    commits: int = 0
    merged_prs: int = 0
    reviews: int = 0
    issues_closed: int = 0
    private_contributions: int = 0   # hidden by privacy settings, never decayed


@dataclass(frozen=True)
class ProfileMeta:
    """Lifetime profile metadata. Stars are raw; the engine applies the cap."""
    total_stars: int = 0
    total_followers: int = 0


# ---------------------------------------------------------------------------
# Aggregate side
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActivityTotals:
    commits: int = 0
    merged_prs: int = 0
    reviews: int = 0
    issues_closed: int = 0
    private_contributions: int = 0

    def __add__(self, other: "ActivityTotals") -> "ActivityTotals":
        return ActivityTotals(
            commits=self.commits + other.commits,
            merged_prs=self.merged_prs + other.merged_prs,
            reviews=self.reviews + other.reviews,
            issues_closed=self.issues_closed + other.issues_closed,
            private_contributions=(self.private_contributions
                                   + other.private_contributions),
        )

    @staticmethod
    def of(period: PeriodStats) -> "ActivityTotals":
        return ActivityTotals(
            commits=period.commits,
            merged_prs=period.merged_prs,
            reviews=period.reviews,
            issues_closed=period.issues_closed,
            private_contributions=period.private_contributions,
        )


@dataclass(frozen=True)
class DecayedPeriod:
    """A year's counters after seasonal decay, with the multiplier used."""
    year: int
    multiplier: float
    commits: int
    merged_prs: int
    reviews: int
    issues_closed: int
    private_contributions: int = 0


@dataclass(frozen=True)
class AggregatedStats:
    """
    Totals across every fetched year.

    decayed: used by the rating engine (floored per year, then summed)
    raw:     used for historical display
    """
    decayed: ActivityTotals = field(default_factory=ActivityTotals)
    raw: ActivityTotals = field(default_factory=ActivityTotals)
    total_stars: int = 0
    total_followers: int = 0
    first_year: int = 0
    last_year: int = 0
    years_active: int = 0
    yearly: tuple[PeriodStats, ...] = ()
    decayed_yearly: tuple[DecayedPeriod, ...] = ()
    failed_years: tuple[int, ...] = ()


# ---------------------------------------------------------------------------
# Rating side
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RatingResult:
    tier: str
    division: str | None    # None for tiers without divisions
    rating: int             # floored at 0, unbounded above
    progress: int           # 0-99 within the division, 0 without one
    percentile: float       # 0-100
    weighted_index: float
    z_score: float


@dataclass(frozen=True)
class CacheEntry:
    """What the result cache stores. Timestamps are epoch seconds."""
    subject: str
    rating: RatingResult
    stats: AggregatedStats
    cached_at: float
    expires_at: float
    version: int = 1

    def expired(self, now: float) -> bool:
        return now > self.expires_at

    def remaining_ttl(self, now: float) -> int:
        return max(0, int(self.expires_at - now))
