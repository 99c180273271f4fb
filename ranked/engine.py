"""
Rating engine: pure math, no state, no I/O.

    weighted index  W = max(Σ count_i * weight_i, 1)      stars capped
    z-score         z = (ln W - mean_log) / std_dev
    rating          R = max(round(base + z * scale), 0)
    tier            the [min, max) range containing R
    division        4 equal bands, IV (lowest) .. I (highest)
    progress        position inside the band, 0..99

Activity is roughly log-normal across developers, so ln W is roughly normal
and z is a standard score. Every constant lives in RatingConfig; the
defaults put the median developer at 1200 (Gold IV).
"""

import math
import os
from dataclasses import dataclass, field, replace

from ranked.config import env_float
from ranked.models import ActivityTotals, AggregatedStats, RatingResult


DIVISIONS: tuple[str, ...] = ("IV", "III", "II", "I")


@dataclass(frozen=True)
class TierThreshold:
    name: str
    min: float
    max: float                  # exclusive; math.inf for the top tier
    has_divisions: bool = True

    def contains(self, rating: float) -> bool:
        return self.min <= rating < self.max


DEFAULT_TIERS: tuple[TierThreshold, ...] = (
    TierThreshold("Iron", 0, 600),
    TierThreshold("Bronze", 600, 900),
    TierThreshold("Silver", 900, 1200),
    TierThreshold("Gold", 1200, 1500),
    TierThreshold("Platinum", 1500, 1700),
    TierThreshold("Emerald", 1700, 2000),
    TierThreshold("Diamond", 2000, 2400),
    TierThreshold("Master", 2400, 2600, has_divisions=False),
    TierThreshold("Grandmaster", 2600, 3000, has_divisions=False),
    TierThreshold("Challenger", 3000, math.inf, has_divisions=False),
)


@dataclass(frozen=True)
class MetricWeights:
    merged_prs: float = 27      # peer acceptance
    reviews: float = 27         # seniority, mentorship
    issues_closed: float = 18
    stars: float = 15           # capped at RatingConfig.star_cap
    commits: float = 13         # kept moderate against commit farming


@dataclass(frozen=True)
class RatingConfig:
    weights: MetricWeights = field(default_factory=MetricWeights)
    star_cap: int = 10_000
    mean_log: float = 6.5
    std_dev: float = 1.5
    base_rating: float = 1200
    scale_per_sigma: float = 400
    tiers: tuple[TierThreshold, ...] = DEFAULT_TIERS

    def __post_init__(self):
        if self.std_dev <= 0:
            raise ValueError("std_dev must be positive")
        validate_tiers(self.tiers)

    @classmethod
    def from_env(cls, environ=None) -> "RatingConfig":
        """Defaults, overridden by any RANKED_* variables that are set."""
        env = os.environ if environ is None else environ
        base = cls()
        w = base.weights
        weights = MetricWeights(
            merged_prs=env_float("RANKED_WEIGHT_PRS", w.merged_prs, env),
            reviews=env_float("RANKED_WEIGHT_REVIEWS", w.reviews, env),
            issues_closed=env_float("RANKED_WEIGHT_ISSUES",
                                    w.issues_closed, env),
            stars=env_float("RANKED_WEIGHT_STARS", w.stars, env),
            commits=env_float("RANKED_WEIGHT_COMMITS", w.commits, env),
        )
        return replace(
            base,
            weights=weights,
            star_cap=int(env_float("RANKED_STAR_CAP", base.star_cap, env)),
            mean_log=env_float("RANKED_MEAN_LOG", base.mean_log, env),
            std_dev=env_float("RANKED_STD_DEV", base.std_dev, env),
            base_rating=env_float("RANKED_BASE_RATING",
                                  base.base_rating, env),
            scale_per_sigma=env_float("RANKED_SCALE_PER_SIGMA",
                                      base.scale_per_sigma, env),
        )


def validate_tiers(tiers: tuple[TierThreshold, ...]) -> None:
    """Tiers must partition [0, inf): contiguous, ascending, open at the top."""
    if not tiers:
        raise ValueError("at least one tier is required")
    if tiers[0].min != 0:
        raise ValueError(f"first tier must start at 0, got {tiers[0].min}")
    for lower, upper in zip(tiers, tiers[1:]):
        if lower.max != upper.min:
            raise ValueError(
                f"gap or overlap between {lower.name} and {upper.name}")
    for t in tiers:
        if not t.min < t.max:
            raise ValueError(f"empty range for tier {t.name}")
    if tiers[-1].max != math.inf:
        raise ValueError("top tier must be unbounded")


# ---------------------------------------------------------------------------
# Pipeline steps
# ---------------------------------------------------------------------------

def weighted_index(totals: ActivityTotals, stars: int,
                   config: RatingConfig) -> float:
    w = config.weights
    capped_stars = min(stars, config.star_cap)
    index = (
        totals.merged_prs * w.merged_prs
        + totals.reviews * w.reviews
        + totals.issues_closed * w.issues_closed
        + totals.commits * w.commits
        + capped_stars * w.stars
    )
    return max(index, 1)


def standardized_score(index: float, config: RatingConfig) -> float:
    return (math.log(index) - config.mean_log) / config.std_dev


def rating_from_score(z: float, config: RatingConfig) -> int:
    raw = config.base_rating + z * config.scale_per_sigma
    return max(math.floor(raw + 0.5), 0)


def tier_for(rating: float, config: RatingConfig) -> TierThreshold:
    for tier in config.tiers:
        if tier.contains(rating):
            return tier
    raise ValueError(f"rating {rating} outside tier table")


def _band(rating: float, tier: TierThreshold) -> tuple[int, float, float]:
    """(band index, band start, band width) for a tier with divisions."""
    width = (tier.max - tier.min) / len(DIVISIONS)
    index = min(int((rating - tier.min) // width), len(DIVISIONS) - 1)
    return index, tier.min + index * width, width


def division_for(rating: float, tier: TierThreshold) -> str | None:
    if not tier.has_divisions:
        return None
    index, _, _ = _band(rating, tier)
    return DIVISIONS[index]


def progress_for(rating: float, tier: TierThreshold) -> int:
    if not tier.has_divisions:
        return 0
    _, start, width = _band(rating, tier)
    return max(0, min(99, math.floor((rating - start) / width * 100)))


def percentile_for(z: float) -> float:
    """Share of developers at or below this score, from the normal CDF."""
    cdf = 0.5 * (1 + math.erf(z / math.sqrt(2)))
    return round(min(100.0, max(0.0, cdf * 100)), 2)


def calculate_rating(stats: AggregatedStats,
                     config: RatingConfig | None = None) -> RatingResult:
    config = config or RatingConfig()
    index = weighted_index(stats.decayed, stats.total_stars, config)
    z = standardized_score(index, config)
    rating = rating_from_score(z, config)
    tier = tier_for(rating, config)
    return RatingResult(
        tier=tier.name,
        division=division_for(rating, tier),
        rating=rating,
        progress=progress_for(rating, tier),
        percentile=percentile_for(z),
        weighted_index=index,
        z_score=z,
    )
