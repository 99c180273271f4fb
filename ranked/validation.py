"""Input checks, run before any network call."""

import re
from datetime import datetime, timezone

from ranked.errors import InvalidInput


# 1-39 chars, alphanumerics or single hyphens, no leading/trailing hyphen.
USERNAME_REGEX = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,37}[a-zA-Z0-9])?$")

# Classic (ghp_) and fine-grained (github_pat_) personal access tokens.
TOKEN_REGEX = re.compile(r"^(ghp|github_pat)_[A-Za-z0-9_]{10,}$")

FIRST_SEASON = 2010
VARIANTS = ("default", "dark", "light", "minimal")


def validate_username(username: str) -> InvalidInput | None:
    if not isinstance(username, str) or not USERNAME_REGEX.match(username):
        return InvalidInput("Invalid GitHub username format", {
            "username": username,
            "pattern": "Must be 1-39 alphanumeric characters or hyphens",
        })
    return None


def validate_season(season, current_year: int | None = None
                    ) -> int | InvalidInput:
    """Accepts ints or numeric strings within 2010..current year + 1."""
    if current_year is None:
        current_year = datetime.now(timezone.utc).year
    error = InvalidInput("Invalid season parameter", {
        "season": season,
        "hint": (f"Season must be a year between {FIRST_SEASON} "
                 f"and {current_year + 1}"),
    })
    if isinstance(season, bool):
        return error
    try:
        value = int(str(season).strip())
    except ValueError:
        return error
    if not FIRST_SEASON <= value <= current_year + 1:
        return error
    return value


def validate_token(token: str) -> InvalidInput | None:
    if not TOKEN_REGEX.match(token or ""):
        return InvalidInput("Invalid GitHub token format")
    return None


def normalize_variant(variant: str | None) -> str:
    """Unknown variants fall back to the default rather than failing."""
    if variant and variant.strip().lower() in VARIANTS:
        return variant.strip().lower()
    return "default"
