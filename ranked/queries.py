"""GraphQL documents and request builders for the GitHub API."""

from datetime import datetime, timezone


# Contributions for one [from, to] window, plus followers and the owner's
# top 100 repositories by stars (used for the lifetime star total).
USER_STATS_QUERY = """
query UserStats($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    login
    createdAt
    contributionsCollection(from: $from, to: $to) {
      totalCommitContributions
      totalPullRequestContributions
      totalPullRequestReviewContributions
      totalIssueContributions
      restrictedContributionsCount
    }
    followers {
      totalCount
    }
    repositories(
      first: 100
      ownerAffiliations: OWNER
      orderBy: { field: STARGAZERS, direction: DESC }
    ) {
      totalCount
      nodes {
        stargazers {
          totalCount
        }
      }
    }
  }
  rateLimit {
    limit
    cost
    remaining
    resetAt
  }
}
"""

CONTRIBUTION_YEARS_QUERY = """
query ContributionYears($login: String!) {
  user(login: $login) {
    login
    createdAt
    contributionsCollection {
      contributionYears
    }
  }
  rateLimit {
    limit
    cost
    remaining
    resetAt
  }
}
"""


def _iso(dt: datetime) -> str:
    """ISO 8601 with millisecond precision and a Z suffix."""
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def year_dates(year: int) -> tuple[str, str]:
    """Jan 1 00:00:00.000Z through Dec 31 23:59:59.999Z of `year`."""
    start = datetime(year, 1, 1, tzinfo=timezone.utc)
    end = datetime(year, 12, 31, 23, 59, 59, 999000, tzinfo=timezone.utc)
    return _iso(start), _iso(end)


def contribution_years_request(login: str) -> dict:
    return {"query": CONTRIBUTION_YEARS_QUERY, "variables": {"login": login}}


def user_stats_request(login: str, from_: str, to: str) -> dict:
    return {
        "query": USER_STATS_QUERY,
        "variables": {"login": login, "from": from_, "to": to},
    }
