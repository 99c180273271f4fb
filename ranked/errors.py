"""
Error taxonomy. Failures are returned as values, not raised.

Every fetch/rank operation returns either its result or one of the
RankError subclasses below, so the caller has to look at the outcome:

    result = await service.get_rank("octocat")
    if isinstance(result, RankError):
        ...

Each error carries a machine-readable code and the HTTP status the API
layer maps it to. PartialAggregationFailure is the exception to the rule:
it rides along on a successful outcome as metadata.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Literal


@dataclass(frozen=True)
class RankError:
    message: str
    details: dict = field(default_factory=dict)

    code: ClassVar[str] = "internal_error"
    status: ClassVar[int] = 500

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class SubjectNotFound(RankError):
    code: ClassVar[str] = "subject_not_found"
    status: ClassVar[int] = 404

    @staticmethod
    def for_subject(subject: str) -> "SubjectNotFound":
        return SubjectNotFound(f"User not found: {subject}",
                               {"username": subject})


@dataclass(frozen=True)
class UpstreamUnavailable(RankError):
    status_code: int | None = None

    code: ClassVar[str] = "upstream_unavailable"
    status: ClassVar[int] = 502


@dataclass(frozen=True)
class PoolExhausted(RankError):
    retry_after: int = 60

    code: ClassVar[str] = "pool_exhausted"
    status: ClassVar[int] = 503


@dataclass(frozen=True)
class MissingCredentials(RankError):
    code: ClassVar[str] = "credentials_missing"
    status: ClassVar[int] = 503


@dataclass(frozen=True)
class InvalidInput(RankError):
    code: ClassVar[str] = "invalid_input"
    status: ClassVar[int] = 400


@dataclass(frozen=True)
class PartialAggregationFailure:
    """Some years failed to fetch; the result was built from the rest."""
    failed_years: tuple[int, ...]

    @property
    def message(self) -> str:
        years = ", ".join(str(y) for y in self.failed_years)
        return f"Stats unavailable for: {years}"


# ---------------------------------------------------------------------------
# Query-level classification (client.py)
# ---------------------------------------------------------------------------

QueryErrorKind = Literal["transport", "rejected", "not_found"]


@dataclass(frozen=True)
class QueryError:
    kind: QueryErrorKind
    message: str
    status_code: int | None = None
    errors: tuple = ()

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.message}"
        return self.message


def is_retryable(error: QueryError) -> bool:
    """Rate-limited (403/429) and server errors (5xx) only."""
    if error.kind != "rejected" or error.status_code is None:
        return False
    return error.status_code in (403, 429) or 500 <= error.status_code < 600


def to_rank_error(error: QueryError, subject: str) -> RankError:
    """Lift a query failure into the request-level taxonomy."""
    if error.kind == "not_found":
        return SubjectNotFound.for_subject(subject)
    return UpstreamUnavailable(f"GitHub API error: {error}",
                               {"kind": error.kind},
                               status_code=error.status_code)
