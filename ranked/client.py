"""
GitHub GraphQL client with bounded retry.

execute() performs one POST and classifies the outcome:
  transport  - connection/timeout failure before a response arrived
  rejected   - HTTP >= 400, or GraphQL errors on a 200
  not_found  - GraphQL NOT_FOUND error (the login does not exist)

execute_with_retry() re-issues the same request on retryable failures
(403/429 rate limiting, 5xx), sleeping through RETRY_DELAYS between
attempts. Everything else comes back on the first failure.

run_query() is what the aggregator calls: it picks the credential and,
for pooled credentials, feeds the rateLimit block back into the pool.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

import httpx

from ranked.config import GITHUB_GRAPHQL_URL, GITHUB_TIMEOUT
from ranked.credentials import CredentialPool
from ranked.errors import PoolExhausted, QueryError, is_retryable


logger = logging.getLogger(__name__)

RETRY_DELAYS: tuple[float, ...] = (1.0, 2.0, 4.0)
USER_AGENT = "ranked/0.1"


@dataclass(frozen=True)
class RateLimitInfo:
    limit: int
    cost: int
    remaining: int
    reset_at: str

    @property
    def reset_epoch(self) -> float | None:
        try:
            dt = datetime.fromisoformat(self.reset_at.replace("Z", "+00:00"))
        except ValueError:
            return None
        return dt.timestamp()


def parse_rate_limit(response: dict) -> RateLimitInfo | None:
    """rateLimit{limit,cost,remaining,resetAt} from a response, if complete."""
    data = response.get("data")
    if not isinstance(data, dict):
        return None
    rl = data.get("rateLimit")
    if not isinstance(rl, dict):
        return None
    fields = (rl.get("limit"), rl.get("cost"), rl.get("remaining"))
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in fields):
        return None
    if not isinstance(rl.get("resetAt"), str):
        return None
    return RateLimitInfo(limit=rl["limit"], cost=rl["cost"],
                         remaining=rl["remaining"], reset_at=rl["resetAt"])


def _first_message(errors, fallback: str) -> str:
    if errors and isinstance(errors[0], dict):
        return errors[0].get("message") or fallback
    return fallback


class GraphQLClient:

    def __init__(self, http: httpx.AsyncClient | None = None, *,
                 endpoint: str = GITHUB_GRAPHQL_URL,
                 timeout: float = GITHUB_TIMEOUT,
                 delays: tuple[float, ...] = RETRY_DELAYS,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.http = http or httpx.AsyncClient()
        self.endpoint = endpoint
        self.timeout = timeout
        self.delays = tuple(delays)
        self.sleep = sleep

    async def aclose(self) -> None:
        await self.http.aclose()

    async def execute(self, request: dict, token: str) -> dict | QueryError:
        try:
            resp = await self.http.post(
                self.endpoint,
                json=request,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            return QueryError("transport",
                              f"GitHub API request failed: {e}")

        try:
            body = resp.json()
        except (json.JSONDecodeError, ValueError):
            body = {}
        if not isinstance(body, dict):
            body = {}
        errors = body.get("errors") or []

        if resp.status_code >= 400:
            return QueryError(
                "rejected",
                _first_message(errors, resp.reason_phrase or "request failed"),
                status_code=resp.status_code,
                errors=tuple(errors),
            )

        # GraphQL errors on a 200 (RATE_LIMITED included) are never retried.
        if errors:
            if any(isinstance(e, dict) and e.get("type") == "NOT_FOUND"
                   for e in errors):
                return QueryError("not_found",
                                  _first_message(errors, "not found"),
                                  errors=tuple(errors))
            return QueryError("rejected",
                              _first_message(errors, "GraphQL query failed"),
                              errors=tuple(errors))

        return body

    async def execute_with_retry(self, request: dict,
                                 token: str) -> dict | QueryError:
        attempt = 0
        while True:
            result = await self.execute(request, token)
            if not isinstance(result, QueryError):
                return result
            if not is_retryable(result) or attempt >= len(self.delays):
                return result
            delay = self.delays[attempt]
            attempt += 1
            logger.info("retryable GitHub error (%s); attempt %d in %.1fs",
                        result, attempt + 1, delay)
            await self.sleep(delay)

    async def run_query(self, request: dict, pool: CredentialPool | None,
                        token: str | None = None
                        ) -> dict | QueryError | PoolExhausted:
        """
        Execute with retry using a caller token or a pooled one.
        Caller tokens are not pool-managed, so their rate limits are ignored.
        """
        pooled = token is None
        if pooled:
            selected = pool.select()
            if isinstance(selected, PoolExhausted):
                return selected
            token = selected

        result = await self.execute_with_retry(request, token)
        if pooled and not isinstance(result, QueryError):
            self._account(pool, token, result)
        return result

    @staticmethod
    def _account(pool: CredentialPool, token: str, response: dict) -> None:
        rate = parse_rate_limit(response)
        if rate is None:
            return
        reset = rate.reset_epoch
        if reset is None:
            return
        pool.update_limit(token, rate.remaining, reset)
        pool.record_usage(token, max(rate.cost, 1))
