"""
FastAPI application. JSON surface over the rank service.

    GET /v1/health              pool and cache status
    GET /v1/rank/{username}     rating + stats
        ?season=2024            single season instead of all-time
        &theme=dark             cache variant (rendering happens elsewhere)
        &force=true             bypass the cache
        &token=ghp_...          caller's own token, bypasses the pool

Service failures are translated to structured errors by api_errors.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Response

from ranked.api_errors import APIError, api_error_handler, translate_rank_error
from ranked.api_models import HealthResponse, RankResponse, rank_response
from ranked.cache import ResultCache, cache_headers, store_from_env
from ranked.client import GraphQLClient
from ranked.config import LOG_LEVEL, load_tokens
from ranked.credentials import CredentialPool
from ranked.engine import RatingConfig
from ranked.errors import RankError
from ranked.service import RankService


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_pool() -> CredentialPool | None:
    tokens = load_tokens()
    if not tokens:
        logger.warning("no GITHUB_TOKEN_* configured; only caller tokens "
                       "will work")
        return None
    return CredentialPool(tokens)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = build_pool()
    cache = ResultCache(store_from_env())
    client = GraphQLClient(httpx.AsyncClient())

    app.state.pool = pool
    app.state.cache = cache
    app.state.service = RankService(client, pool, cache,
                                    RatingConfig.from_env())
    logger.info("ranked ready with %d credential(s)",
                len(pool) if pool else 0)
    yield
    await client.aclose()
    await cache.aclose()


app = FastAPI(title="Ranked API", version="0.1.0", lifespan=lifespan)
app.add_exception_handler(APIError, api_error_handler)


def _parse_force(force: str | None) -> bool:
    return (force or "").strip().lower() == "true"


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/v1/health")
async def health() -> HealthResponse:
    pool = app.state.pool
    return HealthResponse(
        status="ok",
        credentials=len(pool) if pool else 0,
        credentials_available=pool.available_count() if pool else 0,
        cache=await app.state.cache.ping(),
    )


# ---------------------------------------------------------------------------
# Rank
# ---------------------------------------------------------------------------

@app.get("/v1/rank/{username}")
async def get_rank(username: str, response: Response,
                   season: str | None = None,
                   theme: str | None = None,
                   force: str | None = None,
                   token: str | None = None) -> RankResponse:
    """Rating for a GitHub user, all-time or for one season."""
    started = time.monotonic()
    request_id = str(uuid.uuid4())

    result = await app.state.service.get_rank(
        username, season=season or None, variant=theme,
        force=_parse_force(force), token=token,
    )
    if isinstance(result, RankError):
        err = translate_rank_error(result)
        err.headers["X-Request-Id"] = request_id
        raise err

    for k, v in cache_headers(result.cache_hit, result.ttl).items():
        response.headers[k] = v
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time"] = \
        f"{int((time.monotonic() - started) * 1000)}ms"
    return rank_response(result)
