"""
API error handling. Structured JSON errors with codes.

Every error response: {"error": {"code": "...", "message": "...", "details": {...}}}
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from ranked.cache import CACHE_TTL, cache_headers
from ranked.errors import (
    InvalidInput, MissingCredentials, PoolExhausted, RankError,
    SubjectNotFound, UpstreamUnavailable,
)


class APIError(Exception):
    """Structured API error with HTTP status and machine-readable code."""

    def __init__(self, status: int, code: str, message: str,
                 details: dict | None = None,
                 headers: dict | None = None):
        self.status = status
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers = headers or {}

    def response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status,
            content={"error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }},
            headers=self.headers,
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return exc.response()


def translate_rank_error(error: RankError) -> APIError:
    """Map a service failure to status, code and caching headers."""
    details = dict(error.details)

    if isinstance(error, SubjectNotFound):
        return APIError(404, error.code, error.message, details,
                        cache_headers(False, CACHE_TTL["not_found"]))

    if isinstance(error, InvalidInput):
        return APIError(400, error.code, error.message, details)

    if isinstance(error, PoolExhausted):
        details["retry_after"] = error.retry_after
        headers = cache_headers(False, CACHE_TTL["error"])
        headers["Retry-After"] = str(error.retry_after)
        return APIError(503, error.code, error.message, details, headers)

    if isinstance(error, MissingCredentials):
        return APIError(503, error.code, error.message, details,
                        {"Retry-After": "60"})

    if isinstance(error, UpstreamUnavailable):
        if error.status_code is not None:
            details["upstream_status"] = error.status_code
        headers = cache_headers(False, CACHE_TTL["error"])
        headers["Retry-After"] = "60"
        return APIError(502, error.code, error.message, details, headers)

    return APIError(error.status, error.code, error.message, details)
