#!/usr/bin/env python3
"""
Ranked CLI. Computes a rating and prints it.

Usage:
    python3 -m ranked.cli rank USERNAME [--season YEAR] [--force] [--token T]
    python3 -m ranked.cli tiers

Output: JSON, one line. {"ok": true, ...} or {"ok": false, "error": "..."}
Credentials: GITHUB_TOKEN_1..N (or --token). Cache: REDIS_URL, else memory.
"""

import argparse
import asyncio
import json
import logging
import math
import sys

import httpx

from ranked.api_models import rank_response
from ranked.cache import ResultCache, store_from_env
from ranked.client import GraphQLClient
from ranked.config import LOG_LEVEL, load_tokens
from ranked.credentials import CredentialPool
from ranked.engine import DIVISIONS, RatingConfig
from ranked.errors import RankError
from ranked.service import RankService


logger = logging.getLogger(__name__)


def reply(data):
    print(json.dumps(data))


async def _rank(args) -> dict:
    tokens = load_tokens()
    pool = CredentialPool(tokens) if tokens else None
    cache = ResultCache(store_from_env())
    try:
        async with httpx.AsyncClient() as http:
            service = RankService(GraphQLClient(http), pool, cache,
                                  RatingConfig.from_env())
            result = await service.get_rank(
                args.username, season=args.season, force=args.force,
                token=args.token)
    finally:
        await cache.aclose()
    if isinstance(result, RankError):
        return {"ok": False, "error": result.message, "code": result.code,
                "details": result.details}
    return {"ok": True, **rank_response(result).model_dump()}


def cmd_rank(args):
    return asyncio.run(_rank(args))


def cmd_tiers(args):
    config = RatingConfig.from_env()
    return {"ok": True, "tiers": [
        {
            "name": t.name,
            "min": t.min,
            "max": None if math.isinf(t.max) else t.max,
            "divisions": list(DIVISIONS) if t.has_divisions else [],
        }
        for t in config.tiers
    ]}


COMMANDS = {
    "rank": cmd_rank,
    "tiers": cmd_tiers,
}


def main(argv=None):
    parser = argparse.ArgumentParser(prog="ranked",
                                     description="Developer skill rating")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Log to stderr")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("rank", help="Rate a GitHub user")
    p.add_argument("username")
    p.add_argument("--season", type=int, default=None,
                   help="Single year instead of all-time")
    p.add_argument("--force", action="store_true", help="Bypass the cache")
    p.add_argument("--token", default=None,
                   help="Use this token instead of the pool")

    sub.add_parser("tiers", help="Show the tier table")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO) if args.verbose
        else logging.WARNING,
        stream=sys.stderr,
    )

    try:
        result = COMMANDS[args.command](args)
    except ValueError as e:
        result = {"ok": False, "error": str(e)}
    reply(result)
    return 0 if result.get("ok") else 1


if __name__ == "__main__":
    sys.exit(main())
