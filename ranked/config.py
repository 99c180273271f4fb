"""
Environment configuration.

Credentials: GITHUB_TOKEN_1, GITHUB_TOKEN_2, ... (numeric order, gaps allowed)
             plus an optional comma-separated GITHUB_TOKENS.
Upstream:    GITHUB_GRAPHQL_URL, GITHUB_TIMEOUT (seconds)
Cache:       REDIS_URL (unset = in-process memory store)
Rating:      RANKED_* overrides, see engine.RatingConfig.from_env
"""

import os
import re


GITHUB_GRAPHQL_URL = os.environ.get(
    "GITHUB_GRAPHQL_URL", "https://api.github.com/graphql")
GITHUB_TIMEOUT = float(os.environ.get("GITHUB_TIMEOUT", "10"))
REDIS_URL = os.environ.get("REDIS_URL", "")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

RATE_LIMIT_CEILING = 5000

_TOKEN_VAR = re.compile(r"^GITHUB_TOKEN_(\d+)$")


def load_tokens(environ=None) -> list[str]:
    """Ordered, de-duplicated credential list from the environment."""
    env = os.environ if environ is None else environ
    numbered = []
    for name, value in env.items():
        m = _TOKEN_VAR.match(name)
        if m and value.strip():
            numbered.append((int(m.group(1)), value.strip()))
    tokens = [value for _, value in sorted(numbered)]
    tokens += [t.strip() for t in env.get("GITHUB_TOKENS", "").split(",")
               if t.strip()]
    return list(dict.fromkeys(tokens))


def env_float(name: str, default: float, environ=None) -> float:
    env = os.environ if environ is None else environ
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
