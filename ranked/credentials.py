"""
Credential pool. Spreads GraphQL rate-limit points across several tokens.

Selection is round-robin: each select() probes at most N entries starting
at the cursor, advancing the cursor on every probe whether or not the
entry was usable. No token starves another and a call is O(N).

Budgets come from two places:
- record_usage: local decrement after a query (floored at 0)
- update_limit: authoritative remaining/reset values reported by GitHub

A token at 0 whose reset time has passed is restored to the ceiling the
next time anyone asks whether it is available.

The pool is shared by every in-flight fetch. All state changes go through
one lock.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ranked.config import RATE_LIMIT_CEILING
from ranked.errors import PoolExhausted


logger = logging.getLogger(__name__)


@dataclass
class CredentialEntry:
    token: str
    remaining: int = RATE_LIMIT_CEILING
    reset_at: float = 0.0       # epoch seconds
    last_used: float = 0.0      # epoch seconds


class CredentialPool:

    def __init__(self, tokens: list[str], *, ceiling: int = RATE_LIMIT_CEILING,
                 clock: Callable[[], float] = time.time):
        if not tokens:
            raise ValueError("No GitHub tokens configured")
        self.ceiling = ceiling
        self.clock = clock
        self.entries: list[CredentialEntry] = [
            CredentialEntry(token=t, remaining=ceiling) for t in tokens
        ]
        self.cursor = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.entries)

    def _find(self, token: str) -> CredentialEntry | None:
        for entry in self.entries:
            if entry.token == token:
                return entry
        return None

    def _get(self, token: str) -> CredentialEntry:
        entry = self._find(token)
        if entry is None:
            raise KeyError("Token not found in pool")
        return entry

    def _available(self, entry: CredentialEntry, now: float) -> bool:
        if entry.remaining > 0:
            return True
        if now >= entry.reset_at:
            entry.remaining = self.ceiling
            return True
        return False

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self) -> str | PoolExhausted:
        """Next usable token, or PoolExhausted after one full scan."""
        with self._lock:
            now = self.clock()
            n = len(self.entries)
            for _ in range(n):
                entry = self.entries[self.cursor]
                self.cursor = (self.cursor + 1) % n
                if self._available(entry, now):
                    entry.last_used = now
                    return entry.token

            earliest = min(e.reset_at for e in self.entries)
            retry_after = max(1, int(earliest - now) + 1)
            logger.warning("credential pool exhausted; earliest reset in %ss",
                           retry_after)
            return PoolExhausted("All GitHub tokens are rate-limited",
                                 {"tokens": n}, retry_after=retry_after)

    def is_available(self, token: str) -> bool:
        with self._lock:
            entry = self._find(token)
            if entry is None:
                return False
            return self._available(entry, self.clock())

    def available_count(self) -> int:
        with self._lock:
            now = self.clock()
            return sum(1 for e in self.entries if self._available(e, now))

    # ------------------------------------------------------------------
    # Accounting
    # ------------------------------------------------------------------

    def record_usage(self, token: str, cost: int) -> None:
        with self._lock:
            entry = self._get(token)
            entry.remaining = max(0, entry.remaining - cost)
            entry.last_used = self.clock()

    def update_limit(self, token: str, remaining: int,
                     reset_at: float) -> None:
        with self._lock:
            entry = self._get(token)
            entry.remaining = max(0, remaining)
            entry.reset_at = reset_at

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def refresh(self, tokens: list[str]) -> None:
        """
        Reload the token list. Tokens already in the pool keep their
        counters; new ones start at the ceiling; removed ones are dropped.
        """
        if not tokens:
            raise ValueError("No GitHub tokens configured")
        with self._lock:
            known = {e.token: e for e in self.entries}
            self.entries = [
                known.get(t) or CredentialEntry(token=t, remaining=self.ceiling)
                for t in tokens
            ]
            self.cursor %= len(self.entries)
