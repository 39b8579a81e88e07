from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from threading import Lock
from time import monotonic

from cachetools import TTLCache

from backend.tubesummary.services.errors import RateLimitExceededError

ANONYMOUS_CLIENT_ID = "anonymous"


@dataclass
class RateWindowEntry:
    count: int
    created_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    count: int
    remaining: int


class FixedWindowRateLimiter:
    """Per-client request counter over a fixed window.

    The window starts when a client is first seen and ends ``window_seconds``
    later, regardless of how often the client calls in between. At most
    ``max_tracked_clients`` clients are tracked; the least recently used one is
    dropped to admit a new client.
    """

    def __init__(
        self,
        *,
        window_seconds: float,
        max_tracked_clients: int = 500,
        timer: Callable[[], float] = monotonic,
    ) -> None:
        self._window_seconds = max(0.001, float(window_seconds))
        self._max_tracked_clients = max(1, max_tracked_clients)
        self._timer = timer
        self._lock = Lock()
        # TTLCache only re-arms an item's expiry on assignment; entries are
        # mutated in place so the window stays anchored to creation time.
        self._entries: TTLCache[str, RateWindowEntry] = TTLCache(
            maxsize=self._max_tracked_clients,
            ttl=self._window_seconds,
            timer=timer,
        )

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def take(self, client_id: str, limit: int) -> RateLimitDecision:
        normalized_limit = max(0, limit)
        with self._lock:
            entry = self._entries.get(client_id)
            if entry is None:
                entry = RateWindowEntry(count=1, created_at=self._timer())
                self._entries[client_id] = entry
            else:
                entry.count += 1

            count = entry.count

        allowed = count <= normalized_limit
        return RateLimitDecision(
            allowed=allowed,
            limit=normalized_limit,
            count=count,
            remaining=max(normalized_limit - count, 0),
        )

    def check(self, client_id: str, limit: int) -> None:
        decision = self.take(client_id, limit)
        if not decision.allowed:
            raise RateLimitExceededError(
                f"Rate limit exceeded for client={client_id} limit={decision.limit}"
            )


def client_identifier_from_headers(headers: Mapping[str, str]) -> str:
    forwarded_for = headers.get("x-forwarded-for") or headers.get("X-Forwarded-For")
    if isinstance(forwarded_for, str):
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = headers.get("x-real-ip") or headers.get("X-Real-IP")
    if isinstance(real_ip, str) and real_ip.strip():
        return real_ip.strip()
    return ANONYMOUS_CLIENT_ID
