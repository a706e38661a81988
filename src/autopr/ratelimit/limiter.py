"""Per-address request rate limiting.

Counts accepted requests per client address in a sliding one-hour window.
Each accepted request writes one rate-limit record into the status table;
the count is a query over the address index. Records carry their own
expiry (window plus a grace period) so the store cleans them up.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from src.autopr.state.store import DynamoDBStore


logger = logging.getLogger(__name__)


WINDOW_SECONDS = 3600

# Records outlive the window slightly so a query at the window edge never
# races the store's TTL sweep
EXPIRY_GRACE_SECONDS = 300

DEFAULT_LIMIT = 5

UNKNOWN_ADDRESS = "unknown"

RECORD_KEY_PREFIX = "rl#"


@dataclass
class RateLimitResult:
    """Outcome of a rate-limit check.

    Attributes:
        allowed: Whether another request may be accepted.
        used: Requests already counted in the current window.
        limit: Maximum requests per window.
        next_available_at: Unix time at which the oldest counted request
            leaves the window. Only meaningful when not allowed.
    """

    allowed: bool
    used: int
    limit: int
    next_available_at: int = 0

    def to_response(self) -> dict:
        """Build the rateLimit block of a 429 response body."""
        reset_at = datetime.fromtimestamp(self.next_available_at, tz=timezone.utc)
        return {
            "limit": self.limit,
            "used": self.used,
            "resetAt": self.next_available_at,
            "resetAtISO": reset_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }


def record_key(address: str, timestamp: int, request_id: str) -> str:
    """Build the primary key for a rate-limit record."""
    return f"{RECORD_KEY_PREFIX}{address}#{timestamp}#{request_id}"


class RateLimiter:
    """Sliding-window limiter backed by the status table.

    The limiter is a guard, not a dependency: if the store cannot be read
    the request is allowed, and if a record cannot be written the request
    proceeds uncounted.
    """

    def __init__(
        self,
        store: DynamoDBStore,
        limit: int = DEFAULT_LIMIT,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.limit = limit
        self._clock = clock

    async def check(self, client_address: Optional[str]) -> RateLimitResult:
        address = client_address or UNKNOWN_ADDRESS
        now = int(self._clock())
        window_start = now - WINDOW_SECONDS

        try:
            items = await asyncio.to_thread(
                self.store.query_by_address, address, window_start
            )
        except Exception as exc:
            logger.warning(
                "Rate limit check failed, allowing request",
                extra={"client_address": address, "error": str(exc)},
            )
            return RateLimitResult(allowed=True, used=0, limit=self.limit)

        timestamps = [int(item["timestamp"]) for item in items if "timestamp" in item]
        used = len(timestamps)

        if used < self.limit:
            return RateLimitResult(allowed=True, used=used, limit=self.limit)

        next_available_at = min(timestamps) + WINDOW_SECONDS
        logger.info(
            "Rate limit exceeded",
            extra={
                "client_address": address,
                "used": used,
                "limit": self.limit,
                "next_available_at": next_available_at,
            },
        )
        return RateLimitResult(
            allowed=False,
            used=used,
            limit=self.limit,
            next_available_at=next_available_at,
        )

    async def record(self, client_address: Optional[str], request_id: str) -> None:
        address = client_address or UNKNOWN_ADDRESS
        now = int(self._clock())
        item = {
            "requestId": record_key(address, now, request_id),
            "ipAddress": address,
            "timestamp": now,
            "expiresAt": now + WINDOW_SECONDS + EXPIRY_GRACE_SECONDS,
        }

        try:
            await asyncio.to_thread(self.store.put_item, item)
        except Exception as exc:
            logger.warning(
                "Failed to record rate limit entry",
                extra={
                    "client_address": address,
                    "request_id": request_id,
                    "error": str(exc),
                },
            )
