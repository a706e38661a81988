"""Per-address request rate limiting."""

from src.autopr.ratelimit.limiter import (
    DEFAULT_LIMIT,
    WINDOW_SECONDS,
    RateLimiter,
    RateLimitResult,
    record_key,
)

__all__ = [
    "DEFAULT_LIMIT",
    "WINDOW_SECONDS",
    "RateLimiter",
    "RateLimitResult",
    "record_key",
]
