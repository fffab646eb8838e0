"""Sliding-window rate limiting for triggers and external API calls."""

from src.ratelimit.config import RateLimitConfig
from src.ratelimit.limiter import RateLimitResult, SlidingWindowRateLimiter

__all__ = ["RateLimitConfig", "RateLimitResult", "SlidingWindowRateLimiter"]
