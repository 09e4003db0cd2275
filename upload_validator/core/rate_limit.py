# Rate limiting logic
"""
Simple in-memory leaky bucket shared by the upload routes.

Each admitted request adds one unit; the bucket drains at ``leak_rate``
units per second. A request is admitted only if its unit still fits, so a
burst admits at most ``capacity`` requests.
"""
from __future__ import annotations

import asyncio
import logging
import time

from fastapi import HTTPException, status

from upload_validator.core.config import settings
from upload_validator.models.api_models import LeakyBucketConfig, RateLimitStatus

LOGGER = logging.getLogger(__name__)

bucket_cfg = LeakyBucketConfig(
    capacity=settings.RATE_LIMIT_CAPACITY,
    leak_rate=settings.RATE_LIMIT_LEAK_RATE,
)
_bucket_level = 0.0
_bucket_updated_at = time.monotonic()
_bucket_lock = asyncio.Lock()


def reset_bucket() -> None:
    global _bucket_level, _bucket_updated_at
    _bucket_level = 0.0
    _bucket_updated_at = time.monotonic()


def _drain(now: float) -> float:
    global _bucket_level, _bucket_updated_at
    elapsed = now - _bucket_updated_at
    _bucket_level = max(0.0, _bucket_level - bucket_cfg.leak_rate * elapsed)
    _bucket_updated_at = now
    return _bucket_level


async def enforce_rate_limit() -> RateLimitStatus:
    """FastAPI dependency: admit the request or answer 503 "Server is Busy"."""
    global _bucket_level
    async with _bucket_lock:
        level = _drain(time.monotonic())
        if level + 1.0 > bucket_cfg.capacity:
            LOGGER.warning("Rate limit exceeded: level=%.3f capacity=%d", level, bucket_cfg.capacity)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Server is Busy",
            )
        _bucket_level = level + 1.0

    return RateLimitStatus(
        allowed=True,
        reason=None,
        status_code=status.HTTP_200_OK,
        bucket_capacity=bucket_cfg.capacity,
        bucket_leak_rate=bucket_cfg.leak_rate,
    )
