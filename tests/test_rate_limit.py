import asyncio

import pytest
from fastapi import HTTPException

from upload_validator.core import rate_limit
from upload_validator.models.api_models import LeakyBucketConfig


def _burst(count: int) -> list[int]:
    async def run():
        statuses = []
        for _ in range(count):
            try:
                await rate_limit.enforce_rate_limit()
                statuses.append(200)
            except HTTPException as exc:
                statuses.append(exc.status_code)
        return statuses

    return asyncio.run(run())


@pytest.mark.parametrize("capacity", [1, 3, 10])
def test_burst_admits_exactly_capacity(monkeypatch, capacity):
    monkeypatch.setattr(rate_limit, "bucket_cfg", LeakyBucketConfig(capacity=capacity, leak_rate=0.001))
    statuses = _burst(capacity + 2)
    assert statuses == [200] * capacity + [503, 503]


def test_bucket_drains_over_time(monkeypatch):
    monkeypatch.setattr(rate_limit, "bucket_cfg", LeakyBucketConfig(capacity=1, leak_rate=1000.0))
    assert _burst(1) == [200]
    rate_limit._bucket_updated_at -= 1.0
    assert _burst(1) == [200]
