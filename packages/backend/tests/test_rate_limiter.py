"""Per-credential rate limiting — unit tests on RateLimiter plus one HTTP check."""

import asyncio
import uuid

import pytest

from conftest import issue_key
from tollgate.auth.errors import RateLimitExceeded, RateLimitUnavailable
from tollgate.services.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ═══════════════════════════════════════════════════════════
# Counting
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_limit_enforced_on_the_sixth_request(redis):
    limiter = RateLimiter(redis, window_seconds=60, clock=FakeClock())
    key_id = uuid.uuid4()

    for n in range(1, 6):
        decision = await limiter.enforce(key_id, 5)
        assert decision.allowed
        assert decision.remaining == 5 - n

    with pytest.raises(RateLimitExceeded) as exc:
        await limiter.enforce(key_id, 5)
    assert exc.value.status_code == 429
    assert int(exc.value.headers["Retry-After"]) > 0


@pytest.mark.asyncio
async def test_concurrent_requests_never_exceed_limit(redis):
    limiter = RateLimiter(redis, window_seconds=60, clock=FakeClock())
    key_id = uuid.uuid4()

    decisions = await asyncio.gather(*(limiter.check(key_id, 10) for _ in range(25)))

    assert sum(d.allowed for d in decisions) == 10


@pytest.mark.asyncio
async def test_counters_are_per_credential(redis):
    limiter = RateLimiter(redis, window_seconds=60, clock=FakeClock())
    a, b = uuid.uuid4(), uuid.uuid4()
    await limiter.check(a, 1)
    assert not (await limiter.check(a, 1)).allowed
    assert (await limiter.check(b, 1)).allowed


@pytest.mark.asyncio
async def test_new_window_resets_counter(redis):
    clock = FakeClock(now=6000.0)
    limiter = RateLimiter(redis, window_seconds=60, clock=clock)
    key_id = uuid.uuid4()

    await limiter.check(key_id, 1)
    blocked = await limiter.check(key_id, 1)
    assert not blocked.allowed
    assert blocked.reset_at == 6060
    assert blocked.retry_after == 60

    clock.now = 6060.0
    assert (await limiter.check(key_id, 1)).allowed


@pytest.mark.asyncio
async def test_disabled_without_redis():
    limiter = RateLimiter(None)
    assert await limiter.check(uuid.uuid4(), 1) is None
    assert not limiter.enabled


# ═══════════════════════════════════════════════════════════
# Backend failures
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_fails_closed_by_default(broken_redis):
    limiter = RateLimiter(broken_redis)
    with pytest.raises(RateLimitUnavailable) as exc:
        await limiter.check(uuid.uuid4(), 10)
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_fail_open_when_configured(broken_redis):
    limiter = RateLimiter(broken_redis, fail_open=True)
    assert await limiter.check(uuid.uuid4(), 10) is None


# ═══════════════════════════════════════════════════════════
# Through the API
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_http_limit_and_headers(client, services, tenants):
    secret, _ = await issue_key(
        services, tenants.owner, tenants.org_a, project_id=tenants.p1.id, rate_limit=5
    )
    headers = {"x-api-key": secret}

    for n in range(5):
        r = await client.get("/api/v1/traces", headers=headers)
        assert r.status_code == 200, r.text
        assert r.headers["X-RateLimit-Limit"] == "5"
        assert r.headers["X-RateLimit-Remaining"] == str(4 - n)

    r = await client.get("/api/v1/traces", headers=headers)
    assert r.status_code == 429
    assert r.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert int(r.headers["Retry-After"]) > 0


@pytest.mark.asyncio
async def test_limit_change_applies_on_next_request(client, services, tenants):
    secret, record = await issue_key(
        services, tenants.owner, tenants.org_a, project_id=tenants.p1.id, rate_limit=1
    )
    headers = {"x-api-key": secret}
    assert (await client.get("/api/v1/traces", headers=headers)).status_code == 200
    assert (await client.get("/api/v1/traces", headers=headers)).status_code == 429

    await services.store.update(record.id, {"rate_limit": 10})

    r = await client.get("/api/v1/traces", headers=headers)
    assert r.status_code == 200
    assert r.headers["X-RateLimit-Limit"] == "10"
