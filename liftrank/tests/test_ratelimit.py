"""
Rate limiting and the shared error contract.

Builds a small app with the production middlewares so limits can be tuned
per test without touching global settings.
"""

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from liftrank.core.errors import AppError, NotFoundError, app_error_handler, http_error_handler
from liftrank.core.metrics import ratelimit_block_total
from liftrank.core.middleware.ratelimit import RateLimitMiddleware
from liftrank.core.middleware.request_id import RequestIdMiddleware
from liftrank.core.ratelimit import InMemoryRateLimiter, RateLimitConfig, TokenBucket


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _app(config: RateLimitConfig, clock=None) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(RateLimitMiddleware, config=config, time_fn=clock)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)

    @app.get("/api/leaderboard")
    def leaderboard():
        return {"success": True}

    @app.post("/api/update-user-metrics")
    def update():
        return {"success": True}

    @app.post("/api/recalculate-rankings")
    def recalculate():
        return {"success": True}

    @app.get("/api/missing")
    def missing():
        raise NotFoundError("User ranking not found")

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    return app


def test_token_bucket_refills():
    clock = FakeClock()
    bucket = TokenBucket(capacity=2, refill_rate_per_sec=1.0, time_fn=clock)

    assert bucket.allow() and bucket.allow()
    assert not bucket.allow()

    clock.now += 1.0
    assert bucket.allow()


def test_limiter_keys_are_independent():
    limiter = InMemoryRateLimiter(RateLimitConfig(enabled=True), time_fn=FakeClock())

    assert limiter.allow("user:a:read", per_minute=1, burst=1)
    assert not limiter.allow("user:a:read", per_minute=1, burst=1)
    assert limiter.allow("user:b:read", per_minute=1, burst=1)


def test_disabled_by_default():
    client = TestClient(_app(RateLimitConfig()))

    for _ in range(5):
        assert client.get("/api/leaderboard").status_code == 200


def test_reads_blocked_after_burst():
    client = TestClient(_app(RateLimitConfig(enabled=True, per_minute_default=1, burst_default=1), FakeClock()))
    headers = {"X-User-Id": "user_a"}

    assert client.get("/api/leaderboard", headers=headers).status_code == 200
    blocked = client.get("/api/leaderboard", headers=headers)

    assert blocked.status_code == 429
    body = blocked.json()
    assert body["success"] is False
    assert body["error"]["code"] == "rate_limited"
    assert blocked.headers["Retry-After"]
    assert blocked.headers["X-RateLimit-Remaining"] == "0"
    assert ratelimit_block_total.value({"scope": "/api/leaderboard"}) == 1

    # Other users have their own bucket
    assert client.get("/api/leaderboard", headers={"X-User-Id": "user_b"}).status_code == 200


def test_mutations_have_separate_budget():
    client = TestClient(_app(RateLimitConfig(enabled=True, per_minute_default=2, burst_default=2), FakeClock()))
    headers = {"X-User-Id": "user_a"}

    assert client.post("/api/update-user-metrics", headers=headers).status_code == 200
    assert client.post("/api/update-user-metrics", headers=headers).status_code == 429
    assert client.get("/api/leaderboard", headers=headers).status_code == 200


def test_admin_operations_have_smallest_budget():
    client = TestClient(_app(RateLimitConfig(enabled=True, per_minute_default=10, burst_default=10), FakeClock()))
    headers = {"X-User-Id": "user_admin"}

    assert client.post("/api/recalculate-rankings", headers=headers).status_code == 200
    blocked = client.post("/api/recalculate-rankings", headers=headers)

    assert blocked.status_code == 429
    assert blocked.headers["X-RateLimit-Limit"] == "1"
    assert blocked.headers["Retry-After"] == "60"
    assert client.post("/api/update-user-metrics", headers=headers).status_code == 200


def test_non_api_paths_not_limited():
    client = TestClient(_app(RateLimitConfig(enabled=True, per_minute_default=1, burst_default=1), FakeClock()))

    for _ in range(3):
        assert client.get("/healthz").status_code == 200


def test_request_id_echoed():
    client = TestClient(_app(RateLimitConfig()))

    response = client.get("/api/leaderboard", headers={"x-request-id": "req-123"})

    assert response.headers["x-request-id"] == "req-123"


def test_app_error_payload():
    client = TestClient(_app(RateLimitConfig()))

    response = client.get("/api/missing", headers={"x-request-id": "req-404"})

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": {"code": "not_found", "message": "User ranking not found", "request_id": "req-404"},
        "detail": "User ranking not found",
    }
