"""
Tests for rate limiting and the JSON cache.
"""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import FakeRedis, make_settings
from core.cache import JsonCache, cache_key
from core.container import build_container
from core.rate_limit import RateLimitMiddleware


@pytest.fixture
def limited_client(store, verifier, monkeypatch):
    """App with rate limiting on and Redis replaced by a fake."""
    redis_client = FakeRedis()
    monkeypatch.setattr("main.get_redis_client", lambda url: redis_client)
    from main import create_app

    test_settings = make_settings(RATE_LIMIT_ENABLED=True, RATE_LIMIT_PER_MINUTE=3)
    container = build_container(test_settings, store=store, verifier=verifier, cache=JsonCache())
    return TestClient(create_app(container=container, app_settings=test_settings)), redis_client


class TestRateLimitMiddleware:
    """Fixed-window limits"""

    def test_limit_enforced(self, limited_client, auth_header):
        client, _ = limited_client
        headers = auth_header("s1")
        statuses = [client.get("/api/protected/profile", headers=headers).status_code for _ in range(4)]
        assert statuses == [200, 200, 200, 429]

    def test_limited_response_shape(self, limited_client, auth_header):
        client, _ = limited_client
        headers = auth_header("s1")
        for _ in range(3):
            client.get("/api/protected/profile", headers=headers)
        response = client.get("/api/protected/profile", headers=headers)
        assert response.json()["error"]["code"] == "RateLimited"
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert "Retry-After" in response.headers

    def test_counted_per_user(self, limited_client, auth_header):
        client, redis_client = limited_client
        for _ in range(3):
            client.get("/api/protected/profile", headers=auth_header("s1"))
        assert client.get("/api/protected/profile", headers=auth_header("s2")).status_code == 200
        assert "rate_limit:user:s1:/api/protected/profile" in redis_client.data

    def test_health_exempt(self, limited_client):
        client, _ = limited_client
        assert all(client.get("/health").status_code == 200 for _ in range(5))

    def test_remaining_header(self, limited_client, auth_header):
        client, _ = limited_client
        response = client.get("/api/protected/profile", headers=auth_header("s1"))
        assert response.headers["X-RateLimit-Remaining"] == "2"

    def test_endpoint_limits(self):
        middleware = RateLimitMiddleware(MagicMock(), redis_client=lambda: None)
        assert middleware._get_endpoint_limit("/api/admin/setup-admin") == 5
        assert middleware._get_endpoint_limit("/api/protected/ai/grade-answer") == 10
        assert middleware._get_endpoint_limit("/api/admin/form-templates") == 30
        assert middleware._get_endpoint_limit("/api/protected/profile") == 60

    def test_fails_open_without_redis(self):
        middleware = RateLimitMiddleware(MagicMock(), redis_client=lambda: None)
        allowed, remaining, _ = middleware._check_rate_limit("ip:1.2.3.4", "/x", limit=1, window=60)
        assert allowed
        assert remaining == 1

    def test_fails_open_on_redis_error(self):
        broken = MagicMock()
        broken.incr.side_effect = RedisConnectionError("down")
        middleware = RateLimitMiddleware(MagicMock(), redis_client=lambda: broken)
        allowed, _, _ = middleware._check_rate_limit("ip:1.2.3.4", "/x", limit=1, window=60)
        assert allowed


class TestJsonCache:
    """JsonCache"""

    def test_round_trip_with_ttl(self):
        redis_client = FakeRedis()
        cache = JsonCache(client=redis_client, default_ttl=300)
        assert cache.set("k", {"a": 1})
        assert cache.get("k") == {"a": 1}
        assert redis_client.ttls["k"] == 300

    def test_disabled_without_redis(self):
        cache = JsonCache()
        assert cache.get("k") is None
        assert cache.set("k", 1) is False
        assert cache.delete("k") is False

    def test_redis_errors_are_misses(self):
        broken = MagicMock()
        broken.get.side_effect = RedisConnectionError("down")
        assert JsonCache(client=broken).get("k") is None

    def test_invalidate_pattern(self):
        redis_client = FakeRedis()
        cache = JsonCache(client=redis_client)
        cache.set("form_template:1", {})
        cache.set("form_template:2", {})
        cache.set("other:1", {})
        assert cache.invalidate_pattern("form_template:*") == 2
        assert list(redis_client.data) == ["other:1"]

    def test_cache_key(self):
        assert cache_key("idempotency", "form_entry", "u1", None, key="k") == "idempotency:form_entry:u1:key:k"
