"""Unit tests for RateLimitService — rate limiting, IP extraction, fail-open."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from app.services.rate_limit_service import RateLimitService, get_client_ip


@pytest.fixture
def service():
    return RateLimitService()


def _make_request(path="/api/test", xff=None, client_host="1.2.3.4"):
    """Build a minimal mock request."""
    request = MagicMock()
    request.url.path = path
    request.headers = {}
    if xff is not None:
        request.headers["X-Forwarded-For"] = xff
    client = MagicMock()
    client.host = client_host
    request.client = client
    return request


def _make_redis(counts=None, ttl=600):
    """Mock redis client whose GET returns values from *counts* in call order."""
    redis_client = MagicMock()
    redis_client.get = AsyncMock(side_effect=list(counts or [None, None]))
    redis_client.ttl = AsyncMock(return_value=ttl)
    redis_client.incr = AsyncMock(return_value=1)
    redis_client.expire = AsyncMock()
    redis_client.setex = AsyncMock()
    return redis_client


@pytest.fixture
def production_settings():
    with patch("app.services.rate_limit_service.settings") as mock_settings:
        mock_settings.ENVIRONMENT = "production"
        mock_settings.REDIS_URL = "redis://localhost:6379"
        mock_settings.EMAIL_VERIFICATION_MAX_PER_EMAIL = 5
        mock_settings.EMAIL_VERIFICATION_MAX_PER_IP = 20
        mock_settings.EMAIL_VERIFICATION_RATE_WINDOW_SECONDS = 3600
        yield mock_settings


class TestGetClientIp:
    def test_uses_rightmost_forwarded_entry(self):
        request = _make_request(xff="6.6.6.6, 10.0.0.1, 203.0.113.7")
        assert get_client_ip(request) == "203.0.113.7"

    def test_falls_back_to_socket_peer(self):
        assert get_client_ip(_make_request()) == "1.2.3.4"

    def test_unknown_without_client(self):
        request = _make_request()
        request.client = None
        assert get_client_ip(request) == "unknown"


class TestRateLimitKeyGeneration:
    def test_deterministic_key(self, service):
        assert service._get_rate_limit_key("1.2.3.4", "/a") == service._get_rate_limit_key("1.2.3.4", "/a")

    def test_different_scopes_different_keys(self, service):
        k1 = service._get_rate_limit_key("a@b.com", "email_verification:email")
        k2 = service._get_rate_limit_key("a@b.com", "email_verification:ip")
        assert k1 != k2


class TestCheckRateLimit:
    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.settings")
    async def test_skips_in_development(self, mock_settings, service):
        mock_settings.ENVIRONMENT = "development"
        await service.check_rate_limit(_make_request(), max_requests=1)

    @pytest.mark.asyncio
    async def test_raises_429_when_exceeded(self, production_settings, service):
        redis_client = _make_redis(counts=["10"], ttl=42)
        service.redis_client = redis_client

        with pytest.raises(HTTPException) as exc_info:
            await service.check_rate_limit(_make_request(), max_requests=10, window_seconds=60)

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == "42"

    @pytest.mark.asyncio
    async def test_first_request_starts_window(self, production_settings, service):
        redis_client = _make_redis(counts=[None])
        service.redis_client = redis_client

        await service.check_rate_limit(_make_request(), max_requests=10, window_seconds=60)
        redis_client.setex.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_down(self, production_settings, service):
        redis_client = MagicMock()
        redis_client.get = AsyncMock(side_effect=ConnectionError("redis down"))
        service.redis_client = redis_client

        await service.check_rate_limit(_make_request(), max_requests=1)


class TestEmailVerificationRateLimit:
    @pytest.mark.asyncio
    @patch("app.services.rate_limit_service.settings")
    async def test_allowed_in_development(self, mock_settings, service):
        mock_settings.ENVIRONMENT = "development"
        result = await service.check_email_verification_rate_limit("a@b.com", "1.2.3.4")
        assert result.allowed is True

    @pytest.mark.asyncio
    async def test_counts_email_and_ip(self, production_settings, service):
        redis_client = _make_redis(counts=["1", "3"])
        service.redis_client = redis_client

        result = await service.check_email_verification_rate_limit("A@B.com", "1.2.3.4")

        assert result.allowed is True
        assert redis_client.incr.await_count == 2
        # First increment of each window sets its expiry
        assert redis_client.expire.await_count == 2

    @pytest.mark.asyncio
    async def test_email_key_is_case_insensitive(self, production_settings, service):
        redis_client = _make_redis(counts=[None])
        service.redis_client = redis_client

        await service.check_email_verification_rate_limit("A@B.com", None)

        key = redis_client.get.call_args.args[0]
        assert key == service._get_rate_limit_key("a@b.com", "email_verification:email")

    @pytest.mark.asyncio
    async def test_unknown_ip_only_counts_email(self, production_settings, service):
        redis_client = _make_redis(counts=[None])
        service.redis_client = redis_client

        result = await service.check_email_verification_rate_limit("a@b.com", "unknown")

        assert result.allowed is True
        assert redis_client.incr.await_count == 1

    @pytest.mark.asyncio
    async def test_denied_when_email_limit_hit(self, production_settings, service):
        redis_client = _make_redis(counts=["5"], ttl=720)
        service.redis_client = redis_client

        result = await service.check_email_verification_rate_limit("a@b.com", "1.2.3.4")

        assert result.allowed is False
        assert result.retry_after == 720
        assert result.message == "Too many verification attempts. Please try again in 12 minutes."
        redis_client.incr.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_denied_when_ip_limit_hit(self, production_settings, service):
        redis_client = _make_redis(counts=["0", "20"], ttl=30)
        service.redis_client = redis_client

        result = await service.check_email_verification_rate_limit("a@b.com", "1.2.3.4")

        assert result.allowed is False
        assert result.message.endswith("1 minute.")

    @pytest.mark.asyncio
    async def test_fails_open(self, production_settings, service):
        redis_client = MagicMock()
        redis_client.get = AsyncMock(side_effect=ConnectionError("redis down"))
        service.redis_client = redis_client

        result = await service.check_email_verification_rate_limit("a@b.com", "1.2.3.4")
        assert result.allowed is True
