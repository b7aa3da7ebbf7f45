"""Rate limiting service using Redis."""

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from fastapi import HTTPException, Request, status

from app.config import settings
from app.utils.logging_utils import redact_email, redact_ip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a non-raising rate limit check."""

    allowed: bool
    message: Optional[str] = None
    retry_after: Optional[int] = None


def get_client_ip(request: Request) -> str:
    """
    Best-effort client IP for rate limiting and security logs.

    Uses the rightmost X-Forwarded-For entry (set by the last trusted proxy);
    leftmost entries are client-supplied and can be spoofed.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ips = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
        if ips:
            return ips[-1]
    return request.client.host if request.client else "unknown"


class RateLimitService:
    """Service for rate limiting API endpoints using Redis."""

    def __init__(self):
        """Initialize Redis connection."""
        self.redis_client: Optional[redis.Redis] = None

    async def get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                settings.REDIS_URL, encoding="utf-8", decode_responses=True
            )
        return self.redis_client

    def _get_rate_limit_key(self, identifier: str, endpoint: str) -> str:
        """
        Generate rate limit key for Redis.

        Args:
            identifier: IP address or user identifier
            endpoint: API endpoint (or logical action) being accessed

        Returns:
            Redis key for rate limiting
        """
        # Hash to normalize key length — not used for security
        hash_key = hashlib.md5(f"{identifier}:{endpoint}".encode(), usedforsecurity=False).hexdigest()  # nosec B324
        return f"rate_limit:{hash_key}"

    async def check_rate_limit(
        self,
        request: Request,
        max_requests: int = 5,
        window_seconds: int = 60,
        identifier: Optional[str] = None,
    ) -> None:
        """
        Check if request exceeds rate limit.

        Args:
            request: FastAPI request object
            max_requests: Maximum requests allowed in window
            window_seconds: Time window in seconds
            identifier: Custom identifier (defaults to IP address)

        Raises:
            HTTPException: 429 Too Many Requests if limit exceeded
        """
        if identifier is None:
            identifier = get_client_ip(request)

        # Skip rate limiting when no real client IP is available (e.g., test environment)
        if identifier == "unknown":
            return

        # Redis may not be running locally in development
        if settings.ENVIRONMENT == "development":
            return

        redis_client = await self.get_redis()
        key = self._get_rate_limit_key(identifier, request.url.path)

        try:
            current = await redis_client.get(key)

            if current is None:
                # First request in window
                await redis_client.setex(key, window_seconds, 1)
            else:
                if int(current) >= max_requests:
                    ttl = await redis_client.ttl(key)
                    raise HTTPException(
                        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                        detail={
                            "error": "Rate limit exceeded",
                            "message": f"Too many requests. Please try again in {ttl} seconds.",
                            "retry_after": ttl,
                        },
                        headers={"Retry-After": str(ttl)},
                    )

                await redis_client.incr(key)

        except HTTPException:
            raise
        except Exception as e:
            # Fail-open: if Redis is unavailable, allow the request through
            # rather than blocking all users.
            logger.warning("Rate limit check failed (fail-open): %s", e)

    async def check_email_verification_rate_limit(
        self, email: str, client_ip: Optional[str]
    ) -> RateLimitResult:
        """
        Limit verification-code sends per email address and per client IP.

        Both counters must be under their limit for the request to pass; a
        passing request increments both. Never raises.

        Args:
            email: Address the code would be sent to
            client_ip: Requesting client IP ("unknown" / None skips the IP counter)

        Returns:
            RateLimitResult with a user-facing message when denied
        """
        if settings.ENVIRONMENT == "development":
            return RateLimitResult(allowed=True)

        window = settings.EMAIL_VERIFICATION_RATE_WINDOW_SECONDS
        counters = [
            (self._get_rate_limit_key(email.lower(), "email_verification:email"),
             settings.EMAIL_VERIFICATION_MAX_PER_EMAIL),
        ]
        if client_ip and client_ip != "unknown":
            counters.append(
                (self._get_rate_limit_key(client_ip, "email_verification:ip"),
                 settings.EMAIL_VERIFICATION_MAX_PER_IP)
            )

        try:
            redis_client = await self.get_redis()

            for key, limit in counters:
                current = await redis_client.get(key)
                if current is not None and int(current) >= limit:
                    ttl = await redis_client.ttl(key)
                    retry_after = ttl if ttl and ttl > 0 else window
                    minutes = max(1, -(-retry_after // 60))
                    logger.warning(
                        "Email verification rate limit hit for %s from %s",
                        redact_email(email), redact_ip(client_ip),
                    )
                    return RateLimitResult(
                        allowed=False,
                        message=(
                            "Too many verification attempts. "
                            f"Please try again in {minutes} minute{'s' if minutes != 1 else ''}."
                        ),
                        retry_after=retry_after,
                    )

            for key, _ in counters:
                count = await redis_client.incr(key)
                if count == 1:
                    await redis_client.expire(key, window)

        except Exception as e:
            logger.warning("Email verification rate limit check failed (fail-open): %s", e)

        return RateLimitResult(allowed=True)


# Singleton instance
_rate_limit_service = None


def get_rate_limit_service() -> RateLimitService:
    """Get or create rate limit service singleton."""
    global _rate_limit_service
    if _rate_limit_service is None:
        _rate_limit_service = RateLimitService()
    return _rate_limit_service


# Create singleton instance for direct import
rate_limit_service = get_rate_limit_service()
