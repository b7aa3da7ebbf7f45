"""Email verification lifecycle.

A verification state pairs a short-lived 6-digit code (emailed to the user)
with a longer-lived random session token (handed to the browser as a cookie)
so that a visitor who is not logged in can still finish verifying. Only
hashes of both values are stored on the user row:

- the code gets a slow salted hash, because 10^6 candidates are trivially
  enumerable against a fast digest;
- the session token gets SHA-256, because it is a 256-bit secret and the
  hash is used as a lookup key.

Issuing a new state overwrites the previous one, so at most one code is
live per user. Verifying successfully stamps ``email_verified`` and clears
every verification column.
"""

import asyncio
import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Union
from uuid import UUID

from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings as _settings
from app.core.security import (
    decode_token,
    hash_token,
    hash_verification_code,
    verify_verification_code,
)
from app.crud.user import user_crud
from app.models.user import User
from app.services.email_service import EmailService, email_service as _email_service
from app.services.error_logging_service import error_logging_service
from app.services.rate_limit_service import (
    RateLimitService,
    rate_limit_service as _rate_limit_service,
)
from app.utils.datetime_utils import seconds_until, utc_now
from app.utils.logging_utils import redact_email

logger = logging.getLogger(__name__)

# ASCII only: \d would also accept other Unicode digits
CODE_PATTERN = re.compile(r"[0-9]{6}")

VERIFICATION_ERROR = "We couldn't verify your email. Please request a new code or register again."


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class EmailVerificationError(Exception):
    """Base class for verification failures that carry a user-facing message."""

    status_code = 400
    message = VERIFICATION_ERROR

    def __init__(self, message: Optional[str] = None):
        if message:
            self.message = message
        super().__init__(self.message)


class VerificationUnavailableError(EmailVerificationError):
    """No user could be resolved from the bearer token or session cookie."""


class InvalidCodeFormatError(EmailVerificationError):
    message = "Enter the 6-digit code from your email."


class NoActiveCodeError(EmailVerificationError):
    message = "No active verification code. Please request a new one."


class CodeExpiredError(EmailVerificationError):
    message = "That code has expired. Request a new one."


class CodeInvalidError(EmailVerificationError):
    message = "Invalid code. Please try again."


class ResendCooldownError(EmailVerificationError):
    status_code = 429

    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        super().__init__(f"Please wait {remaining_seconds}s before requesting a new code.")


class VerificationRateLimitedError(EmailVerificationError):
    status_code = 429
    message = "Too many verification attempts. Please try again later."


class VerificationEmailError(EmailVerificationError):
    """The new code was stored but the email carrying it could not be sent."""

    status_code = 500

    def __init__(self, state: "VerificationState"):
        self.state = state
        super().__init__()


class VerificationStorageError(EmailVerificationError):
    status_code = 500


# ---------------------------------------------------------------------------
# Codes and tokens
# ---------------------------------------------------------------------------


def generate_code() -> str:
    """Uniformly random 6-digit code from a CSPRNG, zero-padded."""
    return f"{secrets.randbelow(1_000_000):06d}"


def generate_session_token() -> str:
    """32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def hash_session_token(token: str) -> str:
    """Return the SHA-256 hex digest of a raw session token."""
    return hash_token(token)


def normalize_code(raw_code: Optional[str]) -> str:
    """
    Strip whitespace from a submitted code and check it is 6 ASCII digits.

    Raises:
        InvalidCodeFormatError: before any hash comparison is attempted
    """
    code = re.sub(r"\s+", "", raw_code or "")
    if not CODE_PATTERN.fullmatch(code):
        raise InvalidCodeFormatError()
    return code


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmailVerificationPolicy:
    """Timing rules for codes, sessions and resends."""

    code_ttl: timedelta = timedelta(minutes=5)
    session_ttl: timedelta = timedelta(minutes=30)
    resend_cooldown: timedelta = timedelta(seconds=60)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailVerificationPolicy":
        return cls(
            code_ttl=timedelta(seconds=settings.EMAIL_VERIFICATION_CODE_TTL_SECONDS),
            session_ttl=timedelta(seconds=settings.EMAIL_VERIFICATION_SESSION_TTL_SECONDS),
            resend_cooldown=timedelta(seconds=settings.EMAIL_VERIFICATION_RESEND_COOLDOWN_SECONDS),
        )

    @property
    def code_ttl_minutes(self) -> int:
        """Code lifetime as shown in the email, at least one minute."""
        return max(1, round(self.code_ttl / timedelta(minutes=1)))


@dataclass(frozen=True)
class VerificationState:
    """
    A freshly issued code/session pair.

    ``code`` and ``session_token`` are the raw secrets: use them once (email the
    code, set the cookie) and drop them. They are excluded from repr so they
    never end up in logs.
    """

    code: str = field(repr=False)
    code_hash: str
    session_token: str = field(repr=False)
    session_hash: str
    expires_at: datetime
    session_expires_at: datetime
    last_sent_at: datetime

    def storage_fields(self) -> dict:
        """Column values written to the user row (hashes and timestamps only)."""
        return {
            "code_hash": self.code_hash,
            "code_expires_at": self.expires_at,
            "session_hash": self.session_hash,
            "session_expires_at": self.session_expires_at,
            "last_sent_at": self.last_sent_at,
        }

    def cookie_max_age(self, now: datetime) -> int:
        return seconds_until(self.session_expires_at, now)


@dataclass(frozen=True)
class AuthenticatedActor:
    """Caller presented a valid access token."""

    user: User


@dataclass(frozen=True)
class SessionActor:
    """Caller presented an unexpired email-verification session cookie."""

    user: User
    session_token: str = field(repr=False)


@dataclass(frozen=True)
class UnresolvedActor:
    """Neither an access token nor a session cookie identified a user."""

    reason: str


VerificationActor = Union[AuthenticatedActor, SessionActor, UnresolvedActor]


@dataclass(frozen=True)
class ResendResult:
    already_verified: bool
    state: Optional[VerificationState] = None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class EmailVerificationService:
    """Issues, checks and re-issues email verification codes."""

    def __init__(
        self,
        policy: Optional[EmailVerificationPolicy] = None,
        email_sender: Optional[EmailService] = None,
        rate_limiter: Optional[RateLimitService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.policy = policy or EmailVerificationPolicy.from_settings(_settings)
        self.email_sender = email_sender or _email_service
        self.rate_limiter = rate_limiter or _rate_limit_service
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    async def issue_state(
        self,
        existing_session_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VerificationState:
        """
        Build a new verification state. Pure computation, nothing is stored.

        Args:
            existing_session_token: Keep this session token so the browser's
                cookie stays valid across resends
            now: Issuance time (defaults to the service clock)
        """
        now = now or self.now()
        code = generate_code()
        # Slow hash; keep it off the event loop
        code_hash = await asyncio.to_thread(hash_verification_code, code)
        session_token = existing_session_token or generate_session_token()

        return VerificationState(
            code=code,
            code_hash=code_hash,
            session_token=session_token,
            session_hash=hash_session_token(session_token),
            expires_at=now + self.policy.code_ttl,
            session_expires_at=now + self.policy.session_ttl,
            last_sent_at=now,
        )

    async def persist_state(self, db: AsyncSession, user_id: UUID, state: VerificationState) -> None:
        """
        Write *state* onto the user row, replacing any previous code and session.

        Raises:
            VerificationStorageError: if the user does not exist
        """
        updated = await user_crud.update_verification_state(db, user_id, **state.storage_fields())
        if not updated:
            raise VerificationStorageError()

    async def send_code(self, user: User, state: VerificationState, client_ip: Optional[str] = None) -> bool:
        """Email the code from *state* to *user*. Returns False on dispatch failure."""
        sent = await self.email_sender.send_verification_code_email(
            to_email=user.email,
            display_name=user.display_name,
            code=state.code,
            expires_in_minutes=self.policy.code_ttl_minutes,
        )
        if sent:
            self._log_event("email_verification_sent", "Verification code sent", user, client_ip)
        else:
            self._log_event(
                "email_verification_failure", "Failed to send verification code", user, client_ip
            )
        return sent

    async def resolve_actor(
        self,
        db: AsyncSession,
        access_token: Optional[str],
        session_token: Optional[str],
        now: Optional[datetime] = None,
    ) -> VerificationActor:
        """
        Work out who is verifying: a logged-in user first, then the cookie binding.

        A session is accepted only while ``now < email_verification_session_expires_at``.
        """
        if access_token:
            user = await self._user_from_access_token(db, access_token)
            if user is not None:
                return AuthenticatedActor(user=user)

        if not session_token:
            return UnresolvedActor(reason="no_session")

        user = await user_crud.get_by_verification_session_hash(db, hash_session_token(session_token))
        if user is None:
            return UnresolvedActor(reason="unknown_session")

        now = now or self.now()
        expires_at = user.email_verification_session_expires_at
        if expires_at is None or now >= expires_at:
            return UnresolvedActor(reason="session_expired")

        return SessionActor(user=user, session_token=session_token)

    @staticmethod
    def require_user(actor: VerificationActor) -> User:
        """
        Raises:
            VerificationUnavailableError: for an unresolved actor (generic message,
                so callers can't probe which emails are registered)
        """
        if isinstance(actor, UnresolvedActor):
            logger.debug("Email verification unavailable: %s", actor.reason)
            raise VerificationUnavailableError()
        return actor.user

    async def verify_code(
        self,
        db: AsyncSession,
        user: User,
        raw_code: str,
        now: Optional[datetime] = None,
    ) -> datetime:
        """
        Check a submitted code and, on a match, mark the email verified.

        An expired code is cleared from the row (the session binding is kept so
        a new code can be requested). A wrong code changes nothing; throttling
        repeated guesses is the caller's job.

        Returns:
            The verification timestamp

        Raises:
            InvalidCodeFormatError, NoActiveCodeError, CodeExpiredError, CodeInvalidError
        """
        code = normalize_code(raw_code)
        now = now or self.now()

        code_hash = user.email_verification_code_hash
        expires_at = user.email_verification_code_expires_at
        if not code_hash or expires_at is None:
            raise NoActiveCodeError()

        if now >= expires_at:
            await user_crud.clear_verification_code(db, user.id, code_hash)
            self._log_event("email_verification_failure", "Verification code expired", user)
            raise CodeExpiredError()

        matches = await asyncio.to_thread(verify_verification_code, code, code_hash)
        if not matches:
            self._log_event("email_verification_failure", "Invalid verification code", user)
            raise CodeInvalidError()

        await user_crud.mark_email_verified(db, user.id, now)
        self._log_event("email_verification_success", "Email address verified", user)
        return now

    def cooldown_remaining(self, user: User, now: datetime) -> int:
        """Whole seconds left before another code may be sent (0 when allowed)."""
        last_sent_at = user.email_verification_last_sent_at
        if last_sent_at is None:
            return 0
        return seconds_until(last_sent_at + self.policy.resend_cooldown, now)

    async def resend(
        self,
        db: AsyncSession,
        actor: VerificationActor,
        client_ip: Optional[str] = None,
        session_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ResendResult:
        """
        Issue, store and email a fresh code.

        Guards run in order: unresolved actor, already verified, cooldown,
        rate limiter. When the email fails the new state stays stored and
        VerificationEmailError carries it back so the cookie can still be set.

        Args:
            session_token: Cookie value sent with the request, reused for a
                logged-in user only when it is bound to that same user
        """
        user = self.require_user(actor)
        if user.is_email_verified:
            return ResendResult(already_verified=True)

        now = now or self.now()
        remaining = self.cooldown_remaining(user, now)
        if remaining > 0:
            raise ResendCooldownError(remaining)

        rate_limit = await self.rate_limiter.check_email_verification_rate_limit(user.email, client_ip)
        if not rate_limit.allowed:
            raise VerificationRateLimitedError(rate_limit.message)

        state = await self.issue_state(self._reusable_session_token(actor, session_token), now)
        await self.persist_state(db, user.id, state)

        if not await self.send_code(user, state, client_ip):
            raise VerificationEmailError(state)

        return ResendResult(already_verified=False, state=state)

    @staticmethod
    def _reusable_session_token(actor: VerificationActor, session_token: Optional[str]) -> Optional[str]:
        if isinstance(actor, SessionActor):
            return actor.session_token
        if session_token and hash_session_token(session_token) == actor.user.email_verification_session_hash:
            return session_token
        return None

    @staticmethod
    async def _user_from_access_token(db: AsyncSession, access_token: str) -> Optional[User]:
        try:
            payload = decode_token(access_token)
        except JWTError:
            return None

        if payload.get("type") != "access":
            return None

        try:
            user_id = UUID(str(payload.get("sub")))
        except ValueError:
            return None

        user = await user_crud.get_by_id(db, user_id)
        if user is None or not user.is_active:
            return None
        return user

    @staticmethod
    def _log_event(event_type: str, message: str, user: User, client_ip: Optional[str] = None) -> None:
        error_logging_service.log_security_event(
            logger,
            event_type=event_type,
            message=message,
            user_id=str(user.id),
            ip_address=client_ip,
            additional_data={"email": redact_email(user.email)},
        )


email_verification_service = EmailVerificationService()


def get_email_verification_service() -> EmailVerificationService:
    """FastAPI dependency returning the shared service (override in tests)."""
    return email_verification_service
