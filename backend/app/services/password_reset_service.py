"""Password reset by emailed single-use link.

Requesting a reset answers identically whether or not the email belongs to an
account; only the SHA-256 digest of each reset token is stored. Issuing a new
link retires every earlier unused link for the same account.
"""

import asyncio
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings as _settings
from app.core.security import hash_password, hash_token
from app.crud.user import user_crud
from app.models.user import PasswordResetToken, User
from app.services.email_service import EmailService, email_service as _email_service
from app.services.error_logging_service import error_logging_service
from app.services.password_validation_service import password_validation_service
from app.utils.datetime_utils import utc_now
from app.utils.logging_utils import redact_email

logger = logging.getLogger(__name__)


class InvalidResetTokenError(Exception):
    """The reset link is unknown, already used or expired."""

    message = "Invalid or expired password reset link"

    def __init__(self):
        super().__init__(self.message)


class PasswordResetService:
    """Issues password reset links and completes resets."""

    def __init__(
        self,
        email_sender: Optional[EmailService] = None,
        token_ttl: Optional[timedelta] = None,
        max_per_hour: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.email_sender = email_sender or _email_service
        self.token_ttl = token_ttl or timedelta(seconds=_settings.PASSWORD_RESET_TOKEN_TTL_SECONDS)
        self.max_per_hour = max_per_hour or _settings.PASSWORD_RESET_MAX_PER_HOUR
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    async def request_reset(
        self, db: AsyncSession, email: str, client_ip: Optional[str] = None
    ) -> Optional[str]:
        """
        Create a reset token for *email* and send the link.

        Unknown or inactive emails, and accounts over the hourly cap, are
        skipped silently so the caller can answer the same way every time.

        Returns:
            The raw token when a link was issued, else None
        """
        user = await user_crud.get_by_email(db, email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown email %s", redact_email(email))
            return None

        now = self.now()
        recent = await db.scalar(
            select(func.count(PasswordResetToken.id)).where(
                PasswordResetToken.user_id == user.id,
                PasswordResetToken.created_at > now - timedelta(hours=1),
            )
        )
        if recent >= self.max_per_hour:
            self._log_event("password_reset_rate_limited", "Too many password reset requests", user, client_ip)
            return None

        raw_token = await self._create_token(db, user.id, now)

        sent = await self.email_sender.send_password_reset_email(
            to_email=user.email,
            display_name=user.display_name,
            token=raw_token,
            expires_in_minutes=max(1, round(self.token_ttl / timedelta(minutes=1))),
        )
        if sent:
            self._log_event("password_reset_requested", "Password reset link sent", user, client_ip)
        else:
            self._log_event(
                "password_reset_email_failure", "Failed to send password reset link", user, client_ip
            )
        return raw_token

    async def reset_password(self, db: AsyncSession, raw_token: str, new_password: str) -> User:
        """
        Set a new password using a reset token and retire the token.

        Raises:
            InvalidResetTokenError: unknown, used or expired token
            HTTPException: 400 when the new password is too weak (token stays usable)
        """
        now = self.now()
        record = await db.scalar(
            select(PasswordResetToken).where(PasswordResetToken.token_hash == hash_token(raw_token))
        )
        if record is None or not record.is_valid_at(now):
            raise InvalidResetTokenError()

        user = await user_crud.get_by_id(db, record.user_id)
        if user is None or not user.is_active:
            raise InvalidResetTokenError()

        password_validation_service.validate_and_raise(new_password, email=user.email)

        password_hash = await asyncio.to_thread(hash_password, new_password)
        await user_crud.update_password(db, user.id, password_hash)
        # Retires this token together with any other outstanding link
        await db.execute(
            update(PasswordResetToken)
            .where(
                PasswordResetToken.user_id == user.id,
                PasswordResetToken.used_at.is_(None),
            )
            .values(used_at=now)
        )
        await db.commit()
        await db.refresh(user)

        self._log_event("password_reset_completed", "Password reset completed", user)
        return user

    @staticmethod
    async def purge_expired(db: AsyncSession, now: datetime) -> int:
        """Delete used and expired reset tokens. Returns the number removed."""
        result = await db.execute(
            delete(PasswordResetToken).where(
                or_(
                    PasswordResetToken.used_at.is_not(None),
                    PasswordResetToken.expires_at <= now,
                )
            )
        )
        await db.commit()
        return result.rowcount

    async def _create_token(self, db: AsyncSession, user_id, now: datetime) -> str:
        # Invalidate any existing unused tokens for this user
        await db.execute(
            update(PasswordResetToken)
            .where(
                PasswordResetToken.user_id == user_id,
                PasswordResetToken.used_at.is_(None),
            )
            .values(used_at=now)
        )

        raw_token = secrets.token_urlsafe(32)
        db.add(
            PasswordResetToken(
                user_id=user_id,
                token_hash=hash_token(raw_token),
                expires_at=now + self.token_ttl,
                created_at=now,
            )
        )
        await db.commit()
        return raw_token

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


password_reset_service = PasswordResetService()


def get_password_reset_service() -> PasswordResetService:
    """FastAPI dependency returning the shared service (override in tests)."""
    return password_reset_service
