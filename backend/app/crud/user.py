"""CRUD operations for users."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import hash_password
from app.models.user import User


class UserCRUD:
    """CRUD operations for User model."""

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> Optional[User]:
        """Get user by email."""
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: UUID) -> Optional[User]:
        """Get user by ID."""
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_verification_session_hash(
        db: AsyncSession, session_hash: str
    ) -> Optional[User]:
        """Get the user bound to an email-verification session hash."""
        result = await db.execute(
            select(User).where(User.email_verification_session_hash == session_hash)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        email: str,
        password: str,
        name: Optional[str] = None,
        code_hash: Optional[str] = None,
        code_expires_at: Optional[datetime] = None,
        session_hash: Optional[str] = None,
        session_expires_at: Optional[datetime] = None,
        last_sent_at: Optional[datetime] = None,
    ) -> User:
        """Create a new user, optionally carrying a fresh verification state."""
        user = User(
            email=email,
            password_hash=hash_password(password),
            name=name,
            email_verification_code_hash=code_hash,
            email_verification_code_expires_at=code_expires_at,
            email_verification_session_hash=session_hash,
            email_verification_session_expires_at=session_expires_at,
            email_verification_last_sent_at=last_sent_at,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    @staticmethod
    async def update_verification_state(
        db: AsyncSession,
        user_id: UUID,
        code_hash: str,
        code_expires_at: datetime,
        session_hash: str,
        session_expires_at: datetime,
        last_sent_at: datetime,
    ) -> bool:
        """
        Overwrite the user's verification columns in a single UPDATE.

        Overwriting is what invalidates any previously issued code/session pair.

        Returns:
            False when no user row matched *user_id*
        """
        result = await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                email_verification_code_hash=code_hash,
                email_verification_code_expires_at=code_expires_at,
                email_verification_session_hash=session_hash,
                email_verification_session_expires_at=session_expires_at,
                email_verification_last_sent_at=last_sent_at,
            )
        )
        await db.commit()
        return result.rowcount > 0

    @staticmethod
    async def clear_verification_code(db: AsyncSession, user_id: UUID, code_hash: str) -> None:
        """
        Null an expired code, leaving the session binding intact.

        Only clears when *code_hash* is still the current code, so a code issued
        by a concurrent resend is never wiped.
        """
        await db.execute(
            update(User)
            .where(
                User.id == user_id,
                User.email_verification_code_hash == code_hash,
            )
            .values(
                email_verification_code_hash=None,
                email_verification_code_expires_at=None,
            )
        )
        await db.commit()

    @staticmethod
    async def mark_email_verified(db: AsyncSession, user_id: UUID, verified_at: datetime) -> None:
        """Set email_verified and clear every verification column."""
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                email_verified=verified_at,
                email_verification_code_hash=None,
                email_verification_code_expires_at=None,
                email_verification_session_hash=None,
                email_verification_session_expires_at=None,
                email_verification_last_sent_at=None,
            )
        )
        await db.commit()

    @staticmethod
    async def update_password(db: AsyncSession, user_id: UUID, password_hash: str) -> None:
        """Replace the stored password hash. The caller commits."""
        await db.execute(
            update(User).where(User.id == user_id).values(password_hash=password_hash)
        )

    @staticmethod
    async def purge_expired_verification_state(
        db: AsyncSession, now: datetime
    ) -> tuple[int, int]:
        """
        Clear expired codes and expired session bindings in bulk.

        Returns:
            Tuple of (codes_cleared, sessions_cleared)
        """
        codes = await db.execute(
            update(User)
            .where(
                User.email_verified.is_(None),
                User.email_verification_code_expires_at <= now,
            )
            .values(
                email_verification_code_hash=None,
                email_verification_code_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        sessions = await db.execute(
            update(User)
            .where(
                User.email_verified.is_(None),
                User.email_verification_session_expires_at <= now,
            )
            .values(
                email_verification_session_hash=None,
                email_verification_session_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return codes.rowcount, sessions.rowcount


user_crud = UserCRUD()
