"""User model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base
from app.utils.datetime_utils import utc_now_lambda


class User(Base):
    """User model, including the pending email-verification state."""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255))

    is_active = Column(Boolean, default=True, nullable=False)
    email_verified = Column(DateTime, nullable=True)  # NULL until the address is verified

    # Email verification — only hashes are stored, never the raw code or token.
    # All five columns are cleared together once the address is verified.
    email_verification_code_hash = Column(String(255), nullable=True)
    email_verification_code_expires_at = Column(DateTime, nullable=True)
    # SHA-256 hex digest of the session cookie value
    email_verification_session_hash = Column(String(64), nullable=True, unique=True, index=True)
    email_verification_session_expires_at = Column(DateTime, nullable=True)
    email_verification_last_sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utc_now_lambda, nullable=False)
    updated_at = Column(DateTime, default=utc_now_lambda, onupdate=utc_now_lambda, nullable=False)

    def __repr__(self):
        return f"<User {self.email}>"

    @property
    def is_email_verified(self) -> bool:
        """Check if the email address has been verified."""
        return self.email_verified is not None

    @property
    def display_name(self) -> str:
        """Name used in emails: the stored name, else the email's local part."""
        return self.name or self.email.split("@")[0]


class PasswordResetToken(Base):
    """Token used to reset a user's password via email link."""

    __tablename__ = "password_reset_tokens"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # SHA-256 hex digest of the raw token — never store the raw token
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now_lambda, nullable=False)

    def __repr__(self):
        return f"<PasswordResetToken user={self.user_id}>"

    def is_valid_at(self, now: datetime) -> bool:
        """Token is valid if it has not been used and has not expired."""
        return self.used_at is None and now < self.expires_at
