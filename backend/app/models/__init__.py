"""SQLAlchemy models package."""

from app.models.user import PasswordResetToken, User

__all__ = [
    "PasswordResetToken",
    "User",
]
