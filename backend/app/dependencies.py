"""FastAPI dependencies for email verification."""

from typing import Optional

from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_db
from app.services.email_verification_service import (
    EmailVerificationService,
    VerificationActor,
    get_email_verification_service,
)

# Bearer token is optional on the verification endpoints: the session cookie
# identifies visitors who are not logged in.
optional_security = HTTPBearer(auto_error=False)


async def get_verification_session_token(
    email_verification_session: Optional[str] = Cookie(
        None, alias=settings.EMAIL_VERIFICATION_COOKIE_NAME
    ),
) -> Optional[str]:
    """Raw email-verification session token from the cookie, if any."""
    return email_verification_session or None


async def get_verification_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    session_token: Optional[str] = Depends(get_verification_session_token),
    db: AsyncSession = Depends(get_db),
    service: EmailVerificationService = Depends(get_email_verification_service),
) -> VerificationActor:
    """
    Resolve who is verifying: a logged-in user, else the session cookie holder.

    Never raises; an unknown or expired binding yields an UnresolvedActor and
    the endpoint decides how to answer.

    Args:
        credentials: Optional HTTP Bearer credentials
        session_token: Raw session token from the verification cookie
        db: Database session
        service: Email verification service

    Returns:
        AuthenticatedActor, SessionActor or UnresolvedActor
    """
    access_token = credentials.credentials if credentials else None
    return await service.resolve_actor(db, access_token, session_token)
