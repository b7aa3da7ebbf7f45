"""Celery tasks for authentication maintenance."""

import asyncio
from datetime import datetime
from typing import Optional

from app.core.database import AsyncSessionLocal
from app.core.logging_config import get_logger
from app.crud.user import user_crud
from app.services.password_reset_service import PasswordResetService
from app.utils.datetime_utils import utc_now
from app.workers.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="cleanup_expired_email_verification")
def cleanup_expired_email_verification_task():
    """
    Clear expired email verification codes and sessions for unverified users,
    and delete used or expired password reset tokens.
    Runs every 15 minutes. Safe to run concurrently with verify/resend.
    """
    return asyncio.run(cleanup_expired_email_verification())


async def cleanup_expired_email_verification(
    now: Optional[datetime] = None,
    session_factory=AsyncSessionLocal,
) -> dict:
    """Async implementation of the verification cleanup."""
    now = now or utc_now()
    async with session_factory() as db:
        try:
            codes_cleared, sessions_cleared = await user_crud.purge_expired_verification_state(
                db, now
            )
            reset_tokens_deleted = await PasswordResetService.purge_expired(db, now)
        except Exception:
            logger.error("verification_cleanup_failed", exc_info=True)
            raise

    logger.info(
        "verification_cleanup",
        codes_cleared=codes_cleared,
        sessions_cleared=sessions_cleared,
        reset_tokens_deleted=reset_tokens_deleted,
    )
    return {
        "codes_cleared": codes_cleared,
        "sessions_cleared": sessions_cleared,
        "reset_tokens_deleted": reset_tokens_deleted,
    }
