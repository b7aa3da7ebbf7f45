"""Email verification API endpoints (6-digit code flow)."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.auth import clear_verification_cookie, set_verification_cookie
from app.config import settings
from app.core.database import get_db
from app.dependencies import (
    get_verification_actor,
    get_verification_session_token,
    optional_security,
)
from app.schemas.email_verification import (
    ResendCodeResponse,
    VerificationStatusResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from app.services.email_verification_service import (
    EmailVerificationError,
    EmailVerificationService,
    ResendCooldownError,
    UnresolvedActor,
    VerificationActor,
    VerificationEmailError,
    get_email_verification_service,
)
from app.services.rate_limit_service import get_client_ip, get_rate_limit_service
from app.utils.logging_utils import mask_email

router = APIRouter()
logger = logging.getLogger(__name__)
rate_limit_service = get_rate_limit_service()


def _http_error(exc: EmailVerificationError) -> HTTPException:
    headers = None
    if isinstance(exc, ResendCooldownError):
        headers = {"Retry-After": str(exc.remaining_seconds)}
    return HTTPException(status_code=exc.status_code, detail=exc.message, headers=headers)


@router.get("/verify-email", response_model=VerificationStatusResponse)
async def get_verification_status(
    actor: VerificationActor = Depends(get_verification_actor),
):
    """
    Describe the verification page for the current visitor.

    Verified users are sent on to the success page; otherwise the masked email
    is returned when the visitor is bound to an account.
    """
    if isinstance(actor, UnresolvedActor):
        return VerificationStatusResponse(can_verify=False)

    if actor.user.is_email_verified:
        return VerificationStatusResponse(
            verified=True,
            redirect_to=settings.EMAIL_VERIFICATION_SUCCESS_PATH,
        )

    return VerificationStatusResponse(can_verify=True, email=mask_email(actor.user.email))


@router.post("/verify-email", response_model=VerifyCodeResponse)
async def verify_email(
    request: Request,
    response: Response,
    data: VerifyCodeRequest,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    session_token: Optional[str] = Depends(get_verification_session_token),
    db: AsyncSession = Depends(get_db),
    verification: EmailVerificationService = Depends(get_email_verification_service),
):
    """
    Verify the current user's email with a 6-digit code.

    The code format is validated with the request body, before the caller is
    looked up. Rate limited to 10 attempts per minute per IP to slow down
    guessing.
    """
    await rate_limit_service.check_rate_limit(request=request, max_requests=10, window_seconds=60)

    access_token = credentials.credentials if credentials else None
    actor = await verification.resolve_actor(db, access_token, session_token)

    try:
        user = verification.require_user(actor)
        if not user.is_email_verified:
            await verification.verify_code(db, user, data.code)
    except EmailVerificationError as exc:
        raise _http_error(exc)

    clear_verification_cookie(response)
    return VerifyCodeResponse(redirect_to=settings.EMAIL_VERIFICATION_SUCCESS_PATH)


@router.post("/verify-email/resend", response_model=ResendCodeResponse)
async def resend_verification_code(
    request: Request,
    response: Response,
    actor: VerificationActor = Depends(get_verification_actor),
    session_token: Optional[str] = Depends(get_verification_session_token),
    db: AsyncSession = Depends(get_db),
    verification: EmailVerificationService = Depends(get_email_verification_service),
):
    """
    Send a fresh verification code, replacing the previous one.

    Limited by a per-user cooldown and by per-email / per-IP counters.
    """
    try:
        result = await verification.resend(
            db,
            actor,
            client_ip=get_client_ip(request),
            session_token=session_token,
        )
    except VerificationEmailError as exc:
        # The new code is already stored; keep the browser bound to it
        error_response = JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": exc.message},
        )
        set_verification_cookie(error_response, exc.state)
        return error_response
    except EmailVerificationError as exc:
        raise _http_error(exc)

    if result.already_verified:
        return ResendCodeResponse(
            message="Your email is already verified.",
            redirect_to=settings.EMAIL_VERIFICATION_SUCCESS_PATH,
        )

    set_verification_cookie(response, result.state)
    return ResendCodeResponse(message="A new verification code has been sent to your email.")
