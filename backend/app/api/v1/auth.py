"""Authentication API endpoints."""

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_db
from app.core.security import create_access_token, hash_password, verify_password
from app.crud.user import user_crud
from app.models.user import User
from app.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenResponse,
)
from app.schemas.user import User as UserSchema
from app.services.email_verification_service import (
    EmailVerificationService,
    VerificationState,
    get_email_verification_service,
)
from app.services.error_logging_service import error_logging_service
from app.services.password_reset_service import (
    InvalidResetTokenError,
    PasswordResetService,
    get_password_reset_service,
)
from app.services.password_validation_service import password_validation_service
from app.services.rate_limit_service import get_client_ip, get_rate_limit_service
from app.utils.logging_utils import redact_email

router = APIRouter()
logger = logging.getLogger(__name__)

# Generate dummy password hash for timing attack prevention
# This is generated once at module load time to prevent timing attacks
# when checking non-existent users
DUMMY_PASSWORD_HASH = hash_password(secrets.token_urlsafe(32))
rate_limit_service = get_rate_limit_service()

REGISTRATION_MESSAGE = "Registration successful. Please check your email for a verification code."
PASSWORD_RESET_MESSAGE = "If that email is registered, a password reset link has been sent."


def set_verification_cookie(response: Response, state: VerificationState, now=None) -> None:
    """Bind the browser to a verification session with an httpOnly cookie."""
    response.set_cookie(
        key=settings.EMAIL_VERIFICATION_COOKIE_NAME,
        value=state.session_token,
        httponly=True,
        secure=settings.cookie_secure,   # False in dev (http), True in prod (https)
        samesite="lax",
        max_age=state.cookie_max_age(now or state.last_sent_at),
        path="/",
    )


def clear_verification_cookie(response: Response) -> None:
    """Clear the verification session cookie (after a successful verification)."""
    response.delete_cookie(
        key=settings.EMAIL_VERIFICATION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: Request,
    response: Response,
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    verification: EmailVerificationService = Depends(get_email_verification_service),
):
    """
    Register a new user and send an email verification code.

    The response is the same whether or not the email is already registered,
    except that only a new account gets the verification session cookie.
    """
    # Rate limit: 10 registration attempts per 10 minutes per IP
    await rate_limit_service.check_rate_limit(
        request=request,
        max_requests=10,
        window_seconds=600,
    )

    # Password strength is independent of whether the email exists
    password_validation_service.validate_and_raise(data.password, email=data.email)

    client_ip = get_client_ip(request)
    generic_response = RegisterResponse(
        message=REGISTRATION_MESSAGE,
        redirect_to=settings.EMAIL_VERIFICATION_PAGE_PATH,
    )

    # Existing email: same response and same hashing work as a new account
    existing_user = await user_crud.get_by_email(db, data.email)
    if existing_user:
        await verification.issue_state()
        hash_password(data.password)
        error_logging_service.log_security_event(
            logger,
            event_type="registration_failure",
            message="Registration attempted for an existing email",
            user_id=str(existing_user.id),
            ip_address=client_ip,
        )
        return generic_response

    state = await verification.issue_state()

    try:
        user = await user_crud.create(
            db=db,
            email=data.email,
            password=data.password,
            name=data.name,
            **state.storage_fields(),
        )
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        await db.rollback()
        logger.warning("Duplicate registration race for %s", redact_email(data.email))
        return generic_response

    error_logging_service.log_security_event(
        logger,
        event_type="registration_success",
        message="User registered",
        user_id=str(user.id),
        ip_address=client_ip,
    )

    # A failed send doesn't fail registration; the user can resend from the verify page
    await verification.send_code(user, state, client_ip)

    set_verification_cookie(response, state)
    return generic_response


@router.post("/login", response_model=TokenResponse)
async def login(
    request: Request,
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Login with email and password.

    Returns an access token together with the email verification status so the
    client can route unverified users to the verification page.
    """
    # Rate limit: 10 login attempts per minute per IP
    await rate_limit_service.check_rate_limit(
        request=request,
        max_requests=10,
        window_seconds=60,
    )

    logger.info(f"Login attempt for email: {redact_email(data.email)}")

    user = await user_crud.get_by_email(db, data.email)
    if not user:
        # Dummy verification keeps response time constant for unknown emails
        verify_password(data.password, DUMMY_PASSWORD_HASH)
        logger.warning(f"Login failed: User not found - {redact_email(data.email)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )

    if not verify_password(data.password, user.password_hash):
        logger.warning(f"Login failed: Incorrect password for {redact_email(data.email)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )

    if not user.is_active:
        logger.warning(f"Login failed: Inactive account - {redact_email(data.email)}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return _token_response(user)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    request: Request,
    data: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
    password_reset: PasswordResetService = Depends(get_password_reset_service),
):
    """
    Request a password reset email.

    Always returns 200 with the same message regardless of whether the email
    is registered, to prevent user enumeration. Rate limited to 5 requests per
    hour per IP, plus a per-account cap on issued links.
    """
    await rate_limit_service.check_rate_limit(request=request, max_requests=5, window_seconds=3600)

    await password_reset.request_reset(db, data.email, client_ip=get_client_ip(request))
    return MessageResponse(message=PASSWORD_RESET_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    request: Request,
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    password_reset: PasswordResetService = Depends(get_password_reset_service),
):
    """
    Reset a user's password using the token from the forgot-password email.

    The token is single-use; the new password must pass the same strength
    checks as registration. Rate limited to 10 requests per 15 minutes per IP.
    """
    await rate_limit_service.check_rate_limit(request=request, max_requests=10, window_seconds=900)

    try:
        await password_reset.reset_password(db, data.token, data.new_password)
    except InvalidResetTokenError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)

    return MessageResponse(
        message="Password reset successfully. You can now log in with your new password."
    )


def _token_response(user: User) -> TokenResponse:
    access_token = create_access_token(data={"sub": str(user.id)})
    return TokenResponse(
        access_token=access_token,
        email_verified=user.is_email_verified,
        user=UserSchema.model_validate(user),
    )
