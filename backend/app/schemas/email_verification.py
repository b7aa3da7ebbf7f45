"""Email verification Pydantic schemas."""

from typing import Optional

from pydantic import BaseModel, field_validator

from app.services.email_verification_service import InvalidCodeFormatError, normalize_code


class VerifyCodeRequest(BaseModel):
    """Body for submitting a verification code. Whitespace inside the code is ignored."""

    code: str

    @field_validator("code", mode="before")
    @classmethod
    def normalize(cls, value) -> str:
        if not isinstance(value, str):
            raise ValueError(InvalidCodeFormatError.message)
        try:
            return normalize_code(value)
        except InvalidCodeFormatError as exc:
            raise ValueError(exc.message) from exc


class VerificationStatusResponse(BaseModel):
    """State of the verification page for the current visitor."""

    verified: bool = False
    redirect_to: Optional[str] = None
    can_verify: bool = False
    email: Optional[str] = None


class VerifyCodeResponse(BaseModel):
    verified: bool = True
    redirect_to: str


class ResendCodeResponse(BaseModel):
    message: str
    redirect_to: Optional[str] = None
