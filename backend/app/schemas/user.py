"""User Pydantic schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, field_validator


class UserBase(BaseModel):
    """Base user schema."""

    email: EmailStr
    name: Optional[str] = None


class User(UserBase):
    """User schema for API responses."""

    id: UUID
    is_active: bool
    email_verified: bool
    created_at: datetime

    @field_validator("email_verified", mode="before")
    @classmethod
    def verified_timestamp_to_flag(cls, value):
        """The model stores a verification timestamp; the API exposes a flag."""
        if isinstance(value, bool):
            return value
        return value is not None

    class Config:
        from_attributes = True
