"""Password strength checking for registration and password reset."""

import logging
import re
from typing import List, Optional, Tuple

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class PasswordValidationService:
    """Service for validating password strength."""

    MIN_LENGTH = 8
    MIN_CHARACTER_CLASSES = 3

    # Common passwords to block
    COMMON_PASSWORDS = {
        "password",
        "password1",
        "password123",
        "password1234",
        "passw0rd",
        "12345678",
        "123456789",
        "1234567890",
        "12345678910",
        "qwerty123",
        "qwertyuiop",
        "1q2w3e4r",
        "1q2w3e4r5t",
        "iloveyou",
        "letmein",
        "letmein1",
        "welcome1",
        "welcome123",
        "sunshine",
        "princess",
        "football",
        "baseball",
        "superman",
        "trustno1",
        "admin123",
        "changeme",
        "test1234",
        "abc12345",
    }

    @staticmethod
    def validate_password_strength(
        password: str, email: Optional[str] = None
    ) -> Tuple[bool, List[str]]:
        """
        Validate password strength against the balanced policy.

        Requirements:
        - Minimum 8 characters
        - Characters from at least 3 of: lowercase, uppercase, digits, symbols
        - Not a common password
        - Does not contain the local part of the account email
        - No sequential or long repeated character runs

        Args:
            password: The password to validate
            email: Account email, so the password can't simply repeat it

        Returns:
            Tuple of (is_valid: bool, errors: List[str])
        """
        errors = []

        if len(password) < PasswordValidationService.MIN_LENGTH:
            errors.append(
                f"Password must be at least {PasswordValidationService.MIN_LENGTH} characters long"
            )

        character_classes = sum(
            1
            for pattern in (r"[a-z]", r"[A-Z]", r"\d", r"[^a-zA-Z\d]")
            if re.search(pattern, password)
        )
        if character_classes < PasswordValidationService.MIN_CHARACTER_CLASSES:
            errors.append(
                "Password must mix at least three of: lowercase letters, uppercase letters, "
                "digits and symbols"
            )

        if password.lower() in PasswordValidationService.COMMON_PASSWORDS:
            errors.append("Password is too common. Please choose a more unique password")

        if email:
            local_part = email.split("@", 1)[0].lower()
            if len(local_part) >= 3 and local_part in password.lower():
                errors.append("Password must not contain your email address")

        # Check for sequential characters (e.g., "12345", "abcde")
        if re.search(
            r"(?:0123|1234|2345|3456|4567|5678|6789|7890|abcd|bcde|cdef|defg|efgh|fghi|ghij)",
            password.lower(),
        ):
            errors.append("Password contains sequential characters")

        # Check for repeated characters (e.g., "aaaaaa", "111111")
        if re.search(r"(.)\1{5,}", password):
            errors.append("Password contains too many repeated characters")

        is_valid = len(errors) == 0
        return is_valid, errors

    @staticmethod
    def validate_and_raise(password: str, email: Optional[str] = None) -> None:
        """
        Validate password and raise HTTPException if invalid.

        Raises:
            HTTPException: 400 listing every unmet requirement
        """
        is_valid, errors = PasswordValidationService.validate_password_strength(password, email)

        if not is_valid:
            logger.info("Rejected weak password (%d rule(s) failed)", len(errors))
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "message": "Password does not meet security requirements",
                    "errors": errors,
                },
            )


# Create singleton instance
password_validation_service = PasswordValidationService()
