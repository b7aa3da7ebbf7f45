"""Error logging service with PII redaction for production safety."""

import logging
import re
import traceback
from typing import Any, Dict, Optional

from app.utils.datetime_utils import utc_now
from app.utils.logging_utils import redact_ip


class ErrorLoggingService:
    """Service for logging errors and security events with PII redaction."""

    # PII patterns to redact from logs
    PII_PATTERNS = {
        'email': r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b',
        'ip_address': r'\b(?:\d{1,3}\.){3}\d{1,3}\b',
        'password': r'(password|passwd|pwd)["\']?\s*[:=]\s*["\']?([^"\'\s]+)',
        'token': r'(token|jwt|bearer|session)["\']?\s*[:=]\s*["\']?([A-Za-z0-9_-]{20,})',
        'code': r'(code)["\']?\s*[:=]\s*["\']?(\d{6})\b',
    }

    @staticmethod
    def redact_pii(text: str) -> str:
        """
        Redact PII from text.

        Args:
            text: Text potentially containing PII

        Returns:
            Text with PII redacted
        """
        if not text:
            return text

        patterns = ErrorLoggingService.PII_PATTERNS
        redacted = re.sub(patterns['email'], '[REDACTED_EMAIL]', text)
        redacted = re.sub(patterns['ip_address'], '[REDACTED_IP]', redacted)

        # Keep key names, redact values
        redacted = re.sub(patterns['password'], r'\1=[REDACTED_PASSWORD]', redacted, flags=re.IGNORECASE)
        redacted = re.sub(patterns['token'], r'\1=[REDACTED_TOKEN]', redacted, flags=re.IGNORECASE)
        redacted = re.sub(patterns['code'], r'\1=[REDACTED_CODE]', redacted, flags=re.IGNORECASE)

        return redacted

    @staticmethod
    def log_error(
        logger: logging.Logger,
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> None:
        """
        Log error with PII redaction.

        Args:
            logger: Logger instance
            error: Exception to log
            context: Additional context (will be redacted)
            user_id: User ID (not PII, safe to log)
        """
        error_traceback = ''.join(traceback.format_exception(
            type(error), error, error.__traceback__
        ))

        error_message = ErrorLoggingService.redact_pii(str(error))
        error_traceback = ErrorLoggingService.redact_pii(error_traceback)

        log_parts = [
            f"Error: {error_message}",
            f"Type: {type(error).__name__}",
        ]

        if user_id:
            log_parts.append(f"User ID: {user_id}")

        if context:
            safe_context = {
                k: ErrorLoggingService.redact_pii(str(v))
                for k, v in context.items()
            }
            log_parts.append(f"Context: {safe_context}")

        log_parts.append(f"Traceback:\n{error_traceback}")

        logger.error('\n'.join(log_parts))

    @staticmethod
    def log_security_event(
        logger: logging.Logger,
        event_type: str,
        message: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        additional_data: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log security-related event.

        Args:
            logger: Logger instance
            event_type: Type of security event (email_verification_failure, etc.)
            message: Event description
            user_id: User ID if applicable
            ip_address: Source IP address
            additional_data: Additional event data
        """
        log_data = {
            "timestamp": utc_now().isoformat(),
            "event_type": event_type,
            "message": ErrorLoggingService.redact_pii(message),
        }

        if user_id:
            log_data["user_id"] = user_id

        if ip_address:
            log_data["ip_prefix"] = redact_ip(ip_address)

        if additional_data:
            log_data["data"] = {
                k: ErrorLoggingService.redact_pii(str(v))
                for k, v in additional_data.items()
            }

        logger.warning(f"SECURITY_EVENT: {log_data}")


# Create singleton instance
error_logging_service = ErrorLoggingService()
