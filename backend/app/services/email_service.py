"""Email sending service using SMTP (aiosmtplib).

Emails are silently skipped when SMTP_HOST is not configured. Sends never
raise: every public method reports success as a bool so that registration and
resend flows decide for themselves how to surface a failed dispatch.
"""

import html
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

from app.config import settings as _settings
from app.utils.logging_utils import redact_email

logger = logging.getLogger(__name__)


class EmailService:
    """Thin wrapper around aiosmtplib for sending transactional emails."""

    def __init__(self, smtp_host: Optional[str], smtp_port: int, smtp_username: Optional[str],
                 smtp_password: Optional[str], from_email: str, from_name: str,
                 use_tls: bool, app_base_url: str):
        self._host = smtp_host
        self._port = smtp_port
        self._username = smtp_username or ""
        self._password = smtp_password or ""
        self._from_email = from_email
        self._from_name = from_name
        self._use_tls = use_tls
        self._base_url = app_base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        """Return True when SMTP credentials are present."""
        return bool(self._host)

    async def send_email(self, to_email: str, subject: str, html_body: str,
                         text_body: str) -> bool:
        """
        Send an email.  Returns True on success, False otherwise (never raises).
        When SMTP is not configured the call is a no-op that returns False.
        """
        if not self.is_configured:
            logger.info("Email not configured, skipping send to %s: %s",
                        redact_email(to_email), subject)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self._from_name} <{self._from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=self._host,
                port=self._port,
                username=self._username,
                password=self._password,
                use_tls=False,       # SSL on port 465
                start_tls=self._use_tls,  # STARTTLS on port 587 (default)
            )
            logger.info("Email sent to %s: %s", redact_email(to_email), subject)
            return True
        except Exception as exc:
            logger.error("Failed to send email to %s: %s", redact_email(to_email), exc)
            return False

    async def send_verification_code_email(self, to_email: str, display_name: str,
                                           code: str, expires_in_minutes: int) -> bool:
        """Send the 6-digit email verification code."""
        verify_url = f"{self._base_url}{_settings.EMAIL_VERIFICATION_PAGE_PATH}"
        greeting = html.escape(display_name or to_email)
        safe_code = html.escape(code)
        minutes = "minute" if expires_in_minutes == 1 else "minutes"

        subject = f"Your {self._from_name} verification code: {code}"
        html_body = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #2D3748;">Confirm your email address</h2>
  <p>Hi {greeting},</p>
  <p>Enter this code on the verification page to finish creating your account:</p>
  <p style="margin: 30px 0; font-size: 32px; letter-spacing: 8px; font-weight: bold;
            font-family: 'Courier New', monospace; color: #2D3748;">
    {safe_code}
  </p>
  <p style="color: #718096; font-size: 14px;">
    This code expires in {expires_in_minutes} {minutes}. If you didn't create an account,
    you can safely ignore this email.
  </p>
  <p style="color: #718096; font-size: 12px;">
    Verification page: {verify_url}
  </p>
</body>
</html>"""
        text_body = (
            f"Hi {greeting},\n\n"
            f"Your verification code is: {code}\n\n"
            f"Enter it at {verify_url}\n"
            f"This code expires in {expires_in_minutes} {minutes}.\n\n"
            f"If you didn't create an account, you can safely ignore this email."
        )
        return await self.send_email(to_email, subject, html_body, text_body)

    async def send_password_reset_email(self, to_email: str, display_name: str,
                                        token: str, expires_in_minutes: int) -> bool:
        """Send a password-reset link."""
        reset_url = f"{self._base_url}{_settings.PASSWORD_RESET_PAGE_PATH}?token={token}"
        greeting = html.escape(display_name or to_email)
        minutes = "minute" if expires_in_minutes == 1 else "minutes"

        subject = f"Reset your {self._from_name} password"
        html_body = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #2D3748;">Reset your password</h2>
  <p>Hi {greeting},</p>
  <p>We received a request to reset your {html.escape(self._from_name)} password. Click the button below to choose a new one.</p>
  <p style="margin: 30px 0;">
    <a href="{reset_url}"
       style="background-color: #E53E3E; color: white; padding: 12px 24px;
              text-decoration: none; border-radius: 6px; display: inline-block;">
      Reset Password
    </a>
  </p>
  <p style="color: #718096; font-size: 14px;">
    This link expires in <strong>{expires_in_minutes} {minutes}</strong>. If you didn't request
    a password reset, you can safely ignore this email; your password will not change.
  </p>
  <p style="color: #718096; font-size: 12px;">
    Or copy and paste this URL: {reset_url}
  </p>
</body>
</html>"""
        text_body = (
            f"Hi {greeting},\n\n"
            f"Reset your {self._from_name} password by visiting:\n{reset_url}\n\n"
            f"This link expires in {expires_in_minutes} {minutes}.\n\n"
            f"If you didn't request this, you can safely ignore it."
        )
        return await self.send_email(to_email, subject, html_body, text_body)


# Module-level singleton — constructed once from loaded settings
email_service = EmailService(
    smtp_host=_settings.SMTP_HOST,
    smtp_port=_settings.SMTP_PORT,
    smtp_username=_settings.SMTP_USERNAME,
    smtp_password=_settings.SMTP_PASSWORD,
    from_email=_settings.SMTP_FROM_EMAIL,
    from_name=_settings.SMTP_FROM_NAME,
    use_tls=_settings.SMTP_USE_TLS,
    app_base_url=_settings.APP_BASE_URL,
)
