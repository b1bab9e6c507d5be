from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import httpx

from talenthub.logging import get_logger, redact_email

logger = get_logger(__name__)


class EmailService:
    """Notification gateway for verification and two-factor emails.

    Delivery is best-effort: every send returns a bool and never raises.
    Transports, in order of preference:
    - Brevo transactional API over HTTPS (``brevo_api_key``)
    - SMTP with TLS/SSL (``smtp_host``)
    - Logging only when neither is configured (dev mode)
    """

    def __init__(
        self,
        *,
        brevo_api_key: Optional[str] = None,
        brevo_api_url: str = "https://api.brevo.com/v3/smtp/email",
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "TalentHub",
        frontend_url: str = "http://localhost:3000",
        api_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.brevo_api_key = brevo_api_key
        self.brevo_api_url = brevo_api_url
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user or "no-reply@talenthub.local"
        self.from_name = from_name
        self.frontend_url = frontend_url.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def uses_brevo(self) -> bool:
        return bool(self.brevo_api_key)

    @property
    def uses_smtp(self) -> bool:
        return bool(self.smtp_host)

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return self.uses_brevo or self.uses_smtp

    def verification_links(self, token: str) -> tuple[str, str]:
        """Return the frontend deep link and the API-testable link for ``token``."""
        frontend_link = f"{self.frontend_url}/v1/verify-email?token={token}"
        api_link = f"{self.api_url}/api/v1/email-test/show-verification?token={token}"
        return frontend_link, api_link

    async def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        if self.uses_brevo:
            return await self._send_brevo(to_email, subject, html_body, text_body)
        if self.uses_smtp:
            return await asyncio.to_thread(
                self._send_smtp, to_email, subject, html_body, text_body
            )
        # Dev mode: log the email instead of sending
        logger.info(
            "email_dev_mode",
            to=redact_email(to_email),
            subject=subject,
            body_preview=text_body[:200] if text_body else html_body[:200],
        )
        return True

    async def _send_brevo(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str],
    ) -> bool:
        payload = {
            "sender": {"name": self.from_name, "email": self.from_email},
            "to": [{"email": to_email}],
            "subject": subject,
            "htmlContent": html_body,
        }
        if text_body:
            payload["textContent"] = text_body
        headers = {"api-key": self.brevo_api_key or "", "accept": "application/json"}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.brevo_api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "email_provider_rejected",
                to=redact_email(to_email),
                status=e.response.status_code,
            )
            return False
        except httpx.HTTPError as e:
            logger.error(
                "email_provider_unreachable",
                to=redact_email(to_email),
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        logger.info("email_sent", to=redact_email(to_email), subject=subject, via="brevo")
        return True

    def _send_smtp(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str],
    ) -> bool:
        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email

            if text_body:
                msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            context = ssl.create_default_context()

            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info("email_sent", to=redact_email(to_email), subject=subject, via="smtp")
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                smtp_status=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=redact_email(to_email),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            logger.error(
                "email_connect_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    async def send_verification_email(self, to_email: str, token: str) -> bool:
        """Send the account verification email with both verification links."""
        frontend_link, api_link = self.verification_links(token)

        subject = "Verify Your TalentHub Account"

        html_body = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body>
    <h1>Welcome to TalentHub!</h1>
    <p>Please verify your email address by clicking the link below:</p>
    <p><a href="{frontend_link}">Verify Email</a></p>
    <p>This link will expire in 1 hour.</p>
    <p>To check the verification without the web app:</p>
    <p><a href="{api_link}">Test Verification</a></p>
    <p>If you did not create this account, please ignore this email.</p>
</body>
</html>
"""

        text_body = f"""Welcome to TalentHub!

Please verify your email address by visiting the link below:

{frontend_link}

This link will expire in 1 hour.

To check the verification without the web app:

{api_link}

If you did not create this account, please ignore this email.
"""

        return await self._send_email(to_email, subject, html_body, text_body)

    async def send_two_factor_code(self, to_email: str, code: str) -> bool:
        """Send a one-time two-factor code."""
        subject = "Your TalentHub 2FA Code"

        html_body = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body>
    <h1>Two-Factor Authentication</h1>
    <p>Your verification code is:</p>
    <h2 style="font-size: 24px; letter-spacing: 5px; background-color: #f4f4f4; padding: 10px; text-align: center;">{code}</h2>
    <p>This code will expire in 10 minutes.</p>
    <p>If you did not request this code, please secure your account immediately.</p>
</body>
</html>
"""

        text_body = f"""Two-Factor Authentication

Your verification code is: {code}

This code will expire in 10 minutes.

If you did not request this code, please secure your account immediately.
"""

        return await self._send_email(to_email, subject, html_body, text_body)
