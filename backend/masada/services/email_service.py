"""
Email Service for Masada
========================
Transactional emails sent over SMTP:
- Email verification and welcome
- Password reset
- Test invitations and completion notices
- Payment confirmations

Sending is best effort: failures are logged and reported as False,
never raised into the request that triggered them.
"""

import aiosmtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Awaitable, Optional, Set
import asyncio

from masada.core.config import settings
from masada.core.logging_config import logger


class EmailService:
    """Async email service using SMTP"""

    def __init__(self):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME
        self.frontend_url = settings.FRONTEND_URL.rstrip("/")

    @property
    def is_configured(self) -> bool:
        """Check if SMTP credentials are present"""
        return bool(self.smtp_user and self.smtp_password)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send an email asynchronously.

        Returns True if successful, False otherwise.
        """
        if not self.is_configured:
            logger.info(f"[Email] SMTP not configured, skipping '{subject}' to {to_email}")
            return False

        try:
            message = MIMEMultipart("alternative")
            message["From"] = f"{self.from_name} <{self.from_email}>"
            message["To"] = to_email
            message["Subject"] = subject

            # Plain text first so HTML is the preferred alternative
            if text_content:
                message.attach(MIMEText(text_content, "plain"))
            message.attach(MIMEText(html_content, "html"))

            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user,
                password=self.smtp_password,
                start_tls=True
            )

            logger.info(f"[Email] Sent '{subject}' to {to_email}")
            return True

        except Exception as e:
            logger.error(f"[Email] Failed to send '{subject}' to {to_email}: {e}")
            return False

    def _render(self, heading: str, body_html: str, action_url: Optional[str] = None,
                action_label: Optional[str] = None) -> str:
        """Wrap body_html in the shared Masada email layout"""
        button = ""
        if action_url and action_label:
            button = f'''
                <p style="text-align: center; margin: 30px 0;">
                    <a href="{action_url}" style="display: inline-block; background: #0f766e; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; font-weight: 600;">
                        {action_label}
                    </a>
                </p>
            '''

        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <style>
                body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: linear-gradient(135deg, #0f766e 0%, #ca8a04 100%); color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
                .content {{ background: #f9fafb; padding: 30px; border-radius: 0 0 10px 10px; }}
                .footer {{ text-align: center; margin-top: 30px; font-size: 12px; color: #6b7280; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>{heading}</h1>
                </div>
                <div class="content">
                    {body_html}
                    {button}
                </div>
                <div class="footer">
                    <p>Masada - Usability testing with Ethiopian users</p>
                </div>
            </div>
        </body>
        </html>
        """

    async def send_verification_email(self, to_email: str, user_name: str, token: str) -> bool:
        verify_url = f"{self.frontend_url}/auth/verify-email?token={token}"
        html = self._render(
            "Verify your email",
            f"<p>Hi {user_name},</p>"
            "<p>Welcome to Masada! Please confirm your email address to activate your account. "
            "This link expires in 24 hours.</p>",
            verify_url,
            "Verify Email",
        )
        text = f"Hi {user_name},\n\nVerify your Masada account: {verify_url}\n\nThis link expires in 24 hours."
        return await self.send_email(to_email, "Verify your Masada account", html, text)

    async def send_password_reset_email(self, to_email: str, user_name: str, token: str) -> bool:
        reset_url = f"{self.frontend_url}/auth/reset-password?token={token}"
        html = self._render(
            "Reset your password",
            f"<p>Hi {user_name},</p>"
            "<p>We received a request to reset your password. The link below is valid for 1 hour. "
            "If you did not request this, you can ignore this email.</p>",
            reset_url,
            "Reset Password",
        )
        text = f"Hi {user_name},\n\nReset your password: {reset_url}\n\nThis link expires in 1 hour."
        return await self.send_email(to_email, "Reset your Masada password", html, text)

    async def send_test_invitation_email(self, to_email: str, tester_name: str, test_id: str,
                                         test_title: str, payment: float, duration: int) -> bool:
        test_url = f"{self.frontend_url}/tester/test/{test_id}"
        html = self._render(
            "New test available",
            f"<p>Hi {tester_name},</p>"
            f"<p>A new test matching your profile is available: <strong>{test_title}</strong></p>"
            f"<p>Payment: <strong>{payment:.2f} ETB</strong><br>Estimated duration: {duration} minutes</p>",
            test_url,
            "View Test",
        )
        text = f"Hi {tester_name},\n\nNew test: {test_title} ({payment:.2f} ETB, {duration} min)\n{test_url}"
        return await self.send_email(to_email, f"New test invitation: {test_title}", html, text)

    async def send_test_completion_email(self, to_email: str, customer_name: str, test_id: str,
                                         test_title: str, completed_testers: int) -> bool:
        results_url = f"{self.frontend_url}/dashboard/tests/{test_id}/results"
        html = self._render(
            "Your test is complete",
            f"<p>Hi {customer_name},</p>"
            f"<p>Your test <strong>{test_title}</strong> has been completed by "
            f"{completed_testers} tester(s). The results are ready for review.</p>",
            results_url,
            "View Results",
        )
        text = f"Hi {customer_name},\n\n{test_title} was completed by {completed_testers} tester(s).\n{results_url}"
        return await self.send_email(to_email, f"Test completed: {test_title}", html, text)

    async def send_payment_confirmation_email(self, to_email: str, customer_name: str, amount: float,
                                              currency: str, transaction_id: str) -> bool:
        payments_url = f"{self.frontend_url}/dashboard/payments"
        html = self._render(
            "Payment received",
            f"<p>Hi {customer_name},</p>"
            f"<p>We received your payment of <strong>{amount:.2f} {currency}</strong>.</p>"
            f"<p>Transaction ID: {transaction_id}</p>",
            payments_url,
            "View Payments",
        )
        text = f"Hi {customer_name},\n\nPayment of {amount:.2f} {currency} received. Transaction: {transaction_id}"
        return await self.send_email(to_email, "Payment confirmation", html, text)

    async def send_welcome_email(self, to_email: str, user_name: str, user_type: str) -> bool:
        if user_type == "TESTER":
            body = "<p>You can now browse available tests and start earning by sharing your feedback.</p>"
            url = f"{self.frontend_url}/tester"
        else:
            body = "<p>You can now create your first usability test and reach testers across Ethiopia.</p>"
            url = f"{self.frontend_url}/dashboard"
        html = self._render(
            "Welcome to Masada",
            f"<p>Hi {user_name},</p><p>Your email is verified.</p>{body}",
            url,
            "Get Started",
        )
        return await self.send_email(to_email, "Welcome to Masada", html, f"Hi {user_name},\n\nWelcome to Masada! {url}")


email_service = EmailService()


_pending_emails: Set[asyncio.Task] = set()


def queue_email(coro: Awaitable[bool]) -> asyncio.Task:
    """Send an email in the background without blocking the caller"""
    task = asyncio.ensure_future(coro)
    _pending_emails.add(task)
    task.add_done_callback(_pending_emails.discard)
    return task
