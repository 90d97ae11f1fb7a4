import asyncio
import smtplib
import logging
from email.message import EmailMessage
from typing import Awaitable, Callable, Optional, Set

from fastapi import BackgroundTasks
from starlette.concurrency import run_in_threadpool

from app.core.config import settings

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str, html: Optional[str] = None) -> bool:
    smtp_host = settings.SMTP_HOST
    smtp_port = settings.SMTP_PORT
    smtp_user = settings.SMTP_USER
    smtp_pass = settings.SMTP_PASSWORD

    if not smtp_host or not smtp_user or not smtp_pass:
        logger.warning("SMTP not configured (SMTP_HOST / SMTP_USER / SMTP_PASSWORD), skipping email")
        return False

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{settings.SENDER_NAME} <{smtp_user}>"
    msg["To"] = to_email
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")

    with smtplib.SMTP(smtp_host, smtp_port, timeout=10) as server:
        server.ehlo()
        if smtp_port == 587:
            server.starttls()
            server.ehlo()
        server.login(smtp_user, smtp_pass)
        server.send_message(msg)
    return True


def build_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}?token={token}"


def build_verification_email(link: str) -> tuple[str, str]:
    body = (
        "Hi,\n\n"
        f"Confirm your email address for {settings.APP_NAME} by opening the link below:\n{link}\n\n"
        f"The link expires in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.\n\n"
        f"{settings.SENDER_NAME}"
    )
    html = (
        "<p>Hi,</p>"
        f"<p>Confirm your email address for {settings.APP_NAME}:</p>"
        f"<p><a href=\"{link}\">Verify email</a></p>"
        f"<p>The link expires in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.</p>"
        f"<br/><p>{settings.SENDER_NAME}</p>"
    )
    return body, html


def build_password_reset_email(link: str) -> tuple[str, str]:
    body = (
        "Hi,\n\n"
        f"Click the link below to reset your password:\n{link}\n\n"
        f"The link expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes. "
        "If you did not request a password reset, please ignore this email.\n\n"
        f"{settings.SENDER_NAME}"
    )
    html = (
        "<p>Hi,</p>"
        "<p>Click the link below to reset your password:</p>"
        f"<p><a href=\"{link}\">Reset password</a></p>"
        f"<p>The link expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes. "
        "If you did not request a password reset, please ignore this email.</p>"
        f"<br/><p>{settings.SENDER_NAME}</p>"
    )
    return body, html


class EmailService:
    """Fire-and-forget email dispatch.

    ``sender`` has the signature of ``send_email``; delivery errors are logged
    and reported as ``False``, never raised.
    """

    def __init__(self, sender: Callable[..., bool] = send_email):
        self.sender = sender
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, background: Optional[BackgroundTasks], send: Callable[..., Awaitable[bool]], *args) -> None:
        """Queue ``send(*args)`` to run after the response; callers never wait on SMTP."""
        if background is not None:
            background.add_task(send, *args)
            return
        task = asyncio.create_task(send(*args))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send(self, to_email: str, subject: str, body: str, html: Optional[str] = None) -> bool:
        try:
            return bool(await run_in_threadpool(self.sender, to_email, subject, body, html))
        except Exception:
            logger.exception(f"Failed to send email to {to_email}")
            return False

    async def send_verification_email(self, to_email: str, token: str) -> bool:
        body, html = build_verification_email(build_link(settings.FRONTEND_EMAIL_VERIFICATION_URL, token))
        return await self.send(to_email, f"Verify your {settings.APP_NAME} email", body, html)

    async def send_password_reset_email(self, to_email: str, token: str) -> bool:
        body, html = build_password_reset_email(build_link(settings.FRONTEND_PASSWORD_RESET_URL, token))
        return await self.send(to_email, f"Reset your {settings.APP_NAME} password", body, html)
