"""
Security notification service.

Sends account-protection emails (lockout, unlock, forced reset, reset link)
through an HTTP email API. Sends are launched in the background and never
block or fail the security action that triggered them.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.core.config import settings
from jobtrail.models.user import User
from jobtrail.utils.time import ensure_utc, format_time_remaining, utc_now

logger = logging.getLogger(__name__)

# Strong references to in-flight sends; the event loop only keeps weak ones
_background_tasks: set[asyncio.Task] = set()


class SecurityNotifier(Protocol):
    async def send_account_locked_email(
        self, email: str, name: str | None, unlock_at: datetime | None, reason: str
    ) -> bool: ...

    async def send_account_unlocked_email(
        self, email: str, name: str | None, unlock_type: str
    ) -> bool: ...

    async def send_forced_password_reset_email(
        self, email: str, name: str | None, reason: str
    ) -> bool: ...

    async def send_password_reset_email(
        self, email: str, name: str | None, reset_url: str
    ) -> bool: ...


class EmailNotifier:
    """SecurityNotifier backed by an HTTP email API."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
    ):
        self.api_url = api_url if api_url is not None else settings.EMAIL_API_URL
        self.api_key = api_key if api_key is not None else settings.EMAIL_API_KEY
        self.sender = sender or settings.EMAIL_FROM
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.api_url)

    async def _send(self, to: str, subject: str, text: str) -> bool:
        if not self.configured:
            logger.info(f"Email API not configured, skipping '{subject}' notification")
            return False

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.api_url,
                    json={"from": self.sender, "to": to, "subject": subject, "text": text},
                    headers=headers,
                    timeout=self.timeout,
                )
        except httpx.TimeoutException:
            logger.error(f"Email API timeout sending '{subject}'")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Email API error sending '{subject}': {type(e).__name__}")
            return False

        if response.status_code >= 400:
            logger.error(f"Email API returned {response.status_code} for '{subject}'")
            return False
        return True

    async def send_account_locked_email(
        self, email: str, name: str | None, unlock_at: datetime | None, reason: str
    ) -> bool:
        remaining = ""
        unlock_at = ensure_utc(unlock_at)
        if unlock_at is not None:
            remaining = f" It will unlock automatically in about {format_time_remaining(unlock_at - utc_now())}."
        text = (
            f"Hi {name or 'there'},\n\n"
            f"Your {settings.APP_NAME} account was temporarily locked after repeated "
            f"failed sign-in attempts.{remaining}\n\n"
            "If this wasn't you, reset your password once the lock expires."
        )
        return await self._send(email, f"{settings.APP_NAME}: account temporarily locked", text)

    async def send_account_unlocked_email(
        self, email: str, name: str | None, unlock_type: str
    ) -> bool:
        how = "by an administrator" if unlock_type == "admin" else "automatically"
        text = (
            f"Hi {name or 'there'},\n\n"
            f"Your {settings.APP_NAME} account has been unlocked {how}. You can sign in again."
        )
        return await self._send(email, f"{settings.APP_NAME}: account unlocked", text)

    async def send_forced_password_reset_email(
        self, email: str, name: str | None, reason: str
    ) -> bool:
        text = (
            f"Hi {name or 'there'},\n\n"
            f"We noticed unusual sign-in activity on your {settings.APP_NAME} account, "
            "so you'll need to reset your password before signing in again.\n\n"
            f"Reset it here: {settings.FRONTEND_URL}/reset-password"
        )
        return await self._send(email, f"{settings.APP_NAME}: password reset required", text)

    async def send_password_reset_email(
        self, email: str, name: str | None, reset_url: str
    ) -> bool:
        text = (
            f"Hi {name or 'there'},\n\n"
            f"Use this link to reset your {settings.APP_NAME} password. "
            f"It expires in {settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES} minutes.\n\n"
            f"{reset_url}"
        )
        return await self._send(email, f"{settings.APP_NAME}: reset your password", text)


async def _run_notification(coro: Coroutine[Any, Any, Any], label: str) -> None:
    try:
        await asyncio.wait_for(coro, timeout=settings.NOTIFICATION_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning(f"Notification '{label}' timed out")
    except Exception as e:
        logger.error(f"Notification '{label}' failed: {e}")


def notify_in_background(coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
    """Launch a notification send without awaiting it. Failures are logged."""
    task = asyncio.create_task(_run_notification(coro, label))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def notify_user(
    db: AsyncSession,
    user_id: UUID,
    label: str,
    send: Callable[[User], Coroutine[Any, Any, Any]],
) -> asyncio.Task | None:
    """
    Resolve the recipient and launch ``send(user)`` in the background.

    The user lookup is awaited; the send is not.
    """
    user = await db.get(User, user_id)
    if user is None:
        logger.warning(f"Cannot send '{label}' notification: user {user_id} not found")
        return None
    return notify_in_background(send(user), label)


async def drain_notifications() -> None:
    """Wait for in-flight notification sends (shutdown and tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


email_notifier = EmailNotifier()
