"""Tests for security email delivery."""

import asyncio
import logging
import uuid
from datetime import timedelta

import httpx
import pytest

from jobtrail.core.config import settings
from jobtrail.services import notification
from jobtrail.services.notification import (
    EmailNotifier,
    drain_notifications,
    notify_in_background,
    notify_user,
)
from jobtrail.utils.time import utc_now


@pytest.fixture
def sent(monkeypatch):
    """Route httpx through a MockTransport and capture requests."""
    requests: list[httpx.Request] = []
    status = {"code": 202}
    real_client = httpx.AsyncClient

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status["code"], json={"id": "msg_1"})

    def client_factory(*args, **kwargs):
        return real_client(transport=httpx.MockTransport(handler))

    monkeypatch.setattr(notification.httpx, "AsyncClient", client_factory)
    return requests, status


@pytest.mark.asyncio
async def test_unconfigured_notifier_skips(sent):
    requests, _ = sent
    notifier = EmailNotifier(api_url="")

    assert notifier.configured is False
    assert await notifier.send_account_unlocked_email("jane@example.com", "Jane", "automatic") is False
    assert requests == []


@pytest.mark.asyncio
async def test_locked_email_posts_to_api(sent):
    requests, _ = sent
    notifier = EmailNotifier(api_url="https://mail.example.com/send", api_key="key-123")

    ok = await notifier.send_account_locked_email(
        "jane@example.com", "Jane", utc_now() + timedelta(minutes=15), "Too many failed login attempts"
    )

    assert ok is True
    assert len(requests) == 1
    assert requests[0].headers["Authorization"] == "Bearer key-123"
    body = requests[0].content.decode()
    assert "jane@example.com" in body
    assert "15m" in body


@pytest.mark.asyncio
async def test_api_error_status_returns_false(sent):
    _, status = sent
    status["code"] = 503
    notifier = EmailNotifier(api_url="https://mail.example.com/send")

    assert await notifier.send_forced_password_reset_email("jane@example.com", None, "x") is False


@pytest.mark.asyncio
async def test_transport_error_returns_false(monkeypatch):
    real_client = httpx.AsyncClient

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    monkeypatch.setattr(
        notification.httpx,
        "AsyncClient",
        lambda *a, **kw: real_client(transport=httpx.MockTransport(handler)),
    )
    notifier = EmailNotifier(api_url="https://mail.example.com/send")

    assert await notifier.send_password_reset_email("jane@example.com", "Jane", "https://x") is False


@pytest.mark.asyncio
async def test_background_failure_is_logged(caplog):
    async def boom():
        raise RuntimeError("provider exploded")

    with caplog.at_level(logging.ERROR, logger="jobtrail.services.notification"):
        notify_in_background(boom(), "test_send")
        await drain_notifications()

    assert "provider exploded" in caplog.text


@pytest.mark.asyncio
async def test_background_send_times_out(monkeypatch, caplog):
    monkeypatch.setattr(settings, "NOTIFICATION_TIMEOUT_SECONDS", 0.01)

    with caplog.at_level(logging.WARNING, logger="jobtrail.services.notification"):
        notify_in_background(asyncio.sleep(5), "slow_send")
        await drain_notifications()

    assert "timed out" in caplog.text


@pytest.mark.asyncio
async def test_notify_user_resolves_recipient(test_session, test_user, notifier):
    task = await notify_user(
        test_session,
        test_user.id,
        "account_unlocked",
        lambda user: notifier.send_account_unlocked_email(user.email, user.name, "automatic"),
    )
    await task

    notifier.send_account_unlocked_email.assert_awaited_once_with(test_user.email, test_user.name, "automatic")


@pytest.mark.asyncio
async def test_notify_user_missing_user(test_session, notifier):
    task = await notify_user(
        test_session,
        uuid.uuid4(),
        "account_unlocked",
        lambda user: notifier.send_account_unlocked_email(user.email, user.name, "automatic"),
    )

    assert task is None
    notifier.send_account_unlocked_email.assert_not_called()
