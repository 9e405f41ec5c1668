"""Tests for the password reset flow."""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from conftest import count_events
from sqlalchemy import select

from jobtrail.core.exceptions import PasswordResetTokenError
from jobtrail.core.security import verify_password
from jobtrail.models.audit_log import AuditEvent
from jobtrail.models.password_reset_token import PasswordResetToken
from jobtrail.services.notification import drain_notifications
from jobtrail.services.password_reset import (
    cleanup_expired_reset_tokens,
    complete_password_reset,
    create_reset_token,
    hash_reset_token,
    request_password_reset,
)
from jobtrail.services.suspicious_activity import force_password_reset
from jobtrail.services.user_security import get_security_record
from jobtrail.utils.time import utc_now


async def emailed_token(notifier) -> str:
    await drain_notifications()
    reset_url = notifier.send_password_reset_email.await_args.args[2]
    return parse_qs(urlparse(reset_url).query)["token"][0]


@pytest.mark.asyncio
async def test_request_for_unknown_email(test_session, notifier):
    issued = await request_password_reset(test_session, "nobody@example.com", notifier=notifier)

    assert issued is False
    await drain_notifications()
    notifier.send_password_reset_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_request_stores_only_digest(test_session, test_user, notifier):
    issued = await request_password_reset(test_session, "Jane@Example.com ", "203.0.113.7", notifier=notifier)
    assert issued is True

    token = await emailed_token(notifier)
    result = await test_session.execute(select(PasswordResetToken))
    stored = result.scalar_one()
    assert stored.token_hash == hash_reset_token(token)
    assert stored.token_hash != token
    assert await count_events(test_session, AuditEvent.PASSWORD_RESET_REQUESTED, test_user.id) == 1


@pytest.mark.asyncio
async def test_new_request_replaces_outstanding_token(test_session, test_user):
    await create_reset_token(test_session, test_user.id)
    await create_reset_token(test_session, test_user.id)
    await test_session.commit()

    result = await test_session.execute(select(PasswordResetToken))
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_complete_reset_changes_password_and_clears_flag(test_session, test_user, notifier):
    await force_password_reset(test_session, test_user.id, "Suspicious activity", notifier=notifier)
    await request_password_reset(test_session, test_user.email, notifier=notifier)
    token = await emailed_token(notifier)

    user = await complete_password_reset(test_session, token, "a-brand-new-passphrase")

    assert verify_password("a-brand-new-passphrase", user.password_hash)
    record = await get_security_record(test_session, test_user.id)
    assert record.force_password_reset is False
    assert await count_events(test_session, AuditEvent.PASSWORD_CHANGE, test_user.id) == 1
    assert await count_events(test_session, AuditEvent.PASSWORD_RESET_COMPLETED, test_user.id) == 1


@pytest.mark.asyncio
async def test_token_is_single_use(test_session, test_user):
    token = await create_reset_token(test_session, test_user.id)
    await test_session.commit()

    await complete_password_reset(test_session, token, "first-new-passphrase")
    with pytest.raises(PasswordResetTokenError):
        await complete_password_reset(test_session, token, "second-new-passphrase")


@pytest.mark.asyncio
async def test_expired_token_rejected(test_session, test_user):
    token = await create_reset_token(test_session, test_user.id)
    result = await test_session.execute(select(PasswordResetToken))
    stored = result.scalar_one()
    stored.expires_at = utc_now() - timedelta(minutes=1)
    await test_session.commit()

    with pytest.raises(PasswordResetTokenError):
        await complete_password_reset(test_session, token, "another-passphrase")


@pytest.mark.asyncio
async def test_unknown_token_rejected(test_session):
    with pytest.raises(PasswordResetTokenError):
        await complete_password_reset(test_session, "not-a-real-token", "another-passphrase")


@pytest.mark.asyncio
async def test_cleanup_expired_reset_tokens(test_session, test_user, admin_user):
    await create_reset_token(test_session, test_user.id)
    await create_reset_token(test_session, admin_user.id)
    result = await test_session.execute(
        select(PasswordResetToken).where(PasswordResetToken.user_id == test_user.id)
    )
    result.scalar_one().expires_at = utc_now() - timedelta(hours=2)
    await test_session.commit()

    deleted = await cleanup_expired_reset_tokens(test_session)
    await test_session.commit()

    assert deleted == 1
    remaining = await test_session.execute(select(PasswordResetToken))
    assert [t.user_id for t in remaining.scalars().all()] == [admin_user.id]
