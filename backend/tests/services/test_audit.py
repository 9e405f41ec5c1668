"""Tests for the audit log service."""

from datetime import timedelta

import pytest

from jobtrail.models.audit_log import AuditEvent, AuditLog
from jobtrail.services.audit import (
    audit_log,
    cleanup_old_logs,
    count_recent_failures,
    get_audit_logs,
    get_security_statistics,
    get_user_security_logs,
    log_admin_security_action,
    log_login_failure,
)
from jobtrail.services.user_security import get_or_create_security_record, update_security_record
from jobtrail.utils.time import utc_now


@pytest.mark.asyncio
async def test_audit_log_creates_entry(test_session, test_user):
    entry = await audit_log(
        test_session,
        AuditEvent.LOGIN_SUCCESS,
        user_id=test_user.id,
        details={"method": "password"},
        ip_address="203.0.113.7",
        user_agent="pytest-agent",
    )
    await test_session.commit()

    assert entry.id is not None
    assert entry.event == AuditEvent.LOGIN_SUCCESS
    assert entry.successful is True
    assert entry.details == {"method": "password"}


@pytest.mark.asyncio
async def test_audit_log_accepts_event_string(test_session, test_user):
    entry = await audit_log(test_session, "LOGOUT", user_id=test_user.id)
    assert entry.event is AuditEvent.LOGOUT


@pytest.mark.asyncio
async def test_audit_log_rejects_unknown_event(test_session):
    with pytest.raises(ValueError):
        await audit_log(test_session, "ACCOUNT_DELETED_BY_ALIENS")


def test_model_rejects_unknown_event():
    with pytest.raises(ValueError):
        AuditLog(event="NOT_AN_EVENT")


@pytest.mark.asyncio
async def test_failures_without_user_are_recorded(test_session):
    entry = await log_login_failure(
        test_session, None, "203.0.113.7", None, "Unknown account", email="ghost@example.com"
    )
    assert entry.user_id is None
    assert entry.successful is False
    assert entry.details == {"reason": "Unknown account", "email": "ghost@example.com"}


@pytest.mark.asyncio
async def test_count_recent_failures_respects_window(test_session, test_user):
    recent = await log_login_failure(test_session, test_user.id, "203.0.113.7", None, "bad password")
    old = await log_login_failure(test_session, test_user.id, "203.0.113.7", None, "bad password")
    old.created_at = utc_now() - timedelta(hours=2)
    await test_session.commit()

    assert recent.created_at > old.created_at
    assert await count_recent_failures(test_session, test_user.id, timedelta(minutes=60)) == 1


@pytest.mark.asyncio
async def test_get_audit_logs_filters_and_paginates(test_session, test_user, admin_user):
    for _ in range(3):
        await log_login_failure(test_session, test_user.id, "198.51.100.1", None, "bad password")
    await audit_log(test_session, AuditEvent.LOGIN_SUCCESS, user_id=test_user.id, ip_address="198.51.100.2")
    await audit_log(test_session, AuditEvent.LOGIN_SUCCESS, user_id=admin_user.id)
    await test_session.commit()

    entries, total = await get_audit_logs(test_session, user_id=test_user.id)
    assert total == 4

    entries, total = await get_audit_logs(test_session, event=AuditEvent.LOGIN_FAILURE, page=1, limit=2)
    assert total == 3
    assert len(entries) == 2

    entries, total = await get_audit_logs(test_session, successful=False)
    assert total == 3

    entries, total = await get_audit_logs(test_session, ip_address="198.51.100.2")
    assert total == 1

    entries, total = await get_audit_logs(test_session, start_date=utc_now() + timedelta(minutes=1))
    assert total == 0


@pytest.mark.asyncio
async def test_page_size_is_capped(test_session, test_user):
    for _ in range(3):
        await audit_log(test_session, AuditEvent.LOGOUT, user_id=test_user.id)
    entries, total = await get_audit_logs(test_session, page=0, limit=1000)
    assert total == 3
    assert len(entries) == 3


@pytest.mark.asyncio
async def test_user_security_logs_default_to_security_events(test_session, test_user):
    await audit_log(test_session, AuditEvent.LOGOUT, user_id=test_user.id)
    await audit_log(test_session, AuditEvent.ACCOUNT_LOCKED, user_id=test_user.id, successful=False)
    await test_session.commit()

    entries, total = await get_user_security_logs(test_session, test_user.id)
    assert total == 1
    assert entries[0].event == AuditEvent.ACCOUNT_LOCKED

    entries, total = await get_user_security_logs(test_session, test_user.id, event=AuditEvent.LOGOUT)
    assert total == 1


@pytest.mark.asyncio
async def test_cleanup_old_logs(test_session, test_user):
    await audit_log(test_session, AuditEvent.LOGIN_SUCCESS, user_id=test_user.id)
    old = await audit_log(test_session, AuditEvent.LOGIN_SUCCESS, user_id=test_user.id)
    old.created_at = utc_now() - timedelta(days=91)
    await test_session.commit()

    deleted = await cleanup_old_logs(test_session, days=90)
    await test_session.commit()

    assert deleted == 1
    entries, total = await get_audit_logs(test_session)
    assert total == 1


@pytest.mark.asyncio
async def test_admin_action_records_target(test_session, test_user, admin_user):
    entry = await log_admin_security_action(
        test_session, admin_user.id, "Unlocked account", "203.0.113.7", None, target_user_id=test_user.id
    )
    assert entry.event == AuditEvent.ADMIN_LOGIN
    assert entry.user_id == admin_user.id
    assert entry.details["action"] == "security_action"
    assert entry.details["target_user_id"] == str(test_user.id)


@pytest.mark.asyncio
async def test_security_statistics(test_session, test_user, admin_user):
    await get_or_create_security_record(test_session, test_user.id)
    await get_or_create_security_record(test_session, admin_user.id)
    await update_security_record(
        test_session,
        test_user.id,
        is_locked=True,
        lockout_until=utc_now() + timedelta(minutes=10),
        last_lockout_reason="Too many failed login attempts",
    )
    await update_security_record(test_session, admin_user.id, force_password_reset=True)
    await log_login_failure(test_session, test_user.id, "203.0.113.7", None, "bad password")
    await audit_log(test_session, AuditEvent.ACCOUNT_LOCKED, user_id=test_user.id, successful=False)
    await test_session.commit()

    stats = await get_security_statistics(test_session)

    assert stats["total_locked_accounts"] == 1
    assert stats["total_forced_password_resets"] == 1
    assert stats["recent_failed_logins"] == 1
    assert stats["recent_lockouts"] == 1
    assert stats["top_lockout_reasons"] == [{"reason": "Too many failed login attempts", "count": 1}]
