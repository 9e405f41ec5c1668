"""Tests for distributed-attack detection and forced password resets."""

import pytest
from conftest import count_events
from sqlalchemy import select

from jobtrail.models.audit_log import AuditEvent, AuditLog
from jobtrail.services.audit import log_login_failure
from jobtrail.services.lockout import record_failed_attempt
from jobtrail.services.notification import drain_notifications
from jobtrail.services.suspicious_activity import (
    check_suspicious_activity,
    clear_force_password_reset,
    force_password_reset,
    is_distributed_attack,
)
from jobtrail.services.user_security import get_security_record


async def seed_failures(session, user, ips):
    for ip in ips:
        await log_login_failure(session, user.id, ip, "pytest-agent", "Failed login attempt")
    await session.commit()


def spread(total, distinct):
    return [f"198.51.100.{i % distinct + 1}" for i in range(total)]


@pytest.mark.parametrize(
    ("total", "distinct", "expected"),
    [(15, 2, False), (9, 3, False), (10, 3, True), (40, 12, True)],
)
def test_is_distributed_attack(total, distinct, expected):
    assert is_distributed_attack(total, distinct) is expected


@pytest.mark.asyncio
async def test_two_ips_never_trigger(test_session, test_user, notifier):
    await seed_failures(test_session, test_user, spread(15, 2))

    result = await check_suspicious_activity(test_session, test_user.id, notifier=notifier)

    assert result.triggered is False
    assert result.total_attempts == 15
    assert len(result.distinct_ips) == 2


@pytest.mark.asyncio
async def test_nine_attempts_do_not_trigger(test_session, test_user, notifier):
    await seed_failures(test_session, test_user, spread(9, 3))

    result = await check_suspicious_activity(test_session, test_user.id, notifier=notifier)
    assert result.triggered is False


@pytest.mark.asyncio
async def test_ten_attempts_from_three_ips_force_reset(test_session, test_user, notifier):
    await seed_failures(test_session, test_user, spread(10, 3))

    result = await check_suspicious_activity(test_session, test_user.id, notifier=notifier)

    assert result.triggered is True
    assert result.newly_flagged is True
    record = await get_security_record(test_session, test_user.id)
    assert record.force_password_reset is True
    assert record.force_password_reset_reason == result.reason

    entries = await test_session.execute(
        select(AuditLog).where(AuditLog.event == AuditEvent.SUSPICIOUS_ACTIVITY)
    )
    entry = entries.scalar_one()
    assert entry.details["total_attempts"] == 10
    assert entry.details["distinct_ip_count"] == 3

    await drain_notifications()
    notifier.send_forced_password_reset_email.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_ips_count_toward_total_only(test_session, test_user, notifier):
    await seed_failures(test_session, test_user, spread(8, 3) + [None, None])

    result = await check_suspicious_activity(test_session, test_user.id, notifier=notifier)

    assert result.total_attempts == 10
    assert len(result.distinct_ips) == 3
    assert result.triggered is True


@pytest.mark.asyncio
async def test_already_flagged_account_is_not_reflagged(test_session, test_user, notifier):
    await seed_failures(test_session, test_user, spread(10, 3))

    await check_suspicious_activity(test_session, test_user.id, notifier=notifier)
    again = await check_suspicious_activity(test_session, test_user.id, notifier=notifier)

    assert again.triggered is True
    assert again.newly_flagged is False
    assert await count_events(test_session, AuditEvent.PASSWORD_RESET_FORCED, test_user.id) == 1


@pytest.mark.asyncio
async def test_detector_runs_from_failed_attempts(test_session, test_user, notifier):
    ips = spread(10, 4)
    for ip in ips:
        result = await record_failed_attempt(test_session, test_user.id, ip, "pytest-agent", notifier=notifier)

    assert result.password_reset_forced is True
    record = await get_security_record(test_session, test_user.id)
    assert record.force_password_reset is True
    assert "4" in record.force_password_reset_reason
    assert "10" in record.force_password_reset_reason
    # The fifth failure already locked the account
    assert record.is_locked is True


@pytest.mark.asyncio
async def test_admin_forced_reset_records_admin(test_session, test_user, admin_user, notifier):
    flagged = await force_password_reset(
        test_session, test_user.id, "Credentials seen in a breach", notifier=notifier, admin_id=admin_user.id
    )
    assert flagged is True

    entries = await test_session.execute(
        select(AuditLog).where(AuditLog.event == AuditEvent.PASSWORD_RESET_FORCED)
    )
    entry = entries.scalar_one()
    assert entry.details["forced_by"] == str(admin_user.id)
    assert await count_events(test_session, AuditEvent.SUSPICIOUS_ACTIVITY) == 0


@pytest.mark.asyncio
async def test_clear_force_password_reset(test_session, test_user, notifier):
    await force_password_reset(test_session, test_user.id, "manual", notifier=notifier)

    await clear_force_password_reset(test_session, test_user.id, "203.0.113.7", "pytest-agent")

    record = await get_security_record(test_session, test_user.id)
    assert record.force_password_reset is False
    assert record.force_password_reset_reason is None
    assert await count_events(test_session, AuditEvent.PASSWORD_RESET_COMPLETED, test_user.id) == 1
