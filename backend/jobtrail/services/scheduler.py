"""
Scheduler for security maintenance jobs.

Uses APScheduler to run:
- Audit log retention sweep (daily)
- Expired password reset token cleanup (hourly)

Lockout expiry is deliberately not a job: locks are cleared lazily on the
next status check.
"""

import logging
from collections.abc import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.core.config import settings as app_settings
from jobtrail.db.session import async_session_maker
from jobtrail.services.audit import cleanup_old_logs
from jobtrail.services.password_reset import cleanup_expired_reset_tokens

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


class SchedulerService:
    """Service for managing scheduled maintenance jobs."""

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None):
        self._session_factory = session_factory or async_session_maker

    def start(self):
        """Schedule jobs and start the scheduler."""
        self._schedule_audit_retention()
        self._schedule_reset_token_cleanup()
        if not scheduler.running:
            scheduler.start()
            logger.info("Scheduler started")

    def stop(self):
        """Stop the scheduler."""
        if scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def _schedule_audit_retention(self):
        """Schedule the audit retention sweep (daily at 3 AM)."""
        scheduler.add_job(
            self.run_audit_retention,
            trigger=CronTrigger(hour=3, minute=0),
            id="audit_retention",
            name="audit log retention",
            replace_existing=True,
            misfire_grace_time=3600,  # 1 hour grace period
        )
        logger.info("Scheduled audit_retention job (daily at 3:00 AM)")

    def _schedule_reset_token_cleanup(self):
        """Schedule expired reset token cleanup (hourly)."""
        scheduler.add_job(
            self.run_reset_token_cleanup,
            trigger=IntervalTrigger(hours=1),
            id="reset_token_cleanup",
            name="password reset token cleanup",
            replace_existing=True,
        )

    async def run_audit_retention(self) -> int:
        """Purge audit entries older than AUDIT_RETENTION_DAYS."""
        logger.debug("Running scheduled audit retention sweep")
        async with self._session_factory() as session:
            try:
                deleted = await cleanup_old_logs(session, days=app_settings.AUDIT_RETENTION_DAYS)
                await session.commit()  # Commit since cleanup_old_logs doesn't commit
            except Exception as e:
                logger.error("Scheduled audit retention sweep failed: %s", e)
                await session.rollback()
                return 0

        if deleted > 0:
            logger.info(
                "Audit retention: purged %s entries older than %s days",
                deleted,
                app_settings.AUDIT_RETENTION_DAYS,
            )
        return deleted

    async def run_reset_token_cleanup(self) -> int:
        """Delete expired and used password reset tokens."""
        async with self._session_factory() as session:
            try:
                deleted = await cleanup_expired_reset_tokens(session)
                await session.commit()
            except Exception as e:
                logger.error("Scheduled reset token cleanup failed: %s", e)
                await session.rollback()
                return 0

        if deleted > 0:
            logger.debug("Removed %s expired password reset tokens", deleted)
        return deleted


scheduler_service = SchedulerService()
