"""
Request-level rate limiting with progressive delay.

An in-process, per-key sliding counter that sits in front of the
credential-bearing endpoints. Repeated attempts from the same key are first
slowed down, then rejected outright for a growing period. This is defense in
depth only: state lives in process memory, is not shared between instances
and is lost on restart. Account lockout in ``jobtrail.services.lockout`` is
the durable control.

The read-check-increment section of ``RateLimiter.check`` never awaits, so
the event loop serializes it per key.
"""

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from jobtrail.core.config import settings
from jobtrail.models.audit_log import AuditEvent
from jobtrail.services.audit import audit_log

logger = logging.getLogger(__name__)

# (highest attempt count so far, delay seconds); anything above the last tier gets OVERFLOW_DELAY_SECONDS
DEFAULT_DELAY_TIERS: tuple[tuple[int, float], ...] = (
    (1, 0.0),
    (3, 2.0),
    (5, 5.0),
    (10, 15.0),
)
OVERFLOW_DELAY_SECONDS = 60.0

# (minimum attempts after increment, lockout duration), harshest first
DEFAULT_LOCKOUT_TIERS: tuple[tuple[int, timedelta], ...] = (
    (15, timedelta(hours=24)),
    (10, timedelta(minutes=60)),
    (8, timedelta(minutes=30)),
    (6, timedelta(minutes=15)),
)

STALE_RECORD_AGE = timedelta(hours=24)


def by_ip(ip_address: str | None, identifier: str | None = None) -> str:
    return ip_address or "unknown"


def by_ip_and_email(ip_address: str | None, email: str | None = None) -> str:
    return f"{ip_address or 'unknown'}-{(email or 'unknown').strip().lower()}"


def by_ip_and_user(ip_address: str | None, user_id: str | None = None) -> str:
    return f"{ip_address or 'unknown'}-{user_id or 'anonymous'}"


KeyFunc = Callable[[str | None, str | None], str]


@dataclass
class RateLimitRecord:
    attempts: int = 0
    last_attempt: float = 0.0
    lockout_until: float | None = None


@dataclass
class RateLimitContext:
    """Request provenance handed to ``on_limit_reached`` callbacks."""

    ip_address: str | None = None
    user_agent: str | None = None
    identifier: str | None = None
    db: AsyncSession | None = None


LimitCallback = Callable[[str, RateLimitRecord, RateLimitContext], Awaitable[None]]


@dataclass
class RateLimitDecision:
    allowed: bool
    attempts: int
    retry_after_ms: int | None = None
    delay_ms: int = 0
    is_near_limit: bool = False


@dataclass
class RateLimitStatus:
    attempts: int
    locked: bool
    retry_after_ms: int | None
    next_delay_ms: int


@dataclass(frozen=True)
class RateLimitPolicy:
    """Per-endpoint-class limiter configuration."""

    name: str
    window: timedelta
    max_attempts: int
    key_func: KeyFunc = by_ip
    delay_tiers: tuple[tuple[int, float], ...] = DEFAULT_DELAY_TIERS
    lockout_tiers: tuple[tuple[int, timedelta], ...] = DEFAULT_LOCKOUT_TIERS
    on_limit_reached: LimitCallback | None = field(default=None, compare=False)

    def key(self, ip_address: str | None, identifier: str | None = None) -> str:
        """Derive the store key; namespaced by policy so endpoint classes never share counters."""
        return f"{self.name}:{self.key_func(ip_address, identifier)}"

    def delay_for(self, attempts: int) -> float:
        """Artificial delay for a request given the attempts recorded before it."""
        for ceiling, delay in self.delay_tiers:
            if attempts <= ceiling:
                return delay
        return OVERFLOW_DELAY_SECONDS

    def lockout_for(self, attempts: int) -> timedelta | None:
        for floor, duration in self.lockout_tiers:
            if attempts >= floor:
                return duration
        return None


class RateLimiter:
    """
    In-memory rate limiter.

    ``clock`` returns seconds on a monotonic scale and ``sleep`` performs the
    artificial delay; both are injectable so tests can control time.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_delay: float | None = None,
        cleanup_interval: float | None = None,
    ):
        self._clock = clock
        self._sleep = sleep
        self.max_delay = max_delay if max_delay is not None else settings.RATE_LIMIT_MAX_DELAY_SECONDS
        self.cleanup_interval = (
            cleanup_interval
            if cleanup_interval is not None
            else settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS
        )
        self._records: dict[str, RateLimitRecord] = {}
        self._cleanup_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._records)

    async def check(
        self,
        key: str,
        policy: RateLimitPolicy,
        context: RateLimitContext | None = None,
    ) -> RateLimitDecision:
        """
        Count one attempt for ``key`` and decide whether it may proceed.

        Never raises: an internal failure is logged and the request allowed,
        since this layer guards availability rather than correctness.
        """
        try:
            return await self._check(key, policy, context or RateLimitContext())
        except Exception as e:
            logger.error(f"Rate limiter failure for policy {policy.name}: {e}")
            return RateLimitDecision(allowed=True, attempts=0)

    async def _check(
        self, key: str, policy: RateLimitPolicy, context: RateLimitContext
    ) -> RateLimitDecision:
        now = self._clock()
        record = self._records.get(key)
        if record is None:
            record = RateLimitRecord(last_attempt=now)
            self._records[key] = record

        # Locked keys are rejected without counting the attempt
        if record.lockout_until is not None and now < record.lockout_until:
            return RateLimitDecision(
                allowed=False,
                attempts=record.attempts,
                retry_after_ms=_to_ms(record.lockout_until - now),
            )

        if now - record.last_attempt > policy.window.total_seconds():
            record.attempts = 0
            record.lockout_until = None

        delay = min(policy.delay_for(record.attempts), self.max_delay)

        record.attempts += 1
        record.last_attempt = now

        lockout = policy.lockout_for(record.attempts)
        if lockout is not None:
            record.lockout_until = now + lockout.total_seconds()
            logger.warning(
                f"Rate limit lockout on {policy.name} after {record.attempts} attempts "
                f"for {lockout.total_seconds() / 60:.0f} minutes"
            )
            await self._fire_limit_reached(key, record, policy, context)
            return RateLimitDecision(
                allowed=False,
                attempts=record.attempts,
                retry_after_ms=_to_ms(lockout.total_seconds()),
            )

        attempts = record.attempts
        if delay > 0:
            await self._sleep(delay)
            # Another request may have locked the key while this one waited
            current = self._records.get(key)
            after = self._clock()
            if current is not None and current.lockout_until is not None and after < current.lockout_until:
                return RateLimitDecision(
                    allowed=False,
                    attempts=current.attempts,
                    retry_after_ms=_to_ms(current.lockout_until - after),
                    delay_ms=_to_ms(delay),
                )

        return RateLimitDecision(
            allowed=True,
            attempts=attempts,
            delay_ms=_to_ms(delay),
            is_near_limit=attempts >= policy.max_attempts - 2,
        )

    async def _fire_limit_reached(
        self,
        key: str,
        record: RateLimitRecord,
        policy: RateLimitPolicy,
        context: RateLimitContext,
    ) -> None:
        if policy.on_limit_reached is None:
            return
        try:
            await policy.on_limit_reached(key, record, context)
        except Exception as e:
            logger.error(f"on_limit_reached callback for {policy.name} failed: {e}")

    def reset(self, key: str) -> bool:
        """Forget a key entirely, e.g. after a successful login. True if it existed."""
        return self._records.pop(key, None) is not None

    def status(self, key: str, policy: RateLimitPolicy | None = None) -> RateLimitStatus:
        record = self._records.get(key)
        if record is None:
            return RateLimitStatus(attempts=0, locked=False, retry_after_ms=None, next_delay_ms=0)

        now = self._clock()
        locked = record.lockout_until is not None and now < record.lockout_until
        delay_policy = policy or LOGIN_POLICY
        return RateLimitStatus(
            attempts=record.attempts,
            locked=locked,
            retry_after_ms=_to_ms(record.lockout_until - now) if locked else None,
            next_delay_ms=_to_ms(min(delay_policy.delay_for(record.attempts), self.max_delay)),
        )

    def cleanup(self) -> int:
        """
        Drop keys idle for 24 hours whose lockout, if any, has passed.

        Returns:
            Number of keys removed
        """
        now = self._clock()
        horizon = now - STALE_RECORD_AGE.total_seconds()
        stale = [
            key
            for key, record in self._records.items()
            if record.last_attempt < horizon
            and (record.lockout_until is None or record.lockout_until <= now)
        ]
        for key in stale:
            del self._records[key]
        if stale:
            logger.debug(f"Rate limiter cleanup removed {len(stale)} stale keys")
        return len(stale)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()

    def start(self) -> None:
        """Start the periodic cleanup task."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Rate limiter cleanup started")

    async def stop(self) -> None:
        """Stop the periodic cleanup task."""
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None
        logger.info("Rate limiter cleanup stopped")


def _to_ms(seconds: float) -> int:
    return max(0, math.ceil(seconds * 1000))


# Escalation callbacks: record limit breaches in the audit log when the
# request carried a database session.

async def _escalate_login(key: str, record: RateLimitRecord, context: RateLimitContext) -> None:
    if context.db is None:
        return
    await audit_log(
        context.db,
        AuditEvent.MULTIPLE_FAILED_ATTEMPTS,
        details={"context": "login", "attempts": record.attempts},
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        successful=False,
    )
    await audit_log(
        context.db,
        AuditEvent.SUSPICIOUS_ACTIVITY,
        details={
            "activity": "excessive_login_attempts",
            "attempts": record.attempts,
            "lockout_seconds": _remaining_seconds(record),
        },
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        successful=False,
    )
    await context.db.commit()


async def _escalate_password_reset(
    key: str, record: RateLimitRecord, context: RateLimitContext
) -> None:
    if context.db is None:
        return
    await audit_log(
        context.db,
        AuditEvent.SUSPICIOUS_ACTIVITY,
        details={
            "activity": "excessive_password_reset_requests",
            "attempts": record.attempts,
            "email": context.identifier,
        },
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        successful=False,
    )
    await context.db.commit()


def _remaining_seconds(record: RateLimitRecord) -> int:
    if record.lockout_until is None:
        return 0
    return max(0, int(record.lockout_until - record.last_attempt))


LOGIN_POLICY = RateLimitPolicy(
    name="login",
    window=timedelta(minutes=15),
    max_attempts=5,
    key_func=by_ip,
    on_limit_reached=_escalate_login,
)

PASSWORD_RESET_POLICY = RateLimitPolicy(
    name="password_reset",
    window=timedelta(minutes=60),
    max_attempts=3,
    key_func=by_ip_and_email,
    on_limit_reached=_escalate_password_reset,
)

rate_limiter = RateLimiter()
