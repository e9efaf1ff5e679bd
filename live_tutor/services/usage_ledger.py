"""
Usage ledger: gates live session starts and records consumption per identity.

Accounting periods are UTC days; resetting them is a scheduler's job.

record_start() after can_start() leaves a check-then-increment race between
concurrent attempts from one identity (two tabs). try_start() closes it by
doing the check and the increment as one conditional store operation.
"""
import abc
import asyncio
import logging
import os
from datetime import date, datetime, timezone
from typing import Callable, Optional

from live_tutor.models.usage import Identity, IdentityKind, PlanLimits, UsageCheck, UsageRecord
from live_tutor.services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)


class IdentityRequiredError(ValueError):
    """No user id, session token, fingerprint or IP to meter against."""


class QuotaExceededError(Exception):
    """A session start was refused; carries the quota details for the UI."""

    def __init__(self, check: UsageCheck):
        super().__init__(check.message or "Live session limit reached")
        self.check = check


def resolve_identity(
    user_id: Optional[str] = None,
    plan: Optional[str] = None,
    session_token: Optional[str] = None,
    fingerprint: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> Identity:
    """
    Pick the metering key: authenticated user, else the first non-empty of
    session token, device fingerprint, client IP.
    """
    if user_id:
        return Identity(key=f"user:{user_id}", kind=IdentityKind.USER, plan=plan or "free")

    for prefix, value in (("session", session_token), ("fp", fingerprint), ("ip", client_ip)):
        if value and value.strip():
            return Identity(key=f"{prefix}:{value.strip()}", kind=IdentityKind.GUEST, plan="guest")

    raise IdentityRequiredError("No identity available for usage metering")


def utc_period() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def evaluate(record: UsageRecord, limits: PlanLimits) -> UsageCheck:
    """Both the session and the minute budget must have room. Negative = unlimited."""
    sessions_ok = limits.unlimited_sessions or record.sessions_used < limits.sessions_limit
    minutes_ok = limits.unlimited_minutes or record.minutes_used < limits.minutes_limit
    allowed = limits.live_enabled and sessions_ok and minutes_ok

    message = None
    if not limits.live_enabled:
        message = "Live sessions are not available on this plan."
    elif not sessions_ok:
        message = f"Daily live session limit reached ({limits.sessions_limit}). Upgrade for more sessions!"
    elif not minutes_ok:
        message = f"Daily live minutes used up ({limits.minutes_limit:g}). Upgrade for more time!"

    return UsageCheck(
        allowed=allowed,
        sessions_used=record.sessions_used,
        sessions_limit=limits.sessions_limit,
        sessions_remaining=(
            -1 if limits.unlimited_sessions
            else max(0, limits.sessions_limit - record.sessions_used)
        ),
        minutes_used=record.minutes_used,
        minutes_limit=limits.minutes_limit,
        minutes_remaining=(
            -1 if limits.unlimited_minutes
            else max(0.0, limits.minutes_limit - record.minutes_used)
        ),
        max_session_minutes=limits.max_session_minutes,
        live_enabled=limits.live_enabled,
        message=message,
    )


# ── stores ───────────────────────────────────────────────────────────────────

class UsageStore(abc.ABC):
    @abc.abstractmethod
    async def get(self, key: str, period: str) -> Optional[UsageRecord]:
        ...

    @abc.abstractmethod
    async def increment_sessions(self, key: str, period: str) -> UsageRecord:
        ...

    @abc.abstractmethod
    async def add_minutes(self, key: str, period: str, minutes: float) -> UsageRecord:
        ...

    @abc.abstractmethod
    async def increment_sessions_if_allowed(
        self, key: str, period: str, sessions_limit: int, minutes_limit: float,
    ) -> tuple[bool, UsageRecord]:
        """Atomic compare-and-increment. Returns (incremented, record after)."""


class InMemoryUsageStore(UsageStore):
    def __init__(self) -> None:
        self.records: dict[tuple[str, str], UsageRecord] = {}
        self._lock = asyncio.Lock()

    def _record(self, key: str, period: str) -> UsageRecord:
        return self.records.setdefault((key, period), UsageRecord(identity_key=key, period=period))

    async def get(self, key: str, period: str) -> Optional[UsageRecord]:
        record = self.records.get((key, period))
        if record is None:
            return None
        return UsageRecord(key, period, record.sessions_used, record.minutes_used)

    async def increment_sessions(self, key: str, period: str) -> UsageRecord:
        async with self._lock:
            record = self._record(key, period)
            record.sessions_used += 1
            return UsageRecord(key, period, record.sessions_used, record.minutes_used)

    async def add_minutes(self, key: str, period: str, minutes: float) -> UsageRecord:
        async with self._lock:
            record = self._record(key, period)
            record.minutes_used += minutes
            return UsageRecord(key, period, record.sessions_used, record.minutes_used)

    async def increment_sessions_if_allowed(
        self, key: str, period: str, sessions_limit: int, minutes_limit: float,
    ) -> tuple[bool, UsageRecord]:
        async with self._lock:
            record = self._record(key, period)
            sessions_ok = sessions_limit < 0 or record.sessions_used < sessions_limit
            minutes_ok = minutes_limit < 0 or record.minutes_used < minutes_limit
            if sessions_ok and minutes_ok:
                record.sessions_used += 1
            return (
                sessions_ok and minutes_ok,
                UsageRecord(key, period, record.sessions_used, record.minutes_used),
            )


class PostgresUsageStore(UsageStore):
    """live_usage(identity_key, usage_date) rows via asyncpg."""

    async def _pool(self):
        from live_tutor.services.transcript_store import get_pool
        return await get_pool()

    @staticmethod
    def _to_record(key: str, period: str, row) -> UsageRecord:
        return UsageRecord(
            identity_key=key,
            period=period,
            sessions_used=int(row["sessions_used"]),
            minutes_used=float(row["minutes_used"]),
        )

    async def get(self, key: str, period: str) -> Optional[UsageRecord]:
        pool = await self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT sessions_used, minutes_used FROM live_usage "
                "WHERE identity_key = $1 AND usage_date = $2",
                key, date.fromisoformat(period),
            )
        return self._to_record(key, period, row) if row else None

    async def increment_sessions(self, key: str, period: str) -> UsageRecord:
        pool = await self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "INSERT INTO live_usage (identity_key, usage_date, sessions_used, minutes_used) "
                "VALUES ($1, $2, 1, 0) "
                "ON CONFLICT (identity_key, usage_date) DO UPDATE "
                "SET sessions_used = live_usage.sessions_used + 1, updated_at = NOW() "
                "RETURNING sessions_used, minutes_used",
                key, date.fromisoformat(period),
            )
        return self._to_record(key, period, row)

    async def add_minutes(self, key: str, period: str, minutes: float) -> UsageRecord:
        pool = await self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "INSERT INTO live_usage (identity_key, usage_date, sessions_used, minutes_used) "
                "VALUES ($1, $2, 0, $3) "
                "ON CONFLICT (identity_key, usage_date) DO UPDATE "
                "SET minutes_used = live_usage.minutes_used + $3, updated_at = NOW() "
                "RETURNING sessions_used, minutes_used",
                key, date.fromisoformat(period), minutes,
            )
        return self._to_record(key, period, row)

    async def increment_sessions_if_allowed(
        self, key: str, period: str, sessions_limit: int, minutes_limit: float,
    ) -> tuple[bool, UsageRecord]:
        usage_date = date.fromisoformat(period)
        pool = await self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "INSERT INTO live_usage (identity_key, usage_date, sessions_used, minutes_used) "
                    "VALUES ($1, $2, 0, 0) ON CONFLICT (identity_key, usage_date) DO NOTHING",
                    key, usage_date,
                )
                row = await conn.fetchrow(
                    "UPDATE live_usage SET sessions_used = sessions_used + 1, updated_at = NOW() "
                    "WHERE identity_key = $1 AND usage_date = $2 "
                    "AND ($3 < 0 OR sessions_used < $3) AND ($4 < 0 OR minutes_used < $4) "
                    "RETURNING sessions_used, minutes_used",
                    key, usage_date, sessions_limit, minutes_limit,
                )
                if row is not None:
                    return True, self._to_record(key, period, row)
                row = await conn.fetchrow(
                    "SELECT sessions_used, minutes_used FROM live_usage "
                    "WHERE identity_key = $1 AND usage_date = $2",
                    key, usage_date,
                )
        return False, self._to_record(key, period, row)


# ── ledger ───────────────────────────────────────────────────────────────────

class UsageLedger:
    def __init__(
        self,
        store: UsageStore,
        catalog: PlanCatalog,
        period: Callable[[], str] = utc_period,
    ):
        self.store = store
        self.catalog = catalog
        self._period = period

    async def _limits(self, identity: Identity) -> PlanLimits:
        if not self.catalog.ready:
            await self.catalog.refresh()
        return self.catalog.limits_for(identity.plan)

    async def usage(self, identity: Identity) -> UsageRecord:
        period = self._period()
        record = await self.store.get(identity.key, period)
        return record or UsageRecord(identity_key=identity.key, period=period)

    async def can_start(self, identity: Identity) -> UsageCheck:
        limits = await self._limits(identity)
        return evaluate(await self.usage(identity), limits)

    async def record_start(self, identity: Identity) -> UsageRecord:
        """Plain increment. Call only after can_start() allowed this attempt."""
        record = await self.store.increment_sessions(identity.key, self._period())
        logger.info(f"Live session start recorded for {identity.key} ({record.sessions_used} today)")
        return record

    async def record_end(self, identity: Identity, duration_minutes: float) -> UsageRecord:
        """Add elapsed minutes. Not idempotent: call once per session."""
        if duration_minutes < 0:
            raise ValueError("duration_minutes must be non-negative")
        record = await self.store.add_minutes(identity.key, self._period(), duration_minutes)
        logger.info(
            f"Live session end recorded for {identity.key}: "
            f"+{duration_minutes:.2f} min ({record.minutes_used:.2f} today)"
        )
        return record

    async def try_start(self, identity: Identity) -> UsageCheck:
        """Check and increment in one store operation. No side effect when refused."""
        limits = await self._limits(identity)
        if not limits.live_enabled:
            return evaluate(await self.usage(identity), limits)

        incremented, record = await self.store.increment_sessions_if_allowed(
            identity.key, self._period(), limits.sessions_limit, limits.minutes_limit,
        )
        if not incremented:
            return evaluate(record, limits)

        logger.info(f"Live session start recorded for {identity.key} ({record.sessions_used} today)")
        # Report the check as it stood before this start consumed a session.
        before = UsageRecord(record.identity_key, record.period, record.sessions_used - 1, record.minutes_used)
        return evaluate(before, limits)


def build_ledger() -> UsageLedger:
    """LIVE_STORE=postgres meters in the live_usage table, anything else in memory."""
    from live_tutor.services.plan_catalog import load_plans_from_db

    if os.environ.get("LIVE_STORE", "memory").lower() == "postgres":
        logger.info("Usage ledger backed by Postgres")
        return UsageLedger(PostgresUsageStore(), PlanCatalog(loader=load_plans_from_db))
    logger.info("Usage ledger backed by in-memory store")
    return UsageLedger(InMemoryUsageStore(), PlanCatalog())
