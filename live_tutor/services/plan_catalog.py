"""
Plan limits for live sessions.

The catalog is an explicitly owned object: nothing is loaded until refresh()
is awaited, and limits_for() raises PlanCatalogNotReady before that.
"""
import logging
from typing import Awaitable, Callable, Optional

from live_tutor.models.usage import UNLIMITED, PlanLimits

logger = logging.getLogger(__name__)

DEFAULT_PLANS: dict[str, PlanLimits] = {
    "guest": PlanLimits("guest", sessions_limit=1, minutes_limit=5, max_session_minutes=5),
    "free": PlanLimits("free", sessions_limit=2, minutes_limit=10, max_session_minutes=10),
    "pro": PlanLimits("pro", sessions_limit=UNLIMITED, minutes_limit=300, max_session_minutes=30),
}

PlanLoader = Callable[[], Awaitable[dict[str, PlanLimits]]]


class PlanCatalogNotReady(RuntimeError):
    """limits_for() was called before the first refresh()."""


class PlanCatalog:
    def __init__(self, loader: Optional[PlanLoader] = None, fallback_plan: str = "free"):
        self._loader = loader
        self._fallback_plan = fallback_plan
        self._plans: Optional[dict[str, PlanLimits]] = None

    @property
    def ready(self) -> bool:
        return self._plans is not None

    async def refresh(self) -> None:
        """
        Reload plans. A failed reload keeps the previous plans; a failed first
        load falls back to DEFAULT_PLANS.
        """
        if self._loader is None:
            self._plans = dict(DEFAULT_PLANS)
            return
        try:
            plans = await self._loader()
        except Exception as e:
            logger.error(f"Plan catalog refresh failed: {e}")
            if self._plans is None:
                self._plans = dict(DEFAULT_PLANS)
            return
        self._plans = plans or dict(DEFAULT_PLANS)
        logger.info(f"Plan catalog loaded {len(self._plans)} plans")

    def limits_for(self, slug: str) -> PlanLimits:
        if self._plans is None:
            raise PlanCatalogNotReady("PlanCatalog.refresh() has not completed")
        plan = self._plans.get(slug) or self._plans.get(self._fallback_plan)
        if plan is None:
            logger.warning(f"Unknown plan {slug!r} and no fallback, using free defaults")
            return DEFAULT_PLANS["free"]
        return plan


def _limit(value) -> float:
    """NULL in the plans table means unlimited."""
    return UNLIMITED if value is None else value


async def load_plans_from_db() -> dict[str, PlanLimits]:
    from live_tutor.services.transcript_store import get_pool

    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            "SELECT slug, live_enabled, live_sessions_per_day, live_minutes_per_day, "
            "live_max_session_minutes FROM pricing_plans"
        )
    return {
        r["slug"]: PlanLimits(
            slug=r["slug"],
            sessions_limit=int(_limit(r["live_sessions_per_day"])),
            minutes_limit=float(_limit(r["live_minutes_per_day"])),
            max_session_minutes=float(r["live_max_session_minutes"] or 0),
            live_enabled=bool(r["live_enabled"]),
        )
        for r in rows
    }
