"""Unit tests for PlanCatalog lifecycle and DB loading."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from live_tutor.models.usage import UNLIMITED, PlanLimits
from live_tutor.services.plan_catalog import (
    DEFAULT_PLANS,
    PlanCatalog,
    PlanCatalogNotReady,
    load_plans_from_db,
)


def test_limits_before_refresh_raises():
    """The catalog has an explicit not-initialized state."""
    catalog = PlanCatalog()
    assert catalog.ready is False
    with pytest.raises(PlanCatalogNotReady):
        catalog.limits_for("free")


@pytest.mark.asyncio
async def test_refresh_without_loader_uses_defaults():
    catalog = PlanCatalog()
    await catalog.refresh()
    assert catalog.ready is True
    assert catalog.limits_for("guest") == DEFAULT_PLANS["guest"]
    assert catalog.limits_for("pro").sessions_limit == UNLIMITED


@pytest.mark.asyncio
async def test_unknown_plan_falls_back():
    catalog = PlanCatalog(fallback_plan="free")
    await catalog.refresh()
    assert catalog.limits_for("enterprise-trial") == DEFAULT_PLANS["free"]


@pytest.mark.asyncio
async def test_failed_first_load_falls_back_to_defaults():
    catalog = PlanCatalog(loader=AsyncMock(side_effect=RuntimeError("db down")))
    await catalog.refresh()
    assert catalog.ready is True
    assert catalog.limits_for("free") == DEFAULT_PLANS["free"]


@pytest.mark.asyncio
async def test_failed_reload_keeps_previous_plans():
    custom = {"free": PlanLimits("free", 7, 70, 15)}
    loader = AsyncMock(side_effect=[custom, RuntimeError("db down")])
    catalog = PlanCatalog(loader=loader)

    await catalog.refresh()
    await catalog.refresh()
    assert catalog.limits_for("free").sessions_limit == 7


@pytest.mark.asyncio
async def test_load_plans_from_db_maps_null_to_unlimited():
    conn = AsyncMock()
    conn.fetch.return_value = [
        {
            "slug": "pro",
            "live_enabled": True,
            "live_sessions_per_day": None,
            "live_minutes_per_day": 300,
            "live_max_session_minutes": 30,
        },
        {
            "slug": "basic",
            "live_enabled": False,
            "live_sessions_per_day": 0,
            "live_minutes_per_day": 0,
            "live_max_session_minutes": None,
        },
    ]
    pool = MagicMock()
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)

    with patch("live_tutor.services.transcript_store.get_pool", AsyncMock(return_value=pool)):
        plans = await load_plans_from_db()

    assert plans["pro"].unlimited_sessions is True
    assert plans["pro"].minutes_limit == 300
    assert plans["basic"].live_enabled is False
    assert plans["basic"].max_session_minutes == 0
