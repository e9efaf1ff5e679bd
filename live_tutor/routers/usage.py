"""
Live usage router.

GET  /live/usage → quota status for the calling identity
POST /live/usage → {action: start|end, duration_minutes?}

Identity comes from headers set by the upstream auth layer (X-User-Id,
X-User-Plan); guests are metered by X-Session-Token, X-Device-Fingerprint or
client IP, in that order.
"""
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from live_tutor.models.usage import Identity, UsageCheck
from live_tutor.routers.csrf import require_csrf
from live_tutor.services.usage_ledger import (
    IdentityRequiredError,
    UsageLedger,
    build_ledger,
    resolve_identity,
)

limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/live", tags=["live"])
logger = logging.getLogger(__name__)

_ledger: UsageLedger | None = None


def get_ledger() -> UsageLedger:
    global _ledger
    if _ledger is None:
        _ledger = build_ledger()
    return _ledger


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


async def get_identity(
    request: Request,
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    x_user_plan: str | None = Header(None, alias="X-User-Plan"),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    x_device_fingerprint: str | None = Header(None, alias="X-Device-Fingerprint"),
) -> Identity:
    try:
        return resolve_identity(
            user_id=x_user_id,
            plan=x_user_plan,
            session_token=x_session_token,
            fingerprint=x_device_fingerprint,
            client_ip=client_ip(request),
        )
    except IdentityRequiredError:
        raise HTTPException(status_code=401, detail="Unable to identify caller")


class LiveUsage(BaseModel):
    enabled: bool
    sessions_used: int
    sessions_limit: int
    sessions_remaining: int
    minutes_used: float
    minutes_limit: float
    minutes_remaining: float
    max_session_minutes: float
    unlimited: bool
    can_start: bool
    message: str | None = None

    @classmethod
    def from_check(cls, check: UsageCheck) -> "LiveUsage":
        return cls(
            enabled=check.live_enabled,
            sessions_used=check.sessions_used,
            sessions_limit=check.sessions_limit,
            sessions_remaining=check.sessions_remaining,
            minutes_used=round(check.minutes_used, 2),
            minutes_limit=check.minutes_limit,
            minutes_remaining=round(check.minutes_remaining, 2),
            max_session_minutes=check.max_session_minutes,
            unlimited=check.unlimited,
            can_start=check.allowed,
            message=check.message,
        )


class UsageResponse(BaseModel):
    success: bool = True
    live: LiveUsage
    error: str | None = None


class UsageUpdateRequest(BaseModel):
    action: Literal["start", "end"]
    duration_minutes: float | None = Field(default=None, ge=0)


@router.get("/usage", response_model=UsageResponse)
async def get_live_usage(
    identity: Identity = Depends(get_identity),
    ledger: UsageLedger = Depends(get_ledger),
) -> UsageResponse:
    try:
        check = await ledger.can_start(identity)
    except Exception as e:
        logger.error(f"Failed to get live usage for {identity.key}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get usage")
    return UsageResponse(live=LiveUsage.from_check(check))


@router.post("/usage", response_model=UsageResponse, dependencies=[Depends(require_csrf)])
@limiter.limit("30/minute")
async def update_live_usage(
    request: Request,
    body: UsageUpdateRequest,
    identity: Identity = Depends(get_identity),
    ledger: UsageLedger = Depends(get_ledger),
):
    """
    Record a session start or end.

    start is check-and-increment in one step: a refused start returns 403
    with the current quota and records nothing. end adds the elapsed minutes.
    """
    try:
        if body.action == "start":
            check = await ledger.try_start(identity)
            if not check.allowed:
                payload = UsageResponse(
                    success=False,
                    error="Live session limit reached",
                    live=LiveUsage.from_check(check),
                )
                return JSONResponse(status_code=403, content=payload.model_dump())
        else:
            await ledger.record_end(identity, body.duration_minutes or 0.0)
        updated = await ledger.can_start(identity)
    except Exception as e:
        logger.error(f"Failed to update live usage for {identity.key}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update usage")

    return UsageResponse(live=LiveUsage.from_check(updated))
