"""
CSRF protection for state-changing live endpoints.

Stateless HMAC double-submit token. When the caller sends X-Session-Token the
token is bound to it, so a token minted for one guest is useless to another.
"""
import hashlib
import hmac
import os
import secrets
import time

from fastapi import APIRouter, Header, HTTPException

CSRF_SECRET = os.getenv("CSRF_SECRET", secrets.token_hex(32))
CSRF_TTL = int(os.getenv("CSRF_TTL_S", "300"))

router = APIRouter(tags=["csrf"])


def _sign(expire: str, binding: str) -> str:
    return hmac.new(CSRF_SECRET.encode(), f"{expire}|{binding}".encode(), hashlib.sha256).hexdigest()


def make_csrf_token(binding: str = "") -> str:
    expire = str(int(time.time()) + CSRF_TTL)
    return f"{expire}:{_sign(expire, binding)}"


def verify_csrf_token(token: str, binding: str = "") -> bool:
    try:
        expire_str, sig = token.split(":", 1)
        if int(time.time()) > int(expire_str):
            return False
    except ValueError:
        return False
    return hmac.compare_digest(_sign(expire_str, binding), sig)


async def require_csrf(
    x_csrf_token: str | None = Header(None, alias="X-CSRF-Token"),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
) -> None:
    if not x_csrf_token or not verify_csrf_token(x_csrf_token, x_session_token or ""):
        raise HTTPException(status_code=403, detail="CSRF check failed")


@router.get("/csrf/token")
async def get_csrf_token(
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
) -> dict:
    return {"token": make_csrf_token(x_session_token or ""), "ttl": CSRF_TTL}
