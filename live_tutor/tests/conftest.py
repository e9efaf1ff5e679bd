"""
Shared test configuration for the live tutor backend.

Bypasses CSRF protection and rate limiting globally; test_csrf.py restores the
real CSRF check with a fixture. FakeTransport stands in for the Gemini Live
endpoint: tests push inbound events and inspect what was sent.
"""
import asyncio
from typing import Any, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from live_tutor.live.transport import LiveTransport
from live_tutor.main import app
from live_tutor.routers import usage
from live_tutor.routers.csrf import require_csrf
from live_tutor.services.plan_catalog import PlanCatalog
from live_tutor.services.usage_ledger import InMemoryUsageStore, UsageLedger

# Bypass CSRF in all unit tests
app.dependency_overrides[require_csrf] = lambda: None
# Counters would otherwise accumulate across tests
usage.limiter.enabled = False

END_OF_STREAM = object()


class FakeTransport(LiveTransport):
    def __init__(self, open_delay: float = 0.0, open_error: Optional[Exception] = None):
        self.open_delay = open_delay
        self.open_error = open_error
        self.send_error: Optional[Exception] = None
        self.open_calls: list[Optional[str]] = []
        self.close_calls = 0
        self.sent: list[tuple] = []
        self.inbound: asyncio.Queue = asyncio.Queue()

    async def open(self, resume_handle: Optional[str] = None) -> None:
        self.open_calls.append(resume_handle)
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error

    async def close(self) -> None:
        self.close_calls += 1

    async def events(self):
        while True:
            item = await self.inbound.get()
            if item is END_OF_STREAM:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def push(self, *events) -> None:
        for event in events:
            self.inbound.put_nowait(event)

    def end(self) -> None:
        self.inbound.put_nowait(END_OF_STREAM)

    def drop(self, error: Exception) -> None:
        self.inbound.put_nowait(error)

    async def _send(self, *item: Any) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(item)

    async def send_audio(self, pcm: bytes) -> None:
        await self._send("audio", pcm)

    async def send_image(self, data: bytes, mime_type: str = "image/jpeg") -> None:
        await self._send("image", data, mime_type)

    async def send_text(self, text: str) -> None:
        await self._send("text", text)

    async def send_tool_result(self, call_id: Optional[str], name: str, result: Any) -> None:
        await self._send("tool_result", call_id, name, result)


async def settle() -> None:
    """Let the receive, send and persistence tasks run."""
    await asyncio.sleep(0.02)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def ledger() -> UsageLedger:
    return UsageLedger(InMemoryUsageStore(), PlanCatalog())


@pytest.fixture
def use_ledger(ledger):
    """Route the HTTP layer to a fresh in-memory ledger."""
    app.dependency_overrides[usage.get_ledger] = lambda: ledger
    yield ledger
    app.dependency_overrides.pop(usage.get_ledger, None)


@pytest.fixture
async def client():
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
