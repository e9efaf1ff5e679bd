"""Route tests for /live/config, /health and /."""
import pytest

from live_tutor.live.tools import TOOL_NAMES


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_root_lists_docs(client):
    resp = await client.get("/")
    assert resp.json()["docs"] == "/docs"


@pytest.mark.asyncio
async def test_live_config_for_signed_in_user(client, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    resp = await client.get("/live/config", headers={"X-User-Id": "u-1"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["model"].startswith("gemini")
    assert data["max_duration_s"] == 30 * 60
    assert data["input_sample_rate"] == 16000
    assert data["output_sample_rate"] == 24000
    assert data["tools"] == TOOL_NAMES
    assert data["features"]["tools_enabled"] is True
    assert "test-key" not in resp.text


@pytest.mark.asyncio
async def test_live_config_guest_gets_shorter_sessions(client, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    resp = await client.get("/live/config")
    assert resp.json()["max_duration_s"] == 10 * 60


@pytest.mark.asyncio
async def test_live_config_without_api_key_is_500(client, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    resp = await client.get("/live/config")
    assert resp.status_code == 500
