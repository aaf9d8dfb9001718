from unittest.mock import patch

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from config import settings
from main import app
from services.notifications import send_admin_alert

RealAsyncClient = httpx.AsyncClient


def _client_with(handler):
    def factory(*args, **kwargs):
        return RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return factory


@pytest.mark.asyncio
async def test_alert_is_posted_to_webhook():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(200)

    with (
        patch.object(settings, "ADMIN_ALERT_WEBHOOK_URL", "https://hooks.test/alerts"),
        patch("services.notifications.httpx.AsyncClient", _client_with(handler)),
    ):
        await send_admin_alert("Media Processing Failed", "Job post-p1-media-0 failed")

    assert len(received) == 1
    assert str(received[0].url) == "https://hooks.test/alerts"
    assert b"post-p1-media-0" in received[0].content


@pytest.mark.asyncio
async def test_webhook_errors_are_swallowed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502)

    with (
        patch.object(settings, "ADMIN_ALERT_WEBHOOK_URL", "https://hooks.test/alerts"),
        patch("services.notifications.httpx.AsyncClient", _client_with(handler)),
    ):
        await send_admin_alert("Media Processing Failed", "boom")


@pytest.mark.asyncio
async def test_alert_without_webhook_only_logs(caplog):
    with patch.object(settings, "ADMIN_ALERT_WEBHOOK_URL", ""):
        await send_admin_alert("Media Processing Failed", "logged only")
    assert "ADMIN ALERT" in caplog.text


@pytest.mark.asyncio
async def test_readiness_reports_missing_media_tools():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        with patch("routers.health.shutil.which", return_value=None):
            missing = await client.get("/health/ready")
        with patch("routers.health.shutil.which", return_value="/usr/bin/ffmpeg"):
            ready = await client.get("/health/ready")
        live = await client.get("/health/live")

    assert missing.status_code == 503
    assert missing.json()["missing"] == ["ffmpeg", "ffprobe"]
    assert ready.json() == {"ready": True}
    assert live.json() == {"alive": True}
