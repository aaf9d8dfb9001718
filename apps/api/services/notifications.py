"""Operator alerts for media pipeline failures."""

from __future__ import annotations

import logging

import httpx

from config import settings

logger = logging.getLogger(__name__)


async def send_admin_alert(subject: str, message: str) -> None:
    """Log an admin alert and forward it to the configured webhook. Never raises."""
    logger.error("ADMIN ALERT: %s - %s", subject, message)

    webhook_url = (settings.ADMIN_ALERT_WEBHOOK_URL or "").strip()
    if not webhook_url:
        return

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                webhook_url,
                json={"subject": subject, "message": message, "text": f"{subject}: {message}"},
            )
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Admin alert delivery to webhook failed: %s", exc)
