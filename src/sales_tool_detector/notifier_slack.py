from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

import httpx

from sales_tool_detector.config import Settings
from sales_tool_detector.models import NotificationEvent
from sales_tool_detector.storage import PipelineStore, iso_utc, utc_now

logger = logging.getLogger(__name__)

Sender = Callable[[str, str, float], None]

MAX_EVENTS_PER_MESSAGE = 30
SLACK_TIMEOUT_SECONDS = 20.0


def send_slack_message(webhook_url: str, message_text: str, timeout_seconds: float = 20.0) -> None:
    response = httpx.post(
        webhook_url,
        json={"text": message_text},
        timeout=timeout_seconds,
        follow_redirects=True,
    )
    response.raise_for_status()


def build_message(events: list[NotificationEvent]) -> str:
    lines = [f"[sales-tool-detector] {len(events)} new notification(s)"]
    for event in events[:MAX_EVENTS_PER_MESSAGE]:
        line = f"- [{event.notification_type}] {event.title}"
        if event.message:
            line += f": {event.message}"
        job_url = event.metadata.get("job_url")
        if job_url:
            line += f" ({job_url})"
        lines.append(line)
    if len(events) > MAX_EVENTS_PER_MESSAGE:
        lines.append(f"- ... and {len(events) - MAX_EVENTS_PER_MESSAGE} more")
    return "\n".join(lines)


def forward_notifications(
    settings: Settings,
    store: PipelineStore,
    *,
    send_message: Sender = send_slack_message,
    now: datetime | None = None,
) -> int:
    """Post unsent notifications of the configured types to Slack in one message.

    Events are only marked sent after the webhook accepted the message, so a
    failed post is retried on the next call.
    """
    if not settings.slack_webhook_url:
        return 0
    events = store.list_unsent_notifications(settings.slack_types, limit=MAX_EVENTS_PER_MESSAGE * 4)
    if not events:
        return 0

    try:
        send_message(settings.slack_webhook_url, build_message(events), SLACK_TIMEOUT_SECONDS)
    except httpx.HTTPError as exc:
        logger.warning("slack forwarding failed: %s", exc)
        return 0

    store.mark_notifications_sent([event.id for event in events], iso_utc(now or utc_now()))
    return len(events)
