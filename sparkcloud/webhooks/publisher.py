"""Republish webhook responses and failures as events."""

from __future__ import annotations

import json
from typing import Any

from sparkcloud.config import WebhooksConfig
from sparkcloud.core.bus import Event, EventBus
from sparkcloud.core.chunker import chunk_payload
from sparkcloud.errors import WebhookCallError
from sparkcloud.utils.logging import get_logger
from sparkcloud.webhooks.models import Webhook, WebhookResponse
from sparkcloud.webhooks.templates import compile_template

log = get_logger(__name__)

RESPONSE_PREFIX = "hook-response/"
ERROR_PREFIX = "hook-error/"
SENT_PREFIX = "hook-sent/"


def topic_context(event: Event) -> dict[str, Any]:
    """Tokens available to response and error topic templates."""
    return {
        "SPARK_CORE_ID": event.device_id,
        "SPARK_EVENT_NAME": event.name,
        "SPARK_EVENT_VALUE": event.data,
        "SPARK_PUBLISHED_AT": event.published_at,
        "PARTICLE_DEVICE_ID": event.device_id,
        "PARTICLE_EVENT_NAME": event.name,
        "PARTICLE_EVENT_VALUE": event.data,
        "PARTICLE_PUBLISHED_AT": event.published_at,
    }


def response_topic(webhook: Webhook, event: Event) -> str:
    template = webhook.response_topic or f"{RESPONSE_PREFIX}{event.name}"
    return compile_template(template, topic_context(event))


def error_topic(webhook: Webhook, event: Event) -> str:
    template = webhook.error_response_topic or f"{ERROR_PREFIX}{event.name}"
    return compile_template(template, topic_context(event))


def response_payload(webhook: Webhook, response: WebhookResponse) -> str:
    if not webhook.response_template:
        return response.text
    return compile_template(webhook.response_template, _response_context(response))


def _response_context(response: WebhookResponse) -> dict[str, Any]:
    try:
        parsed = json.loads(response.body)
    except (ValueError, RecursionError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ResponsePublisher:
    def __init__(self, bus: EventBus, config: WebhooksConfig | None = None) -> None:
        self._bus = bus
        self._config = config or WebhooksConfig()

    def publish_response(self, webhook: Webhook, event: Event, response: WebhookResponse) -> None:
        self._publish_chunks(
            response_topic(webhook, event),
            response_payload(webhook, response),
            event,
        )

    def publish_error(self, webhook: Webhook, event: Event, error: WebhookCallError) -> None:
        self._publish_chunks(error_topic(webhook, event), error.message, event)

    def publish_sent(self, event: Event) -> None:
        self._publish(Event(name=f"{SENT_PREFIX}{event.name}", data=None, user_id=event.user_id))

    def _publish_chunks(self, topic: str, payload: str, event: Event) -> None:
        chunks = chunk_payload(payload, self._config.chunk_size)
        if len(chunks) > self._config.max_chunks:
            log.warning(
                "webhook_response_truncated",
                topic=topic,
                chunks=len(chunks),
                max_chunks=self._config.max_chunks,
            )
            chunks = chunks[: self._config.max_chunks]

        for index, chunk in enumerate(chunks):
            self._publish(Event(name=f"{topic}/{index}", data=chunk, user_id=event.user_id))

    def _publish(self, event: Event) -> None:
        try:
            self._bus.publish(event)
        except Exception:
            log.exception("event_publish_failed", event_name=event.name)
