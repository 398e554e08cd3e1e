"""Dispatch device events to matching webhooks."""

from __future__ import annotations

import asyncio
from typing import Protocol

from sparkcloud.config import WebhooksConfig
from sparkcloud.core.bus import Event, EventBus
from sparkcloud.errors import WebhookCallError
from sparkcloud.utils.logging import get_logger
from sparkcloud.webhooks.invoker import WebhookInvoker
from sparkcloud.webhooks.models import RequestDescriptor, Webhook, WebhookResponse
from sparkcloud.webhooks.publisher import (
    ERROR_PREFIX,
    RESPONSE_PREFIX,
    SENT_PREFIX,
    ResponsePublisher,
)
from sparkcloud.webhooks.request import compile_request

log = get_logger(__name__)

# Events the engine publishes itself; never used as webhook triggers
_RESERVED_PREFIXES = (SENT_PREFIX, RESPONSE_PREFIX, ERROR_PREFIX)


class WebhookRepository(Protocol):
    async def get_all(self, owner_id: str | None = None) -> list[Webhook]: ...


class WebhookManager:
    """Runs webhooks for incoming events.

    ``run_webhook`` returns as soon as the request is compiled and the
    ``hook-sent`` notification is out; the HTTP call and the republishing
    of its outcome happen in a detached task.
    """

    def __init__(
        self,
        repository: WebhookRepository,
        bus: EventBus,
        invoker: WebhookInvoker | None = None,
        config: WebhooksConfig | None = None,
    ) -> None:
        self._repository = repository
        self._bus = bus
        self._config = config or WebhooksConfig()
        self._invoker = invoker or WebhookInvoker(timeout=self._config.request_timeout)
        self._publisher = ResponsePublisher(bus, self._config)
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._bus.subscribe("", self.on_event)
        log.info("webhook_manager_started")

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self._invoker.close()
        log.info("webhook_manager_stopped")

    async def wait_idle(self) -> None:
        """Wait until every in-flight dispatch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def on_event(self, event: Event) -> None:
        if event.name.startswith(_RESERVED_PREFIXES):
            return

        webhooks = await self._repository.get_all()
        for webhook in webhooks:
            if webhook.matches(event):
                self.run_webhook(webhook, event)

    def run_webhook(self, webhook: Webhook, event: Event) -> None:
        self._publisher.publish_sent(event)

        try:
            descriptor = compile_request(webhook, event)
        except Exception as e:
            log.exception("webhook_compile_failed", webhook_id=webhook.id, event_name=event.name)
            self._publish_failure(webhook, event, WebhookCallError(f"Invalid webhook: {e}"))
            return

        log.info(
            "webhook_sent",
            webhook_id=webhook.id,
            event_name=event.name,
            method=descriptor.method,
            url=descriptor.url,
        )
        task = asyncio.create_task(
            self._dispatch(webhook, event, descriptor),
            name=f"webhook-{webhook.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(
        self,
        webhook: Webhook,
        event: Event,
        descriptor: RequestDescriptor,
    ) -> None:
        try:
            response = await self._call_webhook(descriptor)
            log.info(
                "webhook_response",
                webhook_id=webhook.id,
                event_name=event.name,
                status=response.status,
            )
            log.debug("webhook_response_body", webhook_id=webhook.id, body=response.body)
            self._publisher.publish_response(webhook, event, response)
        except WebhookCallError as e:
            log.warning(
                "webhook_call_failed",
                webhook_id=webhook.id,
                event_name=event.name,
                status=e.status,
                error=e.message,
            )
            self._publish_failure(webhook, event, e)
        except Exception:
            log.exception("dispatch_failed", webhook_id=webhook.id, event_name=event.name)
            self._publish_failure(webhook, event, WebhookCallError("Webhook dispatch failed"))

    def _publish_failure(self, webhook: Webhook, event: Event, error: WebhookCallError) -> None:
        try:
            self._publisher.publish_error(webhook, event, error)
        except Exception:
            log.exception("error_publish_failed", webhook_id=webhook.id, event_name=event.name)

    async def _call_webhook(self, descriptor: RequestDescriptor) -> WebhookResponse:
        return await self._invoker.invoke(descriptor)
