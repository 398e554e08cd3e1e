"""Outbound HTTP calls for compiled webhook requests."""

from __future__ import annotations

import json
from typing import Any

import httpx

from sparkcloud.errors import WebhookCallError
from sparkcloud.utils.logging import get_logger
from sparkcloud.webhooks.models import RequestDescriptor, WebhookResponse
from sparkcloud.webhooks.templates import stringify

log = get_logger(__name__)


class WebhookInvoker:
    """Performs webhook calls with a bounded timeout.

    TLS verification is a per-client setting in httpx, so one client is
    kept for verified calls and one for webhooks that disable it.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._clients: dict[bool, httpx.AsyncClient] = {}

    def _client(self, verify: bool) -> httpx.AsyncClient:
        client = self._clients.get(verify)
        if client is None:
            client = httpx.AsyncClient(
                timeout=self._timeout,
                verify=verify,
                transport=self._transport,
            )
            self._clients[verify] = client
        return client

    async def invoke(self, descriptor: RequestDescriptor) -> WebhookResponse:
        headers = dict(descriptor.headers or {})
        kwargs: dict[str, Any] = {}

        if descriptor.body is not None:
            kwargs["content"] = json.dumps(descriptor.body, default=stringify)
            if not any(name.lower() == "content-type" for name in headers):
                headers["Content-Type"] = "application/json"
        elif descriptor.form is not None:
            kwargs["data"] = {key: stringify(value) for key, value in descriptor.form.items()}

        if descriptor.qs is not None:
            kwargs["params"] = {key: stringify(value) for key, value in descriptor.qs.items()}
        if descriptor.auth is not None:
            kwargs["auth"] = (descriptor.auth.username, descriptor.auth.password)

        try:
            resp = await self._client(descriptor.verify).request(
                descriptor.method,
                descriptor.url,
                headers=headers or None,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise WebhookCallError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise WebhookCallError(f"Request failed: {e}") from e

        if not resp.is_success:
            raise WebhookCallError(
                f"Webhook returned status {resp.status_code}",
                status=resp.status_code,
                body=resp.content,
            )

        log.debug("webhook_call_succeeded", url=descriptor.url, status=resp.status_code)
        return WebhookResponse(
            status=resp.status_code,
            body=resp.content,
            headers=dict(resp.headers),
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
