"""Tests for the webhook HTTP invoker."""

import json
from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from sparkcloud.errors import WebhookCallError
from sparkcloud.webhooks.invoker import WebhookInvoker
from sparkcloud.webhooks.models import RequestDescriptor, WebhookAuth


def make_invoker(handler):
    return WebhookInvoker(timeout=5, transport=httpx.MockTransport(handler))


class TestWebhookInvoker:
    async def test_form_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, text="ok")

        invoker = make_invoker(handler)
        published = datetime(2024, 1, 2, tzinfo=timezone.utc)
        response = await invoker.invoke(
            RequestDescriptor(
                method="POST",
                url="https://hooks.test/",
                form={"coreid": "d1", "data": None, "published_at": published, "n": 5},
            )
        )
        await invoker.close()

        assert response.status == 200
        assert response.text == "ok"
        assert seen["method"] == "POST"
        assert seen["form"]["coreid"] == ["d1"]
        assert seen["form"]["published_at"] == [published.isoformat()]
        assert seen["form"]["n"] == ["5"]

    async def test_json_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"accepted": True})

        invoker = make_invoker(handler)
        response = await invoker.invoke(
            RequestDescriptor(method="PUT", url="https://hooks.test/", body={"a": 1, "b": "x"})
        )
        await invoker.close()

        assert response.status == 201
        assert seen["content_type"] == "application/json"
        assert seen["body"] == {"a": 1, "b": "x"}

    async def test_custom_content_type_kept(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["content_type"] = request.headers["content-type"]
            return httpx.Response(200)

        invoker = make_invoker(handler)
        await invoker.invoke(
            RequestDescriptor(
                method="POST",
                url="https://hooks.test/",
                headers={"Content-Type": "application/vnd.test+json"},
                body={"a": 1},
            )
        )
        await invoker.close()

        assert seen["content_type"] == "application/vnd.test+json"

    async def test_query_headers_and_auth(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["header"] = request.headers.get("x-custom")
            seen["authorization"] = request.headers.get("authorization")
            return httpx.Response(200)

        invoker = make_invoker(handler)
        await invoker.invoke(
            RequestDescriptor(
                method="GET",
                url="https://hooks.test/path",
                headers={"X-Custom": "1"},
                qs={"t": "123", "flag": True},
                auth=WebhookAuth(username="user", password="pass"),
            )
        )
        await invoker.close()

        assert seen["params"] == {"t": "123", "flag": "true"}
        assert seen["header"] == "1"
        assert seen["authorization"].startswith("Basic ")

    async def test_non_2xx_raises_call_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="server broke")

        invoker = make_invoker(handler)
        with pytest.raises(WebhookCallError) as exc_info:
            await invoker.invoke(RequestDescriptor(method="POST", url="https://hooks.test/"))
        await invoker.close()

        assert exc_info.value.status == 500
        assert exc_info.value.body == b"server broke"

    async def test_network_error_raises_call_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        invoker = make_invoker(handler)
        with pytest.raises(WebhookCallError) as exc_info:
            await invoker.invoke(RequestDescriptor(method="POST", url="https://hooks.test/"))
        await invoker.close()

        assert exc_info.value.status is None
        assert "connection refused" in exc_info.value.message

    async def test_timeout_raises_call_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        invoker = make_invoker(handler)
        with pytest.raises(WebhookCallError) as exc_info:
            await invoker.invoke(RequestDescriptor(method="POST", url="https://hooks.test/"))
        await invoker.close()

        assert "timed out" in exc_info.value.message

    async def test_separate_clients_per_verification_mode(self):
        invoker = make_invoker(lambda request: httpx.Response(200))
        await invoker.invoke(RequestDescriptor(method="GET", url="https://a.test/", verify=True))
        await invoker.invoke(RequestDescriptor(method="GET", url="https://b.test/", verify=False))

        assert set(invoker._clients) == {True, False}
        await invoker.close()
        assert invoker._clients == {}
