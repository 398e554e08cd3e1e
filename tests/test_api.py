"""Tests for the REST API server."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import FormData
from aiohttp.test_utils import TestClient, TestServer

from sparkcloud.api.auth import AuthManager
from sparkcloud.api.server import ApiServer
from sparkcloud.config import ApiConfig, AuthConfig, WebhooksConfig
from sparkcloud.devices.manager import DeviceManager
from sparkcloud.devices.models import DeviceAttributes, NullDeviceServer, PingResult
from sparkcloud.storage.devices import DeviceAttributeStore
from sparkcloud.storage.firmware import FirmwareStore
from sparkcloud.storage.webhooks import WebhookStore
from sparkcloud.webhooks.request import parse_event_data

TOKEN = "token-u1"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def bus():
    return MagicMock()


@pytest.fixture
def device_server():
    server = MagicMock()
    server.get_device.return_value = None
    return server


@pytest.fixture
async def webhook_store(tmp_path):
    s = WebhookStore(tmp_path / "webhooks.db")
    await s.start()
    yield s
    await s.stop()


@pytest.fixture
async def device_store(tmp_path):
    s = DeviceAttributeStore(tmp_path / "devices.db")
    await s.start()
    await s.update(DeviceAttributes(device_id="d1", name="kettle", owner_id="u1"))
    await s.update(DeviceAttributes(device_id="free"))
    yield s
    await s.stop()


@pytest.fixture
def server(bus, webhook_store, device_store, device_server, tmp_path):
    auth = AuthManager(
        AuthConfig(access_tokens={TOKEN: "u1", "token-u2": "u2"}, rate_limit_per_minute=100)
    )
    devices = DeviceManager(device_store, FirmwareStore(tmp_path / "apps"), device_server)
    return ApiServer(
        ApiConfig(port=0),
        auth,
        bus,
        webhook_store,
        devices,
        WebhooksConfig(max_hooks_per_user=2, max_hooks_per_device=1),
    )


@pytest.fixture
async def client(server):
    app = server.build_app()
    async with TestClient(TestServer(app)) as c:
        yield c


class TestAuthentication:
    async def test_missing_token_returns_401(self, client):
        resp = await client.get("/v1/webhooks")
        assert resp.status == 401
        body = await resp.json()
        assert body == {"ok": False, "error": "invalid_token"}

    async def test_unknown_token_returns_401(self, client):
        resp = await client.get("/v1/webhooks", headers={"Authorization": "Bearer nope"})
        assert resp.status == 401

    async def test_query_token(self, client):
        resp = await client.get("/v1/webhooks", params={"access_token": TOKEN})
        assert resp.status == 200

    async def test_form_token(self, client):
        resp = await client.post("/v1/devices", data={"access_token": TOKEN, "id": "free"})
        assert resp.status == 200

    async def test_rate_limit(self, bus, webhook_store, device_store, tmp_path):
        auth = AuthManager(AuthConfig(access_tokens={TOKEN: "u1"}, rate_limit_per_minute=1))
        devices = DeviceManager(device_store, FirmwareStore(tmp_path), NullDeviceServer())
        app = ApiServer(ApiConfig(), auth, bus, webhook_store, devices).build_app()
        async with TestClient(TestServer(app)) as c:
            assert (await c.get("/v1/webhooks", headers=AUTH)).status == 200
            assert (await c.get("/v1/webhooks", headers=AUTH)).status == 429


class TestWebhookRoutes:
    async def test_create_and_list(self, client):
        resp = await client.post(
            "/v1/webhooks",
            json={
                "event": "temp",
                "url": "https://hooks.test/{{coreid}}",
                "requestType": "POST",
                "json": {"value": "{{t}}"},
                "auth": {"username": "a", "password": "secret"},
            },
            headers=AUTH,
        )
        assert resp.status == 200
        created = await resp.json()
        assert created["ok"] is True
        assert created["event"] == "temp"

        resp = await client.get("/v1/webhooks", headers=AUTH)
        hooks = await resp.json()
        assert len(hooks) == 1
        assert hooks[0]["id"] == created["id"]
        assert hooks[0]["owner_id"] == "u1"
        assert hooks[0]["json"] == {"value": "{{t}}"}
        assert "auth" not in hooks[0]

    async def test_create_from_form(self, client):
        resp = await client.post(
            "/v1/webhooks",
            data={
                "event": "temp",
                "url": "https://hooks.test/",
                "query": '{"t": "{{t}}"}',
                "noDefaults": "true",
            },
            headers=AUTH,
        )
        assert resp.status == 200
        webhook_id = (await resp.json())["id"]

        resp = await client.get(f"/v1/webhooks/{webhook_id}", headers=AUTH)
        hook = await resp.json()
        assert hook["query"] == {"t": "{{t}}"}
        assert hook["no_defaults"] is True

    async def test_owner_cannot_be_overridden(self, client):
        resp = await client.post(
            "/v1/webhooks",
            json={"event": "temp", "url": "https://hooks.test/", "ownerID": "u2"},
            headers=AUTH,
        )
        webhook_id = (await resp.json())["id"]
        resp = await client.get(f"/v1/webhooks/{webhook_id}", headers=AUTH)
        assert (await resp.json())["owner_id"] == "u1"

    async def test_invalid_webhook_returns_400(self, client):
        resp = await client.post("/v1/webhooks", json={"url": "https://hooks.test/"}, headers=AUTH)
        assert resp.status == 400
        assert (await resp.json())["ok"] is False

    async def test_malformed_json_returns_400(self, client):
        resp = await client.post(
            "/v1/webhooks",
            data=b"not json",
            headers={**AUTH, "Content-Type": "application/json"},
        )
        assert resp.status == 400

    async def test_user_limit(self, client):
        for _ in range(2):
            resp = await client.post(
                "/v1/webhooks", json={"event": "e", "url": "https://hooks.test/"}, headers=AUTH
            )
            assert resp.status == 200
        resp = await client.post(
            "/v1/webhooks", json={"event": "e", "url": "https://hooks.test/"}, headers=AUTH
        )
        assert resp.status == 400
        assert "Too many webhooks" in (await resp.json())["error"]

    async def test_device_limit(self, client):
        hook = {"event": "e", "url": "https://hooks.test/", "deviceID": "d1"}
        assert (await client.post("/v1/webhooks", json=hook, headers=AUTH)).status == 200
        assert (await client.post("/v1/webhooks", json=hook, headers=AUTH)).status == 400

    async def test_other_users_webhook_not_visible(self, client):
        resp = await client.post(
            "/v1/webhooks", json={"event": "e", "url": "https://hooks.test/"}, headers=AUTH
        )
        webhook_id = (await resp.json())["id"]
        other = {"Authorization": "Bearer token-u2"}

        assert (await client.get(f"/v1/webhooks/{webhook_id}", headers=other)).status == 404
        assert (await client.delete(f"/v1/webhooks/{webhook_id}", headers=other)).status == 404

    async def test_delete(self, client):
        resp = await client.post(
            "/v1/webhooks", json={"event": "e", "url": "https://hooks.test/"}, headers=AUTH
        )
        webhook_id = (await resp.json())["id"]

        resp = await client.delete(f"/v1/webhooks/{webhook_id}", headers=AUTH)
        assert resp.status == 200
        assert (await client.get(f"/v1/webhooks/{webhook_id}", headers=AUTH)).status == 404


class TestEventRoutes:
    async def test_publish_event(self, client, bus):
        resp = await client.post(
            "/v1/devices/events",
            data={"name": "temp", "data": "21.5", "private": "true"},
            headers=AUTH,
        )
        assert resp.status == 200

        event = bus.publish.call_args.args[0]
        assert event.name == "temp"
        assert event.data == "21.5"
        assert event.user_id == "u1"
        assert event.is_public is False
        assert event.ttl == 60

    async def test_publish_public_event(self, client, bus):
        await client.post(
            "/v1/devices/events", json={"name": "temp", "ttl": 30}, headers=AUTH
        )
        event = bus.publish.call_args.args[0]
        assert event.is_public is True
        assert event.ttl == 30
        assert event.data is None

    async def test_structured_data_published_as_json(self, client, bus):
        await client.post(
            "/v1/devices/events", json={"name": "temp", "data": {"t": "123"}}, headers=AUTH
        )
        event = bus.publish.call_args.args[0]
        assert event.data == '{"t": "123"}'
        assert parse_event_data(event) == {"t": "123"}

    async def test_numeric_data_published_as_json(self, client, bus):
        await client.post("/v1/devices/events", json={"name": "temp", "data": 21.5}, headers=AUTH)
        assert bus.publish.call_args.args[0].data == "21.5"

    async def test_publish_requires_name(self, client, bus):
        resp = await client.post("/v1/devices/events", json={}, headers=AUTH)
        assert resp.status == 400
        bus.publish.assert_not_called()


class TestDeviceRoutes:
    async def test_list_devices(self, client):
        resp = await client.get("/v1/devices", headers=AUTH)
        devices = await resp.json()
        assert [d["id"] for d in devices] == ["d1"]
        assert devices[0]["connected"] is False

    async def test_get_device(self, client):
        resp = await client.get("/v1/devices/d1", headers=AUTH)
        assert resp.status == 200
        assert (await resp.json())["name"] == "kettle"

    async def test_get_unknown_device(self, client):
        resp = await client.get("/v1/devices/nope", headers=AUTH)
        assert resp.status == 404
        assert (await resp.json())["error"] == "No device found"

    async def test_claim_and_unclaim(self, client):
        resp = await client.post("/v1/devices", json={"id": "free"}, headers=AUTH)
        assert resp.status == 200
        assert (await client.get("/v1/devices/free", headers=AUTH)).status == 200

        resp = await client.delete("/v1/devices/free", headers=AUTH)
        assert resp.status == 200
        assert (await client.get("/v1/devices/free", headers=AUTH)).status == 404

    async def test_rename(self, client):
        resp = await client.put("/v1/devices/d1", json={"name": "teapot"}, headers=AUTH)
        assert await resp.json() == {"ok": True, "name": "teapot"}

    async def test_wrong_signal_value(self, client):
        resp = await client.put("/v1/devices/d1", json={"signal": "2"}, headers=AUTH)
        assert resp.status == 400

    async def test_update_without_changes(self, client):
        resp = await client.put("/v1/devices/d1", json={}, headers=AUTH)
        assert resp.status == 400
        assert (await resp.json())["error"] == "Did not update device"

    async def test_call_function_offline_device(self, client):
        resp = await client.post("/v1/devices/d1/led", json={"arg": "on"}, headers=AUTH)
        assert resp.status == 404
        assert (await resp.json())["error"] == "Could not get device for ID"


class TestFirmwareUpload:
    @pytest.fixture
    def online_device(self, device_server):
        device = MagicMock()
        device.ping.return_value = PingResult(connected=True)
        device.flash = AsyncMock(return_value="Update started")
        device_server.get_device.return_value = device
        return device

    async def test_upload_flashes_binary(self, client, online_device):
        form = FormData()
        form.add_field("file", b"\x00firmware\xff", filename="app.bin")

        resp = await client.put("/v1/devices/d1", data=form, headers=AUTH)

        assert resp.status == 200
        assert await resp.json() == {"id": "d1", "status": "Update started"}
        online_device.flash.assert_awaited_once_with(b"\x00firmware\xff")

    async def test_upload_requires_bin_file(self, client, online_device):
        form = FormData()
        form.add_field("file", b"data", filename="app.hex")

        resp = await client.put("/v1/devices/d1", data=form, headers=AUTH)

        assert resp.status == 400
        online_device.flash.assert_not_awaited()
