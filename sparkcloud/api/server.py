"""REST API for webhooks, devices and event publishing, using aiohttp."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

from aiohttp import web

from sparkcloud.api.auth import AuthManager
from sparkcloud.config import ApiConfig, WebhooksConfig
from sparkcloud.core.bus import DEFAULT_TTL, Event, EventBus
from sparkcloud.devices.manager import DeviceManager
from sparkcloud.errors import BadRequestError, HttpError, LimitExceededError, NotFoundError
from sparkcloud.storage.webhooks import WebhookStore
from sparkcloud.utils.logging import get_logger
from sparkcloud.webhooks.models import Webhook

log = get_logger(__name__)

USER_KEY = "user_id"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _ok(data: Any = None) -> web.Response:
    return web.json_response({"ok": True} if data is None else data)


def _webhook_to_api(webhook: Webhook) -> dict[str, Any]:
    data = webhook.to_dict()
    # Credentials are write-only
    data.pop("auth", None)
    return data


async def _read_body(request: web.Request) -> dict[str, Any]:
    """Request parameters from a JSON, urlencoded or multipart body."""
    if not request.can_read_body:
        return {}
    if request.content_type == "application/json":
        try:
            body = await request.json()
        except ValueError:
            raise BadRequestError("Invalid JSON")
        if not isinstance(body, dict):
            raise BadRequestError("Request body must be an object")
        return body
    form = await request.post()
    return dict(form)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes", "on")


def _event_data(value: Any) -> str | None:
    """Event data as published: strings verbatim, structured values as JSON."""
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


class ApiServer:
    """Serves the device cloud REST API."""

    def __init__(
        self,
        config: ApiConfig,
        auth: AuthManager,
        bus: EventBus,
        webhook_store: WebhookStore,
        device_manager: DeviceManager,
        webhooks_config: WebhooksConfig | None = None,
    ) -> None:
        self._config = config
        self._auth = auth
        self._bus = bus
        self._webhooks = webhook_store
        self._devices = device_manager
        self._webhooks_config = webhooks_config or WebhooksConfig()
        self._runner: web.AppRunner | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.bind, self._config.port)
        await site.start()
        log.info("api_server_started", bind=self._config.bind, port=self._config.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        log.info("api_server_stopped")

    # ------------------------------------------------------------------
    # App construction
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[self._error_middleware, self._auth_middleware])
        app.router.add_get("/v1/webhooks", self._list_webhooks)
        app.router.add_post("/v1/webhooks", self._create_webhook)
        app.router.add_get("/v1/webhooks/{webhook_id}", self._get_webhook)
        app.router.add_delete("/v1/webhooks/{webhook_id}", self._delete_webhook)

        app.router.add_post("/v1/devices/events", self._publish_event)
        app.router.add_get("/v1/devices", self._list_devices)
        app.router.add_post("/v1/devices", self._claim_device)
        app.router.add_get("/v1/devices/{device_id}", self._get_device)
        app.router.add_delete("/v1/devices/{device_id}", self._unclaim_device)
        app.router.add_put("/v1/devices/{device_id}", self._update_device)
        app.router.add_get("/v1/devices/{device_id}/{var_name}", self._get_variable)
        app.router.add_post("/v1/devices/{device_id}/{function_name}", self._call_function)
        return app

    # ------------------------------------------------------------------
    # Middlewares
    # ------------------------------------------------------------------

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except HttpError as e:
            return web.json_response({"ok": False, "error": e.message}, status=e.status)

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        token = await self._extract_token(request)
        user_id = self._auth.authenticate(token)
        if user_id is None:
            raise HttpError("invalid_token", 401)
        if not self._auth.check_rate_limit(user_id):
            raise HttpError("Too many requests", 429)
        request[USER_KEY] = user_id
        return await handler(request)

    async def _extract_token(self, request: web.Request) -> str:
        header = request.headers.get("Authorization", "")
        if header.lower().startswith("bearer "):
            return header[7:].strip()
        if "access_token" in request.query:
            return request.query["access_token"]
        if request.content_type == "application/x-www-form-urlencoded":
            form = await request.post()
            return str(form.get("access_token", ""))
        return ""

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def _list_webhooks(self, request: web.Request) -> web.Response:
        webhooks = await self._webhooks.get_all(request[USER_KEY])
        return _ok([_webhook_to_api(w) for w in webhooks])

    async def _create_webhook(self, request: web.Request) -> web.Response:
        user_id = request[USER_KEY]
        body = await _read_body(request)
        body.pop("access_token", None)
        for key in ("id", "created_at", "owner_id", "ownerID"):
            body.pop(key, None)
        for key in ("form", "json", "query", "headers", "auth"):
            # Urlencoded bodies carry nested objects as JSON strings
            if isinstance(body.get(key), str):
                try:
                    body[key] = json.loads(body[key])
                except ValueError:
                    raise BadRequestError(f"Webhook {key} must be an object")
        for key in ("mydevices", "noDefaults", "rejectUnauthorized"):
            if isinstance(body.get(key), str):
                body[key] = _as_bool(body[key])

        webhook = Webhook.from_dict({**body, "owner_id": user_id})
        await self._check_limits(webhook)
        await self._webhooks.create(webhook)
        return _ok(
            {
                "ok": True,
                "id": webhook.id,
                "event": webhook.event,
                "url": webhook.url,
                "created_at": webhook.created_at.isoformat(),
            }
        )

    async def _check_limits(self, webhook: Webhook) -> None:
        limits = self._webhooks_config
        if await self._webhooks.count(webhook.owner_id) >= limits.max_hooks_per_user:
            raise LimitExceededError("Too many webhooks for this user")
        if webhook.device_id and (
            await self._webhooks.count(webhook.owner_id, webhook.device_id)
            >= limits.max_hooks_per_device
        ):
            raise LimitExceededError("Too many webhooks for this device")

    async def _get_webhook(self, request: web.Request) -> web.Response:
        webhook = await self._webhooks.get_by_id(
            request.match_info["webhook_id"], request[USER_KEY]
        )
        if webhook is None:
            raise NotFoundError("No webhook found")
        return _ok(_webhook_to_api(webhook))

    async def _delete_webhook(self, request: web.Request) -> web.Response:
        deleted = await self._webhooks.delete_by_id(
            request.match_info["webhook_id"], request[USER_KEY]
        )
        if not deleted:
            raise NotFoundError("No webhook found")
        return _ok()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _publish_event(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        name = str(body.get("name") or "")
        if not name:
            raise BadRequestError("Event name is required")
        try:
            ttl = int(body.get("ttl") or DEFAULT_TTL)
        except ValueError:
            raise BadRequestError("ttl must be an integer")
        data = body.get("data")

        self._bus.publish(
            Event(
                name=name,
                data=_event_data(data),
                user_id=request[USER_KEY],
                is_public=not _as_bool(body.get("private", False)),
                ttl=ttl,
            )
        )
        return _ok()

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def _list_devices(self, request: web.Request) -> web.Response:
        devices = await self._devices.get_all(request[USER_KEY])
        return _ok([d.to_api() for d in devices])

    async def _claim_device(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        device_id = str(body.get("id") or "")
        if not device_id:
            raise BadRequestError("Device id is required")
        await self._devices.claim_device(device_id, request[USER_KEY])
        return _ok()

    async def _get_device(self, request: web.Request) -> web.Response:
        device = await self._devices.get_details_by_id(
            request.match_info["device_id"], request[USER_KEY]
        )
        return _ok(device.to_api())

    async def _unclaim_device(self, request: web.Request) -> web.Response:
        await self._devices.unclaim_device(request.match_info["device_id"], request[USER_KEY])
        return _ok()

    async def _update_device(self, request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        user_id = request[USER_KEY]
        body = await _read_body(request)

        if body.get("name"):
            attributes = await self._devices.rename_device(device_id, user_id, str(body["name"]))
            return _ok({"ok": True, "name": attributes.name})

        if body.get("app_id"):
            status = await self._devices.flash_known_app(device_id, user_id, str(body["app_id"]))
            return _ok({"id": device_id, "status": status})

        upload = body.get("file")
        if isinstance(upload, web.FileField):
            if not upload.filename.endswith(".bin"):
                raise BadRequestError("Firmware file must be a .bin file")
            binary = await asyncio.to_thread(upload.file.read)
            status = await self._devices.flash_binary(device_id, user_id, binary)
            return _ok({"id": device_id, "status": status})

        if "signal" in body:
            signal = str(body["signal"])
            if signal not in ("0", "1"):
                raise BadRequestError("Wrong signal value")
            await self._devices.raise_your_hand(device_id, user_id, signal == "1")
            return _ok({"id": device_id, "ok": True})

        raise BadRequestError("Did not update device")

    async def _get_variable(self, request: web.Request) -> web.Response:
        try:
            value = await self._devices.get_variable_value(
                request.match_info["device_id"],
                request[USER_KEY],
                request.match_info["var_name"],
            )
        except LookupError:
            raise NotFoundError("Variable not found")
        return _ok({"result": value})

    async def _call_function(self, request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        user_id = request[USER_KEY]
        body = await _read_body(request)
        body.pop("access_token", None)
        try:
            result = await self._devices.call_function(
                device_id,
                user_id,
                request.match_info["function_name"],
                {key: str(value) for key, value in body.items()},
            )
        except LookupError:
            raise NotFoundError("Function not found")
        device = await self._devices.get_by_id(device_id, user_id)
        return _ok(device.to_api(result))
