"""Webhook definition and request/response models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sparkcloud.core.bus import Event
from sparkcloud.errors import BadRequestError

REQUEST_TYPES = ("GET", "POST", "PUT", "DELETE")


@dataclass
class WebhookAuth:
    username: str
    password: str


@dataclass
class Webhook:
    event: str
    url: str
    owner_id: str
    request_type: str = "POST"
    device_id: str | None = None
    product_id_or_slug: str | None = None
    form: dict[str, Any] | None = None
    json: dict[str, Any] | None = None
    query: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    auth: WebhookAuth | None = None
    mydevices: bool = False
    no_defaults: bool = False
    reject_unauthorized: bool = True
    response_template: str | None = None
    response_topic: str | None = None
    error_response_topic: str | None = None
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def matches(self, event: Event) -> bool:
        """Whether this webhook should fire for ``event``."""
        if not event.name.startswith(self.event):
            return False
        if self.device_id and self.device_id != event.device_id:
            return False
        # Private events and "my devices" hooks are limited to the owner
        if (self.mydevices or not event.is_public) and event.user_id != self.owner_id:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Webhook:
        """Build a webhook from stored or API data.

        Accepts both snake_case keys and the camelCase names used by
        existing webhook definitions (``requestType``, ``noDefaults``, ...).
        """
        values = {
            _FIELD_ALIASES.get(key, key): value
            for key, value in data.items()
            if _FIELD_ALIASES.get(key, key) in _FIELDS
        }

        if not values.get("event"):
            raise BadRequestError("Webhook event name is required")
        if not values.get("url"):
            raise BadRequestError("Webhook url is required")

        request_type = str(values.get("request_type") or "POST").upper()
        if request_type not in REQUEST_TYPES:
            raise BadRequestError(f"Unsupported request type: {request_type}")
        values["request_type"] = request_type

        for key in ("form", "json", "query", "headers"):
            if values.get(key) is not None and not isinstance(values[key], dict):
                raise BadRequestError(f"Webhook {key} must be an object")

        auth = values.get("auth")
        if isinstance(auth, dict):
            values["auth"] = WebhookAuth(
                username=str(auth.get("username", "")),
                password=str(auth.get("password", "")),
            )

        created_at = values.get("created_at")
        if isinstance(created_at, str):
            values["created_at"] = datetime.fromisoformat(created_at)
        elif created_at is None:
            values.pop("created_at", None)

        # Explicit nulls fall back to the dataclass defaults
        for key in ("id", "mydevices", "no_defaults", "reject_unauthorized"):
            if key in values and values[key] is None:
                values.pop(key)

        return cls(**values)


_FIELD_ALIASES = {
    "requestType": "request_type",
    "ownerID": "owner_id",
    "deviceID": "device_id",
    "deviceid": "device_id",
    "productIdOrSlug": "product_id_or_slug",
    "noDefaults": "no_defaults",
    "rejectUnauthorized": "reject_unauthorized",
    "responseTemplate": "response_template",
    "responseTopic": "response_topic",
    "errorResponseTopic": "error_response_topic",
}

_FIELDS = set(Webhook.__dataclass_fields__)


@dataclass
class RequestDescriptor:
    """Everything the invoker needs for one outbound call."""
    method: str
    url: str
    headers: dict[str, str] | None = None
    auth: WebhookAuth | None = None
    qs: dict[str, Any] | None = None
    form: dict[str, Any] | None = None
    body: dict[str, Any] | None = None
    verify: bool = True


@dataclass
class WebhookResponse:
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")
