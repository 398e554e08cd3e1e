"""Device records and the device server capability surface."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Protocol


@dataclass
class DeviceAttributes:
    device_id: str
    name: str = ""
    owner_id: str | None = None
    registrar: str | None = None
    product_id: int = 0
    last_ip: str = ""
    last_heard: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def with_changes(self, **changes: Any) -> DeviceAttributes:
        return replace(self, **changes)


@dataclass
class Device:
    """Stored attributes plus live state reported by the device server."""
    attributes: DeviceAttributes
    connected: bool = False
    last_heard: datetime | None = None
    functions: list[str] | None = None
    variables: dict[str, Any] | None = None

    def to_api(self, result: Any = None) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.attributes.device_id,
            "name": self.attributes.name,
            "owner_id": self.attributes.owner_id,
            "product_id": self.attributes.product_id,
            "last_ip_address": self.attributes.last_ip,
            "last_heard": self.last_heard.isoformat() if self.last_heard else None,
            "connected": self.connected,
        }
        if self.functions is not None:
            data["functions"] = self.functions
        if self.variables is not None:
            data["variables"] = self.variables
        if result is not None:
            data["return_value"] = result
        return data


@dataclass
class PingResult:
    connected: bool
    last_ping: datetime | None = None


@dataclass
class DeviceDescription:
    functions: list[str] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)


class ConnectedDevice(Protocol):
    """A device with a live connection, as exposed by the device server."""

    def ping(self) -> PingResult: ...

    async def get_description(self) -> DeviceDescription: ...

    async def call_function(self, name: str, arguments: dict[str, str]) -> Any: ...

    async def get_variable_value(self, name: str) -> Any: ...

    async def flash(self, binary: bytes) -> str: ...

    async def raise_your_hand(self, show_signal: bool) -> None: ...


class DeviceServer(Protocol):
    def get_device(self, device_id: str) -> ConnectedDevice | None: ...


class NullDeviceServer:
    """Device server used when no protocol server is attached; all devices are offline."""

    def get_device(self, device_id: str) -> ConnectedDevice | None:
        return None


def attributes_to_row(attributes: DeviceAttributes) -> dict[str, Any]:
    data = asdict(attributes)
    for key in ("last_heard", "created_at"):
        if data[key] is not None:
            data[key] = data[key].isoformat()
    return data
