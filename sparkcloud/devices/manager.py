"""Ownership checks and device operations on top of the device server."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from sparkcloud.devices.models import (
    ConnectedDevice,
    Device,
    DeviceAttributes,
    DeviceServer,
)
from sparkcloud.errors import BadRequestError, NotFoundError
from sparkcloud.storage.devices import DeviceAttributeStore
from sparkcloud.storage.firmware import FirmwareStore
from sparkcloud.utils.logging import get_logger

log = get_logger(__name__)


class DeviceManager:
    def __init__(
        self,
        attributes: DeviceAttributeStore,
        firmware: FirmwareStore,
        device_server: DeviceServer,
    ) -> None:
        self._attributes = attributes
        self._firmware = firmware
        self._device_server = device_server

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    async def claim_device(self, device_id: str, user_id: str) -> DeviceAttributes:
        attributes = await self._attributes.get_by_id(device_id)
        if attributes is None:
            raise NotFoundError("No device found")
        if attributes.owner_id and attributes.owner_id != user_id:
            raise BadRequestError("The device belongs to someone else.")

        log.info("device_claimed", device_id=device_id, user_id=user_id)
        return await self._attributes.update(attributes.with_changes(owner_id=user_id))

    async def unclaim_device(self, device_id: str, user_id: str) -> DeviceAttributes:
        attributes = await self._attributes.get_by_id(device_id, user_id)
        if attributes is None:
            raise NotFoundError("No device found")

        log.info("device_unclaimed", device_id=device_id, user_id=user_id)
        return await self._attributes.update(attributes.with_changes(owner_id=None))

    async def record_connection(self, device_id: str, ip: str = "") -> DeviceAttributes:
        """Create or refresh the stored record of a device that just connected."""
        now = datetime.now(timezone.utc)
        attributes = await self._attributes.get_by_id(device_id)
        if attributes is None:
            attributes = DeviceAttributes(device_id=device_id, last_ip=ip, last_heard=now)
        else:
            attributes = attributes.with_changes(last_ip=ip or attributes.last_ip, last_heard=now)
        return await self._attributes.update(attributes)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_by_id(self, device_id: str, user_id: str) -> Device:
        attributes = await self._attributes.get_by_id(device_id, user_id)
        if attributes is None:
            raise NotFoundError("No device found")
        return self._with_live_state(attributes)

    async def get_details_by_id(self, device_id: str, user_id: str) -> Device:
        attributes = await self._attributes.get_by_id(device_id, user_id)
        if attributes is None:
            raise NotFoundError("No device found")

        device = self._with_live_state(attributes)
        connected = self._device_server.get_device(device_id)
        if connected is not None:
            description = await connected.get_description()
            device.functions = description.functions
            device.variables = description.variables
        return device

    async def get_all(self, user_id: str) -> list[Device]:
        records = await self._attributes.get_all(user_id)
        return [self._with_live_state(attributes) for attributes in records]

    def _with_live_state(self, attributes: DeviceAttributes) -> Device:
        connected = self._device_server.get_device(attributes.device_id)
        ping = connected.ping() if connected is not None else None
        return Device(
            attributes=attributes,
            connected=ping.connected if ping else False,
            last_heard=(ping.last_ping if ping else None) or attributes.last_heard,
        )

    # ------------------------------------------------------------------
    # Device operations
    # ------------------------------------------------------------------

    async def call_function(
        self,
        device_id: str,
        user_id: str,
        function_name: str,
        arguments: dict[str, str],
    ) -> Any:
        device = await self._accessible_device(device_id, user_id)
        return await device.call_function(function_name, arguments)

    async def get_variable_value(self, device_id: str, user_id: str, var_name: str) -> Any:
        device = await self._accessible_device(device_id, user_id)
        return await device.get_variable_value(var_name)

    async def flash_binary(self, device_id: str, user_id: str, binary: bytes) -> str:
        device = await self._accessible_device(device_id, user_id)
        log.info("device_flash", device_id=device_id, size=len(binary))
        return await device.flash(binary)

    async def flash_known_app(self, device_id: str, user_id: str, app_name: str) -> str:
        if not await self._attributes.does_user_have_access(device_id, user_id):
            raise NotFoundError("No device found")

        binary = await asyncio.to_thread(self._firmware.get_by_name, app_name)
        if binary is None:
            raise NotFoundError(f"No firmware {app_name} found")

        device = self._connected(device_id)
        log.info("device_flash", device_id=device_id, app=app_name, size=len(binary))
        return await device.flash(binary)

    async def raise_your_hand(self, device_id: str, user_id: str, show_signal: bool) -> None:
        device = await self._accessible_device(device_id, user_id)
        await device.raise_your_hand(show_signal)

    async def rename_device(self, device_id: str, user_id: str, name: str) -> DeviceAttributes:
        attributes = await self._attributes.get_by_id(device_id, user_id)
        if attributes is None:
            raise NotFoundError("No device found")
        return await self._attributes.update(attributes.with_changes(name=name))

    async def _accessible_device(self, device_id: str, user_id: str) -> ConnectedDevice:
        if not await self._attributes.does_user_have_access(device_id, user_id):
            raise NotFoundError("No device found")
        return self._connected(device_id)

    def _connected(self, device_id: str) -> ConnectedDevice:
        device = self._device_server.get_device(device_id)
        if device is None:
            raise NotFoundError("Could not get device for ID")
        return device
