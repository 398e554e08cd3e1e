"""sparkcloud entry point: wires everything together and runs the server."""

from __future__ import annotations

import asyncio
import signal
import sys

import click

from sparkcloud import __version__
from sparkcloud.api.auth import AuthManager
from sparkcloud.api.server import ApiServer
from sparkcloud.config import Settings, load_settings
from sparkcloud.core.bus import EventBus
from sparkcloud.devices.manager import DeviceManager
from sparkcloud.devices.models import DeviceServer, NullDeviceServer
from sparkcloud.storage.devices import DeviceAttributeStore
from sparkcloud.storage.firmware import FirmwareStore
from sparkcloud.storage.webhooks import WebhookStore
from sparkcloud.utils.logging import get_logger, setup_logging
from sparkcloud.webhooks.invoker import WebhookInvoker
from sparkcloud.webhooks.manager import WebhookManager

log = get_logger(__name__)


class SparkCloud:
    """Main application orchestrator."""

    def __init__(self, settings: Settings, device_server: DeviceServer | None = None) -> None:
        self.settings = settings
        data_dir = settings.get_data_dir()

        self.bus = EventBus(max_queue_size=settings.bus.max_queue_size)
        self.webhook_store = WebhookStore(data_dir / "webhooks.db")
        self.device_store = DeviceAttributeStore(data_dir / "devices.db")
        self.devices = DeviceManager(
            self.device_store,
            FirmwareStore(settings.get_firmware_dir()),
            device_server or NullDeviceServer(),
        )
        self.webhooks = WebhookManager(
            self.webhook_store,
            self.bus,
            WebhookInvoker(timeout=settings.webhooks.request_timeout),
            settings.webhooks,
        )
        self.api = ApiServer(
            settings.api,
            AuthManager(settings.auth),
            self.bus,
            self.webhook_store,
            self.devices,
            settings.webhooks,
        )

    async def start(self) -> None:
        log.info("sparkcloud_starting", version=__version__)

        await self.webhook_store.start()
        await self.device_store.start()

        self.webhooks.start()
        await self.bus.start()

        if self.settings.api.enabled:
            await self.api.start()

        log.info("sparkcloud_ready")

    async def stop(self) -> None:
        log.info("sparkcloud_stopping")
        await self.api.stop()
        await self.bus.stop()
        await self.webhooks.stop()
        await self.device_store.stop()
        await self.webhook_store.stop()
        log.info("sparkcloud_stopped")


async def run(settings: Settings) -> None:
    app = SparkCloud(settings)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

    await app.start()

    try:
        if sys.platform == "win32":
            while not stop_event.is_set():
                await asyncio.sleep(1)
        else:
            await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


@click.command()
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
def cli(config_path: str | None, log_level: str | None) -> None:
    """Start the sparkcloud device server."""
    settings = load_settings(config_path)
    if log_level:
        settings.log_level = log_level
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    asyncio.run(run(settings))


if __name__ == "__main__":
    cli()
