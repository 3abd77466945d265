"""Asyncio-based relay between one serial device and many WebSocket clients."""

import asyncio
import logging
from typing import Optional

from serial2ws.config import RelayConfig
from serial2ws.gateway import Broadcaster, ConnectionGateway
from serial2ws.link import SerialLink, open_serial
from serial2ws.poller import PollScheduler

logger = logging.getLogger("serial2ws")


class Relay:
    """Composition root: one link, one poller, one gateway, one client set."""

    def __init__(self, config: RelayConfig, serial_factory=open_serial):
        self.config = config
        self.broadcaster = Broadcaster()
        self.link = SerialLink(
            config.serial_port,
            config.serial_baudrate,
            on_line=self.broadcaster.broadcast,
            on_status=self.broadcast_status,
            on_connected=self._on_link_up,
            on_disconnected=self._on_link_down,
            retry_delay=config.retry_delay_ms / 1000,
            serial_factory=serial_factory,
        )
        self.poller = PollScheduler(self.link, config.poll_interval_ms / 1000)
        self.gateway = ConnectionGateway(
            self.link,
            self.broadcaster,
            config.auth_token,
            config.listen,
            config.websocket_port,
        )
        self._gateway_start: Optional[asyncio.Task] = None
        self._serving = asyncio.Event()
        self._stopped = asyncio.Event()
        self._fatal: Optional[BaseException] = None

    def broadcast_status(self, description: str) -> int:
        return self.broadcaster.broadcast(f"[STATUS] {description}")

    async def wait_serving(self):
        """Wait until the WebSocket server is listening (after the first successful open); re-raises a bind failure."""
        await self._serving.wait()
        if self._fatal is not None:
            raise self._fatal

    def _on_link_up(self):
        if self._gateway_start is None:
            self._gateway_start = asyncio.create_task(self.gateway.start(), name="gateway-start")
            self._gateway_start.add_done_callback(self._on_gateway_started)
        self.poller.start()

    def _on_link_down(self):
        self.poller.stop()

    def _on_gateway_started(self, task: asyncio.Task):
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            logger.critical("Cannot start WebSocket server on port %s: %s", self.config.websocket_port, err)
            self._fatal = err
            self._stopped.set()
        self._serving.set()

    async def run(self):
        """Open the link and relay until cancelled; re-raises a WebSocket bind failure."""
        self.link.open()
        try:
            await self._stopped.wait()
        finally:
            await self.close()
        if self._fatal is not None:
            raise self._fatal

    async def close(self):
        self.poller.stop()
        if self._gateway_start is not None and not self._gateway_start.done():
            self._gateway_start.cancel()
        self.link.close()
        await self.gateway.stop()
        self._stopped.set()


async def run_bridge_async(config: RelayConfig):
    """Build the relay and run it until cancelled."""
    logger.info(
        "Relaying %s @ %s baud to WebSocket port %s",
        config.serial_port,
        config.serial_baudrate,
        config.websocket_port,
    )
    await Relay(config).run()


def run_bridge(config: RelayConfig):
    """Synchronous entry: configure logging and run the relay until interrupted."""
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("websockets").setLevel(logging.INFO)
    try:
        asyncio.run(run_bridge_async(config))
    except KeyboardInterrupt:
        pass
