"""Serial-to-WebSocket relay: share one serial device with many authenticated WebSocket clients."""

from serial2ws.bridge import Relay, run_bridge
from serial2ws.config import RelayConfig

__all__ = ["Relay", "RelayConfig", "run_bridge"]
