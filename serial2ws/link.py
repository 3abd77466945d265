"""Serial link lifecycle: open with fixed-delay retry, framed reads, queued writes."""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Union

import serial

from serial2ws.config import DEFAULT_RETRY_DELAY_MS, MIN_INTERVAL_MS
from serial2ws.framing import LineFramer

logger = logging.getLogger("serial2ws")

TERMINATOR = b"\r\n"
READ_IDLE_DELAY = 0.01


class LinkState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def open_serial(port: str, baud: int) -> serial.Serial:
    """Open the serial port at the given baud rate, 8N1."""
    return serial.Serial(
        port=port,
        baudrate=baud,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
    )


class SerialLink:
    """Owns the serial port, its connection state and its line buffer.

    All methods run on the event loop thread. Blocking pyserial calls are
    pushed to worker threads, and writes go through a single writer task so
    at most one write is in flight. Every failure ends up as a state
    transition, a log record or a status event; nothing is raised to callers.

    Hooks:
        on_line(text): called for every complete line read from the device.
        on_status(text): called with "Serial connected", "Serial disconnected"
            or "Serial error: ..." on lifecycle changes.
        on_connected(): called once the port is open and I/O has started.
        on_disconnected(): called after an error or close event tore the port
            down; an explicit close() does not call it.
    """

    def __init__(
        self,
        port: str,
        baud: int,
        on_line: Callable[[str], object],
        on_status: Callable[[str], object],
        on_connected: Optional[Callable[[], object]] = None,
        on_disconnected: Optional[Callable[[], object]] = None,
        retry_delay: float = DEFAULT_RETRY_DELAY_MS / 1000,
        serial_factory: Callable[[str, int], serial.Serial] = open_serial,
    ):
        if retry_delay * 1000 < MIN_INTERVAL_MS:
            raise ValueError(f"retry delay must be at least {MIN_INTERVAL_MS} ms")
        self.port = port
        self.baud = baud
        self.retry_delay = retry_delay
        self.state = LinkState.DISCONNECTED
        self._on_line = on_line
        self._on_status = on_status
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._serial_factory = serial_factory
        self._serial: Optional[serial.Serial] = None
        self._framer = LineFramer()
        self._outbox: Optional[asyncio.Queue] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None

    @property
    def connected(self) -> bool:
        return self.state is LinkState.CONNECTED

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def open(self) -> bool:
        """Try to open the port; on failure schedule a retry instead of raising."""
        self._cancel_retry()
        if self.connected:
            return True
        self.state = LinkState.CONNECTING
        logger.info("Attempting to open serial port %s at %s...", self.port, self.baud)
        try:
            ser = self._serial_factory(self.port, self.baud)
        except (serial.SerialException, OSError, ValueError) as e:
            logger.error("Failed to open %s: %s", self.port, e)
            self.state = LinkState.DISCONNECTED
            logger.info("Retrying in %g seconds...", self.retry_delay)
            self._schedule_retry()
            return False

        self._serial = ser
        self.state = LinkState.CONNECTED
        logger.info("Serial port %s opened successfully at %s 8N1", self.port, self.baud)
        self._on_status("Serial connected")
        self._start_io(ser)
        if self._on_connected is not None:
            self._on_connected()
        return True

    def on_error(self, err: BaseException):
        logger.error("Serial port error: %s", err)
        self._teardown()
        self._on_status(f"Serial error: {err}")
        logger.info("Reconnecting to serial port in %g seconds...", self.retry_delay)
        self._schedule_retry()

    def on_close(self):
        logger.warning("Serial port closed. Retrying connection in %g seconds...", self.retry_delay)
        self._teardown()
        self._on_status("Serial disconnected")
        self._schedule_retry()

    def on_data(self, data: bytes):
        logger.debug("RAW COM DATA: %r", data)
        for line in self._framer.feed(data):
            logger.debug("COM->WS | %s", line)
            self._on_line(line)

    def write(self, payload: Union[str, bytes]) -> bool:
        """Queue ``payload`` plus CR/LF for the device; returns False when not connected."""
        if not self.connected:
            logger.warning("Serial not connected, dropping write of %r", payload)
            return False
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        self._outbox.put_nowait(bytes(payload) + TERMINATOR)
        return True

    async def flush(self):
        """Wait until every queued write has been attempted."""
        if self._outbox is not None:
            await self._outbox.join()

    def close(self):
        """Shut the link down for good: no status event, no hooks, no retry."""
        self._cancel_retry()
        if self._serial is not None:
            self._teardown(notify=False)
        self.state = LinkState.DISCONNECTED

    def _start_io(self, ser: serial.Serial):
        self._framer.reset()
        self._outbox = asyncio.Queue()
        self._reader_task = asyncio.create_task(self._read_loop(ser), name="serial-reader")
        self._writer_task = asyncio.create_task(
            self._write_loop(ser, self._outbox), name="serial-writer"
        )

    async def _read_loop(self, ser: serial.Serial):
        """Read from serial until it is closed or fails, then report which."""
        try:
            while ser.is_open:
                n = ser.in_waiting
                if n > 0:
                    data = await asyncio.to_thread(ser.read, n)
                    if not data:
                        break
                    self.on_data(data)
                else:
                    await asyncio.sleep(READ_IDLE_DELAY)
        except (serial.SerialException, OSError) as e:
            if ser is self._serial:
                self.on_error(e)
            return
        if ser is self._serial:
            self.on_close()

    async def _write_loop(self, ser: serial.Serial, outbox: asyncio.Queue):
        while True:
            data = await outbox.get()
            try:
                await asyncio.to_thread(ser.write, data)
            except (serial.SerialException, OSError) as e:
                logger.error("Error writing to serial: %s", e)
            finally:
                outbox.task_done()

    def _teardown(self, notify: bool = True):
        """Stop I/O tasks, close the port and forget buffered data and queued writes."""
        self.state = LinkState.DISCONNECTED
        current = asyncio.current_task()
        for task in (self._reader_task, self._writer_task):
            if task is not None and task is not current:
                task.cancel()
        self._reader_task = None
        self._writer_task = None
        outbox, self._outbox = self._outbox, None
        if outbox is not None:
            # Release flush() waiters; dropped writes are never replayed.
            while not outbox.empty():
                outbox.get_nowait()
                outbox.task_done()
        self._framer.reset()

        ser, self._serial = self._serial, None
        if ser is not None:
            try:
                ser.close()
            except (serial.SerialException, OSError) as e:
                logger.debug("Ignoring error while closing %s: %s", self.port, e)
        if notify and self._on_disconnected is not None:
            self._on_disconnected()

    def _schedule_retry(self):
        self._cancel_retry()
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.retry_delay, self.open)

    def _cancel_retry(self):
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
