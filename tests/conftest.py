"""Shared fixtures: an in-memory stand-in for serial.Serial and async polling helpers."""

import asyncio
import threading

import pytest
import serial


class FakeSerial:
    """Thread-safe in-memory serial port; ``feed()`` plays the device side."""

    def __init__(self):
        self._lock = threading.Lock()
        self._pending = b""
        self.written = []
        self.is_open = True
        self.fail_writes = False
        self.read_error = None
        # Cleared to make write() block, like a port with a full output buffer.
        self.write_gate = threading.Event()
        self.write_gate.set()

    def feed(self, data: bytes):
        with self._lock:
            self._pending += data

    @property
    def in_waiting(self):
        if self.read_error is not None:
            raise self.read_error
        with self._lock:
            return len(self._pending)

    def read(self, n):
        with self._lock:
            data, self._pending = self._pending[:n], self._pending[n:]
        return data

    def write(self, data):
        self.write_gate.wait(timeout=5.0)
        if self.fail_writes:
            raise serial.SerialException("write failed")
        with self._lock:
            self.written.append(bytes(data))
        return len(data)

    def close(self):
        self.is_open = False


class SerialFactory:
    """Replacement for ``open_serial``: fails ``failures`` times, then hands out FakeSerial ports."""

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []
        self.ports = []

    def __call__(self, port, baud):
        self.calls.append((port, baud))
        if self.failures > 0:
            self.failures -= 1
            raise serial.SerialException(f"could not open port {port}")
        ser = FakeSerial()
        self.ports.append(ser)
        return ser

    @property
    def last(self):
        return self.ports[-1]


async def wait_until(predicate, timeout=2.0):
    """Poll ``predicate`` on the event loop until it is true or ``timeout`` expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def factory():
    return SerialFactory()
