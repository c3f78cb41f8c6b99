from __future__ import annotations

import itertools
from typing import Any, Callable, List, Tuple

import pytest

from mysming_ble import GattEvent, SensorClient
from mysming_ble.mock_transport import MockGattHandle, MockGattTransport

ADDRESS = "C0:FF:EE:00:00:01"


class FakeHandle:
    def __init__(self, when: float, seq: int, callback: Callable[..., None], args: Tuple[Any, ...]):
        self.when = when
        self.seq = seq
        self._callback = callback
        self._args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def run(self) -> None:
        self._callback(*self._args)


class FakeLoop:
    """Manual-clock stand-in for the asyncio loop (call_soon / call_later only)."""

    def __init__(self) -> None:
        self.now = 0.0
        self._handles: List[FakeHandle] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[..., None], *args: Any) -> FakeHandle:
        handle = FakeHandle(self.now + delay, next(self._seq), callback, args)
        self._handles.append(handle)
        return handle

    def call_soon(self, callback: Callable[..., None], *args: Any) -> FakeHandle:
        return self.call_later(0.0, callback, *args)

    def pending(self) -> List[FakeHandle]:
        live = [h for h in self._handles if not h.cancelled()]
        return sorted(live, key=lambda h: (h.when, h.seq))

    def timers(self) -> List[FakeHandle]:
        """Handles scheduled strictly in the future."""
        return [h for h in self.pending() if h.when > self.now]

    def run_ready(self) -> None:
        """Run every handle due at the current time, including newly scheduled ones."""
        while True:
            due = [h for h in self.pending() if h.when <= self.now]
            if not due:
                return
            handle = due[0]
            self._handles.remove(handle)
            handle.run()

    def tick(self) -> bool:
        """Jump to the next scheduled timer and run everything that is due."""
        self.run_ready()
        upcoming = self.pending()
        if not upcoming:
            return False
        self.now = upcoming[0].when
        self.run_ready()
        return True

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            upcoming = [h for h in self.pending() if h.when <= target]
            if not upcoming:
                break
            self.now = max(self.now, upcoming[0].when)
            self.run_ready()
        self.now = target
        self.run_ready()


def kinds(events: List[GattEvent]) -> list:
    return [e.kind for e in events]


def writes(handle: MockGattHandle) -> list:
    return [(op[1], op[2]) for op in handle.operations if op[0] == "write"]


def reads(handle: MockGattHandle) -> list:
    return [op[1] for op in handle.operations if op[0] == "read"]


@pytest.fixture
def loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def transport(loop: FakeLoop) -> MockGattTransport:
    return MockGattTransport(loop)


@pytest.fixture
def client(loop: FakeLoop, transport: MockGattTransport) -> SensorClient:
    return SensorClient(transport, loop=loop)


@pytest.fixture
def events(client: SensorClient) -> List[GattEvent]:
    recorded: List[GattEvent] = []
    client.subscribe(recorded.append)
    return recorded


@pytest.fixture
def connected(client: SensorClient, loop: FakeLoop, events: List[GattEvent]) -> SensorClient:
    """Client connected to the simulated peripheral with services discovered."""
    client.initialize()
    client.connect(ADDRESS)
    loop.run_ready()
    events.clear()
    return client


@pytest.fixture
def handle(connected: SensorClient, transport: MockGattTransport) -> MockGattHandle:
    return transport.handles[-1]
