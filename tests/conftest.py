from __future__ import annotations

import asyncio
import time

from pyavrctl.dispatcher import CommandDispatcher, DispatchResult
from pyavrctl.errors import NotConnected
from pyavrctl.listener import AvrListener
from pyavrctl.protocol import parse_status_line
from pyavrctl.state import AvrStateCache


async def settle(rounds: int = 5):
    """Let ready tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


class FakeLink:
    """In-memory stand-in for AvrLink: records sent lines, emits status lines on demand."""

    def __init__(self, connected: bool = True):
        self.sent: list[str] = []
        self.connected = connected
        self._queue: asyncio.Queue = asyncio.Queue()
        self._connected_event = asyncio.Event()
        if connected:
            self._connected_event.set()

    @property
    def is_connected(self) -> bool:
        return self.connected

    def send(self, command):
        if not self.connected:
            raise NotConnected("link down")
        self.sent.append(command.to_line())

    async def wait_connected(self):
        await self._connected_event.wait()

    async def receive(self):
        queue = self._queue
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    def emit(self, *lines: str):
        for line in lines:
            self._queue.put_nowait(parse_status_line(line))

    def close_stream(self):
        self.connected = False
        self._connected_event.clear()
        self._queue.put_nowait(None)
        self._queue = asyncio.Queue()

    def reopen(self):
        self.connected = True
        self._connected_event.set()


class RecordingListener(AvrListener):
    def __init__(self):
        self.calls: list[tuple] = []

    def connected(self):
        self.calls.append(("connected",))

    def disconnected(self):
        self.calls.append(("disconnected",))

    def power_changed(self, power: bool):
        self.calls.append(("power", power))

    def volume_level_changed(self, level: int):
        self.calls.append(("volume", level))

    def mute_changed(self, muted: bool):
        self.calls.append(("mute", muted))

    def input_changed(self, input_code: str):
        self.calls.append(("input", input_code))

    def unrecognized(self, line: str):
        self.calls.append(("unrecognized", line))

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeAvr:
    """Minimal telnet-style AVR: records command lines and answers from a reply table."""

    def __init__(self, replies: dict[str, list[str]] | None = None):
        self.replies = replies or {}
        self.received: list[str] = []
        self.connections = 0
        self._writers: list[asyncio.StreamWriter] = []
        self._server = None
        self.port = None

    async def start(self, port: int = 0):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", port)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.connections += 1
        self._writers.append(writer)
        try:
            while True:
                data = await reader.readuntil(b"\r")
                line = data.decode("ascii").strip()
                self.received.append(line)
                for reply in self.replies.get(line, []):
                    writer.write(reply.encode("ascii"))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass

    def push(self, raw: bytes):
        for writer in self._writers:
            if not writer.is_closing():
                writer.write(raw)

    def drop_clients(self):
        for writer in self._writers:
            writer.close()
        self._writers.clear()

    async def stop(self):
        self.drop_clients()
        self._server.close()
        await self._server.wait_closed()


async def make_dispatcher(listener=None, **kwargs):
    kwargs.setdefault("request_timeout", 0.5)
    kwargs.setdefault("confirm_delay", None)
    link = FakeLink()
    cache = AvrStateCache()
    dispatcher = CommandDispatcher(link, cache, listener=listener, **kwargs)
    dispatcher.start()
    return link, cache, dispatcher


def alexa_request(request_type: str = "IntentRequest", intent: str | None = None,
                  slot: str | None = None, application_id: str = "amzn1.ask.skill.test") -> dict:
    request: dict = {
        "type": request_type,
        "requestId": "amzn1.echo-api.request.1",
        "timestamp": "2026-10-19T12:00:00Z",
        "locale": "en-US",
    }
    if intent is not None:
        slots = {}
        if slot is not None:
            slots[f"{intent}_slot"] = {"name": f"{intent}_slot", "value": slot}
        request["intent"] = {"name": intent, "confirmationStatus": "NONE", "slots": slots}
    return {
        "version": "1.0",
        "session": {
            "new": True,
            "sessionId": "amzn1.echo-api.session.1",
            "application": {"applicationId": application_id},
        },
        "context": {"System": {"application": {"applicationId": application_id}}},
        "request": request,
    }


class FakeDispatcher:
    """Records dispatched intents and answers with a canned result or error."""

    def __init__(self, result=None, error=None):
        self.calls: list[tuple] = []
        self.result = result
        self.error = error

    async def dispatch(self, intent, slots=None):
        self.calls.append((intent, dict(slots or {})))
        if self.error is not None:
            raise self.error
        return self.result or DispatchResult(intent)
