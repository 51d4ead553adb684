import asyncio
import logging
import random
import re
from enum import Enum
from typing import Any, AsyncIterator, Optional

from pyavrctl.errors import AvrConnectionError, NotConnected, WriteError
from pyavrctl.listener import AvrListener
from pyavrctl.protocol import AvrCommand, AvrEvent, parse_status_line

# Status lines end in \r\n, but some firmwares send bare \r or \n
LINE_SPLIT = re.compile(r"[\r\n]")

# Telnet option negotiation (IAC WILL/WONT/DO/DONT <opt>) and other IAC commands
TELNET_NEGOTIATION = re.compile(rb"\xff[\xfb-\xfe].|\xff[\xf0-\xfa\xff]", re.DOTALL)

# Drop a runaway partial line rather than growing the buffer forever
MAX_LINE_LENGTH = 4096

RECONNECT_BASE_SECONDS = 1.0
RECONNECT_CAP_SECONDS = 30.0
RECONNECT_JITTER = 0.2


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAULTED = "faulted"


def backoff_delay(attempt: int, base: float = RECONNECT_BASE_SECONDS,
                  cap: float = RECONNECT_CAP_SECONDS, jitter: float = RECONNECT_JITTER) -> float:
    """Exponential reconnect delay for the given attempt number (0 based), with +/- jitter."""
    delay = min(cap, base * (2 ** min(attempt, 32)))
    return delay * random.uniform(1.0 - jitter, 1.0 + jitter)


class AvrLink(asyncio.Protocol):
    """Owns the telnet session to the receiver.

    Writes command lines, frames and parses inbound status lines, and keeps
    reconnecting with exponential backoff after any fault until ``close()``.
    Parsed events of the current session are exposed through ``receive()``.
    """

    _transport: Optional[asyncio.Transport]
    _events: Optional["asyncio.Queue[Optional[AvrEvent]]"]
    _reconnect_task: Optional["asyncio.Task[Any]"]

    def __init__(
        self,
        hostname,
        port,
        listener: Optional[AvrListener] = None,
        connect_timeout=5.0,
        reconnect_base=RECONNECT_BASE_SECONDS,
        reconnect_cap=RECONNECT_CAP_SECONDS,
        reconnect_jitter=RECONNECT_JITTER,
    ):
        self._logger = logging.getLogger(__name__)
        self._hostname = hostname
        self._port = port
        self._listener = listener
        self._connect_timeout = connect_timeout
        self._reconnect_base = reconnect_base
        self._reconnect_cap = reconnect_cap
        self._reconnect_jitter = reconnect_jitter

        self._state = ConnectionState.DISCONNECTED
        self._reconnect = True
        self._reconnect_task = None
        self._reconnect_attempts: int = 0
        self._transport = None
        self.peer_name = None
        self._buffer = ""
        # One queue per session, terminated with None when the transport closes
        self._events = None
        self._events_claimed = False
        self._connected_event = asyncio.Event()

    @property
    def hostname(self) -> str:
        return self._hostname

    @property
    def port(self) -> int:
        return self._port

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    async def async_connect(self):
        """Open the telnet session. Raises AvrConnectionError on refusal or timeout."""
        if self._state is ConnectionState.CONNECTED:
            return
        self._state = ConnectionState.CONNECTING
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.create_connection(lambda: self, host=self._hostname, port=self._port),
                timeout=self._connect_timeout,
            )
        # ValueError covers hostnames the resolver refuses to encode
        except (asyncio.TimeoutError, OSError, ValueError) as e:
            self._state = ConnectionState.FAULTED
            raise AvrConnectionError(
                f"Could not connect to AVR at {self._hostname}:{self._port}: {e!r}"
            ) from e

    async def start(self):
        """Connect, falling back to the background reconnect loop on failure."""
        self._reconnect = True
        try:
            await self.async_connect()
        except AvrConnectionError as e:
            self._logger.error(f"{e}, will keep retrying")
            self._start_reconnect()

    async def wait_connected(self):
        await self._connected_event.wait()

    def close(self):
        self._reconnect = False
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        if self._transport:
            self._transport.close()
        elif self._state is not ConnectionState.CONNECTED:
            self._state = ConnectionState.DISCONNECTED

    def drop_connection(self):
        """Abort the current transport so the reconnect loop takes over."""
        if self._transport:
            self._logger.warning(f"Dropping connection to {self._hostname}")
            self._transport.abort()

    def send(self, command: AvrCommand):
        """Write one command line. Never blocks; fails fast when not connected."""
        if self._state is not ConnectionState.CONNECTED or self._transport is None:
            raise NotConnected(
                f"Cannot send {command.code()}: link is {self._state.value}"
            )
        line = command.to_line()
        transport = self._transport
        try:
            if transport.is_closing():
                raise ConnectionResetError("transport is closing")
            transport.write(line.encode("ascii"))
        except Exception as e:
            self._logger.error(f"SEND FAILED: {line.encode()} - {e}")
            self._handle_connection_broken()
            transport.abort()
            raise WriteError(f"Could not write {command.code()} to AVR: {e}") from e
        self._logger.info(f"SEND: {line.encode()}")

    async def receive(self) -> AsyncIterator[AvrEvent]:
        """Yield parsed events of the current session until its transport closes."""
        events = self._events
        if events is None:
            return
        if self._events_claimed:
            raise RuntimeError("Event stream of this session is already being consumed")
        self._events_claimed = True
        while True:
            event = await events.get()
            if event is None:
                return
            yield event

    def connection_made(self, transport):
        """Method from asyncio.Protocol"""
        self._transport = transport
        self._state = ConnectionState.CONNECTED
        self.peer_name = transport.get_extra_info("peername")
        self._logger.info(f"Connection Made: {self.peer_name}")
        self._buffer = ""
        self._events = asyncio.Queue()
        self._events_claimed = False
        self._reconnect_attempts = 0
        self._connected_event.set()
        if self._listener:
            self._listener.connected()

    def connection_lost(self, exc):
        """Method from asyncio.Protocol"""
        self._handle_connection_broken()

    def _handle_connection_broken(self):
        """Handle connection loss, either from asyncio or from a failed write."""
        if self._state is not ConnectionState.CONNECTED:
            return
        self._state = ConnectionState.FAULTED if self._reconnect else ConnectionState.DISCONNECTED
        self._transport = None
        self._connected_event.clear()
        if self._events is not None:
            self._events.put_nowait(None)
            self._events = None

        disconnected_message = f"Disconnected from {self._hostname}"
        if self._reconnect:
            self._logger.error(disconnected_message + " will try to reconnect")
        else:
            # Only info in here as close has been called.
            self._logger.info(disconnected_message + " not reconnecting")

        if self._listener:
            try:
                self._listener.disconnected()
            except Exception as e:
                self._logger.error(f"Exception in disconnected() callback: {e}")

        if self._reconnect:
            self._start_reconnect()

    def _start_reconnect(self):
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(self._wait_to_reconnect())

    async def _wait_to_reconnect(self):
        """Retry with exponential backoff until connected or closed."""
        while self._reconnect and self._state is not ConnectionState.CONNECTED:
            delay = backoff_delay(
                self._reconnect_attempts,
                self._reconnect_base,
                self._reconnect_cap,
                self._reconnect_jitter,
            )
            self._reconnect_attempts += 1
            self._logger.info(
                f"Reconnecting to {self._hostname}:{self._port} in {delay:.1f}s "
                f"(attempt {self._reconnect_attempts})"
            )
            await asyncio.sleep(delay)
            if not self._reconnect:
                break
            try:
                await self.async_connect()
            except AvrConnectionError as e:
                self._logger.warning(f"Reconnect attempt failed: {e}")
            except Exception as e:
                self._logger.error(f"Unexpected error while reconnecting: {e!r}")
                if self._state is not ConnectionState.CONNECTED:
                    self._state = ConnectionState.FAULTED

    def data_received(self, data):
        """Method from asyncio.Protocol"""
        self._logger.debug(f"data_received client: {data}")
        if self._listener:
            self._listener.data_received(data)

        decoded = TELNET_NEGOTIATION.sub(b"", data).decode("ascii", errors="replace")
        *lines, self._buffer = LINE_SPLIT.split(self._buffer + decoded)
        if len(self._buffer) > MAX_LINE_LENGTH:
            self._logger.warning(f"Discarding {len(self._buffer)} bytes without a line terminator")
            self._buffer = ""

        for line in lines:
            message = line.strip()
            if not message:
                continue
            event = parse_status_line(message)
            self._logger.info(f"RECV: {message} -> {event}")
            if self._events is not None:
                self._events.put_nowait(event)
