"""AVR receiver - link, state cache and dispatcher wired together.

This module contains the high-level receiver abstraction with:
- AvrLink creation and the reconnect lifecycle
- AvrStateCache invalidation on every disconnect and fresh connect
- Initial status queries so state is rebuilt from the AVR on each connect
- Heartbeat polling for changes made with the remote or front panel
- Connection watchdog for silent connections
- The CommandDispatcher event pump

ReceiverListener receives the lifecycle callbacks from the link."""

import asyncio
import logging
import time
from asyncio import Task
from typing import Any, Mapping, Optional

from pyavrctl.dispatcher import (
    DEFAULT_CONFIRM_DELAY,
    DEFAULT_REQUEST_TIMEOUT,
    CommandDispatcher,
    DispatchResult,
)
from pyavrctl.errors import AvrError
from pyavrctl.link import RECONNECT_BASE_SECONDS, RECONNECT_CAP_SECONDS, AvrLink
from pyavrctl.listener import AvrListener, MultiplexingListener
from pyavrctl.protocol import Dimension, InputMap, Query
from pyavrctl.state import AvrSnapshot, AvrStateCache


class ReceiverListener(AvrListener):
    """Internal listener that keeps receiver state in step with the connection."""

    def __init__(self, receiver):
        self._receiver = receiver

    def data_received(self, data: bytes):
        """Update last-receive timestamp on any inbound data."""
        self._receiver._last_receive_timestamp = time.time()

    def connected(self):
        self._receiver._on_connected()

    def disconnected(self):
        self._receiver._on_disconnected()

    def power_changed(self, power: bool):
        pass

    def volume_level_changed(self, level: int):
        pass

    def mute_changed(self, muted: bool):
        pass

    def input_changed(self, input_code: str):
        pass

    def unrecognized(self, line: str):
        self._receiver._logger.debug(f"Ignoring unrecognized status line: {line!r}")


class AvrReceiver:
    """High-level control of one network AVR.

    Owns the telnet link, the state cache and the dispatcher, and runs the
    heartbeat and watchdog tasks while connected.
    """

    def __init__(self, hostname, port, enable_heartbeat=True, heartbeat_time=30,
                 idle_timeout=90, request_timeout=DEFAULT_REQUEST_TIMEOUT,
                 confirm_delay=DEFAULT_CONFIRM_DELAY, connect_timeout=5.0,
                 reconnect_base=RECONNECT_BASE_SECONDS, reconnect_cap=RECONNECT_CAP_SECONDS,
                 inputs: Optional[dict[str, str]] = None):
        """Initialize receiver.

        Args:
            hostname: AVR hostname or IP
            port: Telnet port (8102 or 23 on most Pioneer models)
            enable_heartbeat: Whether to enable periodic status polling
            heartbeat_time: Seconds between heartbeat polls
            idle_timeout: Seconds without any data before the connection is considered dead
            request_timeout: Seconds a dispatched intent waits for its status line
            confirm_delay: Seconds before re-querying an unconfirmed dimension, None to disable
            connect_timeout: Seconds allowed for each connection attempt
            reconnect_base: First reconnect delay, doubled per failed attempt
            reconnect_cap: Upper bound for the reconnect delay
            inputs: Optional input name to code table replacing the default one
        """
        self._logger = logging.getLogger(__name__)
        self._enable_heartbeat = enable_heartbeat
        self._heartbeat_time = heartbeat_time
        self._idle_timeout = idle_timeout
        self._was_connected = False

        # Tasks
        self._heartbeat_task: Optional[Task[Any]] = None
        self._connection_watchdog_task: Optional[Task[Any]] = None

        # Track last received data time to detect silent/stalled connections
        self._last_receive_timestamp: float = time.time()

        self._input_map = InputMap(inputs)
        self._cache = AvrStateCache(self._input_map)

        # Create multiplexing listener for external listeners
        self._multiplex_callback = MultiplexingListener()
        self._receiver_listener = ReceiverListener(self)
        self._multiplex_callback.register_listener(self._receiver_listener)

        self._link = AvrLink(
            hostname,
            port,
            self._multiplex_callback,
            connect_timeout=connect_timeout,
            reconnect_base=reconnect_base,
            reconnect_cap=reconnect_cap,
        )
        self._dispatcher = CommandDispatcher(
            self._link,
            self._cache,
            input_map=self._input_map,
            listener=self._multiplex_callback,
            request_timeout=request_timeout,
            confirm_delay=confirm_delay,
        )

    # ========== Connection lifecycle handlers ==========

    def _on_connected(self):
        """Called by ReceiverListener when connection is established."""
        self._logger.info("Receiver connected")
        self._last_receive_timestamp = time.time()
        if self._was_connected:
            # State changed while we were away, nothing cached can be trusted
            self._dispatcher.invalidate()
        self._was_connected = True

        self._cancel_tasks()
        loop = asyncio.get_running_loop()
        if self._enable_heartbeat:
            self._heartbeat_task = loop.create_task(self._heartbeat())
            self._logger.info("Heartbeat task started (interval=%ss)", self._heartbeat_time)
            self._connection_watchdog_task = loop.create_task(self._connection_watchdog())

        # Rebuild state from the AVR
        self._send_status_queries()

    def _on_disconnected(self):
        """Called by ReceiverListener when connection is lost."""
        self._cancel_tasks()
        self._dispatcher.invalidate()

    def _cancel_tasks(self):
        for task in (self._heartbeat_task, self._connection_watchdog_task):
            if task is not None and not task.done():
                task.cancel()
        self._heartbeat_task = None
        self._connection_watchdog_task = None

    def _send_status_queries(self):
        for dimension in Dimension:
            # Skip dimensions a dispatched request is already asking about
            if self._dispatcher.pending(dimension) is not None:
                continue
            try:
                self._link.send(Query(dimension))
            except AvrError as e:
                self._logger.warning(f"Status query for {dimension.value} failed: {e}")
                return

    async def _heartbeat(self):
        """Periodically query status to pick up remote and front panel changes."""
        while True:
            await asyncio.sleep(self._heartbeat_time)
            self._logger.debug("heartbeat - polling power, volume, mute and input")
            self._send_status_queries()

    async def _connection_watchdog(self):
        """Drop the connection if nothing has been received for idle_timeout seconds.

        The heartbeat guarantees the AVR has something to answer, so silence
        means the connection died without asyncio noticing.
        """
        check_interval = min(5.0, self._idle_timeout / 2)
        while True:
            try:
                await asyncio.sleep(check_interval)
                if not self._link.is_connected:
                    continue
                time_since_last_data = time.time() - self._last_receive_timestamp
                if time_since_last_data > self._idle_timeout:
                    self._logger.error(
                        f"[WATCHDOG] Connection appears dead: no data received for "
                        f"{time_since_last_data:.1f}s, reconnecting..."
                    )
                    self._link.drop_connection()
                    return
            except asyncio.CancelledError:
                self._logger.debug("Connection watchdog cancelled")
                break
            except Exception as e:
                self._logger.error(f"Error in connection watchdog: {e}")

    # ========== Public API ==========

    @property
    def link(self) -> AvrLink:
        return self._link

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._dispatcher

    @property
    def input_names(self) -> list[str]:
        return self._input_map.names

    @property
    def is_connected(self) -> bool:
        return self._link.is_connected

    def snapshot(self) -> AvrSnapshot:
        return self._cache.snapshot()

    def register_listener(self, listener: AvrListener):
        self._multiplex_callback.register_listener(listener)

    def unregister_listener(self, listener: AvrListener):
        self._multiplex_callback.unregister_listener(listener)

    async def dispatch(self, intent: str, slots: Optional[Mapping[str, Any]] = None) -> DispatchResult:
        return await self._dispatcher.dispatch(intent, slots)

    async def start(self):
        """Start the event pump and connect, retrying in the background on failure."""
        self._dispatcher.start()
        await self._link.start()

    async def close(self):
        self._cancel_tasks()
        self._link.close()
        await self._dispatcher.stop()
