"""Intent to command mapping and status line correlation.

The receiver protocol is not request/response: a command may be answered by
zero, one or many status lines, and status lines also arrive unsolicited.
The dispatcher hides that behind an awaitable call by keeping at most one
PendingRequest per state dimension and resolving it from the single event
pump that also feeds the state cache.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from pyavrctl.errors import (
    InvalidArgument,
    LinkClosed,
    PowerIsOff,
    RequestInProgress,
    RequestTimeout,
)
from pyavrctl.listener import AvrListener
from pyavrctl.protocol import (
    MAX_VOLUME,
    MIN_VOLUME,
    AvrCommand,
    AvrEvent,
    Dimension,
    InputMap,
    Mute,
    PowerOff,
    PowerOn,
    Query,
    SelectInput,
    SetVolume,
    VolumeDown,
    VolumeUp,
)
from pyavrctl.state import AvrStateCache

DEFAULT_REQUEST_TIMEOUT = 2.0
# Ask the receiver to re-report the dimension if nothing matched by then
DEFAULT_CONFIRM_DELAY = 1.0
PUMP_RETRY_DELAY = 1.0

INTENT_TURN_ON = "TurnOn"
INTENT_TURN_OFF = "TurnOff"
INTENT_SET_VOLUME = "SetVolume"
INTENT_VOLUME_UP = "VolumeUp"
INTENT_VOLUME_DOWN = "VolumeDown"
INTENT_MUTE = "Mute"
INTENT_UNMUTE = "Unmute"
INTENT_SELECT_INPUT = "SelectInput"
INTENT_QUERY_STATUS = "QueryStatus"


class PendingState(Enum):
    AWAITING = "awaiting"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


class PendingRequest:
    """One in-flight request waiting for a status line of its dimension.

    Leaves AWAITING exactly once. The deadline is a loop timer so nothing
    sleeps while waiting, and the future always completes with a
    PendingState rather than an exception.
    """

    def __init__(
        self,
        dimension: Dimension,
        matcher: Callable[[AvrEvent], bool],
        timeout: float,
        on_done: Optional[Callable[["PendingRequest"], Any]] = None,
    ):
        loop = asyncio.get_running_loop()
        self.dimension = dimension
        self.matcher = matcher
        self.timeout = timeout
        self.deadline = loop.time() + timeout
        self.state = PendingState.AWAITING
        self.event: Optional[AvrEvent] = None
        self.future: asyncio.Future = loop.create_future()
        self._on_done = on_done
        self._handles = [loop.call_at(self.deadline, self.expire)]

    def call_later(self, delay: float, callback: Callable[..., Any], *args):
        """Schedule a callback that is dropped once this request finishes."""
        if self.done():
            return
        self._handles.append(asyncio.get_running_loop().call_later(delay, callback, *args))

    def done(self) -> bool:
        return self.state is not PendingState.AWAITING

    def matches(self, event: AvrEvent) -> bool:
        return (
            not self.done()
            and event.dimension is self.dimension
            and self.matcher(event)
        )

    def resolve(self, event: AvrEvent) -> bool:
        if self.done():
            return False
        self.event = event
        self._finish(PendingState.RESOLVED)
        return True

    def expire(self):
        self._finish(PendingState.TIMED_OUT)

    def close(self):
        self._finish(PendingState.CLOSED)

    def _finish(self, state: PendingState):
        if self.done():
            return
        self.state = state
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        if self._on_done is not None:
            self._on_done(self)
        if not self.future.done():
            self.future.set_result(state)


@dataclass(frozen=True)
class DispatchResult:
    """Confirmed state facts produced by a dispatched intent."""

    intent: str
    state: dict = field(default_factory=dict)

    @property
    def value(self):
        """The single confirmed value, for intents that touch one dimension."""
        if len(self.state) == 1:
            return next(iter(self.state.values()))
        return None


def _any_event(event: AvrEvent) -> bool:
    return True


class CommandDispatcher:
    """Turns intents into AVR commands and awaits the status line that confirms them."""

    def __init__(
        self,
        link,
        cache: AvrStateCache,
        input_map: Optional[InputMap] = None,
        listener: Optional[AvrListener] = None,
        request_timeout=DEFAULT_REQUEST_TIMEOUT,
        confirm_delay: Optional[float] = DEFAULT_CONFIRM_DELAY,
        max_volume=MAX_VOLUME,
    ):
        self._logger = logging.getLogger(__name__)
        self._link = link
        self._cache = cache
        self._input_map = input_map or InputMap()
        self._listener = listener
        self._request_timeout = request_timeout
        self._confirm_delay = confirm_delay
        self._max_volume = min(max_volume, MAX_VOLUME)
        self._pending: dict[Dimension, PendingRequest] = {}
        self._pump_task: Optional[asyncio.Task] = None

        self._intents = {
            INTENT_TURN_ON: self._turn_on,
            INTENT_TURN_OFF: self._turn_off,
            INTENT_SET_VOLUME: self._set_volume,
            INTENT_VOLUME_UP: self._volume_up,
            INTENT_VOLUME_DOWN: self._volume_down,
            INTENT_MUTE: self._mute,
            INTENT_UNMUTE: self._unmute,
            INTENT_SELECT_INPUT: self._select_input,
            INTENT_QUERY_STATUS: self._query_status,
        }

    @property
    def intents(self) -> list[str]:
        return list(self._intents.keys())

    @property
    def input_map(self) -> InputMap:
        return self._input_map

    def pending(self, dimension: Dimension) -> Optional[PendingRequest]:
        return self._pending.get(dimension)

    async def dispatch(self, intent: str, slots: Optional[Mapping[str, Any]] = None) -> DispatchResult:
        """Run one intent to completion.

        Raises InvalidArgument/UnknownInput/PowerIsOff without touching the
        link, RequestInProgress when the dimension is busy, NotConnected or
        WriteError when the command cannot be sent, and RequestTimeout or
        LinkClosed when no confirming status line arrives.
        """
        slots = slots or {}
        handler = self._intents.get(intent)
        if handler is None:
            raise InvalidArgument(f"Unknown intent: {intent!r}")
        self._logger.info(f"Dispatching {intent} {dict(slots)}")
        result = await handler(slots)
        self._logger.info(f"{intent} confirmed: {result.state}")
        return result

    # ========== Intents ==========

    async def _turn_on(self, slots) -> DispatchResult:
        event = await self._request(PowerOn(), lambda e: e.on)
        return DispatchResult(INTENT_TURN_ON, {Dimension.POWER: event.on})

    async def _turn_off(self, slots) -> DispatchResult:
        event = await self._request(PowerOff(), lambda e: not e.on)
        return DispatchResult(INTENT_TURN_OFF, {Dimension.POWER: event.on})

    async def _set_volume(self, slots) -> DispatchResult:
        level = self._parse_level(slots.get("level"))
        self._check_power()
        event = await self._request(SetVolume(level), lambda e: e.level == level)
        return DispatchResult(INTENT_SET_VOLUME, {Dimension.VOLUME: event.level})

    async def _volume_up(self, slots) -> DispatchResult:
        self._check_power()
        event = await self._request(VolumeUp(), _any_event)
        return DispatchResult(INTENT_VOLUME_UP, {Dimension.VOLUME: event.level})

    async def _volume_down(self, slots) -> DispatchResult:
        self._check_power()
        event = await self._request(VolumeDown(), _any_event)
        return DispatchResult(INTENT_VOLUME_DOWN, {Dimension.VOLUME: event.level})

    async def _mute(self, slots) -> DispatchResult:
        self._check_power()
        event = await self._request(Mute(True), lambda e: e.muted)
        return DispatchResult(INTENT_MUTE, {Dimension.MUTE: event.muted})

    async def _unmute(self, slots) -> DispatchResult:
        self._check_power()
        event = await self._request(Mute(False), lambda e: not e.muted)
        return DispatchResult(INTENT_UNMUTE, {Dimension.MUTE: event.muted})

    async def _select_input(self, slots) -> DispatchResult:
        code = self._input_map.code_for(slots.get("input"))
        self._check_power()
        event = await self._request(SelectInput(code), lambda e: e.code == code)
        return DispatchResult(
            INTENT_SELECT_INPUT, {Dimension.INPUT: self._input_map.name_for(event.code)}
        )

    async def _query_status(self, slots) -> DispatchResult:
        requested = slots.get("dimension")
        if requested:
            try:
                dimensions = [Dimension(str(requested).strip().lower())]
            except ValueError:
                raise InvalidArgument(f"Unknown status dimension: {requested!r}") from None
        else:
            dimensions = list(Dimension)

        snapshot = self._cache.snapshot()
        state = {}
        missing = []
        for dimension in dimensions:
            if snapshot.is_valid(dimension):
                state[dimension] = snapshot.value(dimension)
            else:
                missing.append(dimension)

        if missing:
            self._logger.info(
                f"No valid cached {', '.join(d.value for d in missing)}, querying AVR"
            )
            results = await asyncio.gather(
                *(self._request(Query(dimension), _any_event) for dimension in missing),
                return_exceptions=True,
            )
            for dimension, result in zip(missing, results):
                if isinstance(result, BaseException):
                    raise result
                if dimension is Dimension.INPUT:
                    state[dimension] = self._input_map.name_for(result.code)
                else:
                    state[dimension] = result.value

        # Report in a stable order regardless of which values came from the cache
        return DispatchResult(
            INTENT_QUERY_STATUS, {dimension: state[dimension] for dimension in dimensions}
        )

    # ========== Correlation ==========

    def _parse_level(self, raw) -> int:
        """Accept an int, a whole float or a string of digits. Anything else is refused, never rounded."""
        if isinstance(raw, float) and raw.is_integer():
            level = int(raw)
        elif isinstance(raw, int) and not isinstance(raw, bool):
            level = raw
        elif isinstance(raw, str) and raw.strip().isascii() and raw.strip().isdigit():
            level = int(raw.strip())
        else:
            raise InvalidArgument(f"Invalid volume level {raw!r}")
        if not (MIN_VOLUME <= level <= self._max_volume):
            raise InvalidArgument(
                f"Volume level {level} out of range {MIN_VOLUME}-{self._max_volume}"
            )
        return level

    def _check_power(self):
        snapshot = self._cache.snapshot()
        if snapshot.power_valid and snapshot.power is False:
            raise PowerIsOff("Receiver is in standby")

    async def _request(self, command: AvrCommand, matcher: Callable[[AvrEvent], bool]) -> AvrEvent:
        dimension = command.dimension
        if dimension in self._pending:
            raise RequestInProgress(dimension)

        pending = PendingRequest(dimension, matcher, self._request_timeout, on_done=self._release)
        self._pending[dimension] = pending
        try:
            self._link.send(command)
        except Exception:
            pending.close()
            raise

        if self._confirm_delay is not None and not isinstance(command, Query):
            pending.call_later(self._confirm_delay, self._confirm, pending)

        # Shielded: an aborted caller drops the result, the correlation keeps running
        state = await asyncio.shield(pending.future)
        if state is PendingState.RESOLVED:
            return pending.event
        if state is PendingState.TIMED_OUT:
            raise RequestTimeout(
                f"No {dimension.value} status from AVR within {self._request_timeout}s"
            )
        raise LinkClosed(f"Link closed while waiting for {dimension.value} status")

    def _confirm(self, pending: PendingRequest):
        if pending.done():
            return
        self._logger.debug(f"No {pending.dimension.value} status yet, querying AVR")
        try:
            self._link.send(Query(pending.dimension))
        except Exception as e:
            self._logger.warning(f"Confirmation query for {pending.dimension.value} failed: {e}")

    def _release(self, pending: PendingRequest):
        if self._pending.get(pending.dimension) is pending:
            del self._pending[pending.dimension]
        self._logger.debug(f"{pending.dimension.value} request finished: {pending.state.value}")

    def invalidate(self):
        """Forget cached state and fail every outstanding request with LinkClosed."""
        self._cache.invalidate_all()
        for pending in list(self._pending.values()):
            pending.close()

    # ========== Event pump ==========

    def start(self):
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self):
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None
        self.invalidate()

    async def run(self):
        """Single reader of the link's event stream, one session after another."""
        while True:
            try:
                await self._link.wait_connected()
                async for event in self._link.receive():
                    try:
                        self.handle_event(event)
                    except Exception as e:
                        self._logger.error(f"Error handling {event}: {e}")
                self._logger.info("Event stream closed")
            except Exception as e:
                self._logger.error(f"Error in event pump: {e}")
                # Don't spin if the link keeps failing straight away
                await asyncio.sleep(PUMP_RETRY_DELAY)
            self.invalidate()

    def handle_event(self, event: AvrEvent):
        """Apply one event to the cache and to any pending request, then notify listeners."""
        self._cache.apply(event)
        if event.dimension is not None:
            pending = self._pending.get(event.dimension)
            if pending is not None and pending.matches(event):
                pending.resolve(event)
                self._logger.debug(f"{event} satisfied pending {event.dimension.value} request")
        if self._listener is not None:
            try:
                event.notify(self._listener)
            except Exception as e:
                self._logger.error(f"Exception in listener for {event}: {e}")
