import logging
import threading
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from pyavrctl.protocol import (
    AvrEvent,
    Dimension,
    InputMap,
    InputState,
    MuteState,
    PowerState,
    VolumeState,
)


@dataclass(frozen=True)
class AvrSnapshot:
    """Point-in-time copy of what we believe the receiver's state is.

    Each value carries a validity flag. A value whose flag is False is only
    the last thing seen before a reconnect and must not be reported as fact.
    """

    power: Optional[bool] = None
    power_valid: bool = False
    volume: Optional[int] = None
    volume_valid: bool = False
    mute: Optional[bool] = None
    mute_valid: bool = False
    input: Optional[str] = None
    input_code: Optional[str] = None
    input_valid: bool = False

    def is_valid(self, dimension: Dimension) -> bool:
        return getattr(self, f"{dimension.value}_valid")

    def value(self, dimension: Dimension):
        return getattr(self, dimension.value)

    def all_valid(self, dimensions: Iterable[Dimension] = tuple(Dimension)) -> bool:
        return all(self.is_valid(dimension) for dimension in dimensions)


class AvrStateCache:
    """Last known receiver state, fed by AvrEvents from the event pump."""

    def __init__(self, input_map: Optional[InputMap] = None):
        self._logger = logging.getLogger(__name__)
        self._input_map = input_map or InputMap()
        self._lock = threading.Lock()
        self._snapshot = AvrSnapshot()

    def apply(self, event: AvrEvent) -> bool:
        """Update the field the event reports and mark it valid.

        Returns True if the snapshot changed. Unrecognized events are ignored.
        """
        if isinstance(event, PowerState):
            changes = {"power": event.on, "power_valid": True}
        elif isinstance(event, VolumeState):
            changes = {"volume": event.level, "volume_valid": True}
        elif isinstance(event, MuteState):
            changes = {"mute": event.muted, "mute_valid": True}
        elif isinstance(event, InputState):
            changes = {
                "input": self._input_map.name_for(event.code),
                "input_code": event.code,
                "input_valid": True,
            }
        else:
            return False

        with self._lock:
            updated = replace(self._snapshot, **changes)
            changed = updated != self._snapshot
            self._snapshot = updated
        if changed:
            self._logger.debug(f"State updated from {event}")
        return changed

    def invalidate_all(self):
        """Mark every field unknown, e.g. after the connection was lost."""
        with self._lock:
            self._snapshot = replace(
                self._snapshot,
                power_valid=False,
                volume_valid=False,
                mute_valid=False,
                input_valid=False,
            )
        self._logger.debug("State invalidated")

    def snapshot(self) -> AvrSnapshot:
        # Frozen dataclass, so handing out the current instance is a consistent copy
        with self._lock:
            return self._snapshot
