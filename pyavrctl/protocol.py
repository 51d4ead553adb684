import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pyavrctl.errors import InvalidArgument, UnknownInput

# Pioneer-style telnet grammar. Every command and status is a single line.
# Commands are terminated with \r, the receiver answers with \r\n.
LINE_TERMINATOR = "\r"

# Volume is a three digit level: 000 is -inf, 161 is 0.0dB, 185 is +12dB
MIN_VOLUME = 0
MAX_VOLUME = 185

# Power status: PWR0 means on, PWR1 (and PWR2 on some models) means standby
POWER_STATUS = re.compile(r"^PWR([0-2])$")

# Volume status: VOL121
VOLUME_STATUS = re.compile(r"^VOL(\d{3})$")

# Mute status: MUT0 means muted, MUT1 means not muted
MUTE_STATUS = re.compile(r"^MUT([01])$")

# Input status: FN04 means the input with code 04 is selected
INPUT_STATUS = re.compile(r"^FN(\d{2})$")

INPUT_CODE = re.compile(r"^\d{2}$")


class Dimension(Enum):
    """Independently tracked receiver state axes."""

    POWER = "power"
    VOLUME = "volume"
    MUTE = "mute"
    INPUT = "input"


QUERY_CODES = {
    Dimension.POWER: "?P",
    Dimension.VOLUME: "?V",
    Dimension.MUTE: "?M",
    Dimension.INPUT: "?F",
}


# ========== Outbound commands ==========

class AvrCommand:
    """Base class for commands sent to the receiver."""

    dimension: Dimension

    def code(self) -> str:
        raise NotImplementedError

    def to_line(self) -> str:
        return self.code() + LINE_TERMINATOR


@dataclass(frozen=True)
class PowerOn(AvrCommand):
    dimension = Dimension.POWER

    def code(self) -> str:
        return "PO"


@dataclass(frozen=True)
class PowerOff(AvrCommand):
    dimension = Dimension.POWER

    def code(self) -> str:
        return "PF"


@dataclass(frozen=True)
class SetVolume(AvrCommand):
    level: int
    dimension = Dimension.VOLUME

    def __post_init__(self):
        if isinstance(self.level, bool) or not isinstance(self.level, int):
            raise InvalidArgument(f"Volume level must be an integer, got {self.level!r}")
        if not (MIN_VOLUME <= self.level <= MAX_VOLUME):
            raise InvalidArgument(
                f"Volume level {self.level} out of range {MIN_VOLUME}-{MAX_VOLUME}"
            )

    def code(self) -> str:
        # Must be padded to three digits
        return f"{self.level:03d}VL"


@dataclass(frozen=True)
class VolumeUp(AvrCommand):
    dimension = Dimension.VOLUME

    def code(self) -> str:
        return "VU"


@dataclass(frozen=True)
class VolumeDown(AvrCommand):
    dimension = Dimension.VOLUME

    def code(self) -> str:
        return "VD"


@dataclass(frozen=True)
class Mute(AvrCommand):
    muted: bool
    dimension = Dimension.MUTE

    def code(self) -> str:
        return "MO" if self.muted else "MF"


@dataclass(frozen=True)
class SelectInput(AvrCommand):
    input_code: str
    dimension = Dimension.INPUT

    def __post_init__(self):
        if not isinstance(self.input_code, str) or not INPUT_CODE.match(self.input_code):
            raise InvalidArgument(f"Input code must be two digits, got {self.input_code!r}")

    def code(self) -> str:
        return f"{self.input_code}FN"


@dataclass(frozen=True)
class Query(AvrCommand):
    """Ask the receiver to report the current value of one dimension."""

    target: Dimension

    @property
    def dimension(self) -> Dimension:
        return self.target

    def code(self) -> str:
        return QUERY_CODES[self.target]


# ========== Inbound events ==========

class AvrEvent:
    """Base class for parsed status lines."""

    dimension: Optional[Dimension] = None

    @property
    def value(self):
        return None

    def notify(self, listener):
        """Forward this event to the matching AvrListener callback."""
        raise NotImplementedError


@dataclass(frozen=True)
class PowerState(AvrEvent):
    on: bool
    dimension = Dimension.POWER

    @property
    def value(self):
        return self.on

    def notify(self, listener):
        listener.power_changed(self.on)


@dataclass(frozen=True)
class VolumeState(AvrEvent):
    level: int
    dimension = Dimension.VOLUME

    @property
    def value(self):
        return self.level

    def notify(self, listener):
        listener.volume_level_changed(self.level)


@dataclass(frozen=True)
class MuteState(AvrEvent):
    muted: bool
    dimension = Dimension.MUTE

    @property
    def value(self):
        return self.muted

    def notify(self, listener):
        listener.mute_changed(self.muted)


@dataclass(frozen=True)
class InputState(AvrEvent):
    code: str
    dimension = Dimension.INPUT

    @property
    def value(self):
        return self.code

    def notify(self, listener):
        listener.input_changed(self.code)


@dataclass(frozen=True)
class Unrecognized(AvrEvent):
    raw_line: str

    def notify(self, listener):
        listener.unrecognized(self.raw_line)


def parse_status_line(line: str) -> AvrEvent:
    """Parse one status line (terminator already removed) into an AvrEvent."""
    message = line.strip()

    power_match = POWER_STATUS.match(message)
    if power_match:
        return PowerState(power_match.group(1) == "0")

    volume_match = VOLUME_STATUS.match(message)
    if volume_match:
        return VolumeState(int(volume_match.group(1)))

    mute_match = MUTE_STATUS.match(message)
    if mute_match:
        return MuteState(mute_match.group(1) == "0")

    input_match = INPUT_STATUS.match(message)
    if input_match:
        return InputState(input_match.group(1))

    return Unrecognized(message)


# ========== Input names ==========

DEFAULT_INPUTS = {
    "PHONO": "00",
    "TUNER": "02",
    "CD-R/TAPE": "03",
    "CD": "04",
    "TV/SAT": "05",
    "VIDEO 1": "10",
    "MULTI CH IN": "12",
    "VIDEO 2": "14",
    "DVR/BDR": "15",
    "IPOD/USB": "17",
    "HDMI 1": "19",
    "HDMI 2": "20",
    "HDMI 3": "21",
    "HDMI 4": "22",
    "HDMI 5": "23",
    "HDMI 6": "24",
    "BD": "25",
    "HOME MEDIA GALLERY": "26",
    "SIRIUS": "27",
    "HDMI CYCLIC": "31",
    "ADAPTER PORT": "33",
    "GAME": "49",
}


def _normalize_name(name: str) -> str:
    return " ".join(name.split()).upper()


class InputMap:
    """Bidirectional mapping between spoken input names and input codes."""

    def __init__(self, inputs: Optional[dict[str, str]] = None):
        if inputs is None:
            inputs = DEFAULT_INPUTS
        self._codes_by_name: dict[str, str] = {}
        self._names_by_code: dict[str, str] = {}
        for name, code in inputs.items():
            if not INPUT_CODE.match(code):
                raise InvalidArgument(f"Input {name!r} has invalid code {code!r}")
            normalized = _normalize_name(name)
            self._codes_by_name[normalized] = code
            # First name registered for a code wins the reverse lookup
            self._names_by_code.setdefault(code, normalized)

    @property
    def names(self) -> list[str]:
        return list(self._codes_by_name.keys())

    def code_for(self, name: str) -> str:
        if not isinstance(name, str):
            raise UnknownInput(name)
        code = self._codes_by_name.get(_normalize_name(name))
        if code is None:
            raise UnknownInput(name)
        return code

    def name_for(self, code: str) -> str:
        """Name for a code, or the raw code when the receiver reports an unmapped input."""
        return self._names_by_code.get(code, code)
