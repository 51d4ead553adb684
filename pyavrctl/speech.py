"""All Alexa speech options go here."""

from pyavrctl.protocol import Dimension

HELLO = "What can I do for you?"
OK = "Ok."
HMM = "Hmm."
HELP = "Try commands such as: on, off, mute, unmute, volume 2, input CD, or status."

VOLUME_ERROR = "Volume must be between 1 and 10."
POWER_IS_OFF = "The receiver is off. Turn it on first."
REQUEST_IN_PROGRESS = "I'm still working on your last request."
TIMEOUT = "The receiver didn't answer in time. Don't think it worked..."
UNREACHABLE = "I can't reach the receiver right now."
INVALID_REQUEST = "Sorry, I didn't understand that."


def unknown_input(name) -> str:
    if not name:
        return "Which input do you want?"
    return f"I don't know an input called {name}."


def status(state: dict) -> str:
    parts = []
    if Dimension.POWER in state:
        parts.append("The receiver is " + ("on" if state[Dimension.POWER] else "off"))
    if Dimension.VOLUME in state:
        parts.append(f"volume is at {state[Dimension.VOLUME]}")
    if Dimension.MUTE in state:
        parts.append("muted" if state[Dimension.MUTE] else "not muted")
    if Dimension.INPUT in state:
        parts.append(f"input is {state[Dimension.INPUT]}")
    if not parts:
        return HMM
    return ", ".join(parts) + "."
