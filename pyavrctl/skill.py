"""Alexa skill request handling.

Turns the Alexa request envelope into a dispatcher intent and the outcome
back into an Alexa response. LaunchRequests are left open, waiting for an
intent. SessionEndedRequests end silently. Other request types get "Hmm."
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pyavrctl import speech
from pyavrctl.dispatcher import (
    INTENT_MUTE,
    INTENT_QUERY_STATUS,
    INTENT_SELECT_INPUT,
    INTENT_SET_VOLUME,
    INTENT_TURN_OFF,
    INTENT_TURN_ON,
    INTENT_UNMUTE,
    INTENT_VOLUME_DOWN,
    INTENT_VOLUME_UP,
    CommandDispatcher,
)
from pyavrctl.errors import (
    AvrError,
    InvalidArgument,
    PowerIsOff,
    RequestInProgress,
    RequestTimeout,
    UnknownInput,
)

LAUNCH_REQUEST = "LaunchRequest"
INTENT_REQUEST = "IntentRequest"
SESSION_ENDED_REQUEST = "SessionEndedRequest"

# Custom intents defined for this skill, mapped to dispatcher intents
SKILL_INTENTS = {
    "On": INTENT_TURN_ON,
    "Off": INTENT_TURN_OFF,
    "Mute": INTENT_MUTE,
    "Unmute": INTENT_UNMUTE,
    "Volume": INTENT_SET_VOLUME,
    "VolumeUp": INTENT_VOLUME_UP,
    "VolumeDown": INTENT_VOLUME_DOWN,
    "Input": INTENT_SELECT_INPUT,
    "Status": INTENT_QUERY_STATUS,
}

HELP_INTENTS = {"AMAZON.HelpIntent"}
END_INTENTS = {"AMAZON.CancelIntent", "AMAZON.StopIntent", "AMAZON.NavigateHomeIntent"}

VOLUME_STEPS = 10
# 161 is 0.0dB and we don't want to go any louder by voice
VOLUME_CEILING = 101


class MalformedRequest(ValueError):
    """The body is JSON but not shaped like an Alexa request envelope."""


def _section(container: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    """Nested object of the envelope, empty when absent."""
    value = container.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise MalformedRequest(f"{key!r} must be an object, got {type(value).__name__}")
    return value


def volume_level_for_step(step: int, steps=VOLUME_STEPS, ceiling=VOLUME_CEILING) -> int:
    """Convert a spoken volume step (1 - steps) to an AVR volume level."""
    return math.ceil(step / steps * ceiling)


@dataclass(frozen=True)
class SkillResult:
    outcome: str
    speech: Optional[str] = None
    end_session: bool = True

    @property
    def success(self) -> bool:
        return self.outcome == "success"

    def to_response(self) -> dict:
        response: dict[str, Any] = {"shouldEndSession": self.end_session}
        if self.speech:
            response["outputSpeech"] = {"type": "PlainText", "text": self.speech}
        return {"version": "1.0", "response": response}


def _ok(text: Optional[str] = speech.OK, end_session=True) -> SkillResult:
    return SkillResult("success", text, end_session)


def _failed(text: str) -> SkillResult:
    return SkillResult("failure", text, True)


class SkillHandler:
    """Entry point for the web service: Alexa request body in, Alexa response body out."""

    def __init__(self, dispatcher: CommandDispatcher, volume_steps=VOLUME_STEPS,
                 volume_ceiling=VOLUME_CEILING):
        self._logger = logging.getLogger(__name__)
        self._dispatcher = dispatcher
        self._volume_steps = volume_steps
        self._volume_ceiling = volume_ceiling

    async def handle(self, body: Mapping[str, Any]) -> dict:
        result = await self.process_request(body)
        return result.to_response()

    async def process_request(self, body: Mapping[str, Any]) -> SkillResult:
        request = _section(body, "request")
        request_type = request.get("type")
        self._logger.info(f"Request Type: {request_type}")

        if request_type == INTENT_REQUEST:
            return await self._process_intent(_section(request, "intent"))
        if request_type == LAUNCH_REQUEST:
            return _ok(speech.HELLO, end_session=False)
        if request_type == SESSION_ENDED_REQUEST:
            return _ok(None)
        return _ok(speech.HMM)

    async def _process_intent(self, intent: Mapping[str, Any]) -> SkillResult:
        name = intent.get("name")
        if name is not None and not isinstance(name, str):
            raise MalformedRequest(f"Intent name must be a string, got {type(name).__name__}")
        self._logger.info(f"Intent: {name}")

        if name in HELP_INTENTS:
            return _ok(speech.HELP, end_session=False)
        if name in END_INTENTS:
            return _ok()

        dispatcher_intent = SKILL_INTENTS.get(name)
        if dispatcher_intent is None:
            return _ok(speech.HMM)

        slot_value = self._slot_value(intent, f"{name}_slot")
        try:
            slots = self._build_slots(dispatcher_intent, slot_value)
            result = await self._dispatcher.dispatch(dispatcher_intent, slots)
        except AvrError as e:
            self._logger.error(f"{name} failed: {e}")
            return self._verbalize_error(e, dispatcher_intent, slot_value)

        if dispatcher_intent == INTENT_QUERY_STATUS:
            return _ok(speech.status(result.state))
        return _ok()

    @staticmethod
    def _slot_value(intent: Mapping[str, Any], slot_name: str) -> Optional[str]:
        slot = _section(_section(intent, "slots"), slot_name)
        value = slot.get("value")
        if isinstance(value, str):
            value = value.strip()
        # Alexa passes "?" for values it could not resolve
        if value in ("", "?"):
            return None
        return value

    def _build_slots(self, dispatcher_intent: str, slot_value: Optional[str]) -> dict:
        if dispatcher_intent == INTENT_SET_VOLUME:
            return {"level": self._volume_level(slot_value)}
        if dispatcher_intent == INTENT_SELECT_INPUT:
            return {"input": slot_value}
        if dispatcher_intent == INTENT_QUERY_STATUS and slot_value:
            return {"dimension": slot_value}
        return {}

    def _volume_level(self, slot_value: Optional[str]) -> int:
        """Validate the volume step is an integer between 1 and volume_steps."""
        try:
            step = int(slot_value)
        except (TypeError, ValueError):
            raise InvalidArgument(f"Volume step {slot_value!r} is not a number") from None
        if not (0 < step <= self._volume_steps):
            raise InvalidArgument(f"Volume not between 1 and {self._volume_steps}")
        return volume_level_for_step(step, self._volume_steps, self._volume_ceiling)

    @staticmethod
    def _verbalize_error(e: AvrError, dispatcher_intent: str, slot_value) -> SkillResult:
        if isinstance(e, UnknownInput):
            return _failed(speech.unknown_input(slot_value))
        if isinstance(e, InvalidArgument):
            if dispatcher_intent == INTENT_SET_VOLUME:
                return _failed(speech.VOLUME_ERROR)
            return _failed(speech.INVALID_REQUEST)
        if isinstance(e, PowerIsOff):
            return _failed(speech.POWER_IS_OFF)
        if isinstance(e, RequestInProgress):
            return _failed(speech.REQUEST_IN_PROGRESS)
        if isinstance(e, RequestTimeout):
            return _failed(speech.TIMEOUT)
        return _failed(speech.UNREACHABLE)
