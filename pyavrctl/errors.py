"""Errors raised by the AVR link, dispatcher and skill layers.

``device_error`` separates transient receiver/transport trouble from bad user
input so the voice layer can answer "device unreachable" differently from
"invalid request".
"""


class AvrError(Exception):
    """Base class for all pyavrctl errors."""

    device_error = True


class AvrConnectionError(AvrError, ConnectionError):
    """Telnet session could not be established (refused, timeout, OS error)."""


class NotConnected(AvrError):
    """A command was sent while the link is not connected."""


class WriteError(AvrError):
    """The transport failed while writing a command line."""


class InvalidArgument(AvrError, ValueError):
    """A slot value failed validation. Nothing was sent to the receiver."""

    device_error = False


class UnknownInput(InvalidArgument):
    """An input name has no code in the input map."""

    def __init__(self, name):
        super().__init__(f"Unknown input: {name!r}")
        self.name = name


class RequestInProgress(AvrError):
    """Another request already owns the correlation slot for this dimension."""

    device_error = False

    def __init__(self, dimension):
        super().__init__(f"A {dimension.value} request is already in progress")
        self.dimension = dimension


class RequestTimeout(AvrError, TimeoutError):
    """No matching status line arrived before the deadline.

    The command may still have been applied by the receiver.
    """


class LinkClosed(AvrError):
    """The transport closed while a request was waiting for its status line."""


class PowerIsOff(AvrError):
    """The receiver is known to be in standby and cannot take the command."""

    device_error = False
