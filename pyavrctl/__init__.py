"""pyavrctl Python Package

Alexa skill bridge for controlling a network-enabled Pioneer AVR over telnet.
"""

from pyavrctl.receiver import AvrReceiver

__all__ = ["AvrReceiver"]
