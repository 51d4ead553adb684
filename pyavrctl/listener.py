from abc import ABC, abstractmethod
from typing import List
import logging


class AvrListener(ABC):

    @abstractmethod
    def connected(self):
        pass

    @abstractmethod
    def disconnected(self):
        pass

    @abstractmethod
    def power_changed(self, power: bool):
        pass

    @abstractmethod
    def volume_level_changed(self, level: int):
        pass

    @abstractmethod
    def mute_changed(self, muted: bool):
        pass

    @abstractmethod
    def input_changed(self, input_code: str):
        pass

    def unrecognized(self, line: str):
        # By default, do nothing but can be overwritten to be notified of these messages.
        pass

    def data_received(self, data: bytes):
        """Called for every chunk read from the telnet session, before framing."""
        pass


class MultiplexingListener(AvrListener):

    _listeners: List[AvrListener]

    def __init__(self):
        self._listeners = []
        self._logger = logging.getLogger(__name__)

    def connected(self):
        for listener in self._listeners:
            listener.connected()

    def disconnected(self):
        for listener in list(self._listeners):
            # A failing listener must not stop the others from learning about the drop
            try:
                listener.disconnected()
            except Exception as e:
                self._logger.error(f"Exception in disconnected() callback: {e}")

    def power_changed(self, power: bool):
        for listener in self._listeners:
            listener.power_changed(power)

    def volume_level_changed(self, level: int):
        for listener in self._listeners:
            listener.volume_level_changed(level)

    def mute_changed(self, muted: bool):
        for listener in self._listeners:
            listener.mute_changed(muted)

    def input_changed(self, input_code: str):
        for listener in self._listeners:
            listener.input_changed(input_code)

    def unrecognized(self, line: str):
        for listener in self._listeners:
            listener.unrecognized(line)

    def data_received(self, data: bytes):
        for listener in self._listeners:
            listener.data_received(data)

    def register_listener(self, listener: AvrListener):
        self._listeners.append(listener)

    def unregister_listener(self, listener: AvrListener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        else:
            self._logger.info("Listener isn't registered")


class LoggingListener(AvrListener):

    def __init__(self, logger=logging):
        self.logger = logger

    def connected(self):
        self.logger.info("Connected")

    def disconnected(self):
        self.logger.info("Disconnected")

    def power_changed(self, power: bool):
        self.logger.info(f"Power changed to : {'on' if power else 'standby'}")

    def volume_level_changed(self, level: int):
        self.logger.info(f"Volume level: {level}")

    def mute_changed(self, muted: bool):
        self.logger.info(f"Mute: {muted}")

    def input_changed(self, input_code: str):
        self.logger.info(f"Input changed to: {input_code}")

    def unrecognized(self, line: str):
        self.logger.debug(f"Unrecognized status line: {line!r}")
