# core/filter_wheel.py

import logging
from typing import List, Optional

import serial
import serial.tools.list_ports

from core.constants import (
    SERIAL_BAUD_RATE, SERIAL_READ_TIMEOUT_S, DEFAULT_POSITION_COUNT,
    DEFAULT_SPEED_MODE, VALID_POSITION_COUNTS, OD_TO_POSITION
)
from core.errors import InvalidArgument, TransportError
from core.serial_channel import SerialCommandChannel

logger = logging.getLogger(__name__)

_SENSOR_MODES = {"on": "speed=1", "off": "speed=0"}   # vendor protocol reuses "speed="
_SPEED_MODES = {"slow": "speed=0", "fast": "speed=1"}
_TRIGGER_MODES = {"input": "trig=0", "output": "trig=1"}


def available_ports() -> List[str]:
    return [p.device for p in serial.tools.list_ports.comports()]


class FilterWheelController:
    """
    ThorLabs FW212C-style filter wheel on a serial port.
    Default configuration is 12 filter slots with fast rotation.

    Any setter handed an out-of-domain value closes the port before raising
    InvalidArgument; the wheel must be reopened (new controller) afterwards.

    With configure=False only the port is opened; call configure_default()
    before use. close_port() from another thread aborts a pending command.
    """
    def __init__(self, port_name: str,
                 response_timeout: Optional[float] = None,
                 serial_factory=serial.Serial,
                 configure: bool = True):
        self.port_name = port_name
        self._position_count = DEFAULT_POSITION_COUNT
        try:
            self._port = serial_factory(
                port=port_name,
                baudrate=SERIAL_BAUD_RATE,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=SERIAL_READ_TIMEOUT_S,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            raise TransportError(f"Could not open filter wheel port {port_name}: {e}") from e

        self._channel = SerialCommandChannel(self._port, timeout=response_timeout)
        self._channel.start()
        if configure:
            self.configure_default()

    # ---------------- port ----------------

    def is_port_open(self) -> bool:
        return self._channel.is_open

    def close_port(self):
        self._channel.close()

    def send_command(self, command: str) -> str:
        return self._channel.send(command)

    def _reject(self, message: str):
        logger.error("%s; closing %s", message, self.port_name)
        self.close_port()
        raise InvalidArgument(message)

    # ---------------- configuration ----------------

    def configure_default(self):
        try:
            self.set_position_count(DEFAULT_POSITION_COUNT)
            self.set_speed_mode(DEFAULT_SPEED_MODE)
        except Exception:
            self.close_port()
            raise
        logger.info("Filter wheel ready on %s", self.port_name)

    def save_settings(self):
        self.send_command("save")

    def get_id(self) -> str:
        return self.send_command("*idn?")

    def get_sensor_mode(self) -> str:
        """'0' if sensors off, '1' if on."""
        return self.send_command("sensors?")

    def set_sensor_mode(self, sensor_mode: str):
        if sensor_mode not in _SENSOR_MODES:
            self._reject(f"Unsupported sensor mode: {sensor_mode!r}")
        self.send_command(_SENSOR_MODES[sensor_mode])

    def get_speed_mode(self) -> str:
        """'0' if slow, '1' if fast."""
        return self.send_command("speed?")

    def set_speed_mode(self, speed_mode: str):
        if speed_mode not in _SPEED_MODES:
            self._reject(f"Unsupported speed mode: {speed_mode!r}")
        self.send_command(_SPEED_MODES[speed_mode])

    def get_trigger_mode(self) -> str:
        """'0' if trigger input, '1' if trigger output."""
        return self.send_command("trig?")

    def set_trigger_mode(self, trigger_mode: str):
        if trigger_mode not in _TRIGGER_MODES:
            self._reject(f"Unsupported trigger mode: {trigger_mode!r}")
        self.send_command(_TRIGGER_MODES[trigger_mode])

    def get_position_count(self) -> str:
        return self.send_command("pcount?")

    def set_position_count(self, position_count: int):
        if (not isinstance(position_count, int) or isinstance(position_count, bool)
                or position_count not in VALID_POSITION_COUNTS):
            self._reject(f"Invalid filter wheel position count: {position_count!r}")
        self.send_command(f"pcount={position_count}")
        self._position_count = position_count

    def get_position(self) -> str:
        return self.send_command("pos?")

    def set_position(self, position: int):
        if (not isinstance(position, int) or isinstance(position, bool)
                or position not in range(1, self._position_count + 1)):
            self._reject(f"Invalid filter wheel position: {position!r} (1..{self._position_count})")
        self.send_command(f"pos={position}")

    # ---------------- OD filters ----------------

    def convert_od_to_pos(self, od: str) -> int:
        try:
            return OD_TO_POSITION[od]
        except KeyError:
            raise InvalidArgument(f"No filter mapped for OD {od!r}") from None

    def filter_ods(self) -> List[str]:
        return list(OD_TO_POSITION.keys())
