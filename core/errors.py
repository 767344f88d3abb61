# core/errors.py

from pathlib import Path
from typing import Optional, Union


class InstrumentError(Exception):
    """Base class for everything the instrument core raises on purpose."""


class TransportError(InstrumentError):
    """Serial I/O failed. The channel is unusable until the port is reopened."""


class ResponseTimeout(TransportError):
    pass


class ChannelBusy(TransportError):
    """A second command was issued while one was still outstanding."""


class InvalidArgument(InstrumentError, ValueError):
    pass


class DeviceNotFound(InstrumentError, KeyError):
    def __init__(self, device_id: str):
        super().__init__(device_id)
        self.device_id = device_id

    def __str__(self):
        return f"No such device: '{self.device_id}'"


class PreconditionError(InstrumentError):
    """Absolute measurement refused; .reason names the first failing check."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CalibrationLoadError(InstrumentError):
    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None
