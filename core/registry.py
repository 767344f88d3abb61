# core/registry.py

import logging
from typing import Callable, Dict, List

from core.errors import DeviceNotFound
from core.models import Device

logger = logging.getLogger(__name__)


def device_id_for(name: str, serial: str) -> str:
    return f"{name} SN:{serial}"


class DeviceRegistry:
    """
    Session-scoped catalog of spectrometers, keyed by "<name> SN:<serial>".

    refresh() re-enumerates through the vendor SDK and is a full measurement
    session reset: listeners drop every dark spectrum and calibration.
    The SDK index stored on each Device is whatever the SDK assigned at the
    last refresh; unplugging or adding hardware in between can leave it
    pointing at another unit. Nothing here can reconcile that without a
    persistent handle from the SDK.
    """
    def __init__(self, backend):
        self.backend = backend
        self._devices: Dict[str, Device] = {}
        self._listeners: List[Callable[[List[Device]], None]] = []

    def add_refresh_listener(self, listener: Callable[[List[Device]], None]):
        self._listeners.append(listener)

    def refresh(self) -> List[Device]:
        self.backend.close_all()
        self.backend.open_all()

        devices: Dict[str, Device] = {}
        for i in range(self.backend.number_of_devices_found()):
            dev_id = device_id_for(self.backend.name(i), self.backend.serial_number(i))
            if dev_id in devices:
                logger.warning("Duplicate device id %s at SDK index %d", dev_id, i)
            devices[dev_id] = Device(id=dev_id, sdk_index=i,
                                     pixel_count=self.backend.number_of_pixels(i))
        self._devices = devices
        snapshot = list(devices.values())
        logger.info("Device catalog refreshed: %s", [d.id for d in snapshot] or "none")

        for listener in self._listeners:
            listener(snapshot)
        return snapshot

    def resolve(self, device_id: str) -> Device:
        try:
            return self._devices[device_id]
        except KeyError:
            raise DeviceNotFound(device_id) from None

    def devices(self) -> List[Device]:
        return list(self._devices.values())

    def device_ids(self) -> List[str]:
        return list(self._devices.keys())

    def __contains__(self, device_id) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)
