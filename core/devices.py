# core/devices.py

import logging
from dataclasses import dataclass
from typing import List, Optional
import numpy as np

from core.analysis import boxcar_smooth
from core.constants import (
    DEFAULT_INTEGRATION_TIME_US, DEFAULT_SCANS_TO_AVERAGE, DEFAULT_BOXCAR_WIDTH,
    FULL_SCALE_COUNTS
)

logger = logging.getLogger(__name__)

_loaded_backend: Optional[str] = None


def _spectrometers_module(backend: str):
    """seabreeze picks its backend once per process; import it lazily so the
    rest of the code runs without the SDK installed."""
    global _loaded_backend
    import seabreeze
    if _loaded_backend is None:
        seabreeze.use(backend)
        _loaded_backend = backend
    elif _loaded_backend != backend:
        logger.warning("seabreeze already using %s; ignoring request for %s", _loaded_backend, backend)
    import seabreeze.spectrometers as sb
    return sb


@dataclass
class _Handle:
    spec: object
    integration_time_us: int = DEFAULT_INTEGRATION_TIME_US
    scans_to_average: int = DEFAULT_SCANS_TO_AVERAGE
    boxcar_width: int = DEFAULT_BOXCAR_WIDTH
    trigger_mode: int = 0
    correct_dark: bool = False
    correct_nonlinearity: bool = False


class SeaBreezeBackend:
    """
    Index-addressed view of every Ocean Optics spectrometer seabreeze can see.
    Indices are only meaningful until the next close_all()/open_all().
    Scans-to-average and boxcar smoothing are applied here, on top of
    seabreeze intensities.
    """
    def __init__(self, backend: str = "cseabreeze"):
        self.backend = backend
        self._handles: List[_Handle] = []

    # ---------------- catalog ----------------

    def open_all(self):
        sb = _spectrometers_module(self.backend)
        for dev in sb.list_devices():
            try:
                spec = sb.Spectrometer(dev)
            except Exception as e:
                # one busy/unsupported unit must not hide the others
                logger.error("Could not open %s: %s", dev, e)
                continue
            h = _Handle(spec=spec)
            spec.integration_time_micros(h.integration_time_us)
            self._handles.append(h)
        logger.info("seabreeze found %d spectrometer(s)", len(self._handles))

    def close_all(self):
        for h in self._handles:
            try:
                h.spec.close()
            except Exception as e:
                logger.warning("Error closing %s: %s", h.spec, e)
        self._handles = []

    def number_of_devices_found(self) -> int:
        return len(self._handles)

    def _h(self, i: int) -> _Handle:
        if i < 0 or i >= len(self._handles):
            raise IndexError(f"SDK index {i} out of range (0..{len(self._handles) - 1})")
        return self._handles[i]

    # ---------------- identification ----------------

    def name(self, i: int) -> str:
        return str(self._h(i).spec.model)

    def serial_number(self, i: int) -> str:
        return str(self._h(i).spec.serial_number)

    def number_of_pixels(self, i: int) -> int:
        return int(self._h(i).spec.pixels)

    def wavelengths(self, i: int) -> np.ndarray:
        return np.asarray(self._h(i).spec.wavelengths(), dtype=float)

    def max_intensity(self, i: int) -> float:
        return float(getattr(self._h(i).spec, "max_intensity", FULL_SCALE_COUNTS))

    # ---------------- acquisition ----------------

    def spectrum(self, i: int) -> np.ndarray:
        h = self._h(i)
        scans = [
            np.asarray(h.spec.intensities(correct_dark_counts=h.correct_dark,
                                          correct_nonlinearity=h.correct_nonlinearity), dtype=float)
            for _ in range(max(1, h.scans_to_average))
        ]
        return boxcar_smooth(np.mean(scans, axis=0), h.boxcar_width)

    def is_saturated(self, i: int) -> bool:
        """Fresh single scan, unaveraged and unsmoothed, against the detector full scale."""
        h = self._h(i)
        raw = np.asarray(h.spec.intensities(correct_dark_counts=False, correct_nonlinearity=False))
        return bool(np.max(raw) >= self.max_intensity(i))

    # ---------------- settings ----------------

    def integration_time(self, i: int) -> int:
        return self._h(i).integration_time_us

    def set_integration_time(self, i: int, micros: int):
        h = self._h(i)
        if micros != h.integration_time_us:
            h.spec.integration_time_micros(int(micros))
            h.integration_time_us = int(micros)

    def set_scans_to_average(self, i: int, n: int):
        self._h(i).scans_to_average = int(n)

    def set_boxcar_width(self, i: int, n: int):
        self._h(i).boxcar_width = int(n)

    def external_trigger_mode(self, i: int) -> int:
        return self._h(i).trigger_mode

    def set_external_trigger_mode(self, i: int, mode: int):
        h = self._h(i)
        h.spec.trigger_mode(int(mode))
        h.trigger_mode = int(mode)

    def set_correct_for_electrical_dark(self, i: int, enabled: bool):
        self._h(i).correct_dark = bool(enabled)

    def set_correct_for_detector_nonlinearity(self, i: int, enabled: bool):
        self._h(i).correct_nonlinearity = bool(enabled)

    def supports_thermo_electric(self, i: int) -> bool:
        features = getattr(self._h(i).spec, "features", {}) or {}
        return bool(features.get("thermo_electric"))

    def set_detector_set_point_celsius(self, i: int, celsius: float):
        tec = self._h(i).spec.f.thermo_electric
        tec.enable_tec(True)
        tec.set_temperature_setpoint_degrees_celsius(float(celsius))
