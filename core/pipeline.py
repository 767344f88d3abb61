# core/pipeline.py

import logging
from typing import Dict, List, Optional, Tuple
import numpy as np

from core import analysis
from core.calibration import CalibrationStore
from core.constants import DEFAULT_COLLECTION_AREA_CM2, MAX_EXTERNAL_TRIGGER_MODE
from core.errors import InvalidArgument, PreconditionError
from core.models import AcquisitionSettings, Device
from core.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class MeasurementPipeline:
    """
    Raw spectra -> dark-corrected, calibrated, physically scaled quantities.

    Every operation is addressed by device id and resolved against the
    registry's current snapshot. Spectra are pulled fresh from the SDK on each
    call; only dark spectra (here) and calibrations (in the store) are cached,
    and both are dropped whenever the registry refreshes.
    """
    def __init__(self, registry: DeviceRegistry, calibrations: CalibrationStore,
                 collection_area_cm2: float = DEFAULT_COLLECTION_AREA_CM2):
        self.registry = registry
        self.calibrations = calibrations
        self.collection_area_cm2 = collection_area_cm2
        self._darks: Dict[str, np.ndarray] = {}
        registry.add_refresh_listener(self._on_registry_refresh)

    @property
    def backend(self):
        return self.registry.backend

    def _on_registry_refresh(self, devices: List[Device]):
        if self._darks:
            logger.info("Device list refreshed; discarding %d dark spectra", len(self._darks))
        self._darks.clear()
        self.calibrations.clear()

    def set_collection_area(self, area_cm2: float):
        if area_cm2 <= 0:
            raise InvalidArgument(f"Collection area must be positive, got {area_cm2}")
        self.collection_area_cm2 = float(area_cm2)

    # ---------------- spectra ----------------

    def get_wavelengths(self, device_id: str) -> np.ndarray:
        dev = self.registry.resolve(device_id)
        return self.backend.wavelengths(dev.sdk_index)

    def get_spectrum(self, device_id: str) -> np.ndarray:
        dev = self.registry.resolve(device_id)
        return self.backend.spectrum(dev.sdk_index)

    def capture_dark_spectrum(self, device_id: str) -> np.ndarray:
        dark = np.array(self.get_spectrum(device_id), dtype=float)
        self._darks[device_id] = dark
        logger.info("Captured dark spectrum for %s", device_id)
        return dark

    def dark_spectrum(self, device_id: str) -> Optional[np.ndarray]:
        """The stored dark, or None if absent or no longer the live pixel count."""
        dev = self.registry.resolve(device_id)
        dark = self._darks.get(device_id)
        if dark is None:
            return None
        if dark.size != self.backend.number_of_pixels(dev.sdk_index):
            logger.warning("Dark spectrum for %s no longer matches pixel count; ignoring it", device_id)
            return None
        return dark

    def get_spectrum_minus_dark(self, device_id: str) -> np.ndarray:
        raw = self.get_spectrum(device_id)
        return analysis.subtract_dark(raw, self.dark_spectrum(device_id))

    def load_calibration_for_filter(self, device_id: str, od: str) -> np.ndarray:
        self.registry.resolve(device_id)
        return self.calibrations.load(device_id, od)

    # ---------------- absolute measurements ----------------

    def valid_absolute_measurement_conditions(self, device_id: str,
                                              lower: float, upper: float) -> Tuple[bool, str]:
        """(True, "") or (False, reason of the first failing check). No side effects."""
        dev = self.registry.resolve(device_id)
        if self.dark_spectrum(device_id) is None:
            return False, f"No dark spectrum for device {device_id}. Capture a dark spectrum first."
        cal = self.calibrations.active(device_id)
        if cal is None:
            return False, "Calibration missing or failed to load."
        if cal.size != self.backend.number_of_pixels(dev.sdk_index):
            return False, "Length of calibration data array does not match raw data length."
        if lower >= upper:
            return False, "Lower integration bound must be less than upper integration bound."
        wl = self.backend.wavelengths(dev.sdk_index)
        if upper > wl[-1]:
            return False, "Specified high-side integration bound does not exist."
        if lower < wl[0]:
            return False, "Specified low-side integration bound does not exist."
        return True, ""

    def _require_absolute_conditions(self, device_id: str, lower: float, upper: float):
        ok, reason = self.valid_absolute_measurement_conditions(device_id, lower, upper)
        if not ok:
            raise PreconditionError(reason)

    def _irradiance(self, device_id: str) -> np.ndarray:
        dev = self.registry.resolve(device_id)
        i = dev.sdk_index
        # fresh scan, not the dark-subtracted convenience array
        return analysis.absolute_irradiance(
            raw=self.backend.spectrum(i),
            dark=self._darks[device_id],
            wavelength_nm=self.backend.wavelengths(i),
            calibration=self.calibrations.active(device_id),
            integration_time_us=self.backend.integration_time(i),
            collection_area_cm2=self.collection_area_cm2,
        )

    def get_absolute_irradiance(self, device_id: str, scale: float,
                                lower: float, upper: float) -> np.ndarray:
        """Spectral irradiance in (µW/cm²)/nm, times `scale`."""
        self._require_absolute_conditions(device_id, lower, upper)
        return analysis.scale_to_micro(self._irradiance(device_id), scale)

    def get_absolute_power(self, device_id: str, scale: float,
                           lower: float, upper: float) -> float:
        """Irradiance integrated over [lower, upper] times collection area; µW for scale=1."""
        irradiance = self.get_absolute_irradiance(device_id, scale, lower, upper)
        wl = self.get_wavelengths(device_id)
        micro_watts = analysis.integrate_power(wl, irradiance, lower, upper, self.collection_area_cm2)
        return round(micro_watts, 3)

    def get_absolute_radiance(self, device_id: str, scale: float, solid_angle: float,
                              optic_output_area: float, lower: float, upper: float) -> np.ndarray:
        if solid_angle <= 0 or optic_output_area <= 0:
            raise InvalidArgument("Solid angle and optic output area must be positive.")
        self._require_absolute_conditions(device_id, lower, upper)
        factor = analysis.radiance_factor(solid_angle, optic_output_area, scale)
        return self._irradiance(device_id) * factor

    def spectral_integration(self, device_id: str, lower: float, upper: float) -> float:
        """Trapezoidal area under the raw spectrum between the bounds."""
        self._require_absolute_conditions(device_id, lower, upper)
        return analysis.integrate_window(self.get_wavelengths(device_id),
                                         self.get_spectrum(device_id), lower, upper)

    # ---------------- peaks / status ----------------

    def get_peak_wavelengths(self, device_id: str, min_separation: int,
                             threshold: float) -> np.ndarray:
        """Peak wavelengths of the raw spectrum; [-1.0] when there are none."""
        wl = self.get_wavelengths(device_id)
        return analysis.peak_wavelengths(wl, self.get_spectrum(device_id), min_separation, threshold)

    def get_peak_indices(self, device_id: str, min_separation: int,
                         threshold: float) -> np.ndarray:
        return analysis.find_peak_indices(self.get_spectrum(device_id), min_separation, threshold)

    def is_saturated(self, device_id: str) -> bool:
        dev = self.registry.resolve(device_id)
        return self.backend.is_saturated(dev.sdk_index)

    def saturation_percent(self, device_id: str, counts: Optional[np.ndarray] = None) -> float:
        dev = self.registry.resolve(device_id)
        if counts is None:
            counts = self.backend.spectrum(dev.sdk_index)
        return analysis.saturation_percent(np.asarray(counts), self.backend.max_intensity(dev.sdk_index))

    # ---------------- instrument settings ----------------

    def get_integration_time(self, device_id: str) -> int:
        dev = self.registry.resolve(device_id)
        return self.backend.integration_time(dev.sdk_index)

    def set_integration_time(self, device_id: str, micros: int):
        dev = self.registry.resolve(device_id)
        if micros <= 0:
            raise InvalidArgument(f"Integration time must be positive, got {micros}")
        self.backend.set_integration_time(dev.sdk_index, int(micros))

    def set_scans_to_average(self, device_id: str, scans: int):
        dev = self.registry.resolve(device_id)
        if scans < 1:
            raise InvalidArgument(f"Scans to average must be at least 1, got {scans}")
        self.backend.set_scans_to_average(dev.sdk_index, int(scans))

    def set_boxcar_width(self, device_id: str, width: int):
        dev = self.registry.resolve(device_id)
        if width < 0:
            raise InvalidArgument(f"Boxcar width must not be negative, got {width}")
        self.backend.set_boxcar_width(dev.sdk_index, int(width))

    def apply_acquisition_settings(self, device_id: str, settings: AcquisitionSettings):
        self.set_integration_time(device_id, settings.integration_time_us)
        self.set_scans_to_average(device_id, settings.scans_to_average)
        self.set_boxcar_width(device_id, settings.boxcar_width)

    def get_external_trigger_mode(self, device_id: str) -> int:
        dev = self.registry.resolve(device_id)
        return self.backend.external_trigger_mode(dev.sdk_index)

    def set_external_trigger_mode(self, device_id: str, mode: int):
        dev = self.registry.resolve(device_id)
        if mode < 0 or mode > MAX_EXTERNAL_TRIGGER_MODE:
            raise InvalidArgument(f"Invalid trigger mode {mode} (0..{MAX_EXTERNAL_TRIGGER_MODE})")
        self.backend.set_external_trigger_mode(dev.sdk_index, mode)

    def set_correct_for_electrical_dark(self, device_id: str, flag: int):
        dev = self.registry.resolve(device_id)
        if flag not in (0, 1):
            raise InvalidArgument("Electrical dark setting must be 0 (off) or 1 (on).")
        self.backend.set_correct_for_electrical_dark(dev.sdk_index, bool(flag))

    def set_correct_for_detector_nonlinearity(self, device_id: str, flag: int):
        dev = self.registry.resolve(device_id)
        if flag not in (0, 1):
            raise InvalidArgument("Nonlinearity setting must be 0 (off) or 1 (on).")
        self.backend.set_correct_for_detector_nonlinearity(dev.sdk_index, bool(flag))

    def set_detector_set_point_celsius(self, device_id: str, celsius: float):
        dev = self.registry.resolve(device_id)
        if not self.backend.supports_thermo_electric(dev.sdk_index):
            raise InvalidArgument(f"Spectrometer '{device_id}' has no thermoelectric temperature control.")
        self.backend.set_detector_set_point_celsius(dev.sdk_index, celsius)
