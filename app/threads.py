# app/threads.py

import logging
import time
from datetime import datetime
from typing import Optional, Tuple

from PyQt5.QtCore import QThread, pyqtSignal

from core.constants import (
    TICK_INTERVAL_MS, DEFAULT_INTEGRATION_BOUNDS_NM, PEAK_MIN_SEPARATION,
    PEAK_THRESHOLD_COUNTS, POWER_DISPLAY_SCALE, TIME_FORMAT_ISO
)
from core.errors import DeviceNotFound, InstrumentError
from core.models import AcquisitionSettings, MeasurementSnapshot
from core.pipeline import MeasurementPipeline

logger = logging.getLogger(__name__)


class MeasurementThread(QThread):
    """
    Periodic measurement tick: pulls a MeasurementSnapshot for the selected
    device and pushes the current acquisition settings, every interval.
    Emits `stalled(elapsed_ms)` when a tick overruns its interval.
    """
    new_snapshot = pyqtSignal(object)  # MeasurementSnapshot
    stalled = pyqtSignal(float)

    def __init__(self, pipeline: MeasurementPipeline,
                 interval_ms: int = TICK_INTERVAL_MS,
                 bounds: Tuple[float, float] = DEFAULT_INTEGRATION_BOUNDS_NM,
                 parent=None):
        super().__init__(parent)
        self.pipeline = pipeline
        self.interval_ms = int(interval_ms)
        self.bounds = bounds
        self.device_id: Optional[str] = None
        self.settings = AcquisitionSettings()
        self._running = False

    def select_device(self, device_id: Optional[str]):
        self.device_id = device_id

    def set_acquisition_settings(self, settings: AcquisitionSettings):
        self.settings = settings

    def start_acquisition(self):
        self._running = True
        if not self.isRunning():
            self.start()

    def stop_acquisition(self):
        self._running = False

    def tick(self) -> Optional[MeasurementSnapshot]:
        device_id = self.device_id
        if device_id is None:
            self.settings = AcquisitionSettings()
            return None

        p = self.pipeline
        lower, upper = self.bounds
        saturated = p.is_saturated(device_id)
        wl = p.get_wavelengths(device_id)
        counts = p.get_spectrum_minus_dark(device_id)
        peaks = p.get_peak_wavelengths(device_id, PEAK_MIN_SEPARATION, PEAK_THRESHOLD_COUNTS)
        indices = p.get_peak_indices(device_id, PEAK_MIN_SEPARATION, PEAK_THRESHOLD_COUNTS)

        ok, reason = p.valid_absolute_measurement_conditions(device_id, lower, upper)
        power_mw = p.get_absolute_power(device_id, POWER_DISPLAY_SCALE, lower, upper) if ok else None

        p.apply_acquisition_settings(device_id, self.settings)

        snapshot = MeasurementSnapshot(
            device_id=device_id,
            wavelength_nm=wl,
            counts=counts,
            saturated=saturated,
            saturation_pct=p.saturation_percent(device_id, counts),
            peak_wavelengths=peaks,
            peak_indices=indices,
            power_mw=power_mw,
            power_status="" if ok else reason,
            ts_iso=datetime.now().strftime(TIME_FORMAT_ISO),
        )
        self.new_snapshot.emit(snapshot)
        return snapshot

    def run(self):
        while self._running:
            started = time.monotonic()
            try:
                self.tick()
            except DeviceNotFound as e:
                logger.warning("%s; deselecting", e)
                self.device_id = None
            except InstrumentError as e:
                logger.error("Measurement tick failed: %s", e)
            except Exception:
                # SDK and USB faults: log and keep ticking
                logger.exception("Unexpected error in measurement tick for %s", self.device_id)
            elapsed_ms = (time.monotonic() - started) * 1000.0
            if elapsed_ms > self.interval_ms:
                logger.warning("Measurement tick took %.0f ms (interval %d ms)", elapsed_ms, self.interval_ms)
                self.stalled.emit(elapsed_ms)
            self.msleep(max(0, int(self.interval_ms - elapsed_ms)))
