# app/controllers.py

import logging
from typing import List, Optional

from core.constants import DEFAULT_FILTER_OD
from core.errors import CalibrationLoadError, InstrumentError, InvalidArgument
from core.filter_wheel import FilterWheelController, available_ports
from core.models import Device, SessionState
from core.pipeline import MeasurementPipeline
from app.workers import FilterWheelOpener

logger = logging.getLogger(__name__)


class Controller:
    def __init__(self, state: SessionState, pipeline: MeasurementPipeline,
                 opener: FilterWheelOpener, ticker=None, list_ports=available_ports):
        """
        pipeline: owns the device registry and calibration store
        opener: background worker used to (re)open the filter wheel
        ticker: optional MeasurementThread that follows the selected device
        """
        self.state = state
        self.pipeline = pipeline
        self.registry = pipeline.registry
        self.opener = opener
        self.ticker = ticker
        self.list_ports = list_ports
        self.wheel: Optional[FilterWheelController] = None

    def log(self, text: str, level: int = logging.INFO):
        tag = logging.getLevelName(level)
        self.state.append_log(f"[{tag}] {text}")
        logger.log(level, text)

    # ---------------- Spectrometers ----------------

    def setup_connections(self) -> List[Device]:
        self.log("Searching for spectrometers …")
        try:
            devices = self.registry.refresh()
        except Exception as e:
            self.log(f"Device enumeration failed: {e}", logging.ERROR)
            devices = []

        self.state.devices = devices
        if not devices:
            self.log("No spectrometers detected.", logging.WARNING)
            self.select_device(None)
            return devices

        for d in devices:
            self.log(f"Connected {d.id} ({d.pixel_count} px)")
        self.select_device(devices[0].id)
        return devices

    def select_device(self, device_id: Optional[str]):
        self.state.selected_device = device_id
        if self.ticker is not None:
            self.ticker.select_device(device_id)
        if device_id is not None and self.state.filter_od is not None:
            self._reload_calibration(device_id, self.state.filter_od)

    def capture_dark(self) -> bool:
        device_id = self.state.selected_device
        if device_id is None:
            self.log("No spectrometer selected.", logging.ERROR)
            return False
        try:
            self.pipeline.capture_dark_spectrum(device_id)
        except InstrumentError as e:
            self.log(f"Dark spectrum failed: {e}", logging.ERROR)
            return False
        self.log(f"Dark spectrum captured for {device_id}.")
        return True

    # ---------------- Filter wheel ----------------

    def refresh_filter_ports(self) -> List[str]:
        self.close_filter_wheel()
        ports = self.list_ports()
        self.state.filter_ports = ports
        self.state.filter_ods = []
        if not ports:
            self.log("No serial ports available for the filter wheel.", logging.WARNING)
        return ports

    def connect_filter_wheel(self, port_name: str) -> bool:
        self.close_filter_wheel()
        self.state.filter_port = port_name
        wheel = self.opener.open(port_name)
        if wheel is None:
            self.log(f"Filter wheel not available on {port_name}.", logging.ERROR)
            self.state.filter_ods = []
            return False

        self.wheel = wheel
        self.state.filter_ods = wheel.filter_ods()
        self.log(f"Filter wheel connected on {port_name}.")
        return self.select_filter(DEFAULT_FILTER_OD)

    def select_filter(self, od: str) -> bool:
        """Move the wheel to the OD filter, then reload that filter's calibration."""
        if self.wheel is None:
            self.log("Filter wheel not connected.", logging.ERROR)
            return False
        try:
            self.wheel.set_position(self.wheel.convert_od_to_pos(od))
        except InvalidArgument as e:
            self.log(f"Filter OD {od} rejected: {e}", logging.ERROR)
            if not self.wheel.is_port_open():
                self._forget_wheel()
            return False
        except InstrumentError as e:
            self.log(f"Filter wheel error while selecting OD {od}: {e}", logging.ERROR)
            self.close_filter_wheel()
            return False

        self.state.filter_od = od
        self.log(f"Filter OD {od} in place.")
        if self.state.selected_device is not None:
            self._reload_calibration(self.state.selected_device, od)
        return True

    def _reload_calibration(self, device_id: str, od: str) -> bool:
        try:
            self.pipeline.load_calibration_for_filter(device_id, od)
        except CalibrationLoadError as e:
            self.log(f"{e}", logging.WARNING)
            return False
        except InstrumentError as e:
            self.log(f"Calibration not loaded: {e}", logging.ERROR)
            return False
        self.log(f"Loaded OD {od} calibration for {device_id}.")
        return True

    def _forget_wheel(self):
        self.wheel = None
        self.state.filter_ods = []
        self.state.filter_od = None

    def close_filter_wheel(self):
        if self.wheel is not None and self.wheel.is_port_open():
            self.wheel.close_port()
            self.log(f"Closed filter wheel on {self.wheel.port_name}.")
        self._forget_wheel()

    def shutdown(self):
        if self.ticker is not None:
            self.ticker.stop_acquisition()
            self.ticker.wait()
        self.close_filter_wheel()
        self.opener.shutdown()
        self.registry.backend.close_all()
