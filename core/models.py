# core/models.py

from dataclasses import dataclass, field
from typing import Optional, List, Tuple
import numpy as np
from pathlib import Path
from core.constants import (
    DEFAULT_INTEGRATION_TIME_US, DEFAULT_SCANS_TO_AVERAGE, DEFAULT_BOXCAR_WIDTH,
    DEFAULT_COLLECTION_AREA_CM2, DEFAULT_INTEGRATION_BOUNDS_NM,
    PORT_OPEN_TIMEOUT_S, TICK_INTERVAL_MS, PREFERRED_FILTER_PORT
)

@dataclass(frozen=True)
class Device:
    id: str           # "<name> SN:<serial>"
    sdk_index: int    # valid only until the next registry refresh
    pixel_count: int

@dataclass(frozen=True)
class AcquisitionSettings:
    integration_time_us: int = DEFAULT_INTEGRATION_TIME_US
    scans_to_average: int = DEFAULT_SCANS_TO_AVERAGE
    boxcar_width: int = DEFAULT_BOXCAR_WIDTH

@dataclass(frozen=True)
class InstrumentConfig:
    calibration_dir: Path
    collection_area_cm2: float = DEFAULT_COLLECTION_AREA_CM2
    response_timeout_s: Optional[float] = None   # None blocks until the wheel answers
    port_open_timeout_s: float = PORT_OPEN_TIMEOUT_S
    tick_interval_ms: int = TICK_INTERVAL_MS
    integration_bounds: Tuple[float, float] = DEFAULT_INTEGRATION_BOUNDS_NM
    seabreeze_backend: str = "cseabreeze"
    preferred_filter_port: Optional[str] = PREFERRED_FILTER_PORT

@dataclass(frozen=True)
class MeasurementSnapshot:
    device_id: str
    wavelength_nm: np.ndarray
    counts: np.ndarray                   # dark-corrected when a dark is present
    saturated: bool
    saturation_pct: float
    peak_wavelengths: np.ndarray         # [-1.0] when nothing qualifies
    peak_indices: np.ndarray
    power_mw: Optional[float]            # None when absolute conditions fail
    power_status: str                    # reason when power_mw is None
    ts_iso: str

@dataclass
class SessionState:
    config: InstrumentConfig
    devices: List[Device] = field(default_factory=list)
    selected_device: Optional[str] = None
    filter_ports: List[str] = field(default_factory=list)
    filter_port: Optional[str] = None
    filter_ods: List[str] = field(default_factory=list)
    filter_od: Optional[str] = None
    log: List[str] = field(default_factory=list)

    def append_log(self, msg: str):
        self.log.append(msg)
