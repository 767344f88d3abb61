# core/calibration.py

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import numpy as np

from core.constants import (
    CALIBRATION_FILE_PREFIX, CALIBRATION_FILE_SUFFIX, PIXEL_COUNT_LINE, DATA_START_LINE
)
from core.errors import CalibrationLoadError

logger = logging.getLogger(__name__)


def parse_calibration_lines(lines: List[str]) -> np.ndarray:
    """
    Line 1 holds the pixel count P, lines 2-4 are header, data starts at line 5.
    Only P-1 values are read into a P-long array, so the last entry stays 0.0.
    """
    pixel_count = int(lines[PIXEL_COUNT_LINE].strip())
    if pixel_count < 1:
        raise ValueError(f"pixel count must be positive, got {pixel_count}")
    values = np.zeros(pixel_count, dtype=float)
    for i in range(pixel_count - 1):
        values[i] = float(lines[i + DATA_START_LINE].strip())
    return values


class CalibrationStore:
    """Per-device, per-OD calibration curves loaded from a fixed directory."""

    def __init__(self, calibration_dir):
        self.calibration_dir = Path(calibration_dir)
        self._curves: Dict[Tuple[str, str], np.ndarray] = {}
        self._active: Dict[str, str] = {}

    def path_for(self, od: str) -> Path:
        return self.calibration_dir / f"{CALIBRATION_FILE_PREFIX}{od}{CALIBRATION_FILE_SUFFIX}"

    def load(self, device_id: str, od: str) -> np.ndarray:
        path = self.path_for(od)
        # the filter in front of the detector is now `od`, whatever happens below
        self._active[device_id] = od
        self._curves.pop((device_id, od), None)
        try:
            lines = path.read_text(encoding="ascii", errors="replace").splitlines()
            curve = parse_calibration_lines(lines)
        except OSError as e:
            logger.error("Could not read calibration %s: %s. All calibrations must be in %s",
                         path, e, self.calibration_dir)
            raise CalibrationLoadError(f"Could not read calibration file {path}: {e}", path) from e
        except (ValueError, IndexError) as e:
            logger.error("Corrupt calibration file %s: %s", path, e)
            raise CalibrationLoadError(f"Corrupt calibration file {path}: {e}", path) from e

        self._curves[(device_id, od)] = curve
        logger.info("Loaded OD %s calibration for %s (%d px)", od, device_id, curve.size)
        return curve

    def get(self, device_id: str, od: str) -> Optional[np.ndarray]:
        return self._curves.get((device_id, od))

    def active_od(self, device_id: str) -> Optional[str]:
        return self._active.get(device_id)

    def active(self, device_id: str) -> Optional[np.ndarray]:
        od = self._active.get(device_id)
        if od is None:
            return None
        return self._curves.get((device_id, od))

    def clear(self):
        self._curves.clear()
        self._active.clear()
