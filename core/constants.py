# core/constants.py

from types import MappingProxyType

# Filter wheel serial link (ThorLabs FW212C) – 115200 8N1
SERIAL_BAUD_RATE = 115200
SERIAL_READ_TIMEOUT_S = 0.05
COMMAND_TERMINATOR = "\r"
RESPONSE_TERMINATOR = b">"

DEFAULT_POSITION_COUNT = 12
DEFAULT_SPEED_MODE = "fast"
VALID_POSITION_COUNTS = (6, 12)

# OD filter label -> wheel slot. Slots 4 and 5 (OD 3.0 / 4.0) have no calibration.
OD_TO_POSITION = MappingProxyType({
    "0": 6,
    "0.1": 7,
    "0.2": 8,
    "0.3": 9,
    "0.4": 10,
    "0.5": 11,
    "0.6": 12,
    "1.0": 1,
    "1.3": 2,
    "2.0": 3,
})
DEFAULT_FILTER_OD = "0"

# Port picked automatically when it shows up in the port list
PREFERRED_FILTER_PORT = "COM101"

# Calibration files: <dir>/defaultcalibration<OD>.calibration
CALIBRATION_FILE_PREFIX = "defaultcalibration"
CALIBRATION_FILE_SUFFIX = ".calibration"
CALIBRATION_SUBDIR = "spectrometer"
PIXEL_COUNT_LINE = 1
DATA_START_LINE = 5

# Absolute measurements
DEFAULT_COLLECTION_AREA_CM2 = 2.85026  # integrating sphere inlet
MICRO_WATT_SCALAR = 1_000_000
POWER_DISPLAY_SCALE = 0.001  # µW -> mW
DEFAULT_INTEGRATION_BOUNDS_NM = (300.0, 900.0)

# Peak detection used by the measurement tick
PEAK_MIN_SEPARATION = 15
PEAK_THRESHOLD_COUNTS = 3000.0
NO_PEAK_SENTINEL = -1.0

# Acquisition defaults
DEFAULT_INTEGRATION_TIME_US = 1000
DEFAULT_SCANS_TO_AVERAGE = 3
DEFAULT_BOXCAR_WIDTH = 3
MAX_EXTERNAL_TRIGGER_MODE = 4

# ADC full-scale used for "saturation %" when the device does not report one
FULL_SCALE_COUNTS = 65535.0

# Timing
TICK_INTERVAL_MS = 250
PORT_OPEN_TIMEOUT_S = 0.5

TIME_FORMAT_ISO = "%Y-%m-%dT%H:%M:%S"
