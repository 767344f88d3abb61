# entry.py
import argparse
import logging
import signal
import sys
from pathlib import Path

# --- Determine base directory (source vs frozen exe) ---
if getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS'):
    BASE_DIR = Path(sys._MEIPASS)   # runtime temp dir when frozen
else:
    BASE_DIR = Path(__file__).resolve().parent

# --- Ensure the project root is on sys.path ---
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from PyQt5.QtCore import QCoreApplication, QTimer

from core.calibration import CalibrationStore
from core.constants import (
    CALIBRATION_SUBDIR, DEFAULT_COLLECTION_AREA_CM2, PORT_OPEN_TIMEOUT_S,
    TICK_INTERVAL_MS, DEFAULT_INTEGRATION_BOUNDS_NM, PREFERRED_FILTER_PORT
)
from core.devices import SeaBreezeBackend
from core.models import InstrumentConfig, SessionState
from core.pipeline import MeasurementPipeline
from core.registry import DeviceRegistry
from core.filter_wheel import FilterWheelController
from app.controllers import Controller
from app.threads import MeasurementThread
from app.workers import FilterWheelOpener

logger = logging.getLogger("entry")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Spectrometer + filter wheel measurement core")
    parser.add_argument('--calibration-dir', type=Path, default=BASE_DIR / CALIBRATION_SUBDIR,
                        help='Directory holding defaultcalibration<OD>.calibration files')
    parser.add_argument('--port', type=str, default=None,
                        help=f'Filter wheel serial port (default: {PREFERRED_FILTER_PORT} if present)')
    parser.add_argument('--od', type=str, default=None, help='OD filter to select after connecting')
    parser.add_argument('--collection-area', type=float, default=DEFAULT_COLLECTION_AREA_CM2,
                        help='Collection area in cm²')
    parser.add_argument('--bounds', type=float, nargs=2, default=list(DEFAULT_INTEGRATION_BOUNDS_NM),
                        metavar=('LOWER', 'UPPER'), help='Integration bounds in nm')
    parser.add_argument('--response-timeout', type=float, default=None,
                        help='Seconds to wait for a filter wheel reply (default: wait forever)')
    parser.add_argument('--interval-ms', type=int, default=TICK_INTERVAL_MS)
    parser.add_argument('--backend', type=str, default='cseabreeze', choices=['cseabreeze', 'pyseabreeze'])
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> InstrumentConfig:
    return InstrumentConfig(
        calibration_dir=args.calibration_dir,
        collection_area_cm2=args.collection_area,
        response_timeout_s=args.response_timeout,
        port_open_timeout_s=PORT_OPEN_TIMEOUT_S,
        tick_interval_ms=args.interval_ms,
        integration_bounds=(args.bounds[0], args.bounds[1]),
        seabreeze_backend=args.backend,
        preferred_filter_port=args.port or PREFERRED_FILTER_PORT,
    )


def _log_snapshot(snapshot):
    power = f"{snapshot.power_mw} mW" if snapshot.power_mw is not None else snapshot.power_status
    logger.info("%s | sat %.1f%% | peaks %s | %s", snapshot.device_id, snapshot.saturation_pct,
                ", ".join(f"{w:g}" for w in snapshot.peak_wavelengths), power)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = config_from_args(args)

    app = QCoreApplication(sys.argv[:1])

    registry = DeviceRegistry(SeaBreezeBackend(config.seabreeze_backend))
    pipeline = MeasurementPipeline(registry, CalibrationStore(config.calibration_dir),
                                   collection_area_cm2=config.collection_area_cm2)
    opener = FilterWheelOpener(
        factory=lambda port: FilterWheelController(port, response_timeout=config.response_timeout_s,
                                                    configure=False),
        timeout_s=config.port_open_timeout_s,
    )
    ticker = MeasurementThread(pipeline, interval_ms=config.tick_interval_ms,
                               bounds=config.integration_bounds)
    ticker.new_snapshot.connect(_log_snapshot)

    ctrl = Controller(SessionState(config=config), pipeline, opener, ticker=ticker)
    ctrl.setup_connections()

    ports = ctrl.refresh_filter_ports()
    port = args.port or (config.preferred_filter_port if config.preferred_filter_port in ports else None)
    if port is not None and ctrl.connect_filter_wheel(port) and args.od is not None:
        ctrl.select_filter(args.od)

    app.aboutToQuit.connect(ctrl.shutdown)
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # let Python see SIGINT while the Qt loop is running
    keepalive = QTimer()
    keepalive.timeout.connect(lambda: None)
    keepalive.start(200)

    ticker.start_acquisition()
    sys.exit(app.exec_())


if __name__ == "__main__":
    main()
