# tests/test_calibration.py

import tempfile
import unittest
from pathlib import Path

import numpy as np

from core.calibration import CalibrationStore, parse_calibration_lines
from core.errors import CalibrationLoadError
from fakes import write_calibration

DEVICE = "USB4000 SN:USB4F00001"


class TestParseCalibrationLines(unittest.TestCase):
    def test_last_pixel_is_left_at_zero(self):
        lines = ["Calibration", "10", "h", "h", "h"] + [str(i + 1.5) for i in range(9)]
        values = parse_calibration_lines(lines)
        self.assertEqual(values.size, 10)
        np.testing.assert_array_equal(values[:9], np.arange(9) + 1.5)
        self.assertEqual(values[9], 0.0)

    def test_extra_lines_are_ignored(self):
        lines = ["Calibration", "3", "h", "h", "h", "1", "2", "3", "4"]
        np.testing.assert_array_equal(parse_calibration_lines(lines), [1.0, 2.0, 0.0])

    def test_single_pixel_file(self):
        np.testing.assert_array_equal(parse_calibration_lines(["c", "1", "h", "h", "h"]), [0.0])

    def test_bad_pixel_count(self):
        with self.assertRaises(ValueError):
            parse_calibration_lines(["c", "zero", "h", "h", "h"])
        with self.assertRaises(ValueError):
            parse_calibration_lines(["c", "0", "h", "h", "h"])

    def test_truncated_file(self):
        with self.assertRaises(IndexError):
            parse_calibration_lines(["c", "10", "h", "h", "h", "1.0"])


class TestCalibrationStore(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = Path(tmp.name)
        self.store = CalibrationStore(self.dir)

    def test_path_for(self):
        self.assertEqual(self.store.path_for("0.1"), self.dir / "defaultcalibration0.1.calibration")

    def test_load_and_activate(self):
        write_calibration(self.dir, "0.3", [2.0] * 9)
        curve = self.store.load(DEVICE, "0.3")
        self.assertEqual(curve.size, 10)
        self.assertEqual(curve[-1], 0.0)
        self.assertEqual(self.store.active_od(DEVICE), "0.3")
        self.assertIs(self.store.active(DEVICE), curve)
        self.assertIs(self.store.get(DEVICE, "0.3"), curve)

    def test_missing_file(self):
        with self.assertLogs("core.calibration", level="ERROR"):
            with self.assertRaises(CalibrationLoadError) as ctx:
                self.store.load(DEVICE, "2.0")
        self.assertEqual(ctx.exception.path, self.store.path_for("2.0"))
        self.assertIsNone(self.store.get(DEVICE, "2.0"))
        self.assertIsNone(self.store.active(DEVICE))
        self.assertEqual(self.store.active_od(DEVICE), "2.0")

    def test_corrupt_file(self):
        self.store.path_for("0.5").write_text("Calibration\n4\nh\nh\nh\n1.0\nnot-a-number\n3.0\n")
        with self.assertLogs("core.calibration", level="ERROR"):
            with self.assertRaises(CalibrationLoadError):
                self.store.load(DEVICE, "0.5")
        self.assertIsNone(self.store.active(DEVICE))

    def test_failed_reload_drops_previous_curve(self):
        path = write_calibration(self.dir, "0", [1.0] * 4)
        self.store.load(DEVICE, "0")
        path.unlink()
        with self.assertLogs("core.calibration", level="ERROR"):
            with self.assertRaises(CalibrationLoadError):
                self.store.load(DEVICE, "0")
        self.assertIsNone(self.store.get(DEVICE, "0"))

    def test_switching_filter_keeps_other_curves(self):
        write_calibration(self.dir, "0", [1.0] * 4)
        write_calibration(self.dir, "1.0", [10.0] * 4)
        self.store.load(DEVICE, "0")
        self.store.load(DEVICE, "1.0")
        self.assertEqual(self.store.active_od(DEVICE), "1.0")
        self.assertEqual(self.store.active(DEVICE)[0], 10.0)
        self.assertIsNotNone(self.store.get(DEVICE, "0"))

    def test_curves_are_per_device(self):
        write_calibration(self.dir, "0", [1.0] * 4)
        self.store.load(DEVICE, "0")
        self.assertIsNone(self.store.active("QE65000 SN:QEP00002"))

    def test_clear(self):
        write_calibration(self.dir, "0", [1.0] * 4)
        self.store.load(DEVICE, "0")
        self.store.clear()
        self.assertIsNone(self.store.active(DEVICE))
        self.assertIsNone(self.store.active_od(DEVICE))


if __name__ == "__main__":
    unittest.main()
