# tests/test_pipeline.py

import tempfile
import unittest
from pathlib import Path

import numpy as np

from core.calibration import CalibrationStore
from core.errors import CalibrationLoadError, DeviceNotFound, InvalidArgument, PreconditionError
from core.models import AcquisitionSettings
from core.pipeline import MeasurementPipeline
from core.registry import DeviceRegistry
from fakes import FakeBackend, make_unit, write_calibration

DEVICE = "USB4000 SN:USB4F00001"


class PipelineTestBase(unittest.TestCase):
    """201 pixels at 350..550 nm, 1 nm apart."""

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.cal_dir = Path(tmp.name)
        self.unit = make_unit("USB4000", "USB4F00001", level=1100.0)
        self.backend = FakeBackend([self.unit])
        self.registry = DeviceRegistry(self.backend)
        self.pipeline = MeasurementPipeline(self.registry, CalibrationStore(self.cal_dir),
                                            collection_area_cm2=2.0)
        self.registry.refresh()

    def capture_dark(self, level=100.0):
        live = self.unit.counts
        self.unit.counts = np.full(live.size, level)
        self.pipeline.capture_dark_spectrum(DEVICE)
        self.unit.counts = live

    def load_flat_calibration(self, od="0", value=1.0, pixels=201):
        write_calibration(self.cal_dir, od, [value] * (pixels - 1), pixel_count=pixels)
        self.pipeline.load_calibration_for_filter(DEVICE, od)

    def make_ready(self):
        self.unit.integration_time_us = 1_000_000
        self.capture_dark()
        self.load_flat_calibration()


class TestSpectra(PipelineTestBase):
    def test_wavelengths_and_spectrum(self):
        wl = self.pipeline.get_wavelengths(DEVICE)
        self.assertEqual(wl[0], 350.0)
        self.assertEqual(wl[-1], 550.0)
        np.testing.assert_array_equal(self.pipeline.get_spectrum(DEVICE), np.full(201, 1100.0))

    def test_minus_dark_without_dark_is_raw(self):
        np.testing.assert_array_equal(self.pipeline.get_spectrum_minus_dark(DEVICE), np.full(201, 1100.0))

    def test_minus_dark(self):
        self.capture_dark(100.0)
        np.testing.assert_array_equal(self.pipeline.get_spectrum_minus_dark(DEVICE), np.full(201, 1000.0))

    def test_dark_with_stale_pixel_count_is_ignored(self):
        self.capture_dark(100.0)
        self.unit.wavelengths = np.linspace(350, 550, 101)
        self.unit.counts = np.full(101, 1100.0)
        with self.assertLogs("core.pipeline", level="WARNING"):
            self.assertIsNone(self.pipeline.dark_spectrum(DEVICE))
        np.testing.assert_array_equal(self.pipeline.get_spectrum_minus_dark(DEVICE), np.full(101, 1100.0))

    def test_unknown_device(self):
        with self.assertRaises(DeviceNotFound):
            self.pipeline.get_spectrum("HR4000 SN:HR4C0003")
        with self.assertRaises(DeviceNotFound):
            self.pipeline.capture_dark_spectrum("HR4000 SN:HR4C0003")

    def test_refresh_discards_darks_and_calibrations(self):
        self.make_ready()
        self.registry.refresh()
        self.assertIsNone(self.pipeline.dark_spectrum(DEVICE))
        self.assertIsNone(self.pipeline.calibrations.active(DEVICE))


class TestAbsoluteConditions(PipelineTestBase):
    def assertReason(self, lower, upper, reason):
        ok, why = self.pipeline.valid_absolute_measurement_conditions(DEVICE, lower, upper)
        self.assertFalse(ok)
        self.assertEqual(why, reason)

    def test_missing_dark(self):
        self.load_flat_calibration()
        self.assertReason(400, 500, f"No dark spectrum for device {DEVICE}. Capture a dark spectrum first.")

    def test_missing_calibration(self):
        self.capture_dark()
        self.assertReason(400, 500, "Calibration missing or failed to load.")

    def test_failed_calibration_load(self):
        self.capture_dark()
        self.load_flat_calibration("0")
        with self.assertLogs("core.calibration", level="ERROR"):
            with self.assertRaises(CalibrationLoadError):
                self.pipeline.load_calibration_for_filter(DEVICE, "2.0")
        self.assertReason(400, 500, "Calibration missing or failed to load.")

    def test_calibration_length_mismatch(self):
        self.capture_dark()
        self.load_flat_calibration(pixels=100)
        self.assertReason(400, 500, "Length of calibration data array does not match raw data length.")

    def test_bounds_order(self):
        self.make_ready()
        self.assertReason(500, 500, "Lower integration bound must be less than upper integration bound.")
        self.assertReason(510, 500, "Lower integration bound must be less than upper integration bound.")

    def test_upper_bound_outside_range(self):
        self.make_ready()
        self.assertReason(400, 600, "Specified high-side integration bound does not exist.")

    def test_lower_bound_outside_range(self):
        self.make_ready()
        self.assertReason(300, 500, "Specified low-side integration bound does not exist.")

    def test_dark_checked_first(self):
        self.assertReason(600, 300, f"No dark spectrum for device {DEVICE}. Capture a dark spectrum first.")

    def test_valid(self):
        self.make_ready()
        self.assertEqual(self.pipeline.valid_absolute_measurement_conditions(DEVICE, 350, 550), (True, ""))

    def test_check_has_no_side_effects(self):
        self.make_ready()
        taken = self.unit.spectra_taken
        for _ in range(2):
            self.pipeline.valid_absolute_measurement_conditions(DEVICE, 400, 600)
        self.assertEqual(self.unit.spectra_taken, taken)
        self.assertEqual(self.pipeline.calibrations.active_od(DEVICE), "0")
        self.assertIsNotNone(self.pipeline.dark_spectrum(DEVICE))

    def test_absolute_calls_raise_with_reason(self):
        self.capture_dark()
        with self.assertRaises(PreconditionError) as ctx:
            self.pipeline.get_absolute_power(DEVICE, 1.0, 400, 500)
        self.assertEqual(ctx.exception.reason, "Calibration missing or failed to load.")
        with self.assertRaises(PreconditionError):
            self.pipeline.get_absolute_irradiance(DEVICE, 1.0, 400, 500)
        with self.assertRaises(PreconditionError):
            self.pipeline.get_absolute_radiance(DEVICE, 1.0, 1.0, 1.0, 400, 500)
        with self.assertRaises(PreconditionError):
            self.pipeline.spectral_integration(DEVICE, 400, 500)


class TestAbsoluteMeasurements(PipelineTestBase):
    # (1100 - 100) counts * 1 µJ/count / (1 s * 2 cm² * 1 nm) * 1e6
    IRRADIANCE = 5e8

    def test_irradiance(self):
        self.make_ready()
        irr = self.pipeline.get_absolute_irradiance(DEVICE, 1.0, 400, 500)
        np.testing.assert_allclose(irr[:-1], self.IRRADIANCE)
        self.assertEqual(irr[-1], 0.0)

    def test_power_over_flat_spectrum(self):
        self.make_ready()
        # 5e8 over 100 nm, times 2 cm²
        self.assertEqual(self.pipeline.get_absolute_power(DEVICE, 1.0, 400, 500), 1e11)

    def test_power_scale(self):
        self.make_ready()
        self.assertAlmostEqual(self.pipeline.get_absolute_power(DEVICE, 0.001, 400, 500), 1e8)

    def test_collection_area_cancels_out_of_power(self):
        self.make_ready()
        self.pipeline.set_collection_area(4.0)
        self.assertEqual(self.pipeline.get_absolute_power(DEVICE, 1.0, 400, 500), 1e11)

    def test_integration_time_scales_irradiance(self):
        self.make_ready()
        self.unit.integration_time_us = 500_000
        irr = self.pipeline.get_absolute_irradiance(DEVICE, 1.0, 400, 500)
        np.testing.assert_allclose(irr[:-1], 2 * self.IRRADIANCE)

    def test_radiance(self):
        self.make_ready()
        rad = self.pipeline.get_absolute_radiance(DEVICE, 1.0, 2.0, 0.5, 400, 500)
        np.testing.assert_allclose(rad[:-1], self.IRRADIANCE / (np.pi ** 2))

    def test_radiance_rejects_nonpositive_geometry(self):
        self.make_ready()
        with self.assertRaises(InvalidArgument):
            self.pipeline.get_absolute_radiance(DEVICE, 1.0, 0.0, 0.5, 400, 500)

    def test_spectral_integration_of_raw_counts(self):
        self.make_ready()
        self.assertAlmostEqual(self.pipeline.spectral_integration(DEVICE, 400, 500), 110000.0)

    def test_collection_area_must_be_positive(self):
        with self.assertRaises(InvalidArgument):
            self.pipeline.set_collection_area(0)


class TestPeaksAndStatus(PipelineTestBase):
    def test_flat_spectrum_has_no_peaks(self):
        np.testing.assert_array_equal(self.pipeline.get_peak_wavelengths(DEVICE, 15, 3000.0), [-1.0])
        self.assertEqual(self.pipeline.get_peak_indices(DEVICE, 15, 3000.0).size, 0)

    def test_single_line(self):
        wl = self.unit.wavelengths
        self.unit.counts = 100.0 + 10000.0 * np.exp(-0.5 * ((wl - 450.0) / 3.0) ** 2)
        np.testing.assert_array_equal(self.pipeline.get_peak_wavelengths(DEVICE, 15, 3000.0), [450.0])
        self.assertEqual(list(self.pipeline.get_peak_indices(DEVICE, 15, 3000.0)), [100])

    def test_saturation(self):
        self.assertFalse(self.pipeline.is_saturated(DEVICE))
        self.unit.counts[50] = 65535.0
        self.assertTrue(self.pipeline.is_saturated(DEVICE))
        self.assertAlmostEqual(self.pipeline.saturation_percent(DEVICE), 100.0)
        self.assertAlmostEqual(self.pipeline.saturation_percent(DEVICE, np.array([6553.5])), 10.0)


class TestSettings(PipelineTestBase):
    def test_apply_acquisition_settings(self):
        self.pipeline.apply_acquisition_settings(DEVICE, AcquisitionSettings(20000, 5, 2))
        self.assertEqual(self.pipeline.get_integration_time(DEVICE), 20000)
        self.assertEqual(self.unit.scans_to_average, 5)
        self.assertEqual(self.unit.boxcar_width, 2)

    def test_invalid_acquisition_settings(self):
        with self.assertRaises(InvalidArgument):
            self.pipeline.set_integration_time(DEVICE, 0)
        with self.assertRaises(InvalidArgument):
            self.pipeline.set_scans_to_average(DEVICE, 0)
        with self.assertRaises(InvalidArgument):
            self.pipeline.set_boxcar_width(DEVICE, -1)

    def test_trigger_mode(self):
        self.pipeline.set_external_trigger_mode(DEVICE, 3)
        self.assertEqual(self.pipeline.get_external_trigger_mode(DEVICE), 3)
        for mode in (-1, 5):
            with self.assertRaises(InvalidArgument):
                self.pipeline.set_external_trigger_mode(DEVICE, mode)

    def test_correction_flags(self):
        self.pipeline.set_correct_for_electrical_dark(DEVICE, 1)
        self.pipeline.set_correct_for_detector_nonlinearity(DEVICE, 1)
        self.assertTrue(self.unit.electrical_dark)
        self.assertTrue(self.unit.nonlinearity)
        with self.assertRaises(InvalidArgument):
            self.pipeline.set_correct_for_electrical_dark(DEVICE, 2)
        with self.assertRaises(InvalidArgument):
            self.pipeline.set_correct_for_detector_nonlinearity(DEVICE, -1)

    def test_detector_set_point(self):
        with self.assertRaises(InvalidArgument):
            self.pipeline.set_detector_set_point_celsius(DEVICE, -10.0)
        self.unit.thermo_electric = True
        self.pipeline.set_detector_set_point_celsius(DEVICE, -10.0)
        self.assertEqual(self.unit.set_point_c, -10.0)


if __name__ == "__main__":
    unittest.main()
