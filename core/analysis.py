# core/analysis.py

import numpy as np
from scipy.integrate import trapezoid
from scipy.ndimage import uniform_filter1d
from scipy.signal import find_peaks
from core.constants import FULL_SCALE_COUNTS, MICRO_WATT_SCALAR, NO_PEAK_SENTINEL

def saturation_percent(counts: np.ndarray, full_scale: float = FULL_SCALE_COUNTS) -> float:
    if counts is None or counts.size == 0:
        return 0.0
    return float(np.nanmax(counts) / full_scale * 100.0)

def boxcar_smooth(counts: np.ndarray, width: int) -> np.ndarray:
    """Average each pixel with `width` neighbours on either side; 0 disables."""
    counts = np.asarray(counts, dtype=float)
    if width <= 0 or counts.size == 0:
        return counts
    return uniform_filter1d(counts, size=2 * int(width) + 1, mode="nearest")

def subtract_dark(raw: np.ndarray, dark) -> np.ndarray:
    if dark is None:
        return raw
    return np.asarray(raw, dtype=float) - np.asarray(dark, dtype=float)

def absolute_irradiance(raw: np.ndarray, dark: np.ndarray, wavelength_nm: np.ndarray,
                        calibration: np.ndarray, integration_time_us: float,
                        collection_area_cm2: float) -> np.ndarray:
    """
    Spectral irradiance from a fresh raw scan:
        (raw - dark) * cal / (t[s] * area[cm²] * dλ[nm])
    with cal in µJ/count. dλ is the local pixel spacing.
    """
    wl = np.asarray(wavelength_nm, dtype=float)
    seconds = float(integration_time_us) / 1e6
    d_lambda = np.gradient(wl)
    signal = subtract_dark(raw, dark) * np.asarray(calibration, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        return signal / (seconds * collection_area_cm2 * d_lambda)

def scale_to_micro(irradiance: np.ndarray, scale: float) -> np.ndarray:
    return irradiance * (MICRO_WATT_SCALAR * scale)

def radiance_factor(solid_angle: float, optic_output_area: float, scale: float) -> float:
    return MICRO_WATT_SCALAR * (1 / np.pi) * (1 / solid_angle) * (1 / np.pi) * (1 / optic_output_area) * scale

def integrate_window(wavelength_nm: np.ndarray, values: np.ndarray, lower: float, upper: float) -> float:
    """Trapezoidal area of `values` over the pixels inside [lower, upper]."""
    wl = np.asarray(wavelength_nm, dtype=float)
    y = np.asarray(values, dtype=float)
    m = (wl >= lower) & (wl <= upper)
    if np.count_nonzero(m) < 2:
        return 0.0
    return float(trapezoid(y[m], wl[m]))

def integrate_power(wavelength_nm: np.ndarray, irradiance: np.ndarray,
                    lower: float, upper: float, collection_area_cm2: float) -> float:
    return integrate_window(wavelength_nm, irradiance, lower, upper) * collection_area_cm2

def find_peak_indices(counts: np.ndarray, min_separation: int, threshold: float) -> np.ndarray:
    """Local maxima strictly above `threshold`, at least `min_separation` pixels apart."""
    y = np.asarray(counts, dtype=float)
    if y.size < 3:
        return np.array([], dtype=int)
    peaks, _ = find_peaks(y, height=threshold, distance=max(1, int(min_separation)))
    return peaks[y[peaks] > threshold].astype(int)

def peak_wavelengths(wavelength_nm: np.ndarray, counts: np.ndarray,
                     min_separation: int, threshold: float) -> np.ndarray:
    """
    Peak positions in nm, rounded to 2 decimals.
    Returns the single-element sentinel [-1.0] when no peak qualifies;
    callers branch on that value, not on emptiness.
    """
    idx = find_peak_indices(counts, min_separation, threshold)
    if idx.size == 0:
        return np.array([NO_PEAK_SENTINEL])
    wl = np.asarray(wavelength_nm, dtype=float)
    return np.array([round(float(w), 2) for w in wl[idx]])
