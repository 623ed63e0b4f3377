# halosim/renderer/optics.py
"""
Vectorised optics used by the reference tracer.

All direction arrays are (N, 3); normals passed to reflect/refract face
against the incoming ray (dot(v, n) < 0).
"""
import numpy as np

from halosim.config import ICE_CAUCHY_A, ICE_CAUCHY_B


def ice_refractive_index(wavelength):
    """Refractive index of ice for wavelengths in nm (Cauchy fit)."""
    wavelength = np.asarray(wavelength, dtype=np.float64)
    return ICE_CAUCHY_A + ICE_CAUCHY_B / (wavelength * wavelength)


def dot_rows(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.einsum("ij,ij->i", a, b)


def reflect(v: np.ndarray, n: np.ndarray) -> np.ndarray:
    """Mirror v about the plane with normal n."""
    return v - 2.0 * dot_rows(v, n)[:, None] * n


def refract(v: np.ndarray, n: np.ndarray, ni_over_nt):
    """
    Snell refraction of unit directions v through a surface with normal n.

    Returns (refracted, valid); valid is False where total internal
    reflection occurs, and refracted is then left equal to v.
    """
    ni_over_nt = np.asarray(ni_over_nt, dtype=np.float64)
    cos_theta = np.minimum(-dot_rows(v, n), 1.0)
    sin2_t = ni_over_nt * ni_over_nt * (1.0 - cos_theta * cos_theta)
    valid = sin2_t <= 1.0
    cos_t = np.sqrt(np.clip(1.0 - sin2_t, 0.0, 1.0))

    refracted = ni_over_nt[..., None] * v + (ni_over_nt * cos_theta - cos_t)[:, None] * n
    refracted /= np.linalg.norm(refracted, axis=1)[:, None]
    refracted = np.where(valid[:, None], refracted, v)
    return refracted, valid


def fresnel_reflectance(cos_i, n1, n2) -> np.ndarray:
    """
    Reflectance for unpolarised light, the mean of the s and p Fresnel terms.
    Equals 1 past the critical angle.
    """
    cos_i = np.clip(np.asarray(cos_i, dtype=np.float64), 0.0, 1.0)
    n1 = np.asarray(n1, dtype=np.float64)
    n2 = np.asarray(n2, dtype=np.float64)

    sin_t = n1 / n2 * np.sqrt(1.0 - cos_i * cos_i)
    tir = sin_t >= 1.0
    cos_t = np.sqrt(np.clip(1.0 - sin_t * sin_t, 0.0, 1.0))

    # Grazing TIR gives 0/0 here; those lanes are overwritten below
    with np.errstate(divide="ignore", invalid="ignore"):
        rs = (n1 * cos_i - n2 * cos_t) / (n1 * cos_i + n2 * cos_t)
        rp = (n1 * cos_t - n2 * cos_i) / (n1 * cos_t + n2 * cos_i)
    reflectance = 0.5 * (rs * rs + rp * rp)
    return np.where(tir, 1.0, reflectance)


def _lobe(wavelength, mu, sigma_low, sigma_high):
    sigma = np.where(wavelength < mu, sigma_low, sigma_high)
    t = (wavelength - mu) / sigma
    return np.exp(-0.5 * t * t)


def cie_xyz(wavelength) -> np.ndarray:
    """
    CIE 1931 colour matching functions (multi-lobe Gaussian fit by Wyman,
    Sloan and Shirley). Returns (N, 3) non-negative XYZ weights.
    """
    wl = np.asarray(wavelength, dtype=np.float64)
    x = (1.056 * _lobe(wl, 599.8, 37.9, 31.0)
         + 0.362 * _lobe(wl, 442.0, 16.0, 26.7)
         - 0.065 * _lobe(wl, 501.1, 20.4, 26.2))
    y = (0.821 * _lobe(wl, 568.8, 46.9, 40.5)
         + 0.286 * _lobe(wl, 530.9, 16.3, 31.1))
    z = (1.217 * _lobe(wl, 437.0, 11.8, 36.0)
         + 0.681 * _lobe(wl, 459.0, 26.0, 13.8))
    return np.maximum(np.stack([x, y, z], axis=-1), 0.0)
