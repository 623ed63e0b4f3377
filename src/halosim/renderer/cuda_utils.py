# halosim/renderer/cuda_utils.py

from numba import cuda, float32
import math

from halosim.config import ICE_CAUCHY_A, ICE_CAUCHY_B, RAY_EPSILON
from halosim.renderer.crystal import BASAL_AREA, PRISM_SIDE

EPSILON = RAY_EPSILON

@cuda.jit(device=True)
def normalize_inplace(v):
    """Normalize a vector on the GPU in-place."""
    length_sq = v[0] * v[0] + v[1] * v[1] + v[2] * v[2]
    if length_sq > 0.0:
        length = math.sqrt(length_sq)
        v[0] /= length
        v[1] /= length
        v[2] /= length

@cuda.jit(device=True)
def dot(v1, v2):
    """Compute dot product on the GPU."""
    return v1[0]*v2[0] + v1[1]*v2[1] + v1[2]*v2[2]

@cuda.jit(device=True)
def reflect(out, v, n):
    """Reflect vector v about normal n, storing result in out (out may alias v)."""
    d = dot(v, n)
    for i in range(3):
        out[i] = v[i] - 2.0 * d * n[i]

@cuda.jit(device=True)
def refract(v, n, ni_over_nt, out_refracted):
    """Snell refraction; n faces against v. Returns False on total internal reflection."""
    cos_theta = min(-dot(v, n), 1.0)
    sin2_t = ni_over_nt * ni_over_nt * (1.0 - cos_theta * cos_theta)
    if sin2_t > 1.0:
        return False

    r_out = cuda.local.array(3, float32)
    cos_t = math.sqrt(1.0 - sin2_t)
    for i in range(3):
        r_out[i] = ni_over_nt * v[i] + (ni_over_nt * cos_theta - cos_t) * n[i]

    for i in range(3):
        out_refracted[i] = r_out[i]
    normalize_inplace(out_refracted)
    return True

@cuda.jit(device=True)
def fresnel_reflectance(cos_i, n1, n2):
    """Unpolarised Fresnel reflectance, 1 past the critical angle."""
    if cos_i > 1.0:
        cos_i = 1.0
    sin_t = n1 / n2 * math.sqrt(max(0.0, 1.0 - cos_i * cos_i))
    if sin_t >= 1.0:
        return 1.0
    cos_t = math.sqrt(1.0 - sin_t * sin_t)
    rs = (n1 * cos_i - n2 * cos_t) / (n1 * cos_i + n2 * cos_t)
    rp = (n1 * cos_t - n2 * cos_i) / (n1 * cos_t + n2 * cos_i)
    return 0.5 * (rs * rs + rp * rp)

@cuda.jit(device=True)
def ice_refractive_index(wavelength):
    return ICE_CAUCHY_A + ICE_CAUCHY_B / (wavelength * wavelength)

@cuda.jit(device=True)
def lobe(wavelength, mu, sigma_low, sigma_high):
    sigma = sigma_low if wavelength < mu else sigma_high
    t = (wavelength - mu) / sigma
    return math.exp(-0.5 * t * t)

@cuda.jit(device=True)
def cie_xyz(wavelength, out):
    """CIE 1931 XYZ weights of a wavelength in nm (Wyman-Sloan-Shirley fit)."""
    x = (1.056 * lobe(wavelength, 599.8, 37.9, 31.0)
         + 0.362 * lobe(wavelength, 442.0, 16.0, 26.7)
         - 0.065 * lobe(wavelength, 501.1, 20.4, 26.2))
    y = (0.821 * lobe(wavelength, 568.8, 46.9, 40.5)
         + 0.286 * lobe(wavelength, 530.9, 16.3, 31.1))
    z = (1.217 * lobe(wavelength, 437.0, 11.8, 36.0)
         + 0.681 * lobe(wavelength, 459.0, 26.0, 13.8))
    out[0] = max(x, 0.0)
    out[1] = max(y, 0.0)
    out[2] = max(z, 0.0)

# -------------------------------------------------------------------------
# Hexagonal prism, crystal frame. Faces 0-5 are prism faces, 6 top, 7 bottom.

@cuda.jit(device=True)
def face_normal(k, out):
    if k < 6:
        angle = k * math.pi / 3.0
        out[0] = math.cos(angle)
        out[1] = math.sin(angle)
        out[2] = 0.0
    else:
        out[0] = 0.0
        out[1] = 0.0
        out[2] = 1.0 if k == 6 else -1.0

@cuda.jit(device=True)
def face_offset(k, ca):
    return 1.0 if k < 6 else ca

@cuda.jit(device=True)
def face_area(k, ca):
    return PRISM_SIDE * 2.0 * ca if k < 6 else BASAL_AREA

@cuda.jit(device=True)
def point_on_face(k, ca, u1, u2, u3, out):
    """Uniform point on face k from three uniform variates."""
    if k < 6:
        angle = k * math.pi / 3.0
        s = (PRISM_SIDE / 2.0) * (2.0 * u1 - 1.0)
        out[0] = math.cos(angle) - math.sin(angle) * s
        out[1] = math.sin(angle) + math.cos(angle) * s
        out[2] = ca * (2.0 * u2 - 1.0)
    else:
        wedge = min(int(u3 * 6.0), 5)
        a0 = math.pi / 6.0 + wedge * math.pi / 3.0
        a1 = a0 + math.pi / 3.0
        r1 = math.sqrt(u1)
        out[0] = PRISM_SIDE * r1 * ((1.0 - u2) * math.cos(a0) + u2 * math.cos(a1))
        out[1] = PRISM_SIDE * r1 * ((1.0 - u2) * math.sin(a0) + u2 * math.sin(a1))
        out[2] = ca if k == 6 else -ca

@cuda.jit(device=True)
def orientation_matrix(cos_polar, sin_polar, azimuth, rotation, out):
    """Crystal-to-world rotation Rz(azimuth) Ry(polar) Rz(rotation) into a 3x3 array."""
    c_az = math.cos(azimuth)
    s_az = math.sin(azimuth)
    cr = math.cos(rotation)
    sr = math.sin(rotation)

    out[0, 0] = c_az * cos_polar * cr - s_az * sr
    out[0, 1] = -c_az * cos_polar * sr - s_az * cr
    out[0, 2] = c_az * sin_polar
    out[1, 0] = s_az * cos_polar * cr + c_az * sr
    out[1, 1] = -s_az * cos_polar * sr + c_az * cr
    out[1, 2] = s_az * sin_polar
    out[2, 0] = -sin_polar * cr
    out[2, 1] = sin_polar * sr
    out[2, 2] = cos_polar

@cuda.jit(device=True)
def rotate(m, v, out):
    """out = m @ v; out must not alias v."""
    for i in range(3):
        out[i] = m[i, 0] * v[0] + m[i, 1] * v[1] + m[i, 2] * v[2]

@cuda.jit(device=True)
def rotate_transpose(m, v, out):
    """out = m^T @ v; out must not alias v."""
    for i in range(3):
        out[i] = m[0, i] * v[0] + m[1, i] * v[1] + m[2, i] * v[2]
