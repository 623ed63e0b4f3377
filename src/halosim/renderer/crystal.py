# halosim/renderer/crystal.py
"""
Hexagonal prism geometry and crystal orientation sampling.

Crystal-local frame: the c-axis is +z, the six prism faces sit at distance
1 from the axis (across-flats width 2) with outward normals at multiples
of 60 degrees, and the two basal faces sit at z = +/- c/a.
"""
import math

import numpy as np

from halosim.config import MIN_CA_RATIO, RAY_EPSILON
from halosim.core.distributions import DistributionKind, sample_angle, sample_positive
from halosim.simulation.crystal_population import CrystalPopulation

NUM_FACES = 8
TOP_FACE = 6
BOTTOM_FACE = 7

# Edge length (and circumradius) of a hexagon with apothem 1
PRISM_SIDE = 2.0 / math.sqrt(3.0)
BASAL_AREA = 2.0 * math.sqrt(3.0)


def _face_normals() -> np.ndarray:
    normals = np.zeros((NUM_FACES, 3))
    for k in range(6):
        angle = k * math.pi / 3.0
        normals[k] = (math.cos(angle), math.sin(angle), 0.0)
    normals[TOP_FACE] = (0.0, 0.0, 1.0)
    normals[BOTTOM_FACE] = (0.0, 0.0, -1.0)
    return normals


FACE_NORMALS = _face_normals()


def face_offsets(ca: np.ndarray) -> np.ndarray:
    """(N, 8) plane distances from the crystal centre."""
    offsets = np.ones((ca.shape[0], NUM_FACES))
    offsets[:, TOP_FACE] = ca
    offsets[:, BOTTOM_FACE] = ca
    return offsets


def face_areas(ca: np.ndarray) -> np.ndarray:
    """(N, 8) facet areas."""
    areas = np.empty((ca.shape[0], NUM_FACES))
    areas[:, :6] = (PRISM_SIDE * 2.0 * ca)[:, None]
    areas[:, TOP_FACE] = BASAL_AREA
    areas[:, BOTTOM_FACE] = BASAL_AREA
    return areas


def surface_area(ca: np.ndarray) -> np.ndarray:
    return 12.0 * PRISM_SIDE * ca + 2.0 * BASAL_AREA


def projected_area(directions: np.ndarray, ca: np.ndarray) -> np.ndarray:
    """
    Cross-section each crystal presents to light travelling along
    `directions` (crystal frame). Never more than half the surface area.
    """
    facing = np.maximum(-(directions @ FACE_NORMALS.T), 0.0)
    return (face_areas(ca) * facing).sum(axis=1)


def sample_crystals(population: CrystalPopulation, rng: np.random.Generator, n: int):
    """
    Draw `n` crystals from a population.

    Returns (ca_ratio, polar_angle, rotation) arrays with angles in degrees.
    """
    ca = sample_positive(population.ca_ratio(), rng, n, minimum=MIN_CA_RATIO)

    polar_dist = population.polar_angle()
    if polar_dist.kind == DistributionKind.UNIFORM:
        # Uniform over the spherical zone, so cos(theta) is uniform
        cos_low = math.cos(math.radians(polar_dist.maximum))
        cos_high = math.cos(math.radians(polar_dist.minimum))
        polar = np.degrees(np.arccos(rng.uniform(cos_low, cos_high, n)))
    else:
        polar = sample_angle(polar_dist, rng, n)

    rotation = sample_angle(population.rotation(), rng, n)
    return ca, polar, rotation


def rotation_z(angle: np.ndarray) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    m = np.zeros(angle.shape + (3, 3))
    m[..., 0, 0] = c
    m[..., 0, 1] = -s
    m[..., 1, 0] = s
    m[..., 1, 1] = c
    m[..., 2, 2] = 1.0
    return m


def rotation_y(angle: np.ndarray) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    m = np.zeros(angle.shape + (3, 3))
    m[..., 0, 0] = c
    m[..., 0, 2] = s
    m[..., 1, 1] = 1.0
    m[..., 2, 0] = -s
    m[..., 2, 2] = c
    return m


def orientation_matrices(polar: np.ndarray, azimuth: np.ndarray, rotation: np.ndarray) -> np.ndarray:
    """
    (N, 3, 3) crystal-to-world rotations: spin about the c-axis, tilt the
    c-axis away from the zenith, then turn it to its azimuth. Radians.
    """
    return rotation_z(azimuth) @ rotation_y(polar) @ rotation_z(rotation)


def sample_entry(directions: np.ndarray, ca: np.ndarray, rng: np.random.Generator):
    """
    Pick the facet each ray enters through, weighted by its projected area
    toward the ray, and a uniform point on it.

    Returns (points (N, 3), faces (N,)).
    """
    n = directions.shape[0]
    facing = np.maximum(-(directions @ FACE_NORMALS.T), 0.0)
    weights = face_areas(ca) * facing
    cumulative = np.cumsum(weights, axis=1)
    u = rng.random(n) * cumulative[:, -1]
    faces = np.minimum((cumulative <= u[:, None]).sum(axis=1), NUM_FACES - 1)

    u1 = rng.random(n)
    u2 = rng.random(n)

    # Prism faces: rectangle PRISM_SIDE wide, 2 * ca tall
    angle = faces * (math.pi / 3.0)
    prism_points = np.stack([
        np.cos(angle) - np.sin(angle) * (PRISM_SIDE / 2.0) * (2.0 * u1 - 1.0),
        np.sin(angle) + np.cos(angle) * (PRISM_SIDE / 2.0) * (2.0 * u1 - 1.0),
        ca * (2.0 * u2 - 1.0),
    ], axis=1)

    # Basal faces: one of six triangles fanning out from the axis
    wedge = rng.integers(0, 6, n)
    a0 = math.pi / 6.0 + wedge * (math.pi / 3.0)
    a1 = a0 + math.pi / 3.0
    r1 = np.sqrt(u1)
    basal_points = np.stack([
        PRISM_SIDE * r1 * ((1.0 - u2) * np.cos(a0) + u2 * np.cos(a1)),
        PRISM_SIDE * r1 * ((1.0 - u2) * np.sin(a0) + u2 * np.sin(a1)),
        np.where(faces == TOP_FACE, ca, -ca),
    ], axis=1)

    points = np.where((faces < 6)[:, None], prism_points, basal_points)
    return points, faces


def next_face(points: np.ndarray, directions: np.ndarray, ca: np.ndarray):
    """
    Nearest facet a ray travelling inside the crystal leaves through.

    Returns (distances (N,), faces (N,)).
    """
    denom = directions @ FACE_NORMALS.T
    numer = face_offsets(ca) - points @ FACE_NORMALS.T
    with np.errstate(divide="ignore", invalid="ignore"):
        t = np.where(denom > RAY_EPSILON, numer / denom, np.inf)
    faces = np.argmin(t, axis=1)
    distances = np.maximum(t[np.arange(points.shape[0]), faces], 0.0)
    return distances, faces
