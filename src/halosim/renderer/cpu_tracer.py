# halosim/renderer/cpu_tracer.py
"""
Vectorised NumPy tracer.

Runs the same Monte Carlo model as the CUDA kernel, one array lane per
ray, and doubles as the reference implementation the tests check halo
geometry against.
"""
import logging
import math
from typing import NamedTuple, Optional

import numpy as np

from halosim.config import MAX_FACET_INTERACTIONS, WAVELENGTH_MAX, WAVELENGTH_MIN
from halosim.core.distributions import default_rng
from halosim.renderer.accumulation import HostAccumulationBuffer
from halosim.renderer.crystal import (
    FACE_NORMALS,
    next_face,
    orientation_matrices,
    projected_area,
    sample_crystals,
    sample_entry,
    surface_area,
)
from halosim.renderer.optics import (
    cie_xyz,
    dot_rows,
    fresnel_reflectance,
    ice_refractive_index,
    reflect,
    refract,
)
from halosim.renderer.tracer import BatchTracer

logger = logging.getLogger(__name__)


class TraceResult(NamedTuple):
    """Rays that left their crystal, in world coordinates."""
    directions: np.ndarray
    wavelengths: np.ndarray
    weights: np.ndarray
    populations: np.ndarray
    interactions: np.ndarray


def sample_orientations(rng: np.random.Generator, populations: np.ndarray, repository, light_source):
    """
    Draw a crystal and a sun ray for every lane of `populations`.

    A crystal is hit in proportion to the cross-section it shows the sun,
    so each draw is kept with probability projected / (surface / 2) and
    rejected lanes are drawn again from the same population.

    Returns (ca (N,), to_world (N, 3, 3), incoming directions in the
    crystal frame (N, 3)).
    """
    n = populations.shape[0]
    ca = np.empty(n)
    to_world = np.empty((n, 3, 3))
    d = np.empty((n, 3))

    pending = np.arange(n)
    while pending.size:
        polar = np.empty(pending.size)
        rotation = np.empty(pending.size)
        for index, (population, _) in enumerate(repository):
            mask = populations[pending] == index
            count = int(mask.sum())
            if count:
                ca[pending[mask]], polar[mask], rotation[mask] = sample_crystals(population, rng, count)

        azimuth = rng.uniform(0.0, 2.0 * math.pi, pending.size)
        to_world[pending] = orientation_matrices(np.radians(polar), azimuth, np.radians(rotation))

        # Incoming light in crystal coordinates (R^T d)
        d_world = light_source.sample_directions(rng, pending.size)
        d[pending] = np.einsum("nji,nj->ni", to_world[pending], d_world)

        area = projected_area(d[pending], ca[pending])
        keep = rng.random(pending.size) * surface_area(ca[pending]) * 0.5 < area
        pending = pending[~keep]
    return ca, to_world, d


def trace_rays(rng: np.random.Generator, n: int, repository, light_source,
               max_interactions: int = MAX_FACET_INTERACTIONS) -> TraceResult:
    """
    Trace `n` sun rays through crystals drawn from `repository`.

    Every facet event picks reflection or transmission at random with the
    Fresnel probability, so surviving rays keep unit weight. Rays still
    inside their crystal after `max_interactions` events are dropped.
    """
    # Population of each ray
    populations = repository.select(rng.random(n) * repository.total_weight())
    ca, to_world, d = sample_orientations(rng, populations, repository, light_source)

    wavelengths = rng.uniform(WAVELENGTH_MIN, WAVELENGTH_MAX, n)
    n_ice = ice_refractive_index(wavelengths)

    p, faces = sample_entry(d, ca, rng)

    # External event at the entry facet
    normals = FACE_NORMALS[faces]
    cos_i = -dot_rows(d, normals)
    reflected = rng.random(n) < fresnel_reflectance(cos_i, 1.0, n_ice)

    exit_dirs = np.zeros((n, 3))
    exited = reflected.copy()
    interactions = np.ones(n, dtype=np.int64)
    exit_dirs[reflected] = reflect(d[reflected], normals[reflected])

    entering = ~reflected
    d[entering] = refract(d[entering], normals[entering], 1.0 / n_ice[entering])[0]

    inside = entering
    for _ in range(1, max_interactions):
        idx = np.nonzero(inside)[0]
        if idx.size == 0:
            break

        di = d[idx]
        t, hit = next_face(p[idx], di, ca[idx])
        p[idx] = p[idx] + t[:, None] * di
        normals = FACE_NORMALS[hit]
        n1 = n_ice[idx]

        reflect_mask = rng.random(idx.size) < fresnel_reflectance(dot_rows(di, normals), n1, 1.0)
        interactions[idx] += 1

        stay = idx[reflect_mask]
        d[stay] = reflect(di[reflect_mask], normals[reflect_mask])

        leave = idx[~reflect_mask]
        out = ~reflect_mask
        exit_dirs[leave] = refract(di[out], -normals[out], n1[out])[0]
        exited[leave] = True
        inside[leave] = False

    dropped = int(inside.sum())
    if dropped:
        logger.debug("Dropped %d rays still inside after %d facet events", dropped, max_interactions)

    directions = np.einsum("nij,nj->ni", to_world[exited], exit_dirs[exited])
    return TraceResult(
        directions=directions,
        wavelengths=wavelengths[exited],
        weights=np.ones(int(exited.sum())),
        populations=populations[exited],
        interactions=interactions[exited],
    )


def bin_rays(result: TraceResult, camera, width: int, height: int) -> np.ndarray:
    """Project traced rays through the camera and sum their XYZ energy per pixel."""
    # A ray is seen arriving from -direction
    xs, ys, inside = camera.project(-result.directions, width, height)
    energy = cie_xyz(result.wavelengths[inside]) * result.weights[inside][:, None]
    flat = xs[inside] * height + ys[inside]

    image = np.empty((width, height, 3))
    for channel in range(3):
        image[:, :, channel] = np.bincount(
            flat, weights=energy[:, channel], minlength=width * height
        ).reshape(width, height)
    return image


class CpuBatchTracer(BatchTracer):
    name = "cpu"

    def __init__(self, seed: Optional[int] = None):
        super().__init__(seed)
        self.rng = default_rng(seed)

    def allocate(self, width: int, height: int, max_batch: int) -> HostAccumulationBuffer:
        self.width = width
        self.height = height
        self.max_batch = max_batch
        logger.info("CPU tracer ready: %dx%d image, batches of up to %d rays", width, height, max_batch)
        return HostAccumulationBuffer(width, height)

    def trace_batch(self, ray_count: int, repository, light_source, camera) -> np.ndarray:
        partial = np.zeros((self.width, self.height, 3))
        for size in self.chunks(ray_count):
            result = trace_rays(self.rng, size, repository, light_source)
            partial += bin_rays(result, camera, self.width, self.height)
        return partial
