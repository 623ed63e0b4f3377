# halosim/renderer/cuda_kernels.py
from numba import cuda, float32
import math
from numba.cuda.random import xoroshiro128p_uniform_float32, xoroshiro128p_normal_float32

from halosim.config import MIN_CA_RATIO, WAVELENGTH_MAX, WAVELENGTH_MIN
from halosim.renderer.crystal import BASAL_AREA, NUM_FACES, PRISM_SIDE
from halosim.renderer.cuda_utils import (
    EPSILON,
    cie_xyz,
    dot,
    face_area,
    face_normal,
    face_offset,
    fresnel_reflectance,
    ice_refractive_index,
    orientation_matrix,
    point_on_face,
    reflect,
    refract,
    rotate,
    rotate_transpose,
)

INFINITY = float32(1e20)
DEG2RAD = math.pi / 180.0
TWO_PI = 2.0 * math.pi


@cuda.jit
def trace_halo_kernel(ray_count, rng_states,
                      populations, cumulative_weights, total_weight,
                      sun_frame, sun_cos_max,
                      camera_basis, fov, width, height,
                      max_interactions, d_partial):
    """
    One thread per ray: pick a crystal, enter it, bounce until the ray
    leaves or the event cap is hit, then splat its XYZ energy into
    d_partial with atomic adds.

    sun_frame rows are (axis toward the sun, tangent, bitangent) and
    camera_basis rows are (forward, right, up).
    """
    tid = cuda.grid(1)
    if tid >= ray_count:
        return

    d = cuda.local.array(3, float32)
    d_world = cuda.local.array(3, float32)
    p = cuda.local.array(3, float32)
    n = cuda.local.array(3, float32)
    n_in = cuda.local.array(3, float32)
    xyz = cuda.local.array(3, float32)
    to_world = cuda.local.array((3, 3), float32)

    # --- Crystal population ---
    u = xoroshiro128p_uniform_float32(rng_states, tid) * total_weight
    pop = 0
    while pop < cumulative_weights.shape[0] - 1 and u >= cumulative_weights[pop]:
        pop += 1

    # --- Crystal, orientation and sunlight, kept in proportion to the
    # cross-section the crystal shows the sun ---
    ca = MIN_CA_RATIO
    total = 0.0
    accepted = False
    while not accepted:
        ca = populations[pop, 0] + populations[pop, 1] * xoroshiro128p_normal_float32(rng_states, tid)
        if ca < MIN_CA_RATIO:
            ca = MIN_CA_RATIO

        if populations[pop, 2] == 0:
            cos_polar = 2.0 * xoroshiro128p_uniform_float32(rng_states, tid) - 1.0
            sin_polar = math.sqrt(max(0.0, 1.0 - cos_polar * cos_polar))
        else:
            polar = (populations[pop, 3] + populations[pop, 4] * xoroshiro128p_normal_float32(rng_states, tid)) * DEG2RAD
            cos_polar = math.cos(polar)
            sin_polar = math.sin(polar)

        if populations[pop, 5] == 0:
            rotation = TWO_PI * xoroshiro128p_uniform_float32(rng_states, tid)
        else:
            rotation = (populations[pop, 6] + populations[pop, 7] * xoroshiro128p_normal_float32(rng_states, tid)) * DEG2RAD

        azimuth = TWO_PI * xoroshiro128p_uniform_float32(rng_states, tid)
        orientation_matrix(cos_polar, sin_polar, azimuth, rotation, to_world)

        # Sunlight, uniform over the disk's solid angle
        cos_a = 1.0 - xoroshiro128p_uniform_float32(rng_states, tid) * (1.0 - sun_cos_max)
        sin_a = math.sqrt(max(0.0, 1.0 - cos_a * cos_a))
        phi = TWO_PI * xoroshiro128p_uniform_float32(rng_states, tid)
        for i in range(3):
            d_world[i] = -(cos_a * sun_frame[0, i]
                           + sin_a * math.cos(phi) * sun_frame[1, i]
                           + sin_a * math.sin(phi) * sun_frame[2, i])
        rotate_transpose(to_world, d_world, d)

        total = 0.0
        for k in range(NUM_FACES):
            face_normal(k, n)
            facing = -dot(d, n)
            if facing > 0.0:
                total += face_area(k, ca) * facing

        half_surface = 6.0 * PRISM_SIDE * ca + BASAL_AREA
        accepted = xoroshiro128p_uniform_float32(rng_states, tid) * half_surface < total

    wavelength = WAVELENGTH_MIN + (WAVELENGTH_MAX - WAVELENGTH_MIN) * xoroshiro128p_uniform_float32(rng_states, tid)
    n_ice = ice_refractive_index(wavelength)

    # --- Entry facet, weighted by projected area ---
    target = xoroshiro128p_uniform_float32(rng_states, tid) * total
    acc = 0.0
    face = NUM_FACES - 1
    for k in range(NUM_FACES):
        face_normal(k, n)
        facing = -dot(d, n)
        if facing > 0.0:
            face = k
            acc += face_area(k, ca) * facing
            if acc > target:
                break

    point_on_face(face, ca,
                  xoroshiro128p_uniform_float32(rng_states, tid),
                  xoroshiro128p_uniform_float32(rng_states, tid),
                  xoroshiro128p_uniform_float32(rng_states, tid),
                  p)

    # --- External event ---
    face_normal(face, n)
    exited = False
    r_ext = fresnel_reflectance(-dot(d, n), 1.0, n_ice)
    if xoroshiro128p_uniform_float32(rng_states, tid) < r_ext:
        reflect(d, d, n)
        exited = True
    else:
        refract(d, n, 1.0 / n_ice, d)

    # --- Internal bounces ---
    events = 1
    while not exited and events < max_interactions:
        t_min = INFINITY
        hit = -1
        for k in range(NUM_FACES):
            face_normal(k, n)
            denom = dot(d, n)
            if denom > EPSILON:
                t = (face_offset(k, ca) - dot(p, n)) / denom
                if t < t_min:
                    t_min = t
                    hit = k
        if hit < 0:
            break
        if t_min < 0.0:
            t_min = 0.0
        for i in range(3):
            p[i] += t_min * d[i]

        face_normal(hit, n)
        r_int = fresnel_reflectance(dot(d, n), n_ice, 1.0)
        if xoroshiro128p_uniform_float32(rng_states, tid) < r_int:
            reflect(d, d, n)
        else:
            for i in range(3):
                n_in[i] = -n[i]
            refract(d, n_in, n_ice, d)
            exited = True
        events += 1

    if not exited:
        return

    # --- Camera projection, from the direction the ray arrives from ---
    rotate(to_world, d, d_world)
    for i in range(3):
        d_world[i] = -d_world[i]
    cz = min(max(d_world[0] * camera_basis[0, 0] + d_world[1] * camera_basis[0, 1] + d_world[2] * camera_basis[0, 2], -1.0), 1.0)
    cx = d_world[0] * camera_basis[1, 0] + d_world[1] * camera_basis[1, 1] + d_world[2] * camera_basis[1, 2]
    cy = d_world[0] * camera_basis[2, 0] + d_world[1] * camera_basis[2, 1] + d_world[2] * camera_basis[2, 2]

    rho = math.acos(cz)
    angle = math.atan2(cy, cx)
    radius = rho / fov * (height / 2.0)
    px = width / 2.0 + radius * math.cos(angle)
    py = height / 2.0 - radius * math.sin(angle)
    if px < 0.0 or px >= width or py < 0.0 or py >= height:
        return

    ix = int(px)
    iy = int(py)
    cie_xyz(wavelength, xyz)
    cuda.atomic.add(d_partial, (ix, iy, 0), xyz[0])
    cuda.atomic.add(d_partial, (ix, iy, 1), xyz[1])
    cuda.atomic.add(d_partial, (ix, iy, 2), xyz[2])


@cuda.jit
def clear_float_buffer(d_buffer, value):
    x, y = cuda.grid(2)
    if x < d_buffer.shape[0] and y < d_buffer.shape[1]:
        for c in range(d_buffer.shape[2]):
            d_buffer[x, y, c] = value


@cuda.jit
def add_float_buffer(d_target, d_source):
    x, y = cuda.grid(2)
    if x < d_target.shape[0] and y < d_target.shape[1]:
        for c in range(d_target.shape[2]):
            d_target[x, y, c] += d_source[x, y, c]


@cuda.jit
def deposit_kernel(d_buffer, xs, ys, energy, count):
    i = cuda.grid(1)
    if i < count:
        for c in range(3):
            cuda.atomic.add(d_buffer, (xs[i], ys[i], c), energy[i, c])
