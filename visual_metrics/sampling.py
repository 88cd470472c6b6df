"""
Camera viewpoint sampling on the upper hemisphere.

Views are placed on a golden-angle Fibonacci lattice, index 0 at the top
pole and the last index on the equator, so the sequence order is stable and
meaningful across runs. Every view looks at the origin and uses a projection
wide enough to frame an asset normalized to unit bounding radius.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

log = logging.getLogger(__name__)

GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))
FOV_MARGIN_DEG = 5.0
Z_NEAR = 0.1
Z_FAR = 100.0
MIN_JITTERED_Y = 0.01
POLE_COSINE = 0.99


@dataclass(frozen=True)
class CameraSample:
    """One camera pose. Matrices are column-vector convention (OpenGL)."""
    index: int
    position: np.ndarray
    view_matrix: np.ndarray
    proj_matrix: np.ndarray


def look_at(eye: np.ndarray, target: np.ndarray, up: np.ndarray) -> np.ndarray:
    f = target - eye
    f = f / np.linalg.norm(f)
    s = np.cross(f, up)
    s = s / np.linalg.norm(s)
    u = np.cross(s, f)

    m = np.eye(4, dtype=np.float64)
    m[0, :3] = s
    m[1, :3] = u
    m[2, :3] = -f
    m[0, 3] = -np.dot(s, eye)
    m[1, 3] = -np.dot(u, eye)
    m[2, 3] = np.dot(f, eye)
    return m


def perspective(fov_y_deg: float, aspect: float, z_near: float = Z_NEAR, z_far: float = Z_FAR) -> np.ndarray:
    f = 1.0 / math.tan(math.radians(fov_y_deg) / 2.0)
    m = np.zeros((4, 4), dtype=np.float64)
    m[0, 0] = f / aspect
    m[1, 1] = f
    m[2, 2] = (z_far + z_near) / (z_near - z_far)
    m[2, 3] = (2.0 * z_far * z_near) / (z_near - z_far)
    m[3, 2] = -1.0
    return m


def adaptive_fov(model_radius: float, camera_distance: float) -> float:
    """Full vertical FOV (degrees) that exactly encloses a sphere of model_radius."""
    if camera_distance <= model_radius:
        return 90.0
    return math.degrees(math.asin(model_radius / camera_distance)) * 2.0


def generate_samples(
    count: int,
    radius: float,
    aspect: float,
    jitter_strength: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> List[CameraSample]:
    """
    Generate `count` camera samples on the upper hemisphere of `radius`.

    With jitter_strength > 0, y and the azimuth are perturbed by uniform
    noise in [-jitter, jitter] (azimuth noise scaled by 2π) drawn from
    `rng`; pass a seeded generator for a reproducible sequence. Without
    one, a fresh unseeded generator is used.
    """
    if count < 2:
        raise ValueError(f"count must be at least 2, got {count}")

    if jitter_strength > 0 and rng is None:
        rng = np.random.default_rng()

    fov = adaptive_fov(1.0, radius) + FOV_MARGIN_DEG
    proj = perspective(fov, aspect)
    target = np.zeros(3)
    samples = []

    for i in range(count):
        y = 1.0 - i / (count - 1)
        theta = GOLDEN_ANGLE * i

        if jitter_strength > 0:
            y += rng.uniform(-jitter_strength, jitter_strength)
            theta += rng.uniform(-jitter_strength, jitter_strength) * 2.0 * math.pi
            y = min(max(y, MIN_JITTERED_Y), 1.0)

        radius_at_y = math.sqrt(max(0.0, 1.0 - y * y))
        point = np.array([math.cos(theta) * radius_at_y, y, math.sin(theta) * radius_at_y])
        position = point * radius

        # Near the pole the view direction is (anti)parallel to +Y, so the
        # look-at basis needs a different up axis.
        forward = (target - position) / np.linalg.norm(position)
        up = np.array([0.0, 1.0, 0.0])
        if abs(np.dot(forward, up)) > POLE_COSINE:
            up = np.array([0.0, 0.0, 1.0])

        position.setflags(write=False)
        view = look_at(position, target, up)
        view.setflags(write=False)
        samples.append(CameraSample(index=i, position=position, view_matrix=view, proj_matrix=proj))

    proj.setflags(write=False)
    log.debug(f"Generated {count} views (radius={radius}, fov={fov:.2f}°, jitter={jitter_strength})")
    return samples
