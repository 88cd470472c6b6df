"""
CPU silhouette extraction from rendered depth and normal buffers.

A pixel is marked as silhouette when the cross-difference gradient of depth
or of the normal vectors around it exceeds a threshold. This is a cheap edge
detector over buffers the renderer already produced, not a geometric
silhouette.
"""

import logging

import numpy as np

log = logging.getLogger(__name__)

SILHOUETTE_VALUE = 255


def _as_grid(buffer, width: int, height: int, channels: int, name: str) -> np.ndarray:
    arr = np.asarray(buffer, dtype=np.float32)
    expected = width * height * channels
    if arr.size != expected:
        raise ValueError(
            f"{name} buffer has {arr.size} values, expected {expected} "
            f"({width}x{height}x{channels})"
        )
    if channels == 1:
        return arr.reshape(height, width)
    return arr.reshape(height, width, channels)


def generate_silhouette(
    depth,
    normals,
    width: int,
    height: int,
    depth_threshold: float = 0.01,
    normal_threshold: float = 0.1,
) -> np.ndarray:
    """
    Build a binary silhouette mask (0 = background, 255 = silhouette).

    depth:   width*height scalars, any shape that flattens row-major.
    normals: width*height RGB triples.

    The 1-pixel border is never evaluated and stays 0. Returns a
    (height, width) uint8 array.
    """
    d = _as_grid(depth, width, height, 1, "depth")
    n = _as_grid(normals, width, height, 3, "normal")

    mask = np.zeros((height, width), dtype=np.uint8)
    if width < 3 or height < 3:
        return mask

    # Neighbours of every interior pixel (rows are y, columns are x)
    d_left, d_right = d[1:-1, :-2], d[1:-1, 2:]
    d_top, d_bottom = d[2:, 1:-1], d[:-2, 1:-1]
    grad_d = np.abs(d_left - d_right) + np.abs(d_top - d_bottom)

    n_left, n_right = n[1:-1, :-2], n[1:-1, 2:]
    n_top, n_bottom = n[2:, 1:-1], n[:-2, 1:-1]
    grad_n = (
        np.linalg.norm(n_left - n_right, axis=-1)
        + np.linalg.norm(n_top - n_bottom, axis=-1)
    )

    edges = (grad_d > depth_threshold) | (grad_n > normal_threshold)
    mask[1:-1, 1:-1][edges] = SILHOUETTE_VALUE
    return mask


def linearize_depth(d, z_near: float, z_far: float):
    """Convert [0,1] window depth to view-space distance (scalar or array)."""
    ndc = np.asarray(d, dtype=np.float64) * 2.0 - 1.0
    linear = (2.0 * z_near * z_far) / (z_far + z_near - ndc * (z_far - z_near))
    return float(linear) if np.ndim(linear) == 0 else linear
