"""
Per-pixel error heatmaps and the comparison composite.

The colormap is a hand-authored warm-centre ramp:
  R = smoothstep(0.5, 0.8, v)   (rises late)
  G = sin(π v)                  (bump peaking at 0.5)
  B = smoothstep(0.5, 0.2, v)   (falls early)
so 0 reads blue, 0.5 green and 1 red.
"""

import logging
from enum import IntEnum

import numpy as np

log = logging.getLogger(__name__)

COLOR_GAIN = 5.0
NORMAL_GAIN = 2.0

LEGEND_WIDTH = 20
LEGEND_HEIGHT = 300
LEGEND_MARGIN = 30


class HeatmapMode(IntEnum):
    COLOR = 0
    NORMAL = 1
    SILHOUETTE = 2


def smoothstep(edge0: float, edge1: float, x):
    t = np.clip((np.asarray(x, dtype=np.float32) - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def value_to_color(values) -> np.ndarray:
    """Map scalar(s) in [0,1] (clamped) to uint8 RGB, shape (..., 3)."""
    v = np.clip(np.asarray(values, dtype=np.float32), 0.0, 1.0)
    r = smoothstep(0.5, 0.8, v)
    g = np.sin(v * np.float32(np.pi))
    b = smoothstep(0.5, 0.2, v)
    rgb = np.clip(np.stack([r, g, b], axis=-1), 0.0, 1.0)
    # Truncate like an unsigned byte cast
    return (rgb * 255.0).astype(np.uint8)


def _pixels(buffer, width: int, height: int, dtype, name: str) -> np.ndarray:
    """Reshape a buffer to (width*height, C). Single-channel masks become C=1."""
    arr = np.asarray(buffer, dtype=dtype)
    n = width * height
    if arr.size == n:
        return arr.reshape(n, 1)
    if arr.size == n * 3:
        return arr.reshape(n, 3)
    if arr.size == n * 4:
        return arr.reshape(n, 4)[:, :3]
    raise ValueError(f"{name} buffer has {arr.size} values, not a {width}x{height} image")


def generate_heatmap(reference, candidate, width: int, height: int, mode: HeatmapMode) -> np.ndarray:
    """
    Build an RGBA heatmap, shape (height, width, 4), uint8.

    COLOR      expects 8-bit RGB buffers; error = |ΔRGB| (in [0,1] units) × 5.
    NORMAL     expects float normals encoded in [0,1]; error = (1 − n_a·n_b) × 2
               after decoding to [-1,1].
    SILHOUETTE expects 8-bit masks (1 or 3 channels); error = |Δ first channel|.

    Pixels where either sample is the all-zero "empty" value are opaque black.
    """
    mode = HeatmapMode(mode)
    if mode is HeatmapMode.NORMAL:
        ref = _pixels(reference, width, height, np.float32, "reference")
        opt = _pixels(candidate, width, height, np.float32, "candidate")
    else:
        ref = _pixels(reference, width, height, np.float32, "reference") / 255.0
        opt = _pixels(candidate, width, height, np.float32, "candidate") / 255.0

    background = np.all(ref == 0.0, axis=1) | np.all(opt == 0.0, axis=1)

    if mode is HeatmapMode.COLOR:
        diff = np.linalg.norm(ref - opt, axis=1) * COLOR_GAIN
    elif mode is HeatmapMode.NORMAL:
        dot = np.sum((ref * 2.0 - 1.0) * (opt * 2.0 - 1.0), axis=1)
        diff = (1.0 - dot) * NORMAL_GAIN
    else:
        diff = np.abs(ref[:, 0] - opt[:, 0])

    heatmap = np.empty((width * height, 4), dtype=np.uint8)
    heatmap[:, :3] = value_to_color(diff)
    heatmap[:, 3] = 255
    heatmap[background, :3] = 0
    return heatmap.reshape(height, width, 4)


# ──────────────────────────────────────────────────────────────────────────────
# Display helpers
# ──────────────────────────────────────────────────────────────────────────────

def mask_to_rgb(mask, width: int, height: int) -> np.ndarray:
    """Expand a single-channel mask to white-on-black RGB (height, width, 3)."""
    m = np.asarray(mask, dtype=np.uint8).reshape(height, width)
    return np.repeat(m[:, :, None], 3, axis=2)


def normals_to_rgb(normals, width: int, height: int) -> np.ndarray:
    """[0,1]-encoded float normals to displayable 8-bit RGB."""
    n = np.asarray(normals, dtype=np.float32).reshape(height, width, 3)
    return (np.clip(n, 0.0, 1.0) * 255.0).astype(np.uint8)


def render_legend(height: int = LEGEND_HEIGHT, width: int = LEGEND_WIDTH) -> np.ndarray:
    """Vertical colormap bar, value 0 in the bottom row (bottom-left origin)."""
    values = np.linspace(0.0, 1.0, height, dtype=np.float32)
    column = value_to_color(values)
    return np.repeat(column[:, None, :], width, axis=1)


def compose_comparison(reference_rgb, candidate_rgb, heatmap_rgba) -> np.ndarray:
    """
    Lay out reference | candidate | heatmap side by side with the legend bar
    over the right edge of the heatmap panel.

    Inputs and output use bottom-left-origin rows, like the buffers read back
    from the renderer. Output is (height, 3*width, 3) uint8.
    """
    ref = np.asarray(reference_rgb, dtype=np.uint8)
    opt = np.asarray(candidate_rgb, dtype=np.uint8)
    heat = np.asarray(heatmap_rgba, dtype=np.uint8)[..., :3]
    height, width = ref.shape[:2]

    canvas = np.concatenate([ref[..., :3], opt[..., :3], heat], axis=1).copy()

    legend_h = min(LEGEND_HEIGHT, height)
    legend_x = canvas.shape[1] - LEGEND_WIDTH - LEGEND_MARGIN
    if legend_x >= 2 * width:
        legend_y = (height - legend_h) // 2
        canvas[legend_y:legend_y + legend_h, legend_x:legend_x + LEGEND_WIDTH] = render_legend(legend_h)
    return canvas
