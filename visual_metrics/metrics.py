"""
Image-space fidelity metrics between a reference and a candidate render.

Three error measures, one per measurement phase:

  1. COLOR FIDELITY:  MSE over all channel samples of two 8-bit RGB buffers
     (normalized to [0,1]) and the PSNR derived from it.
     PSNR = 10 · log10(1 / MSE); identical images get PSNR_IDENTICAL.
  2. NORMAL FIDELITY: MSE over all components of two float normal buffers
     already encoded in a common range ([0,1] from the renderer).
  3. SILHOUETTE FIDELITY: MSE between two binary masks, each pixel
     quantized to 0/1 by thresholding at zero.

A buffer pair whose sizes differ is a per-view failure, not a fatal one:
the functions log a warning and return the zero sentinel so the session
can move on to the next view.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np

log = logging.getLogger(__name__)

MSE_FLOOR = 1e-10
PSNR_IDENTICAL = 99.99


@dataclass
class MetricResult:
    """Scalar error of one view in one phase."""
    phase: str
    view_index: int
    scalar_error: float


def _sizes_match(a: np.ndarray, b: np.ndarray, what: str) -> bool:
    if a.size != b.size:
        log.warning(f"  [Metric] {what} sizes do not match ({a.size} vs {b.size})")
        return False
    if a.size == 0:
        log.warning(f"  [Metric] {what} buffers are empty")
        return False
    return True


def compute_psnr(img_a, img_b) -> Tuple[float, float]:
    """
    Compute (MSE, PSNR) between two 8-bit colour buffers.

    MSE below MSE_FLOOR returns (0.0, PSNR_IDENTICAL). Mismatched sizes
    return (0.0, 0.0).
    """
    a = np.asarray(img_a)
    b = np.asarray(img_b)
    if not _sizes_match(a, b, "Image"):
        return 0.0, 0.0

    diff = a.astype(np.float64).ravel() / 255.0 - b.astype(np.float64).ravel() / 255.0
    mse = float(np.mean(diff * diff))

    if mse < MSE_FLOOR:
        return 0.0, PSNR_IDENTICAL

    psnr = 10.0 * np.log10(1.0 / mse)
    return mse, float(psnr)


def compute_normal_error(normals_a, normals_b) -> float:
    """MSE over all components of two normal buffers. No clamping is applied."""
    a = np.asarray(normals_a, dtype=np.float64).ravel()
    b = np.asarray(normals_b, dtype=np.float64).ravel()
    if not _sizes_match(a, b, "Normal map"):
        return 0.0

    diff = a - b
    return float(np.mean(diff * diff))


def compute_silhouette_error(mask_a, mask_b) -> float:
    """MSE between two masks after quantizing every value > 0 to 1."""
    a = np.asarray(mask_a).ravel()
    b = np.asarray(mask_b).ravel()
    if not _sizes_match(a, b, "Silhouette"):
        return 0.0

    # Squared difference of 0/1 values is just the disagreement indicator
    return float(np.mean((a > 0) != (b > 0)))
