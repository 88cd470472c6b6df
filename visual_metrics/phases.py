"""
Measurement phases and their transition table.

Everything that differs between phases (which buffers to read back, where
outputs go, which metric runs, what comes next) lives in PHASE_TABLE so
the session never branches on the phase itself.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Mapping, Tuple

import numpy as np

from visual_metrics.heatmap import HeatmapMode, generate_heatmap, mask_to_rgb, normals_to_rgb
from visual_metrics.metrics import compute_normal_error, compute_psnr, compute_silhouette_error
from visual_metrics.silhouette import generate_silhouette


class Phase(str, Enum):
    COLOR_FIDELITY = "color_fidelity"
    SILHOUETTE = "silhouette"
    NORMAL_FIDELITY = "normal_fidelity"
    FINISHED = "finished"


class BufferKind(str, Enum):
    COLOR = "color"
    NORMAL = "normal"
    DEPTH = "depth"


@dataclass(frozen=True)
class MeasureContext:
    width: int
    height: int
    depth_threshold: float
    normal_threshold: float


@dataclass
class Measurement:
    """Outcome of comparing one reference/candidate pair."""
    scalar_error: float
    table_value: float          # value for the consolidated per-metric table
    reference_rgb: np.ndarray   # (H, W, 3) uint8, bottom row first
    candidate_rgb: np.ndarray
    heatmap: np.ndarray         # (H, W, 4) uint8


Buffers = Mapping[BufferKind, np.ndarray]
MeasureFn = Callable[[Buffers, Buffers, MeasureContext], Measurement]


@dataclass(frozen=True)
class PhaseSpec:
    phase: Phase
    label: str
    buffers: Tuple[BufferKind, ...]
    output_subdir: str
    table: str
    measure: MeasureFn
    next_phase: Phase


# ──────────────────────────────────────────────────────────────────────────────
# Per-phase measurement
# ──────────────────────────────────────────────────────────────────────────────

def measure_color(ref: Buffers, opt: Buffers, ctx: MeasureContext) -> Measurement:
    ref_rgb, opt_rgb = ref[BufferKind.COLOR], opt[BufferKind.COLOR]
    mse, psnr = compute_psnr(ref_rgb, opt_rgb)
    heatmap = generate_heatmap(ref_rgb, opt_rgb, ctx.width, ctx.height, HeatmapMode.COLOR)
    shape = (ctx.height, ctx.width, 3)
    return Measurement(
        scalar_error=mse,
        table_value=psnr,
        reference_rgb=np.asarray(ref_rgb, dtype=np.uint8).reshape(shape),
        candidate_rgb=np.asarray(opt_rgb, dtype=np.uint8).reshape(shape),
        heatmap=heatmap,
    )


def measure_silhouette(ref: Buffers, opt: Buffers, ctx: MeasureContext) -> Measurement:
    masks = [
        generate_silhouette(
            b[BufferKind.DEPTH], b[BufferKind.NORMAL], ctx.width, ctx.height,
            ctx.depth_threshold, ctx.normal_threshold,
        )
        for b in (ref, opt)
    ]
    error = compute_silhouette_error(*masks)
    heatmap = generate_heatmap(masks[0], masks[1], ctx.width, ctx.height, HeatmapMode.SILHOUETTE)
    return Measurement(
        scalar_error=error,
        table_value=error,
        reference_rgb=mask_to_rgb(masks[0], ctx.width, ctx.height),
        candidate_rgb=mask_to_rgb(masks[1], ctx.width, ctx.height),
        heatmap=heatmap,
    )


def measure_normal(ref: Buffers, opt: Buffers, ctx: MeasureContext) -> Measurement:
    ref_n, opt_n = ref[BufferKind.NORMAL], opt[BufferKind.NORMAL]
    error = compute_normal_error(ref_n, opt_n)
    heatmap = generate_heatmap(ref_n, opt_n, ctx.width, ctx.height, HeatmapMode.NORMAL)
    return Measurement(
        scalar_error=error,
        table_value=error,
        reference_rgb=normals_to_rgb(ref_n, ctx.width, ctx.height),
        candidate_rgb=normals_to_rgb(opt_n, ctx.width, ctx.height),
        heatmap=heatmap,
    )


FIRST_PHASE = Phase.COLOR_FIDELITY

PHASE_TABLE: Dict[Phase, PhaseSpec] = {
    Phase.COLOR_FIDELITY: PhaseSpec(
        phase=Phase.COLOR_FIDELITY,
        label="Color Error (MSE)",
        buffers=(BufferKind.COLOR,),
        output_subdir="psnr",
        table="PSNR",
        measure=measure_color,
        next_phase=Phase.SILHOUETTE,
    ),
    Phase.SILHOUETTE: PhaseSpec(
        phase=Phase.SILHOUETTE,
        label="Silhouette Error (MSE)",
        buffers=(BufferKind.DEPTH, BufferKind.NORMAL),
        output_subdir="silhouette",
        table="Silhouette",
        measure=measure_silhouette,
        next_phase=Phase.NORMAL_FIDELITY,
    ),
    Phase.NORMAL_FIDELITY: PhaseSpec(
        phase=Phase.NORMAL_FIDELITY,
        label="Normal Error (MSE)",
        buffers=(BufferKind.NORMAL,),
        output_subdir="normal",
        table="Normal",
        measure=measure_normal,
        next_phase=Phase.FINISHED,
    ),
}
