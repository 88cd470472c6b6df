"""
Rendering backend interface and a numpy software rasterizer.

The session only talks to RenderBackend: draw a variant for a camera
sample, read back colour / normal / depth, present a heatmap. Buffers follow
the OpenGL read-back convention, bottom row first; flipping for image files
is the caller's job.
"""

import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np

from visual_metrics.phases import Phase
from visual_metrics.sampling import CameraSample, Z_NEAR

log = logging.getLogger(__name__)


class Variant(str, Enum):
    REFERENCE = "reference"
    CANDIDATE = "candidate"


@dataclass
class RenderTarget:
    """What a draw call produced. Opaque to the session; read through the backend."""
    variant: Variant
    view_index: int
    phase: Phase
    color: np.ndarray     # (H, W, 3) uint8
    normal: np.ndarray    # (H, W, 3) float32, [0,1]-encoded, 0 = empty
    depth: np.ndarray     # (H, W) float32, [0,1] window depth, 1 = empty


class RenderBackend(ABC):
    @abstractmethod
    def render_variant(self, view: CameraSample, variant: Variant, phase: Phase) -> RenderTarget:
        ...

    @abstractmethod
    def read_color_buffer(self, target: RenderTarget) -> np.ndarray:
        ...

    @abstractmethod
    def read_normal_buffer(self, target: RenderTarget) -> np.ndarray:
        ...

    @abstractmethod
    def read_depth_buffer(self, target: RenderTarget) -> np.ndarray:
        ...

    @abstractmethod
    def present_heatmap(self, heatmap: np.ndarray) -> None:
        ...


# ══════════════════════════════════════════════════════════════════════════════
# SOFTWARE RENDERER
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class _GBuffer:
    albedo_lit: np.ndarray   # (H, W, 3) float32, shaded colour before background
    normal: np.ndarray
    depth: np.ndarray
    coverage: np.ndarray     # (H, W) bool


def _mesh_arrays(mesh) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Vertices, faces, vertex normals and [0,1] vertex colours of a trimesh mesh."""
    visual = mesh.visual
    if hasattr(visual, "to_color"):
        visual = visual.to_color()
    colors = np.asarray(visual.vertex_colors, dtype=np.float32)[:, :3] / 255.0
    return (
        np.asarray(mesh.vertices, dtype=np.float64),
        np.asarray(mesh.faces, dtype=np.int64),
        np.asarray(mesh.vertex_normals, dtype=np.float32),
        colors,
    )


class SoftwareRenderer(RenderBackend):
    """
    Z-buffered triangle rasterizer over the reference and candidate meshes.

    Colour is two-sided Lambert shading under a headlight plus an ambient
    term (the environment's mean colour when one is given). In the colour
    phase, uncovered pixels show the environment; in other phases and
    without an environment they stay 0.
    """

    def __init__(
        self,
        width: int,
        height: int,
        reference_mesh,
        candidate_mesh,
        environment: Optional[np.ndarray] = None,
        exposure: float = 1.0,
        ambient: float = 0.2,
    ):
        self.width = width
        self.height = height
        self.exposure = exposure
        self.environment = environment
        self.meshes = {
            Variant.REFERENCE: _mesh_arrays(reference_mesh),
            Variant.CANDIDATE: _mesh_arrays(candidate_mesh),
        }
        if environment is not None:
            self.ambient = np.asarray(environment, dtype=np.float32).reshape(-1, 3).mean(axis=0) / 255.0
        else:
            self.ambient = np.full(3, ambient, dtype=np.float32)
        self.last_heatmap: Optional[np.ndarray] = None
        self.presented_frames = 0
        self._cache: Dict[Variant, Tuple[tuple, _GBuffer]] = {}

    # ── RenderBackend ─────────────────────────────────────────────────────

    def render_variant(self, view: CameraSample, variant: Variant, phase: Phase) -> RenderTarget:
        key = (view.index, view.position.tobytes())
        cached = self._cache.get(variant)
        if cached is not None and cached[0] == key:
            gbuf = cached[1]
        else:
            gbuf = self._rasterize(self.meshes[variant], view)
            self._cache[variant] = (key, gbuf)

        color = np.clip(gbuf.albedo_lit * self.exposure, 0.0, 1.0)
        if phase is Phase.COLOR_FIDELITY and self.environment is not None:
            background = self._environment_background(view)
            color = np.where(gbuf.coverage[..., None], color, background)

        return RenderTarget(
            variant=variant,
            view_index=view.index,
            phase=phase,
            color=(color * 255.0).astype(np.uint8),
            normal=gbuf.normal,
            depth=gbuf.depth,
        )

    def read_color_buffer(self, target: RenderTarget) -> np.ndarray:
        return target.color.copy()

    def read_normal_buffer(self, target: RenderTarget) -> np.ndarray:
        return target.normal.copy()

    def read_depth_buffer(self, target: RenderTarget) -> np.ndarray:
        return target.depth.copy()

    def present_heatmap(self, heatmap: np.ndarray) -> None:
        self.last_heatmap = heatmap
        self.presented_frames += 1

    # ── Rasterization ─────────────────────────────────────────────────────

    def _rasterize(self, arrays, view: CameraSample) -> _GBuffer:
        V, F, N, C = arrays
        W, H = self.width, self.height

        vh = np.concatenate([V, np.ones((V.shape[0], 1))], axis=1)
        clip = (view.proj_matrix @ view.view_matrix @ vh.T).T
        w = clip[:, 3]
        safe_w = np.where(w > 1e-8, w, 1e-8)
        ndc = clip[:, :3] / safe_w[:, None]
        X = (ndc[:, 0] * 0.5 + 0.5) * W
        Y = (ndc[:, 1] * 0.5 + 0.5) * H   # row 0 is the bottom row
        Z = ndc[:, 2] * 0.5 + 0.5
        inv_w = 1.0 / safe_w

        light = np.asarray(view.position, dtype=np.float32)
        light = light / np.linalg.norm(light)

        zbuf = np.ones((H, W), dtype=np.float64)
        normal = np.zeros((H, W, 3), dtype=np.float32)
        lit = np.zeros((H, W, 3), dtype=np.float32)
        coverage = np.zeros((H, W), dtype=bool)

        # Triangles crossing the near plane are dropped rather than clipped
        visible = np.all(w[F] > Z_NEAR, axis=1)

        for tri in F[visible]:
            i0, i1, i2 = int(tri[0]), int(tri[1]), int(tri[2])
            x0, x1, x2 = X[i0], X[i1], X[i2]
            y0, y1, y2 = Y[i0], Y[i1], Y[i2]

            xmin = max(int(math.floor(min(x0, x1, x2))), 0)
            xmax = min(int(math.ceil(max(x0, x1, x2))), W - 1)
            ymin = max(int(math.floor(min(y0, y1, y2))), 0)
            ymax = min(int(math.ceil(max(y0, y1, y2))), H - 1)
            if xmin > xmax or ymin > ymax:
                continue

            area = (x1 - x0) * (y2 - y0) - (x2 - x0) * (y1 - y0)
            if abs(area) <= 1e-12:
                continue

            px, py = np.meshgrid(
                np.arange(xmin, xmax + 1) + 0.5,
                np.arange(ymin, ymax + 1) + 0.5,
            )
            b0 = ((x1 - px) * (y2 - py) - (x2 - px) * (y1 - py)) / area
            b1 = ((x2 - px) * (y0 - py) - (x0 - px) * (y2 - py)) / area
            b2 = 1.0 - b0 - b1
            inside = (b0 >= 0) & (b1 >= 0) & (b2 >= 0)
            if not inside.any():
                continue

            z = b0 * Z[i0] + b1 * Z[i1] + b2 * Z[i2]
            region = zbuf[ymin:ymax + 1, xmin:xmax + 1]
            closer = inside & (z < region) & (z >= 0.0)
            if not closer.any():
                continue
            region[closer] = z[closer]

            # Perspective-correct attribute weights
            p0, p1, p2 = b0 * inv_w[i0], b1 * inv_w[i1], b2 * inv_w[i2]
            s = p0 + p1 + p2
            p0, p1, p2 = (p0 / s)[closer], (p1 / s)[closer], (p2 / s)[closer]

            n = p0[:, None] * N[i0] + p1[:, None] * N[i1] + p2[:, None] * N[i2]
            n = n / np.maximum(np.linalg.norm(n, axis=1, keepdims=True), 1e-8)
            albedo = p0[:, None] * C[i0] + p1[:, None] * C[i1] + p2[:, None] * C[i2]
            diffuse = np.abs(n @ light)[:, None]

            ys, xs = np.nonzero(closer)
            ys, xs = ys + ymin, xs + xmin
            normal[ys, xs] = n * 0.5 + 0.5
            lit[ys, xs] = albedo * (self.ambient + diffuse)
            coverage[ys, xs] = True

        return _GBuffer(
            albedo_lit=lit,
            normal=normal,
            depth=zbuf.astype(np.float32),
            coverage=coverage,
        )

    def _environment_background(self, view: CameraSample) -> np.ndarray:
        """Equirectangular lookup of the world direction through every pixel centre."""
        W, H = self.width, self.height
        x_ndc = (np.arange(W) + 0.5) / W * 2.0 - 1.0
        y_ndc = (np.arange(H) + 0.5) / H * 2.0 - 1.0
        gx, gy = np.meshgrid(x_ndc, y_ndc)

        P = view.proj_matrix
        eye_dirs = np.stack([gx / P[0, 0], gy / P[1, 1], -np.ones_like(gx)], axis=-1)
        world = eye_dirs @ view.view_matrix[:3, :3]   # rotate by R^T
        world = world / np.linalg.norm(world, axis=-1, keepdims=True)

        env = self.environment
        eh, ew = env.shape[:2]
        u = 0.5 + np.arctan2(world[..., 2], world[..., 0]) / (2.0 * np.pi)
        v = np.arccos(np.clip(world[..., 1], -1.0, 1.0)) / np.pi
        cols = np.clip((u * (ew - 1)).astype(np.int64), 0, ew - 1)
        rows = np.clip((v * (eh - 1)).astype(np.int64), 0, eh - 1)
        return env[rows, cols].astype(np.float32) / 255.0
