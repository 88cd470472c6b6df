"""
Asset and environment loading.

Meshes are loaded with trimesh and normalized the same way for every
variant: bounding-box centre moved to the origin and the largest extent
scaled to 2, so the asset fits in [-1, 1] and the camera sampler's
unit-radius framing holds. The cache is an ordinary object owned by the
caller; there is no process-wide instance.
"""

import os
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

log = logging.getLogger(__name__)

MODEL_EXTENSIONS = (".gltf", ".glb", ".obj", ".ply", ".stl", ".off")
HDR_EXTENSIONS = (".hdr",)
LDR_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff")


class AssetError(RuntimeError):
    """An asset or environment resource is missing or unreadable."""


def load_mesh(path: str):
    """
    Load a mesh file with trimesh, merge scene geometry and normalize it.

    Raises AssetError if the file is missing, unreadable or has no faces.
    """
    import trimesh

    if not os.path.isfile(path):
        raise AssetError(f"Asset not found: {path}")

    try:
        mesh = trimesh.load(path, force="mesh", process=True)
    except Exception as e:
        raise AssetError(f"Failed to load asset {path}: {e}") from e

    # Handle Scene objects (multiple meshes in one file)
    if isinstance(mesh, trimesh.Scene):
        meshes = [g for g in mesh.geometry.values() if isinstance(g, trimesh.Trimesh)]
        if not meshes:
            raise AssetError(f"No valid geometry in {path}")
        mesh = trimesh.util.concatenate(meshes)

    if not isinstance(mesh, trimesh.Trimesh):
        raise AssetError(f"Loaded object is not a Trimesh: {type(mesh)}")

    if mesh.vertices.shape[0] < 3 or mesh.faces.shape[0] < 1:
        raise AssetError(f"Degenerate mesh in {path} (verts={mesh.vertices.shape[0]})")

    # ── Normalize into [-1, 1] ───────────────────────────────────────────
    lo, hi = mesh.bounds
    center = (lo + hi) / 2.0
    extent = float(np.max(hi - lo))
    scale = 2.0 / extent if extent > 1e-8 else 1.0
    mesh.apply_translation(-center)
    mesh.apply_scale(scale)

    log.debug(f"  Normalized {path}: center={np.round(center, 4)} scale={scale:.4f}")
    return mesh


class AssetCache:
    """Meshes keyed by resolved path. Pass one instance to every session that should share it."""

    def __init__(self):
        self._meshes: Dict[str, object] = {}

    @staticmethod
    def _key(path: str) -> str:
        return str(Path(path).resolve())

    def load(self, path: str):
        key = self._key(path)
        if key in self._meshes:
            log.debug(f"  [Cache] hit {path}")
            return self._meshes[key]

        log.info(f"  [Res] Loading model: {path}")
        mesh = load_mesh(path)
        self._meshes[key] = mesh
        return mesh

    def clear(self):
        self._meshes.clear()

    def __contains__(self, path: str) -> bool:
        return self._key(path) in self._meshes

    def __len__(self) -> int:
        return len(self._meshes)


def hdr_to_display(data) -> np.ndarray:
    """
    Bring float radiance into the renderer's 8-bit range.

    Values are scaled down by the peak when it exceeds 1.0 (so the brightest
    texel maps to white) and negatives are clipped. Grey-scale maps are
    expanded to RGB and alpha is dropped.
    """
    arr = np.asarray(data, dtype=np.float32)
    if arr.ndim == 2:
        arr = np.stack([arr, arr, arr], axis=-1)
    if arr.ndim != 3 or arr.shape[2] < 3:
        raise ValueError(f"environment map has unexpected shape {arr.shape}")
    arr = np.nan_to_num(arr[..., :3], nan=0.0, posinf=0.0, neginf=0.0)
    peak = float(arr.max()) if arr.size else 0.0
    if peak > 1.0:
        arr = arr / peak
    return (np.clip(arr, 0.0, 1.0) * 255.0).astype(np.uint8)


def _load_hdr(path: str) -> np.ndarray:
    import imageio.v2 as imageio

    try:
        data = imageio.imread(path, format="HDR-FI")
    except Exception as e:
        raise AssetError(f"Unreadable HDR environment {path}: {e}") from e
    try:
        return hdr_to_display(data)
    except ValueError as e:
        raise AssetError(f"Unusable HDR environment {path}: {e}") from e


def load_environment(path: str) -> np.ndarray:
    """
    Read an equirectangular environment image as (H, W, 3) uint8, top row first.

    Radiance .hdr maps are decoded with imageio's FreeImage plugin and
    tone-mapped by hdr_to_display; everything else goes through Pillow.
    """
    if not os.path.isfile(path):
        raise AssetError(f"Environment image not found: {path}")

    if Path(path).suffix.lower() in HDR_EXTENSIONS:
        return _load_hdr(path)

    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("RGB"), dtype=np.uint8)
    except (OSError, UnidentifiedImageError) as e:
        raise AssetError(f"Unreadable environment image {path}: {e}") from e


def find_first_file_by_ext(folder: str, extensions: Iterable[str]) -> Optional[str]:
    """First file (sorted, recursive) under folder whose lowercase suffix is in extensions."""
    root = Path(folder)
    if not root.is_dir():
        return None
    wanted = {e.lower() for e in extensions}
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        if path.suffix.lower() in wanted:
            return str(path)
    return None


def find_first_model_file(folder: str) -> Optional[str]:
    """First model file directly inside folder, or None."""
    root = Path(folder)
    if not root.is_dir():
        return None
    for path in sorted(root.iterdir()):
        if path.is_file() and path.suffix.lower() in MODEL_EXTENSIONS:
            return str(path)
    return None
