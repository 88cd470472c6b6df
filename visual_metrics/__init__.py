"""
=================================================================================
 VISUAL METRICS: REFERENCE vs CANDIDATE ASSET FIDELITY
=================================================================================

 PURPOSE:
   Render two variants of the same 3D asset (a "reference" and a "candidate",
   e.g. an original and its optimized/compressed version) from a common set of
   viewpoints and measure, view by view, how far the candidate drifts from the
   reference. Produces per-view screenshots with colour-coded error maps and
   CSV tables of the errors.

 PIPELINE (per asset pair):
   1. Load both meshes, normalized into [-1, 1]
   2. Sample camera poses on a Fibonacci lattice over the upper hemisphere
   3. Phase COLOR_FIDELITY:  shaded colour, MSE + PSNR per view
   4. Phase SILHOUETTE:      depth/normal edge masks, mask MSE per view
   5. Phase NORMAL_FIDELITY: encoded normal maps, MSE per view
   6. Log the phase averages; write screenshots, tables and a JSON report

 OUTPUT LAYOUT:
   <output>/metrics_{psnr,silhouette,normal}.csv     ModelName,ViewIndex,ErrorValue
   <output>/<asset>/{psnr,silhouette,normal}/view_<N>.png
   <output>/<asset>/{psnr,silhouette,normal}/metrics.csv   Model,View,Error
   <output>/eval_results.json

 USAGE:
   python eval_visual_metrics.py [--config configs/default.yaml] [--views 64]

 DEPENDENCIES:
   pip install numpy Pillow imageio trimesh pydantic pydantic-settings PyYAML
   (.hdr environments need the FreeImage backend: imageio_download_bin freeimage)
=================================================================================
"""

from visual_metrics.config import AppConfig, load_config, parse_args, setup_logging
from visual_metrics.pipeline import evaluate_asset, run_pipeline
from visual_metrics.session import EvaluationPipeline

__all__ = [
    "AppConfig", "load_config", "parse_args", "setup_logging",
    "EvaluationPipeline", "evaluate_asset", "run_pipeline",
]
