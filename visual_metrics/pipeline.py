"""
Batch orchestrator: pair reference/candidate assets and run one session each.

Assets are expected as
    <assets_root>/<ref_dir>/<name>/<model file>
    <assets_root>/<opt_dir>/<name>/<model file>
with an optional environment map under <assets_root>/<hdr_dir>/ (a .hdr map is
preferred over LDR images).
"""

import os
import time
import logging
from typing import List, Optional, Tuple

import numpy as np

from visual_metrics.assets import (
    HDR_EXTENSIONS, LDR_EXTENSIONS, AssetCache, AssetError,
    find_first_file_by_ext, find_first_model_file, load_environment,
)
from visual_metrics.config import AppConfig
from visual_metrics.rendering import SoftwareRenderer
from visual_metrics.results import ResultWriter, print_results_table, save_results_json
from visual_metrics.session import EvaluationPipeline

log = logging.getLogger(__name__)


def find_asset_pairs(config: AppConfig) -> List[Tuple[str, str, str]]:
    """(name, reference file, candidate file) for every complete pair, sorted by name."""
    paths = config.paths
    ref_root = os.path.join(paths.assets_root, paths.ref_dir)
    opt_root = os.path.join(paths.assets_root, paths.opt_dir)

    if not os.path.isdir(ref_root):
        raise AssetError(f"Reference directory not found: {ref_root}")

    pairs = []
    for name in sorted(os.listdir(ref_root)):
        ref_dir = os.path.join(ref_root, name)
        if not os.path.isdir(ref_dir):
            continue
        ref_file = find_first_model_file(ref_dir)
        opt_file = find_first_model_file(os.path.join(opt_root, name))
        if ref_file is None or opt_file is None:
            log.warning(f"[Skip] {name} - incomplete files.")
            continue
        pairs.append((name, ref_file, opt_file))
    return pairs


def load_scene_environment(config: AppConfig) -> Optional[np.ndarray]:
    if not config.render.use_environment:
        return None
    env_dir = os.path.join(config.paths.assets_root, config.paths.hdr_dir)
    env_path = (
        find_first_file_by_ext(env_dir, HDR_EXTENSIONS)
        or find_first_file_by_ext(env_dir, LDR_EXTENSIONS)
    )
    if env_path is None:
        log.info("  No environment image found; colour phase uses a black background.")
        return None
    log.info(f"  Environment: {env_path}")
    return load_environment(env_path)


def evaluate_asset(
    name: str,
    ref_path: str,
    opt_path: str,
    config: AppConfig,
    writer: ResultWriter,
    cache: AssetCache,
    environment: Optional[np.ndarray] = None,
) -> EvaluationPipeline:
    """
    Load both variants (fatal on failure), then drive a session to FINISHED.

    Ticks are issued back to back; between views the loop sleeps out the
    remaining dwell time instead of spinning.
    """
    reference = cache.load(ref_path)
    candidate = cache.load(opt_path)

    renderer = SoftwareRenderer(
        config.render.width,
        config.render.height,
        reference,
        candidate,
        environment=environment,
        exposure=config.render.exposure,
    )
    session = EvaluationPipeline(config, renderer, writer, name)
    session.start()

    while not session.finished:
        session.tick()
        wait = session.time_until_advance()
        if wait > 0:
            time.sleep(wait)

    return session


def run_pipeline(config: AppConfig):
    """Evaluate every reference/candidate pair under the configured assets root."""
    log.info("=" * 60)
    log.info("  VISUAL METRICS: REFERENCE vs CANDIDATE EVALUATION")
    log.info("=" * 60)
    log.info(f"  Assets:     {config.paths.assets_root}")
    log.info(f"  Output:     {config.paths.output_root}")
    log.info(f"  Views:      {config.sampling.view_count} (radius {config.sampling.radius})")
    log.info(f"  Resolution: {config.render.width}x{config.render.height}")
    log.info("=" * 60)

    writer = ResultWriter(config.paths.output_root)
    writer.init_report_tables()

    pairs = find_asset_pairs(config)
    if not pairs:
        log.error("No complete reference/candidate pairs found. Nothing to do.")
        return writer.summaries

    environment = load_scene_environment(config)
    cache = AssetCache()

    for idx, (name, ref_path, opt_path) in enumerate(pairs):
        log.info(f"\n{'─' * 60}")
        log.info(f">>> Processing {idx + 1}/{len(pairs)}: {name}")
        try:
            evaluate_asset(name, ref_path, opt_path, config, writer, cache, environment)
        except AssetError as e:
            log.error(f"  ✗ {name}: {e}")
            continue
        log.info(f">>> Done: {name}")

    print_results_table(writer.summaries)
    save_results_json(writer.summaries, config, config.paths.output_root)

    log.info("✅ Evaluation complete!")
    return writer.summaries
