"""
Configuration, YAML loading and CLI argument parsing for the evaluation pipeline.
"""

import os
import logging
import argparse
import textwrap
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s │ %(levelname)-7s │ %(message)s"
LOG_DATEFMT = "%H:%M:%S"


# ──────────────────────────────────────────────────────────────────────────────
# LOGGING SETUP
# ──────────────────────────────────────────────────────────────────────────────

def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure the shared logging format. Call once at startup."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        logging.getLogger().addHandler(handler)
        log.info(f"Logging to file: {path}")


# ──────────────────────────────────────────────────────────────────────────────
# CONFIGURATION — Edit these, override via YAML, env vars or CLI args
# ──────────────────────────────────────────────────────────────────────────────

class RenderConfig(BaseModel):
    width: int = 512
    """Render-target width. Metric precision depends on this, not on the
       composite/screenshot size (which is 3x wider)."""

    height: int = 512

    exposure: float = 1.0
    """Multiplier applied to shaded colour by the software renderer."""

    dwell_time: float = 0.1
    """Seconds the pipeline stays on one view before advancing."""

    use_environment: bool = True
    """Draw the environment image behind the asset in the colour phase."""

    @field_validator("width", "height")
    @classmethod
    def _positive_resolution(cls, v: int) -> int:
        if v < 3:
            raise ValueError("render resolution must be at least 3 pixels")
        return v

    @field_validator("dwell_time", "exposure")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be non-negative")
        return v


class SamplingConfig(BaseModel):
    view_count: int = 64
    """Number of Fibonacci-lattice camera samples on the upper hemisphere."""

    radius: float = 2.0
    """Camera sphere radius. Assets are normalized into [-1, 1]."""

    jitter_strength: float = 0.0
    """0.0 gives the regular, fully deterministic lattice."""

    seed: Optional[int] = None
    """Seed for the jitter generator. None draws fresh entropy each session."""

    @field_validator("view_count")
    @classmethod
    def _enough_views(cls, v: int) -> int:
        if v < 2:
            raise ValueError("view_count must be at least 2")
        return v

    @field_validator("radius")
    @classmethod
    def _positive_radius(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("radius must be positive")
        return v

    @field_validator("jitter_strength")
    @classmethod
    def _non_negative_jitter(cls, v: float) -> float:
        if v < 0:
            raise ValueError("jitter_strength must be non-negative")
        return v


class SilhouetteConfig(BaseModel):
    depth_threshold: float = 0.01
    normal_threshold: float = 0.1

    @field_validator("depth_threshold", "normal_threshold")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("thresholds must be non-negative")
        return v


class PathsConfig(BaseModel):
    assets_root: str = "assets"
    output_root: str = "output"

    # Relative to assets_root
    hdr_dir: str = "hdrtextures"
    ref_dir: str = "refmodel"
    opt_dir: str = "optmodel"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: Optional[str] = None


class AppConfig(BaseSettings):
    """Root configuration — aggregates all sub-configs."""

    render: RenderConfig = Field(default_factory=RenderConfig)
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    silhouette: SilhouetteConfig = Field(default_factory=SilhouetteConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "VISMETRICS_",
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    @property
    def aspect(self) -> float:
        return self.render.width / self.render.height

    @property
    def log_file(self) -> Optional[str]:
        if not self.logging.log_dir:
            return None
        return os.path.join(self.logging.log_dir, "visual_metrics.log")


# ──────────────────────────────────────────────────────────────────────────────
# LOADING HELPERS
# ──────────────────────────────────────────────────────────────────────────────

def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base dict."""
    merged = base.copy()
    for k, v in override.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def load_config(yaml_path: Optional[str] = None, **overrides: Any) -> AppConfig:
    """Load configuration from optional YAML file with programmatic overrides.

    Precedence (highest wins): overrides > YAML > env vars > defaults.
    """
    data: dict = {}

    if yaml_path is not None:
        path = Path(yaml_path)
        if path.exists():
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        else:
            log.warning(f"Config file {path} not found, using defaults")

    if overrides:
        data = _deep_merge(data, overrides)

    return AppConfig(**data)


def parse_args(argv=None) -> AppConfig:
    """Parse CLI arguments into an AppConfig. Unset flags keep the YAML/default value."""
    parser = argparse.ArgumentParser(
        description="Render reference/candidate asset pairs and compute per-view fidelity metrics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            EXAMPLES:
              # Defaults: assets/refmodel/<name>/*.glb vs assets/optmodel/<name>/*.glb
              python eval_visual_metrics.py

              # YAML config plus a few overrides
              python eval_visual_metrics.py --config configs/default.yaml \\
                --views 16 --resolution 256 256 --dwell-time 0

              # Reproducible jittered sampling
              python eval_visual_metrics.py --jitter 0.05 --seed 7
        """),
    )

    parser.add_argument("--config", type=str, default=None,
                        help="YAML config file (optional)")
    parser.add_argument("--assets-root", type=str, default=None,
                        help="Root folder holding refmodel/, optmodel/ and hdrtextures/")
    parser.add_argument("--output-root", type=str, default=None,
                        help="Where screenshots and CSV tables are written")
    parser.add_argument("--views", type=int, default=None,
                        help="Number of camera samples per asset")
    parser.add_argument("--radius", type=float, default=None,
                        help="Camera sphere radius")
    parser.add_argument("--resolution", type=int, nargs=2, metavar=("W", "H"), default=None,
                        help="Render-target resolution")
    parser.add_argument("--dwell-time", type=float, default=None,
                        help="Seconds spent on each view")
    parser.add_argument("--jitter", type=float, default=None,
                        help="Sampling jitter strength (0 = regular lattice)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the jitter generator")
    parser.add_argument("--no-environment", action="store_true",
                        help="Do not draw the environment image in the colour phase")
    parser.add_argument("--log-level", type=str, default=None,
                        help="Logging level (DEBUG, INFO, WARNING, ...)")

    args = parser.parse_args(argv)

    overrides: dict = {}

    def _set(section: str, key: str, value):
        if value is not None:
            overrides.setdefault(section, {})[key] = value

    _set("paths", "assets_root", args.assets_root)
    _set("paths", "output_root", args.output_root)
    _set("sampling", "view_count", args.views)
    _set("sampling", "radius", args.radius)
    _set("sampling", "jitter_strength", args.jitter)
    _set("sampling", "seed", args.seed)
    _set("render", "dwell_time", args.dwell_time)
    _set("logging", "level", args.log_level)
    if args.resolution is not None:
        _set("render", "width", args.resolution[0])
        _set("render", "height", args.resolution[1])
    if args.no_environment:
        _set("render", "use_environment", False)

    try:
        return load_config(args.config, **overrides)
    except ValidationError as e:
        parser.error(f"Invalid configuration:\n{e}")
