#!/usr/bin/env python3
"""Entry point for the reference-vs-candidate visual metrics pipeline. See visual_metrics/ for details."""

from visual_metrics.config import setup_logging, parse_args
from visual_metrics.pipeline import run_pipeline

if __name__ == "__main__":
    config = parse_args()
    setup_logging(config.logging.level, config.log_file)
    run_pipeline(config)
