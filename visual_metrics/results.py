"""
Persistence of per-view outputs (screenshots, CSV rows) and the final report.
"""

import os
import csv
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np
from PIL import Image

log = logging.getLogger(__name__)

CONSOLIDATED_HEADER = ("ModelName", "ViewIndex", "ErrorValue")
PHASE_HEADER = ("Model", "View", "Error")

# Consolidated tables at the output root, keyed by metric name
REPORT_TABLES = {
    "PSNR": "metrics_psnr.csv",
    "Silhouette": "metrics_silhouette.csv",
    "Normal": "metrics_normal.csv",
}


@dataclass
class MetricRow:
    asset_name: str
    view_index: int
    error: float


@dataclass
class PhaseSummary:
    """Phase-level average for one asset, handed over when the phase ends."""
    asset_name: str
    phase: str
    label: str
    average_error: float
    view_count: int
    average_psnr: Optional[float] = None


@dataclass
class PhaseOutput:
    directory: str
    table: str


class ResultWriter:
    """
    Writes screenshots and appends CSV rows.

    Tables are addressed by name: the three consolidated report tables
    (see REPORT_TABLES) once init_report_tables() ran, and one table per
    (asset, phase) registered by begin_phase(). Rows for any other name are
    dropped.
    """

    def __init__(self, output_root: str):
        self.output_root = output_root
        self.summaries: List[PhaseSummary] = []
        self._tables: Dict[str, str] = {}

    # ── Tables ────────────────────────────────────────────────────────────

    def _create_table(self, name: str, path: str, header: Tuple[str, ...]):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", newline="") as f:
            csv.writer(f).writerow(header)
        self._tables[name] = path

    def init_report_tables(self):
        """(Re)create the consolidated per-metric tables with only their header."""
        os.makedirs(self.output_root, exist_ok=True)
        for name, filename in REPORT_TABLES.items():
            self._create_table(name, os.path.join(self.output_root, filename), CONSOLIDATED_HEADER)
        log.info(f"[Batch] Report tables initialized in {self.output_root}")

    def begin_phase(self, asset_name: str, subdir: str) -> PhaseOutput:
        """Create the phase's output directory and a fresh per-phase table."""
        directory = os.path.join(self.output_root, asset_name, subdir)
        os.makedirs(directory, exist_ok=True)
        table = f"{asset_name}/{subdir}"
        self._create_table(table, os.path.join(directory, "metrics.csv"), PHASE_HEADER)
        return PhaseOutput(directory=directory, table=table)

    def append_row(self, table: str, row: MetricRow):
        path = self._tables.get(table)
        if path is None:
            return
        with open(path, "a", newline="") as f:
            csv.writer(f).writerow([row.asset_name, row.view_index, repr(float(row.error))])

    def table_path(self, table: str) -> Optional[str]:
        return self._tables.get(table)

    # ── Images ────────────────────────────────────────────────────────────

    def save_image(self, path: str, rgb, width: int, height: int):
        """Save a top-row-first RGB buffer as PNG."""
        pixels = np.asarray(rgb, dtype=np.uint8).reshape(height, width, 3)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        Image.fromarray(pixels).save(path)

    # ── Summaries ─────────────────────────────────────────────────────────

    def record_summary(self, summary: PhaseSummary):
        self.summaries.append(summary)


# ══════════════════════════════════════════════════════════════════════════════
# RESULTS REPORTING
# ══════════════════════════════════════════════════════════════════════════════

def print_results_table(summaries: List[PhaseSummary]):
    """Pretty-print per-asset phase averages."""

    print("\n" + "═" * 78)
    print("  VISUAL METRICS RESULTS")
    print("═" * 78)
    print(f"  {'Asset':<30} {'Color MSE↓':>11} {'PSNR↑':>8} {'Sil MSE↓':>10} {'Normal MSE↓':>12}")
    print("─" * 78)

    per_asset: Dict[str, Dict[str, PhaseSummary]] = {}
    for s in summaries:
        per_asset.setdefault(s.asset_name, {})[s.phase] = s

    def fmt(s: Optional[PhaseSummary], attr: str = "average_error", spec: str = ".6f") -> str:
        value = getattr(s, attr) if s is not None else None
        return "—" if value is None else format(value, spec)

    for asset, phases in per_asset.items():
        color = phases.get("color_fidelity")
        print(
            f"  {asset[:30]:<30} {fmt(color):>11} {fmt(color, 'average_psnr', '.2f'):>8} "
            f"{fmt(phases.get('silhouette')):>10} {fmt(phases.get('normal_fidelity')):>12}"
        )

    print("─" * 78)
    print("  Color MSE / PSNR = shaded colour fidelity (PSNR in dB, 99.99 = identical)")
    print("  Sil MSE = fraction of pixels where the silhouette masks disagree")
    print("  Normal MSE = mean squared difference of [0,1]-encoded normals")
    print("═" * 78 + "\n")


def save_results_json(summaries: List[PhaseSummary], config, output_root: str) -> str:
    """Save the phase summaries and the run configuration to eval_results.json."""
    output = {
        "timestamp": datetime.now().isoformat(),
        "config": config.model_dump(),
        "results": [asdict(s) for s in summaries],
    }

    os.makedirs(output_root, exist_ok=True)
    json_path = os.path.join(output_root, "eval_results.json")
    with open(json_path, "w") as f:
        json.dump(output, f, indent=2, default=str)

    log.info(f"Results saved to {json_path}")
    return json_path
