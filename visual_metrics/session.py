"""
Tick-driven evaluation state machine for one reference/candidate asset pair.

    COLOR_FIDELITY ──wrap──▶ SILHOUETTE ──wrap──▶ NORMAL_FIDELITY ──wrap──▶ FINISHED

Each tick renders both variants for the current view, measures them, and
presents the heatmap. The first time a view is measured in a phase its
error is accumulated and its screenshot and table rows are written. The
dwell timer paces advancement to the next view; wrapping past the last
view ends the phase, logs the average and resets the accumulator.

The session is single-threaded and never blocks: whoever owns it decides
how often to call tick().
"""

import os
import time
import logging
from typing import Callable, Dict, List, Optional

import numpy as np

from visual_metrics.config import AppConfig
from visual_metrics.heatmap import compose_comparison
from visual_metrics.metrics import MetricResult
from visual_metrics.phases import (
    FIRST_PHASE, PHASE_TABLE, BufferKind, MeasureContext, Measurement, Phase, PhaseSpec,
)
from visual_metrics.rendering import RenderBackend, Variant
from visual_metrics.results import MetricRow, PhaseOutput, PhaseSummary, ResultWriter
from visual_metrics.sampling import CameraSample, generate_samples

log = logging.getLogger(__name__)

NO_VIEW = -1


class EvaluationPipeline:

    def __init__(
        self,
        config: AppConfig,
        renderer: RenderBackend,
        writer: ResultWriter,
        asset_name: str,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config
        self.renderer = renderer
        self.writer = writer
        self.asset_name = asset_name
        self.clock = clock
        self.dwell_time = config.render.dwell_time

        if rng is None and config.sampling.seed is not None:
            rng = np.random.default_rng(config.sampling.seed)
        self.rng = rng

        self._ctx = MeasureContext(
            width=config.render.width,
            height=config.render.height,
            depth_threshold=config.silhouette.depth_threshold,
            normal_threshold=config.silhouette.normal_threshold,
        )
        self._readers = {
            BufferKind.COLOR: renderer.read_color_buffer,
            BufferKind.NORMAL: renderer.read_normal_buffer,
            BufferKind.DEPTH: renderer.read_depth_buffer,
        }

        self.views: List[CameraSample] = []
        self.phase = Phase.FINISHED
        self.view_index = 0
        self.accumulator = 0.0
        self.last_saved_view = NO_VIEW
        self._psnr_accumulator = 0.0
        self._last_advance = 0.0
        self._output: Optional[PhaseOutput] = None

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self):
        """Sample the views and enter the first phase."""
        sampling = self.config.sampling
        self.views = generate_samples(
            sampling.view_count,
            sampling.radius,
            self.config.aspect,
            sampling.jitter_strength,
            rng=self.rng,
        )
        self.view_index = 0
        self.accumulator = 0.0
        self._psnr_accumulator = 0.0
        self._last_advance = self.clock()

        log.info(
            f"  [{self.asset_name}] {len(self.views)} views, "
            f"{self._ctx.width}x{self._ctx.height}, dwell {self.dwell_time}s"
        )
        self._enter_phase(FIRST_PHASE)

    @property
    def finished(self) -> bool:
        return self.phase is Phase.FINISHED

    def time_until_advance(self) -> float:
        """Seconds left before the next tick may advance the view (0 when due)."""
        if self.finished:
            return 0.0
        return max(0.0, self.dwell_time - (self.clock() - self._last_advance))

    def tick(self) -> Optional[MetricResult]:
        """
        Process the current view once, then advance if the dwell time elapsed.

        Returns the MetricResult when this tick recorded the view, else None.
        """
        if self.finished or not self.views:
            return None

        result = self._process_view()

        now = self.clock()
        if now - self._last_advance >= self.dwell_time:
            self._last_advance = now
            self._advance()
        return result

    # ── Per-view body ─────────────────────────────────────────────────────

    def _capture(self, view: CameraSample, variant: Variant, spec: PhaseSpec) -> Dict[BufferKind, np.ndarray]:
        target = self.renderer.render_variant(view, variant, spec.phase)
        return {kind: self._readers[kind](target) for kind in spec.buffers}

    def _process_view(self) -> Optional[MetricResult]:
        spec = PHASE_TABLE[self.phase]
        view = self.views[self.view_index]

        reference = self._capture(view, Variant.REFERENCE, spec)
        candidate = self._capture(view, Variant.CANDIDATE, spec)

        measurement: Optional[Measurement]
        try:
            measurement = spec.measure(reference, candidate, self._ctx)
        except ValueError as e:
            log.warning(f"  [{self.asset_name}] view {view.index} ({spec.phase.value}): {e}")
            measurement = None

        if measurement is not None:
            self.renderer.present_heatmap(measurement.heatmap)

        if self.view_index == self.last_saved_view:
            return None

        error = measurement.scalar_error if measurement is not None else 0.0
        table_value = measurement.table_value if measurement is not None else 0.0
        self.accumulator += error
        self._psnr_accumulator += table_value

        if measurement is not None:
            self._save_screenshot(measurement)
        self.writer.append_row(self._output.table, MetricRow(self.asset_name, view.index, error))
        self.writer.append_row(spec.table, MetricRow(self.asset_name, view.index, table_value))
        self.last_saved_view = self.view_index

        log.debug(f"  [{self.asset_name}] {spec.phase.value} view {view.index}: {error:.6g}")
        return MetricResult(phase=spec.phase.value, view_index=view.index, scalar_error=error)

    def _save_screenshot(self, measurement: Measurement):
        composite = compose_comparison(
            measurement.reference_rgb, measurement.candidate_rgb, measurement.heatmap,
        )
        # Buffers are bottom row first, image files top row first
        flipped = np.ascontiguousarray(composite[::-1])
        height, width = flipped.shape[:2]
        path = os.path.join(self._output.directory, f"view_{self.view_index}.png")
        self.writer.save_image(path, flipped, width, height)

    # ── Transitions ───────────────────────────────────────────────────────

    def _advance(self):
        self.view_index += 1
        if self.view_index >= len(self.views):
            self.view_index = 0
            self._finish_phase()

    def _finish_phase(self):
        spec = PHASE_TABLE[self.phase]
        count = len(self.views)
        average = self.accumulator / count
        average_psnr = self._psnr_accumulator / count if spec.phase is Phase.COLOR_FIDELITY else None

        log.info("=" * 40)
        log.info(f"[RESULT] {self.asset_name} {spec.label}: {average:.6f}")
        if average_psnr is not None:
            log.info(f"[RESULT] {self.asset_name} Average PSNR (dB): {average_psnr:.4f}")
        log.info("=" * 40)

        self.writer.record_summary(PhaseSummary(
            asset_name=self.asset_name,
            phase=spec.phase.value,
            label=spec.label,
            average_error=average,
            view_count=count,
            average_psnr=average_psnr,
        ))

        self.accumulator = 0.0
        self._psnr_accumulator = 0.0
        self._enter_phase(spec.next_phase)

        if self.finished:
            log.info(f">>> [{self.asset_name}] All metrics calculated.")
        else:
            log.info(f">>> Phase switch: {spec.phase.value} -> {self.phase.value}")

    def _enter_phase(self, phase: Phase):
        self.phase = phase
        self.last_saved_view = NO_VIEW
        if phase is Phase.FINISHED:
            self._output = None
            return
        self._output = self.writer.begin_phase(self.asset_name, PHASE_TABLE[phase].output_subdir)
