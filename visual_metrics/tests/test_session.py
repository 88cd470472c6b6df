"""
Tests for the tick-driven evaluation state machine, with a fake renderer.
"""

from __future__ import annotations

import csv
import logging
import os

import numpy as np
import pytest

from visual_metrics.config import AppConfig
from visual_metrics.phases import Phase
from visual_metrics.rendering import RenderBackend, Variant
from visual_metrics.results import ResultWriter
from visual_metrics.session import NO_VIEW, EvaluationPipeline

W, H = 4, 4


class FakeClock:
    """Monotonic clock that moves `step` seconds per reading."""

    def __init__(self, step: float = 0.0):
        self.t = 0.0
        self.step = step

    def __call__(self) -> float:
        self.t += self.step
        return self.t


class FakeRenderer(RenderBackend):
    """Serves fixed buffers per variant and records every call."""

    def __init__(self):
        self.calls = []
        self.presented = []
        self.color = {
            Variant.REFERENCE: np.zeros((H, W, 3), dtype=np.uint8),
            Variant.CANDIDATE: np.zeros((H, W, 3), dtype=np.uint8),
        }
        # A quarter of the colour samples differ by the full range: MSE = 0.25
        self.color[Variant.CANDIDATE][0] = 255
        normal = np.full((H, W, 3), 0.5, dtype=np.float32)
        self.normal = {Variant.REFERENCE: normal, Variant.CANDIDATE: normal.copy()}
        depth = np.full((H, W), 0.5, dtype=np.float32)
        self.depth = {Variant.REFERENCE: depth, Variant.CANDIDATE: depth.copy()}

    def render_variant(self, view, variant, phase):
        self.calls.append((view.index, variant, phase))
        return variant

    def read_color_buffer(self, target):
        return self.color[target].copy()

    def read_normal_buffer(self, target):
        return self.normal[target].copy()

    def read_depth_buffer(self, target):
        return self.depth[target].copy()

    def present_heatmap(self, heatmap):
        self.presented.append(heatmap)


def _config(tmp_path, views=4, dwell=0.0, **sampling) -> AppConfig:
    return AppConfig(
        render={"width": W, "height": H, "dwell_time": dwell},
        sampling={"view_count": views, **sampling},
        paths={"output_root": str(tmp_path)},
    )


def _session(tmp_path, views=4, dwell=0.0, step=0.0, renderer=None, **sampling):
    config = _config(tmp_path, views, dwell, **sampling)
    writer = ResultWriter(config.paths.output_root)
    writer.init_report_tables()
    renderer = renderer or FakeRenderer()
    session = EvaluationPipeline(config, renderer, writer, "model_a", clock=FakeClock(step))
    session.start()
    return session, renderer, writer


def _rows(path):
    with open(path, newline="") as f:
        return list(csv.reader(f))


# ---------------------------------------------------------------------------
# Start-up
# ---------------------------------------------------------------------------

class TestStart:
    def test_initial_state(self, tmp_path):
        session, _, _ = _session(tmp_path)
        assert session.phase is Phase.COLOR_FIDELITY
        assert len(session.views) == 4
        assert session.view_index == 0
        assert session.accumulator == 0.0
        assert session.last_saved_view == NO_VIEW
        assert os.path.isdir(tmp_path / "model_a" / "psnr")

    def test_idle_before_start(self, tmp_path):
        config = _config(tmp_path)
        renderer = FakeRenderer()
        session = EvaluationPipeline(config, renderer, ResultWriter(str(tmp_path)), "x")
        assert session.tick() is None
        assert renderer.calls == []

    def test_seeded_jitter_is_reproducible(self, tmp_path):
        a, _, _ = _session(tmp_path / "a", jitter_strength=0.1, seed=5)
        b, _, _ = _session(tmp_path / "b", jitter_strength=0.1, seed=5)
        for va, vb in zip(a.views, b.views):
            assert np.array_equal(va.view_matrix, vb.view_matrix)


# ---------------------------------------------------------------------------
# Per-view body
# ---------------------------------------------------------------------------

class TestTick:
    def test_renders_reference_then_candidate(self, tmp_path):
        session, renderer, _ = _session(tmp_path)
        session.tick()
        assert renderer.calls == [
            (0, Variant.REFERENCE, Phase.COLOR_FIDELITY),
            (0, Variant.CANDIDATE, Phase.COLOR_FIDELITY),
        ]
        assert len(renderer.presented) == 1
        assert renderer.presented[0].shape == (H, W, 4)

    def test_returns_metric_result(self, tmp_path):
        session, _, _ = _session(tmp_path)
        result = session.tick()
        assert result.phase == Phase.COLOR_FIDELITY.value
        assert result.view_index == 0
        assert result.scalar_error == pytest.approx(0.25)

    def test_replayed_view_is_recorded_once(self, tmp_path):
        session, renderer, writer = _session(tmp_path, dwell=10.0)
        first = session.tick()
        second = session.tick()
        assert first is not None and second is None
        assert session.view_index == 0
        assert session.accumulator == pytest.approx(0.25)
        # Rendered and presented on both ticks
        assert len(renderer.calls) == 4
        assert len(renderer.presented) == 2

        phase_dir = tmp_path / "model_a" / "psnr"
        assert sorted(os.listdir(phase_dir)) == ["metrics.csv", "view_0.png"]
        assert _rows(phase_dir / "metrics.csv") == [["Model", "View", "Error"], ["model_a", "0", "0.25"]]

    def test_dwell_timer_paces_views(self, tmp_path):
        session, _, _ = _session(tmp_path, dwell=2.5, step=1.0)
        # start() read t=1; ticks read t=2, 3, 4
        session.tick()
        session.tick()
        assert session.view_index == 0
        session.tick()
        assert session.view_index == 1

    def test_screenshot_is_composite(self, tmp_path):
        from PIL import Image

        session, _, _ = _session(tmp_path)
        session.tick()
        with Image.open(tmp_path / "model_a" / "psnr" / "view_0.png") as img:
            assert img.size == (3 * W, H)
            pixels = np.asarray(img)
        # Candidate's first buffer row is white; after the flip it is the bottom image row
        assert np.all(pixels[-1, W:2 * W] == 255)
        assert np.all(pixels[0, W:2 * W] == 0)

    def test_consolidated_psnr_row(self, tmp_path):
        session, _, _ = _session(tmp_path)
        session.tick()
        rows = _rows(tmp_path / "metrics_psnr.csv")
        assert rows[0] == ["ModelName", "ViewIndex", "ErrorValue"]
        assert rows[1][:2] == ["model_a", "0"]
        assert float(rows[1][2]) == pytest.approx(10.0 * np.log10(4.0))


# ---------------------------------------------------------------------------
# Phase transitions
# ---------------------------------------------------------------------------

class TestTransitions:
    def test_phase_moves_after_view_count_ticks(self, tmp_path):
        session, _, writer = _session(tmp_path, views=4)
        for _ in range(3):
            session.tick()
            assert session.phase is Phase.COLOR_FIDELITY
        session.tick()

        assert session.phase is Phase.SILHOUETTE
        assert session.accumulator == 0.0
        assert session.view_index == 0
        assert session.last_saved_view == NO_VIEW
        assert os.path.isdir(tmp_path / "model_a" / "silhouette")

        summary = writer.summaries[-1]
        assert summary.phase == Phase.COLOR_FIDELITY.value
        assert summary.average_error == pytest.approx(0.25)
        assert summary.average_psnr == pytest.approx(10.0 * np.log10(4.0))
        assert summary.view_count == 4

    def test_phase_average_is_logged(self, tmp_path, caplog):
        session, _, _ = _session(tmp_path, views=4)
        with caplog.at_level(logging.INFO):
            for _ in range(4):
                session.tick()
        assert "Color Error (MSE): 0.250000" in caplog.text

    def test_ticks_exceeding_dwell(self, tmp_path):
        session, _, _ = _session(tmp_path, views=3, dwell=0.5, step=1.0)
        for _ in range(3):
            session.tick()
        assert session.phase is Phase.SILHOUETTE

    def test_full_run_reaches_finished(self, tmp_path):
        session, renderer, writer = _session(tmp_path, views=3)
        for _ in range(9):
            session.tick()
        assert session.finished
        assert [s.phase for s in writer.summaries] == [
            "color_fidelity", "silhouette", "normal_fidelity",
        ]
        # Identical depth/normal buffers
        assert writer.summaries[1].average_error == 0.0
        assert writer.summaries[2].average_error == 0.0

        calls = len(renderer.calls)
        assert session.tick() is None
        assert len(renderer.calls) == calls

    def test_phases_read_their_buffers(self, tmp_path):
        session, renderer, _ = _session(tmp_path, views=2)
        for _ in range(6):
            session.tick()
        phases = [c[2] for c in renderer.calls]
        assert phases == (
            [Phase.COLOR_FIDELITY] * 4 + [Phase.SILHOUETTE] * 4 + [Phase.NORMAL_FIDELITY] * 4
        )
        for subdir in ("psnr", "silhouette", "normal"):
            rows = _rows(tmp_path / "model_a" / subdir / "metrics.csv")
            assert [r[1] for r in rows[1:]] == ["0", "1"]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailures:
    def test_size_mismatch_is_not_fatal(self, tmp_path, caplog):
        renderer = FakeRenderer()
        renderer.color[Variant.CANDIDATE] = np.zeros((H, W + 1, 3), dtype=np.uint8)
        session, _, writer = _session(tmp_path, views=2, renderer=renderer)

        with caplog.at_level(logging.WARNING):
            result = session.tick()

        assert result.scalar_error == 0.0
        assert "do not match" in caplog.text
        assert renderer.presented == []
        assert not (tmp_path / "model_a" / "psnr" / "view_0.png").exists()
        rows = _rows(tmp_path / "model_a" / "psnr" / "metrics.csv")
        assert rows[1] == ["model_a", "0", "0.0"]

        session.tick()
        assert session.phase is Phase.SILHOUETTE
        assert writer.summaries[0].average_error == 0.0
