"""
Unit tests for CPU silhouette extraction.
"""

from __future__ import annotations

import numpy as np
import pytest

from visual_metrics.config import SilhouetteConfig
from visual_metrics.silhouette import generate_silhouette, linearize_depth


def _flat(w=8, h=6, depth=0.5, normal=(0.5, 0.5, 1.0)):
    d = np.full((h, w), depth, dtype=np.float32)
    n = np.empty((h, w, 3), dtype=np.float32)
    n[:] = normal
    return d, n


class TestGenerateSilhouette:
    def test_flat_buffers_have_no_edges(self):
        d, n = _flat()
        mask = generate_silhouette(d, n, 8, 6)
        assert mask.shape == (6, 8)
        assert mask.dtype == np.uint8
        assert not mask.any()

    def test_depth_step_marks_both_sides(self):
        w, h = 10, 6
        d, n = _flat(w, h)
        d[:, 5:] = 0.9
        mask = generate_silhouette(d, n, w, h, depth_threshold=0.05, normal_threshold=10.0)
        # Columns 4 and 5 see the step through their left/right neighbours
        assert np.all(mask[1:-1, 4] == 255)
        assert np.all(mask[1:-1, 5] == 255)
        assert not mask[1:-1, :4].any()
        assert not mask[1:-1, 6:].any()

    def test_normal_step(self):
        w, h = 6, 10
        d, n = _flat(w, h)
        n[5:] = (1.0, 0.5, 0.5)
        mask = generate_silhouette(d, n, w, h, depth_threshold=10.0, normal_threshold=0.2)
        assert np.all(mask[4, 1:-1] == 255)
        assert np.all(mask[5, 1:-1] == 255)
        assert mask.sum() == 255 * 2 * (w - 2)

    def test_border_stays_background(self):
        rng = np.random.default_rng(0)
        w, h = 9, 7
        d = rng.random((h, w), dtype=np.float32)
        n = rng.random((h, w, 3), dtype=np.float32)
        mask = generate_silhouette(d, n, w, h, 0.0, 0.0)
        assert not mask[0].any() and not mask[-1].any()
        assert not mask[:, 0].any() and not mask[:, -1].any()

    def test_threshold_is_strict(self):
        w, h = 5, 5
        d, n = _flat(w, h)
        d[:, 3:] = 0.75  # gradient of exactly 0.25 next to the step
        mask = generate_silhouette(d, n, w, h, depth_threshold=0.25, normal_threshold=10.0)
        assert not mask.any()

    def test_default_thresholds_match_config(self):
        config = SilhouetteConfig()
        w, h = 8, 6
        d, n = _flat(w, h)
        d[:, 4:] = 0.53  # small step, above 0.01 but below 0.05
        n[3:] = (0.5, 0.65, 1.0)  # normal step of 0.15, below 0.2
        assert np.array_equal(
            generate_silhouette(d, n, w, h),
            generate_silhouette(d, n, w, h, config.depth_threshold, config.normal_threshold),
        )
        mask = generate_silhouette(d, n, w, h)
        assert np.all(mask[1:-1, 3] == 255)
        assert np.all(mask[2, 1:-1] == 255)

    def test_accepts_flat_buffers(self):
        d, n = _flat()
        assert not generate_silhouette(d.ravel(), n.ravel(), 8, 6).any()

    def test_size_mismatch_raises(self):
        d, n = _flat()
        with pytest.raises(ValueError):
            generate_silhouette(d, n[:-1], 8, 6)

    def test_tiny_buffer(self):
        d, n = _flat(2, 2)
        assert generate_silhouette(d, n, 2, 2).shape == (2, 2)


class TestLinearizeDepth:
    def test_planes(self):
        assert linearize_depth(0.0, 0.1, 100.0) == pytest.approx(0.1)
        assert linearize_depth(1.0, 0.1, 100.0) == pytest.approx(100.0)

    def test_array(self):
        out = linearize_depth(np.array([0.0, 1.0]), 1.0, 10.0)
        assert out == pytest.approx([1.0, 10.0])
