"""Tests for stroke preprocessing, cleaning and simplification."""

import numpy as np
import pytest

from strokefit.geometry.clean import ensure_functional_samples
from strokefit.geometry.preprocess import (
    as_points, bounding_box, denormalize_points, normalize_points, normalize_symmetric,
    polyline_length, preprocess, prune_collinear, resample_points, smooth_points,
)
from strokefit.geometry.simplify import rdp_indices, remove_duplicate_points


class TestPreprocess:
    """Tests for the preprocessing pipeline."""
    
    def test_non_finite_rows_dropped(self):
        """Test that NaN and infinite samples are discarded."""
        pts = as_points([[0, 0], [np.nan, 1], [2, np.inf], [3, 3]])
        
        assert pts.tolist() == [[0, 0], [3, 3]]
    
    def test_idempotent_without_resampling(self, parabola_points):
        """Test that preprocessing twice equals preprocessing once."""
        once = preprocess(parabola_points, prune_tolerance=1e-3)
        twice = preprocess(once.points, prune_tolerance=1e-3)
        
        np.testing.assert_array_equal(once.points, twice.points)
        np.testing.assert_allclose(once.normalized, twice.normalized)
    
    def test_normalize_round_trip(self, parabola_points):
        """Test that denormalize inverts normalize."""
        normalized, domain = normalize_points(parabola_points)
        
        assert normalized.min() == pytest.approx(0.0)
        assert normalized.max() == pytest.approx(1.0)
        np.testing.assert_allclose(denormalize_points(normalized, domain), parabola_points)
    
    def test_degenerate_axis_does_not_divide_by_zero(self):
        """Test that a flat stroke normalizes without blowing up."""
        normalized, domain = normalize_points([[0, 2], [5, 2], [10, 2]])
        
        assert np.all(np.isfinite(normalized))
        assert domain.height > 0
    
    def test_symmetric_box(self, l_shape_points):
        """Test that symmetric normalization lands in [-1, 1]."""
        normalized, center, scale = normalize_symmetric(l_shape_points)
        
        assert normalized.min() == pytest.approx(-1.0)
        assert normalized.max() == pytest.approx(1.0)
        assert center.tolist() == [5.0, 5.0]
        assert scale == 5.0
    
    def test_bounding_box(self, l_shape_points):
        """Test bounding box extents."""
        box = bounding_box(l_shape_points)
        
        assert (box.x_min, box.x_max, box.y_min, box.y_max) == (0, 10, 0, 10)


class TestSmoothResample:
    """Tests for smoothing and arc-length resampling."""
    
    def test_smoothing_keeps_straight_line(self, line_points):
        """Test that a moving average leaves collinear samples on the line."""
        smoothed = smooth_points(line_points, 5)
        
        np.testing.assert_allclose(smoothed[:, 1], 2 * smoothed[:, 0] + 1)
    
    def test_resample_uniform_spacing(self):
        """Test that resampled steps are equal in arc length."""
        corner = np.array([10.0, 0.0])
        dense = np.vstack([np.linspace([0.0, 0.0], corner, 30), np.linspace(corner, [10.0, 10.0], 30)[1:]])
        resampled = resample_points(dense, 21)
        steps = np.linalg.norm(np.diff(resampled, axis=0), axis=1)
        
        assert len(resampled) == 21
        assert resampled[0].tolist() == [0, 0]
        assert resampled[-1].tolist() == [10, 10]
        assert steps[0] == pytest.approx(1.0)
    
    def test_resample_closed_ends_at_start(self, circle_points):
        """Test that closed resampling repeats the first point last."""
        resampled = resample_points(circle_points, 16, closed=True)
        
        np.testing.assert_array_equal(resampled[-1], resampled[0])
    
    def test_short_stroke_not_upsampled(self, line_points):
        """Test that strokes shorter than the target count are left alone."""
        np.testing.assert_array_equal(resample_points(line_points, 500), line_points)
    
    def test_polyline_length(self, l_shape_points):
        """Test total length."""
        assert polyline_length(l_shape_points) == pytest.approx(20.0)


class TestPruneAndSimplify:
    """Tests for collinear pruning, RDP and duplicate removal."""
    
    def test_prune_collinear_keeps_corner(self, l_shape_points):
        """Test that pruning keeps only the endpoints and the corner."""
        pruned = prune_collinear(l_shape_points, 1e-6)
        
        assert pruned.tolist() == [[0, 0], [10, 0], [10, 10]]
    
    def test_rdp_finds_corner(self, l_shape_points):
        """Test that RDP keeps the corner index."""
        assert rdp_indices(l_shape_points, 0.1) == [0, 10, 20]
    
    def test_remove_duplicates_keeps_last_sample(self):
        """Test that near-duplicates go but the stroke still ends where it ended."""
        pts = [[0, 0], [0, 0], [1, 0], [1.00001, 0], [2, 0], [2.00001, 0]]
        
        cleaned = remove_duplicate_points(pts, 1e-3)
        
        assert cleaned.tolist() == [[0, 0], [1, 0], [2.00001, 0]]


class TestFunctionalSamples:
    """Tests for y = f(x) sample cleaning."""
    
    def test_clusters_merged(self):
        """Test that samples sharing an x value are averaged."""
        pts = [[0, 0], [1, 1], [1, 3], [2, 2], [3, 3]]
        
        cleaned = ensure_functional_samples(pts)
        
        assert cleaned.ok
        assert cleaned.merged == 1
        assert cleaned.points.tolist() == [[0, 0], [1, 2], [2, 2], [3, 3]]
    
    def test_small_backtrack_dropped(self):
        """Test that jitter against the x direction is dropped."""
        pts = [[0, 0], [1, 0], [2, 0], [1.9, 0.1], [3, 0], [4, 0]]
        
        cleaned = ensure_functional_samples(pts)
        
        assert cleaned.ok
        assert cleaned.dropped == [3]
    
    def test_fold_rejected(self):
        """Test that a stroke folding back along x is refused."""
        pts = [[x, 0] for x in range(10)] + [[x, 1] for x in range(8, -1, -1)]
        
        cleaned = ensure_functional_samples(pts)
        
        assert not cleaned.ok
        assert "folds back" in cleaned.reason
