"""Tests for the single quadratic and chained quadratic fitters."""

import numpy as np
import pytest

from strokefit.fitters.quadratic_bezier import (
    SingleQuadraticFitter, evaluate_quadratic, fit_quadratic_control,
)
from strokefit.fitters.quadratic_chain import (
    QuadraticChainFitter, chain_segment_count, enforce_c1, split_ranges,
)
from strokefit.config import QuadraticChainConfig
from strokefit.models import FailureReason


class TestControlPoint:
    """Tests for the least-squares middle control point."""
    
    def test_exact_curve_recovered(self):
        """Test that samples on a Bezier at index fractions give its control point back."""
        p0, p1, p2 = np.array([0.0, 0.0]), np.array([2.0, 4.0]), np.array([4.0, 0.0])
        pts = evaluate_quadratic(p0, p1, p2, np.linspace(0, 1, 11))
        
        _, fitted, _ = fit_quadratic_control(pts)
        
        assert fitted == pytest.approx(p1)
    
    def test_two_points_midpoint(self):
        """Test that two samples give a straight quadratic."""
        p0, p1, p2 = fit_quadratic_control([[0, 0], [4, 2]])
        
        assert p1 == pytest.approx([2, 1])


class TestSingleQuadraticFitter:
    """Tests for the gated single quadratic fit."""
    
    def test_parabola_accepted(self, parabola_points):
        """Test that an open U becomes one quadratic with the expected middle control."""
        result = SingleQuadraticFitter().approximate(parabola_points)
        
        assert result.success
        assert len(result.segments) == 1
        assert result.svg_path.startswith("M ")
        assert " Q " in result.svg_path
    
    def test_unsmoothed_parabola_exact(self, parabola_points):
        """Test that without smoothing the parabola's own control point comes back."""
        result = SingleQuadraticFitter().approximate(parabola_points, overrides={"smoothWindow": 0})
        
        p0, p1, p2 = result.segments[0].control_points
        assert p0 == pytest.approx([0, 2.5])
        assert p1 == pytest.approx([5, -2.5])
        assert p2 == pytest.approx([10, 2.5])
        assert result.diagnostics.context["rms"] < 1e-9
    
    def test_closed_stroke_rejected(self):
        """Test that a stroke ending where it started is rejected as closed."""
        t = np.linspace(0, 2 * np.pi, 200)
        pts = np.column_stack([5 * np.cos(t), 5 * np.sin(t)])
        
        result = SingleQuadraticFitter().approximate(pts)
        
        assert not result.success
        assert result.diagnostics.reason == FailureReason.CONSTRAINT_VIOLATION
        assert result.diagnostics.message == "stroke appears closed"
    
    def test_wiggle_rejected(self):
        """Test that a wave with several extrema is rejected."""
        xs = np.linspace(0, 6 * np.pi, 150)
        pts = np.column_stack([xs, 3 * np.sin(xs)])
        
        result = SingleQuadraticFitter().approximate(pts)
        
        assert not result.success
        assert result.diagnostics.reason == FailureReason.CONSTRAINT_VIOLATION
    
    def test_tiny_stroke_degenerate(self):
        """Test that a stroke shorter than the minimum length is degenerate."""
        result = SingleQuadraticFitter().approximate([[0, 0], [0.1, 0.05], [0.2, 0]])
        
        assert result.diagnostics.reason == FailureReason.DEGENERATE_GEOMETRY


class TestChainHelpers:
    """Tests for chain splitting."""
    
    def test_split_ranges_share_boundaries(self):
        """Test that ranges cover the stroke and share their joints."""
        ranges = split_ranges(100, 3)
        
        assert ranges[0][0] == 0
        assert ranges[-1][1] == 99
        for (_, end), (start, _) in zip(ranges[:-1], ranges[1:]):
            assert end == start
    
    def test_segment_count_from_density(self):
        """Test the default count of one piece per 32 samples."""
        opts = QuadraticChainConfig()
        
        assert chain_segment_count(100, opts) == 3
        assert chain_segment_count(10, opts) == 1
        assert chain_segment_count(1000, opts) == opts.max_segments
    
    def test_enforce_c1(self):
        """Test that the entry handle continues the previous exit handle."""
        previous = [np.array([0.0, 0.0]), np.array([1.0, 1.0]), np.array([2.0, 1.0])]
        controls = [np.array([2.0, 1.0]), np.array([3.0, 3.0]), np.array([4.0, 0.0])]
        
        adjusted = enforce_c1(previous, controls)
        
        assert adjusted[1] == pytest.approx([3.0, 1.0])


class TestQuadraticChainFitter:
    """Tests for the chained quadratic fit."""
    
    def test_default_segment_count(self, sine_points):
        """Test that 100 samples give three pieces."""
        result = QuadraticChainFitter().approximate(sine_points)
        
        assert result.success
        assert len(result.segments) == 3
        assert len(result.knots) == 4
    
    def test_explicit_count_is_c1(self, sine_points):
        """Test that joints are shared and handles are collinear across them."""
        result = QuadraticChainFitter().approximate(sine_points, overrides={"segmentCount": 4})
        
        segments = result.segments
        assert len(segments) == 4
        for prev, nxt in zip(segments[:-1], segments[1:]):
            prev_cps = np.array(prev.control_points)
            next_cps = np.array(nxt.control_points)
            assert next_cps[0] == pytest.approx(prev_cps[2])
            assert next_cps[1] - next_cps[0] == pytest.approx(prev_cps[2] - prev_cps[1])
        assert result.svg_path.count("M") == 1
    
    def test_insufficient_points(self):
        """Test the minimum point count."""
        result = QuadraticChainFitter().approximate([[0, 0], [1, 1]])
        
        assert result.diagnostics.reason == FailureReason.INSUFFICIENT_INPUT
