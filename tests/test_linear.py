"""Tests for the straight-line and polyline fitters."""

import numpy as np
import pytest

from strokefit.equations import builder
from strokefit.fitters.linear import LinearFitter, linearity
from strokefit.fitters.piecewise_linear import PiecewiseLinearFitter
from strokefit.models import EquationKind, FailureReason


class TestLinearFitter:
    """Tests for single-line fitting."""
    
    def test_oblique_line(self, line_points):
        """Test that samples on y = 2x + 1 give that line."""
        result = LinearFitter().approximate(line_points)
        
        assert result.success
        assert result.diagnostics.context["classification"] == "oblique"
        eq = result.latex_equations[0]
        assert eq.params.slope == pytest.approx(2)
        assert eq.params.intercept == pytest.approx(1)
        assert result.svg_path == "M 0 1 L 10 21"
    
    def test_vertical_line(self):
        """Test that a steep stroke becomes x = c."""
        pts = [[3.0, 0.0], [3.1, 5.0], [3.0, 10.0]]
        
        result = LinearFitter().approximate(pts)
        
        assert result.success
        assert result.latex_equations[0].type == EquationKind.VERTICAL
        assert result.segments[0].start[1] == pytest.approx(0)
        assert result.segments[0].end[1] == pytest.approx(10)
    
    def test_horizontal_line_keeps_direction(self):
        """Test that a right-to-left flat stroke is drawn right to left."""
        pts = [[10.0, 2.0], [5.0, 2.1], [0.0, 2.0]]
        
        result = LinearFitter().approximate(pts)
        
        assert result.latex_equations[0].type == EquationKind.CONSTANT
        assert result.segments[0].start[0] == pytest.approx(10)
        assert result.segments[0].end[0] == pytest.approx(0)
    
    def test_curved_stroke_rejected(self, parabola_points):
        """Test that a U shape fails the linearity gate."""
        result = LinearFitter().approximate(parabola_points)
        
        assert not result.success
        assert result.diagnostics.reason == FailureReason.CONSTRAINT_VIOLATION
        assert result.diagnostics.context["linearity"] < 0.95
    
    def test_coincident_ends_rejected(self):
        """Test that a zero-length chord is degenerate."""
        result = LinearFitter().approximate([[1, 1], [2, 2], [1, 1]])
        
        assert result.diagnostics.reason == FailureReason.DEGENERATE_GEOMETRY
    
    def test_single_point_insufficient(self):
        """Test the minimum point count."""
        result = LinearFitter().approximate([[1, 1]])
        
        assert result.diagnostics.reason == FailureReason.INSUFFICIENT_INPUT
    
    def test_linearity_score(self):
        """Test the linearity formula on a known bump."""
        assert linearity([[0, 0], [5, 1], [10, 0]]) == pytest.approx(0.9)
    
    def test_translation_equivariance(self, line_points):
        """Test that fitting shifted samples equals shifting the fitted line."""
        fitter = LinearFitter()
        base = fitter.approximate(line_points).latex_equations[0]
        shifted = fitter.approximate(line_points + [3.0, -2.0]).latex_equations[0]
        
        moved = builder.translate_equation(base, dx=3.0, dy=-2.0)
        
        assert moved.params.slope == pytest.approx(shifted.params.slope)
        assert moved.params.intercept == pytest.approx(shifted.params.intercept)
        assert moved.domain.start == pytest.approx(shifted.domain.start)
        assert moved.domain.end == pytest.approx(shifted.domain.end)
    
    def test_axis_quantization(self):
        """Test that snap + quantizeControlAxis rounds the endpoints to the grid."""
        pts = [[0.123, 0.456], [5.0, 10.2], [10.049, 20.417]]
        
        result = LinearFitter().approximate(pts, overrides={"snap": True,
                                                             "quantizeControlAxis": True})
        
        assert result.success
        assert result.segments[0].start == pytest.approx([0.1, 0.0])
        assert result.segments[0].end == pytest.approx([10.0, 20.0])


class TestPiecewiseLinearFitter:
    """Tests for polyline fitting."""
    
    def test_l_shape(self, l_shape_points):
        """Test that an L gives a horizontal then a vertical piece meeting exactly."""
        result = PiecewiseLinearFitter().approximate(l_shape_points)
        
        assert result.success
        assert [eq.type for eq in result.latex_equations] == [EquationKind.CONSTANT,
                                                             EquationKind.VERTICAL]
        assert result.segments[0].end == result.segments[1].start
        assert result.segments[0].end == pytest.approx([10, 0])
        assert result.svg_path == "M 0 0 L 10 0 L 10 10"
    
    def test_zigzag(self):
        """Test that oblique pieces join at the corners."""
        pts = np.array([[0, 0], [1, 2], [2, 4], [3, 2], [4, 0], [5, 2], [6, 4]], dtype=float)
        
        result = PiecewiseLinearFitter().approximate(pts)
        
        assert result.success
        assert len(result.segments) == 3
        np.testing.assert_allclose(result.knots, [[0, 0], [2, 4], [4, 0], [6, 4]], atol=1e-9)
        assert result.diagnostics.context["average_linearity"] == pytest.approx(1.0)
    
    def test_steep_peak_stays_connected(self):
        """Test that two steep pieces at different x become lines through the peak."""
        pts = [[0, 0], [0.2, 4], [0.4, 8], [0.6, 4], [0.8, 0]]
        
        result = PiecewiseLinearFitter().approximate(pts)
        
        assert result.success
        assert [eq.type for eq in result.latex_equations] == [EquationKind.LINEAR,
                                                             EquationKind.LINEAR]
        assert result.segments[0].end == result.segments[1].start
        assert result.segments[0].end == pytest.approx([0.4, 8])
        assert result.svg_path == "M 0 0 L 0.4 8 L 0.8 0"
    
    def test_shallow_ridge_stays_connected(self):
        """Test that two flat pieces at different heights still meet."""
        pts = [[0, 0], [10, 0.5], [20, 1.0], [30, 0.5], [40, 0.2]]
        
        result = PiecewiseLinearFitter().approximate(pts)
        
        assert result.success
        assert len(result.segments) == 2
        assert result.segments[0].end == result.segments[1].start
        assert result.segments[0].end == pytest.approx([20, 1.0])
    
    def test_metrics_follow_their_segment(self):
        """Test that each segment is measured against its own slice."""
        pts = [[0, 0], [10, 0.5], [20, 1.0], [30, 0.5], [40, 0.2]]
        
        result = PiecewiseLinearFitter().approximate(pts)
        
        assert result.segments[0].metrics.max_error == pytest.approx(0, abs=1e-9)
        assert result.segments[1].metrics.max_error == pytest.approx(0.1, abs=1e-3)
    
    def test_parallel_pieces_without_oblique_rejected(self):
        """Test that an up-and-back stroke on vertical chords cannot be joined."""
        pts = [[0, 0], [0.15, 5], [0, 10], [-0.15, 5], [0, 2]]
        
        result = PiecewiseLinearFitter().approximate(pts)
        
        assert not result.success
        assert result.diagnostics.reason == FailureReason.CONSTRAINT_VIOLATION
        assert result.diagnostics.context["piece_index"] == 0
    
    def test_two_points_fall_back_to_linear(self):
        """Test that a 2-point stroke fails here but succeeds as a single line."""
        pts = [[0, 0], [4, 3]]
        
        polyline = PiecewiseLinearFitter().approximate(pts)
        line = LinearFitter().approximate(pts)
        
        assert not polyline.success
        assert polyline.diagnostics.reason == FailureReason.CONSTRAINT_VIOLATION
        assert line.success
