"""Tests for the selective multi-primitive optimizer and its candidates."""

import math

import numpy as np
import pytest

from strokefit.fitters.primitives import (
    circumcircle, directed_sweep, fit_arc, fit_cubic, fit_line, measure, quantize_candidate,
)
from strokefit.fitters.selective import (
    SelectiveFitter, build_sections, grid_step, mandatory_splits,
)
from strokefit.models import FailureReason, PrimitiveKind

EXACT = {"quantizationEnabled": False}


class TestPrimitives:
    """Tests for the candidate fits."""
    
    def test_circumcircle_collinear(self):
        """Test that collinear points have no circumcircle."""
        assert circumcircle(np.array([0.0, 0.0]), np.array([1.0, 1.0]), np.array([2.0, 2.0])) is None
    
    def test_fit_arc_recovers_circle(self):
        """Test that arc samples give back their circle and turning direction."""
        t = np.linspace(0, np.pi / 2, 15)
        pts = np.column_stack([3 + 2 * np.cos(t), 4 + 2 * np.sin(t)])
        
        arc = fit_arc(pts)
        
        assert arc.center == pytest.approx([3, 4])
        assert arc.radius == pytest.approx(2)
        assert arc.sweep == pytest.approx(np.pi / 2)
        assert measure(pts, arc)[0] < 1e-9
    
    def test_line_error_zero(self, line_points):
        """Test that collinear samples have no error against their chord."""
        rms, max_error = measure(line_points, fit_line(line_points))
        
        assert rms == pytest.approx(0, abs=1e-12)
        assert max_error == pytest.approx(0, abs=1e-12)
    
    def test_cubic_endpoints_pinned(self, sine_points):
        """Test that the cubic starts and ends on the first and last samples."""
        cubic = fit_cubic(sine_points[:40])
        
        assert cubic.start == pytest.approx(sine_points[0])
        assert cubic.end == pytest.approx(sine_points[39])
    
    def test_directed_sweep(self):
        """Test signed sweeps in both turning directions."""
        assert directed_sweep(0.0, math.pi / 2, 1) == pytest.approx(math.pi / 2)
        assert directed_sweep(0.0, math.pi / 2, -1) == pytest.approx(-3 * math.pi / 2)
        assert directed_sweep(1.0, 1.0, 1) == pytest.approx(2 * math.pi)
    
    def test_quantized_line_collapses(self):
        """Test that a line shorter than the grid collapses."""
        line = fit_line(np.array([[0.01, 0.0], [0.02, 0.0]]))
        
        assert quantize_candidate(line, 1.0) is None


class TestSections:
    """Tests for mandatory splitting."""
    
    def test_corner_split(self, l_shape_points):
        """Test that a right angle is a mandatory split."""
        assert mandatory_splits(l_shape_points, 35.0) == [10]
    
    def test_reversal_split(self):
        """Test that a reversal splits even below the angle threshold."""
        pts = np.array([[0, 0], [1, 0], [0.5, 0.01]])
        
        assert mandatory_splits(pts, 179.9) == [1]
    
    def test_sections_share_samples(self):
        """Test inclusive section ranges."""
        assert build_sections(21, [10]) == [(0, 10), (10, 20)]
        assert build_sections(5, []) == [(0, 4)]
    
    def test_grid_step(self):
        """Test the power-of-ten grid and its level offset."""
        pts = np.array([[0, 0], [2, 1]])
        
        assert grid_step(pts) == pytest.approx(0.1)
        assert grid_step(pts, level_offset=1) == pytest.approx(1.0)


class TestSelectiveFitter:
    """Tests for the optimizer."""
    
    def test_line_then_arc(self, line_arc_points):
        """Test that a line turning sharply into an arc gives exactly those two primitives."""
        result = SelectiveFitter().approximate(line_arc_points, overrides=EXACT)
        
        assert result.success
        assert result.primitive_kinds == ["linear", "arc"]
        context = result.diagnostics.context
        assert context["rms"] < 1e-9
        assert context["section_count"] == 2
        assert context["arcs"] == [{"segment_index": 1, "sweep_direction": -1, "large_arc": False}]
        arc = result.segments[1]
        assert arc.center == pytest.approx([2, 0])
        assert arc.radius == pytest.approx(1)
        assert result.svg_path == "M 0 0 L 1 0 A 1 1 0 0 0 2 1"
    
    def test_quantized_anchors_on_grid(self, line_arc_points):
        """Test that quantized anchors sit on the grid."""
        result = SelectiveFitter().approximate(line_arc_points)
        
        step = result.diagnostics.context["grid_step"]
        assert step == pytest.approx(0.1)
        assert result.primitive_kinds == ["linear", "arc"]
        for knot in result.knots:
            for value in knot:
                assert value / step == pytest.approx(round(value / step), abs=1e-6)
        assert all(eq.meta.quantized for eq in result.latex_equations)
    
    def test_straight_line_single_segment(self):
        """Test that a straight stroke needs one line."""
        pts = np.array([[0.25 * i, 0.5 * i] for i in range(40)])
        
        result = SelectiveFitter().approximate(pts)
        
        assert result.success
        assert result.primitive_kinds == ["linear"]
    
    def test_fixed_segment_count(self):
        """Test that fixed mode cuts a smooth stroke into the requested count."""
        t = np.linspace(0, np.pi / 2, 100)
        pts = np.column_stack([10 * np.cos(t), 10 * np.sin(t)])
        
        result = SelectiveFitter().approximate(pts, overrides={
            "quantizationEnabled": False, "autoSegments": False, "segmentCount": 4,
        })
        
        assert result.success
        assert len(result.segments) == 4
        assert result.svg_path.count("M") == 1
    
    def test_all_kinds_disabled(self, line_points):
        """Test that disabling every primitive is a constraint violation."""
        result = SelectiveFitter().approximate(line_points, overrides={
            "enableLinear": False, "enableQuadratic": False,
            "enableCubic": False, "enableArc": False,
        })
        
        assert result.diagnostics.reason == FailureReason.CONSTRAINT_VIOLATION
    
    def test_only_arcs_on_straight_line(self, line_points):
        """Test that no arc fits collinear samples within the bound."""
        result = SelectiveFitter().approximate(line_points, overrides={
            "enableLinear": False, "enableQuadratic": False, "enableCubic": False,
        })
        
        assert not result.success
        assert result.diagnostics.reason == FailureReason.TOLERANCE_EXCEEDED
    
    def test_single_point_insufficient(self):
        """Test the minimum point count."""
        result = SelectiveFitter().approximate([[1, 1]])
        
        assert result.diagnostics.reason == FailureReason.INSUFFICIENT_INPUT
    
    def test_duplicates_degenerate(self):
        """Test that repeated samples collapse to a point."""
        result = SelectiveFitter().approximate([[1, 1], [1, 1], [1, 1]])
        
        assert result.diagnostics.reason == FailureReason.DEGENERATE_GEOMETRY
    
    def test_raw_and_quantized_rms(self, line_arc_points):
        """Test that both error figures are reported."""
        context = SelectiveFitter().approximate(line_arc_points).diagnostics.context
        
        assert context["raw_rms"] >= 0
        assert context["quantized_rms"] == pytest.approx(context["rms"])
        assert context["segment_count"] == 2
        assert len(context["section_costs"]) == 2
    
    def test_segment_kinds_are_primitives(self, sine_points):
        """Test that every segment is one of the four primitive kinds."""
        result = SelectiveFitter().approximate(sine_points)
        
        assert result.success
        allowed = {kind.value for kind in (PrimitiveKind.LINEAR, PrimitiveKind.QUADRATIC,
                                           PrimitiveKind.CUBIC, PrimitiveKind.ARC)}
        assert set(result.primitive_kinds) <= allowed
        assert result.svg_path.count("M") == 1
