"""Tests for the circle / ellipse fitter."""

import numpy as np
import pytest

from strokefit.fitters.circle import CircleFitter, ellipse_perimeter, fit_circle, fit_ellipse
from strokefit.fitters.base import NumericSingularityError
from strokefit.models import FailureReason


class TestShapeFits:
    """Tests for the algebraic fits."""
    
    def test_kasa_circle_exact(self, circle_points):
        """Test that exact circle samples give the exact center and radius."""
        center, radius = fit_circle(circle_points)
        
        assert center == pytest.approx([0, 0], abs=1e-9)
        assert radius == pytest.approx(5)
    
    def test_collinear_circle_singular(self):
        """Test that collinear samples raise."""
        with pytest.raises(NumericSingularityError):
            fit_circle([[0, 0], [1, 1], [2, 2], [3, 3]])
    
    def test_moment_ellipse_exact(self, ellipse_points):
        """Test that uniform ellipse samples recover both radii."""
        center, rx, ry, rotation = fit_ellipse(ellipse_points)
        
        assert center == pytest.approx([20, 15])
        assert rx == pytest.approx(10, rel=1e-6)
        assert ry == pytest.approx(5, rel=1e-6)
        assert rotation == pytest.approx(0, abs=1e-9)
    
    def test_perimeter_of_circle(self):
        """Test that the ellipse perimeter reduces to 2 pi r."""
        assert ellipse_perimeter(3, 3) == pytest.approx(2 * np.pi * 3)


class TestCircleFitter:
    """Tests for candidate gating and selection."""
    
    def test_circle_accepted(self, circle_points):
        """Test that a full circle is selected as a circle."""
        result = CircleFitter().approximate(circle_points)
        
        assert result.success
        assert result.segments[0].kind == "circle"
        assert result.segments[0].radius == pytest.approx(5)
        assert result.diagnostics.context["rms"] < 1e-6
        assert result.diagnostics.context["selected_shape"] == "circle"
        assert result.export_data.closed
        assert len(result.knots) == 4
    
    def test_ellipse_selected(self, ellipse_points):
        """Test that an elongated loop becomes an ellipse."""
        result = CircleFitter().approximate(ellipse_points)
        
        assert result.success
        segment = result.segments[0]
        assert segment.kind == "ellipse"
        assert segment.center == pytest.approx([20, 15])
        assert segment.radius_x == pytest.approx(10, rel=1e-6)
        assert segment.radius_y == pytest.approx(5, rel=1e-6)
        assert result.export_data.shape == "ellipse"
    
    def test_ellipse_disabled(self, ellipse_points):
        """Test that without ellipses the elongated loop is rejected."""
        result = CircleFitter().approximate(ellipse_points, overrides={"enableEllipse": False})
        
        assert not result.success
        assert result.diagnostics.context["ellipse_candidate"] is None
    
    def test_open_arc_rejected(self):
        """Test that a quarter arc fails the closure and coverage gates."""
        t = np.linspace(0, np.pi / 2, 30)
        pts = np.column_stack([10 * np.cos(t), 10 * np.sin(t)])
        
        result = CircleFitter().approximate(pts)
        
        assert not result.success
        assert result.diagnostics.reason == FailureReason.CONSTRAINT_VIOLATION
        assert not result.diagnostics.context["circle_candidate"]["success"]
    
    def test_insufficient_points(self):
        """Test the minimum point count."""
        result = CircleFitter().approximate([[0, 0], [1, 1]])
        
        assert result.diagnostics.reason == FailureReason.INSUFFICIENT_INPUT
    
    def test_translation_equivariance(self, circle_points):
        """Test that shifting the samples shifts the center only."""
        fitter = CircleFitter()
        base = fitter.approximate(circle_points).segments[0]
        shifted = fitter.approximate(circle_points + [7.0, -3.0]).segments[0]
        
        assert shifted.center == pytest.approx([base.center[0] + 7, base.center[1] - 3], abs=1e-6)
        assert shifted.radius == pytest.approx(base.radius)
    
    def test_quantized_center_and_radius(self):
        """Test that quantization snaps center and radius to the power-of-ten grid."""
        t = np.linspace(0, 2 * np.pi, 40, endpoint=False)
        pts = np.column_stack([10.03 + 4.98 * np.cos(t), 20.04 + 4.98 * np.sin(t)])
        
        result = CircleFitter().approximate(pts, overrides={"quantizationEnabled": True})
        
        assert result.success
        quantization = result.diagnostics.context["quantization"]
        assert quantization["step"] == pytest.approx(0.1)
        assert quantization["success"]
        assert result.segments[0].center == pytest.approx([10.0, 20.0])
        assert result.segments[0].radius == pytest.approx(5.0)
        assert result.latex_equations[0].meta.quantized
