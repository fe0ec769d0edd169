"""Tests for number formatting and the equation builder."""

import math

import pytest

from strokefit.equations import builder
from strokefit.equations.formatting import format_fixed, format_signed, format_term
from strokefit.models import ArcSegment, EquationKind, LinearSegment


class TestFormatting:
    """Tests for fixed-decimal formatting."""
    
    def test_trailing_zeros_trimmed(self):
        """Test that trailing zeros and dangling points are removed."""
        assert format_fixed(1.5) == "1.5"
        assert format_fixed(2.0) == "2"
        assert format_fixed(0.12345, 3) == "0.123"
    
    def test_never_negative_zero(self):
        """Test that tiny negatives render as 0."""
        assert format_fixed(-0.0001) == "0"
        assert format_fixed(-0.0) == "0"
        assert format_signed(-0.0001) == "+0"
    
    def test_signed_terms(self):
        """Test explicit sign composition."""
        assert format_signed(2.5) == "+2.5"
        assert format_signed(-3) == "-3"
        assert format_term(-1, "x") == " - x"
        assert format_term(0.0001, "x") == ""


class TestBuilder:
    """Tests for canonical equations."""
    
    def test_line_through_points(self):
        """Test point-slope line construction."""
        eq = builder.linear_through_points([0, 1], [2, 5])
        
        assert eq.type == EquationKind.LINEAR
        assert eq.latex == "y = 2x + 1"
        assert eq.params.slope == 2
        assert (eq.domain.start, eq.domain.end) == (0, 2)
    
    def test_line_degrades_to_vertical(self):
        """Test that a vertical pair of points gives x = c over the y range."""
        eq = builder.linear_through_points([3, 4], [3, 1])
        
        assert eq.type == EquationKind.VERTICAL
        assert eq.domain_axis == "y"
        assert (eq.domain.start, eq.domain.end) == (1, 4)
    
    def test_infinite_slope_is_vertical(self):
        """Test that an infinite slope gives x = c through the anchor."""
        eq = builder.linear(math.inf, [3, 4])
        
        assert eq.type == EquationKind.VERTICAL
        assert eq.params.x == 3
        assert eq.latex == "x = 3"
    
    def test_nan_slope_raises(self):
        """Test that a NaN slope is rejected."""
        with pytest.raises(ValueError):
            builder.linear(math.nan, [3, 4])
    
    def test_vertex_form(self):
        """Test vertex-form parabola text."""
        eq = builder.quadratic_vertex(0.5, [2, -1], (0, 4))
        
        assert eq.latex == "y = 0.5(x -2)^2 -1"
        assert eq.params.vertex == [2, -1]
    
    def test_circle_text(self):
        """Test implicit circle text and parameter range."""
        eq = builder.circle([1, -2], 3)
        
        assert eq.latex == "(x -1)^2 + (y +2)^2 = 3^2"
        assert eq.domain.end == pytest.approx(2 * math.pi)
    
    def test_segment_equations(self):
        """Test that segments map to their canonical kinds."""
        line = LinearSegment(start=[0, 0], end=[1, 1])
        arc = ArcSegment(center=[0, 0], radius=1, start_angle=0, end_angle=math.pi / 2,
                         start=[1, 0], end=[0, 1])
        
        assert builder.equation_for_segment(line).type == EquationKind.LINEAR
        arc_eq = builder.equation_for_segment(arc)
        assert arc_eq.type == EquationKind.ARC
        assert arc_eq.params.direction == 1
    
    def test_serialized_with_camel_case(self):
        """Test that equations serialize with their wire names."""
        data = builder.vertical(2, (0, 1)).model_dump(by_alias=True, mode="json")
        
        assert data["domainAxis"] == "y"
        assert data["params"] == {"kind": "vertical", "x": 2.0}


class TestTranslate:
    """Tests for rigid translation of equations."""
    
    def test_translate_line(self):
        """Test that a shifted line keeps its slope and moves its intercept."""
        eq = builder.linear(2, [0, 1], (0, 5))
        
        moved = builder.translate_equation(eq, dx=1, dy=3)
        
        assert moved.params.slope == 2
        assert moved.params.intercept == pytest.approx(2)
        assert (moved.domain.start, moved.domain.end) == (1, 6)
    
    def test_translate_parabola(self):
        """Test that a parabola's vertex moves with the shift."""
        eq = builder.quadratic_vertex(1.5, [2, 3], (0, 4))
        
        moved = builder.translate_equation(eq, dx=-2, dy=1)
        
        assert moved.params.a == 1.5
        assert moved.params.vertex == [0, 4]
    
    def test_translate_vertical_moves_y_domain(self):
        """Test that a vertical line shifts its y domain by dy."""
        moved = builder.translate_equation(builder.vertical(1, (0, 2)), dx=2, dy=5)
        
        assert moved.params.x == 3
        assert (moved.domain.start, moved.domain.end) == (5, 7)
    
    def test_translate_bezier_and_arc(self):
        """Test control-point and center shifts."""
        bez = builder.cubic_bezier([0, 0], [1, 2], [3, 2], [4, 0])
        arc = builder.arc([0, 0], 2, 0, math.pi, -1)
        
        moved_bez = builder.translate_equation(bez, dx=1)
        moved_arc = builder.translate_equation(arc, dy=-1)
        
        assert moved_bez.params.control_points[3] == [5, 0]
        assert moved_arc.params.center == [0, -1]
        assert moved_arc.params.direction == -1
    
    def test_label_cannot_be_translated(self):
        """Test that equations without geometry return None instead of guessing."""
        assert builder.translate_equation(builder.label("A"), dx=1) is None
        assert builder.translate_equation({"type": "linear"}, dx=1) is None
    
    def test_translate_list(self):
        """Test translating a list keeps positions."""
        moved = builder.translate_equations([builder.horizontal(1, (0, 1)), builder.label("B")], dy=2)
        
        assert moved[0].params.y == 3
        assert moved[1] is None
