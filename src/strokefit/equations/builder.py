"""
Equation builder for strokefit.

Turns numeric fit parameters into canonical Equation records (formula,
LaTeX and the numeric params they were built from), and shifts equations
algebraically without re-fitting.
"""

import math

from pydantic import ValidationError

from strokefit.equations.formatting import (
    DEFAULT_DECIMALS, format_fixed, format_point, format_signed, format_term,
)
from strokefit.models import (
    EPSILON, ArcParams, ArcSegment, BezierParams, CircleParams, CircleSegment, ConstantParams,
    CubicSegment, EllipseParams, EllipseSegment, Equation, EquationDomain, EquationKind,
    LabelParams, LinearParams, LinearSegment, ParameterRange, QuadraticParams, QuadraticSegment,
    VerticalParams,
)

FULL_TURN = ParameterRange(variable="t", start="0", end="2\\pi")
UNIT_RANGE = ParameterRange(variable="t", start="0", end="1")


def _domain(bounds):
    if bounds is None:
        return None
    start, end = bounds
    return EquationDomain(start=float(start), end=float(end))


def _point(p):
    return [float(p[0]), float(p[1])]


def linear_through_points(start, end, decimals=DEFAULT_DECIMALS, vertical_tolerance=EPSILON,
                          horizontal_tolerance=EPSILON, meta=None):
    """Line through two points, degrading to vertical or constant forms."""
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    if abs(dx) <= vertical_tolerance:
        return vertical((start[0] + end[0]) / 2, (min(start[1], end[1]), max(start[1], end[1])),
                        decimals=decimals, meta=meta)
    if abs(dy) <= horizontal_tolerance:
        return horizontal((start[1] + end[1]) / 2, (min(start[0], end[0]), max(start[0], end[0])),
                          decimals=decimals, meta=meta)
    return linear(dy / dx, start, (min(start[0], end[0]), max(start[0], end[0])),
                  decimals=decimals, meta=meta)


def linear(slope, point, x_range=None, intercept=None, decimals=DEFAULT_DECIMALS, meta=None):
    """
    Point-slope line ``y = mx + b``.
    
    The intercept is derived from the anchor point unless given. An
    infinite slope gives the vertical line ``x = c`` through the anchor.
    
    Raises:
        ValueError: the slope is NaN
    """
    slope = float(slope)
    if math.isnan(slope):
        raise ValueError("line slope is NaN")
    if math.isinf(slope):
        return vertical(point[0], decimals=decimals, meta=meta)
    if intercept is None:
        intercept = point[1] - slope * point[0]
    intercept = float(intercept)
    
    slope_text = format_fixed(slope, decimals)
    if slope_text == "0":
        latex = f"y = {format_fixed(intercept, decimals)}"
    else:
        if slope_text == "1":
            slope_term = "x"
        elif slope_text == "-1":
            slope_term = "-x"
        else:
            slope_term = f"{slope_text}x"
        latex = f"y = {slope_term}{format_term(intercept, '', decimals)}"
    
    return Equation(
        type=EquationKind.LINEAR,
        formula=latex,
        latex=latex,
        domain=_domain(x_range),
        domain_axis="x",
        params=LinearParams(slope=slope, intercept=intercept, point=_point(point)),
        precision=decimals,
        meta=meta,
    )


def horizontal(y, x_range=None, decimals=DEFAULT_DECIMALS, meta=None):
    """Constant function ``y = c``."""
    latex = f"y = {format_fixed(y, decimals)}"
    return Equation(
        type=EquationKind.CONSTANT,
        formula=latex,
        latex=latex,
        domain=_domain(x_range),
        domain_axis="x",
        params=ConstantParams(y=float(y)),
        precision=decimals,
        meta=meta,
    )


def vertical(x, y_range=None, decimals=DEFAULT_DECIMALS, meta=None):
    """Vertical line ``x = c`` with its domain along y."""
    latex = f"x = {format_fixed(x, decimals)}"
    return Equation(
        type=EquationKind.VERTICAL,
        formula=latex,
        latex=latex,
        domain=_domain(y_range),
        domain_axis="y",
        params=VerticalParams(x=float(x)),
        precision=decimals,
        meta=meta,
    )


def quadratic_vertex(a, vertex, x_range=None, decimals=DEFAULT_DECIMALS, meta=None):
    """Vertex-form parabola ``y = a(x - h)^2 + k``."""
    h, k = float(vertex[0]), float(vertex[1])
    latex = f"y = {format_fixed(a, decimals)}(x {format_signed(-h, decimals)})^2 {format_signed(k, decimals)}"
    return Equation(
        type=EquationKind.QUADRATIC,
        formula=latex,
        latex=latex,
        domain=_domain(x_range),
        domain_axis="x",
        params=QuadraticParams(a=float(a), vertex=[h, k]),
        precision=decimals,
        meta=meta,
    )


def circle(center, radius, decimals=DEFAULT_DECIMALS, meta=None):
    """Implicit circle ``(x - cx)^2 + (y - cy)^2 = r^2``, parameterized over t in [0, 2pi]."""
    cx, cy = float(center[0]), float(center[1])
    text = (f"(x {format_signed(-cx, decimals)})^2 + (y {format_signed(-cy, decimals)})^2 = "
            f"{format_fixed(radius, decimals)}^2")
    return Equation(
        type=EquationKind.CIRCLE,
        formula=text,
        latex=text,
        domain=EquationDomain(start=0.0, end=2 * math.pi),
        domain_axis="t",
        parameter_range=FULL_TURN,
        params=CircleParams(center=[cx, cy], radius=float(radius)),
        precision=decimals,
        meta=meta,
    )


def ellipse(center, radius_x, radius_y, rotation=0.0, decimals=DEFAULT_DECIMALS, meta=None):
    """Parametric ellipse ``(cx + A cos t + B sin t, cy + C cos t + D sin t)``."""
    cx, cy = float(center[0]), float(center[1])
    cos_phi = math.cos(rotation)
    sin_phi = math.sin(rotation)
    x_cos, x_sin = radius_x * cos_phi, -radius_y * sin_phi
    y_cos, y_sin = radius_x * sin_phi, radius_y * cos_phi
    
    cx_text = format_fixed(cx, decimals)
    cy_text = format_fixed(cy, decimals)
    
    def latex_terms(c_cos, c_sin):
        out = ""
        for coeff, func in ((c_cos, "\\cos t"), (c_sin, "\\sin t")):
            magnitude = format_fixed(abs(coeff), decimals)
            if magnitude != "0":
                out += f" {'+' if coeff >= 0 else '-'} {magnitude}{func}"
        return out
    
    def formula_terms(c_cos, c_sin):
        out = ""
        for coeff, func in ((c_cos, " * cos(t)"), (c_sin, " * sin(t)")):
            magnitude = format_fixed(abs(coeff), decimals)
            if magnitude != "0":
                out += f"{' + ' if coeff >= 0 else ' - '}{magnitude}{func}"
        return out
    
    latex = (f"\\left({cx_text}{latex_terms(x_cos, x_sin)}, "
             f"{cy_text}{latex_terms(y_cos, y_sin)}\\right)")
    formula = f"({cx_text}{formula_terms(x_cos, x_sin)}, {cy_text}{formula_terms(y_cos, y_sin)})"
    
    return Equation(
        type=EquationKind.ELLIPSE,
        formula=formula,
        latex=latex,
        domain=EquationDomain(start=0.0, end=2 * math.pi),
        domain_axis="t",
        parameter_range=FULL_TURN,
        params=EllipseParams(center=[cx, cy], radius_x=float(radius_x), radius_y=float(radius_y),
                             rotation=float(rotation)),
        precision=decimals,
        meta=meta,
    )


def quadratic_bezier(p0, p1, p2, decimals=DEFAULT_DECIMALS, meta=None):
    """Bernstein-form quadratic Bezier over t in [0, 1]."""
    t0, t1, t2 = (format_point(p, decimals) for p in (p0, p1, p2))
    text = f"{t0} (1 - t)^2 + 2 {t1} (1 - t) t + {t2} t^2"
    return Equation(
        type=EquationKind.QUADRATIC_BEZIER,
        formula=text,
        latex=text,
        domain=EquationDomain(start=0.0, end=1.0),
        domain_axis="t",
        parameter_range=UNIT_RANGE,
        params=BezierParams(control_points=[_point(p0), _point(p1), _point(p2)]),
        precision=decimals,
        meta=meta,
    )


def cubic_bezier(p0, p1, p2, p3, decimals=DEFAULT_DECIMALS, meta=None):
    """Bernstein-form cubic Bezier over t in [0, 1]."""
    t0, t1, t2, t3 = (format_point(p, decimals) for p in (p0, p1, p2, p3))
    text = f"{t0} (1 - t)^3 + 3 {t1} (1 - t)^2 t + 3 {t2} (1 - t) t^2 + {t3} t^3"
    return Equation(
        type=EquationKind.CUBIC_BEZIER,
        formula=text,
        latex=text,
        domain=EquationDomain(start=0.0, end=1.0),
        domain_axis="t",
        parameter_range=UNIT_RANGE,
        params=BezierParams(control_points=[_point(p0), _point(p1), _point(p2), _point(p3)]),
        precision=decimals,
        meta=meta,
    )


def arc(center, radius, start_angle, end_angle, direction=1, decimals=DEFAULT_DECIMALS, meta=None):
    """Trig-parametric arc ``(r cos t + cx, r sin t + cy)`` for t between the two angles."""
    cx, cy = float(center[0]), float(center[1])
    cx_text = format_fixed(cx, decimals)
    cy_text = format_fixed(cy, decimals)
    r_text = format_fixed(radius, decimals)
    latex = f"\\left({r_text}\\cos t + {cx_text}, {r_text}\\sin t + {cy_text}\\right)"
    formula = f"({r_text} * cos(t) + {cx_text}, {r_text} * sin(t) + {cy_text})"
    return Equation(
        type=EquationKind.ARC,
        formula=formula,
        latex=latex,
        domain=EquationDomain(start=float(start_angle), end=float(end_angle)),
        domain_axis="t",
        parameter_range=ParameterRange(variable="t", start=format_fixed(start_angle, decimals),
                                       end=format_fixed(end_angle, decimals)),
        params=ArcParams(center=[cx, cy], radius=float(radius), start_angle=float(start_angle),
                         end_angle=float(end_angle), direction=1 if direction >= 0 else -1),
        precision=decimals,
        meta=meta,
    )


def label(text, decimals=DEFAULT_DECIMALS, meta=None):
    """Free-text placeholder equation."""
    text = str(text)
    return Equation(
        type=EquationKind.LABEL,
        formula=text,
        latex=f"\\text{{{text}}}",
        params=LabelParams(text=text),
        precision=decimals,
        meta=meta,
    )


def equation_for_segment(segment, decimals=DEFAULT_DECIMALS, meta=None):
    """Canonical equation of a fitted Segment."""
    if isinstance(segment, LinearSegment):
        return linear_through_points(segment.start, segment.end, decimals=decimals, meta=meta)
    if isinstance(segment, QuadraticSegment):
        return quadratic_bezier(*segment.control_points, decimals=decimals, meta=meta)
    if isinstance(segment, CubicSegment):
        return cubic_bezier(*segment.control_points, decimals=decimals, meta=meta)
    if isinstance(segment, ArcSegment):
        return arc(segment.center, segment.radius, segment.start_angle, segment.end_angle,
                   segment.sweep_direction, decimals=decimals, meta=meta)
    if isinstance(segment, CircleSegment):
        return circle(segment.center, segment.radius, decimals=decimals, meta=meta)
    if isinstance(segment, EllipseSegment):
        return ellipse(segment.center, segment.radius_x, segment.radius_y, segment.rotation,
                       decimals=decimals, meta=meta)
    raise TypeError(f"Unsupported segment type: {type(segment).__name__}")


def _shift(bounds, delta):
    if bounds is None:
        return None
    return (bounds.start + delta, bounds.end + delta)


def translate_equation(equation, dx=0.0, dy=0.0, decimals=None):
    """
    Rigidly shift an equation by (dx, dy).
    
    Parameters are re-derived algebraically from the recorded numeric
    params. Returns None when the equation cannot be shifted from what it
    records (labels, or a mapping that does not validate as an Equation).
    """
    if isinstance(equation, dict):
        try:
            equation = Equation.model_validate(equation)
        except ValidationError:
            return None
    if not isinstance(equation, Equation):
        return None
    
    decimals = equation.precision if decimals is None else decimals
    params = equation.params
    meta = equation.meta
    kind = equation.type
    
    if kind == EquationKind.CONSTANT and isinstance(params, ConstantParams):
        return horizontal(params.y + dy, _shift(equation.domain, dx), decimals=decimals, meta=meta)
    if kind == EquationKind.VERTICAL and isinstance(params, VerticalParams):
        return vertical(params.x + dx, _shift(equation.domain, dy), decimals=decimals, meta=meta)
    if kind == EquationKind.LINEAR and isinstance(params, LinearParams):
        anchor = [params.point[0] + dx, params.point[1] + dy]
        return linear(params.slope, anchor, _shift(equation.domain, dx), decimals=decimals, meta=meta)
    if kind == EquationKind.QUADRATIC and isinstance(params, QuadraticParams):
        vertex_ = [params.vertex[0] + dx, params.vertex[1] + dy]
        return quadratic_vertex(params.a, vertex_, _shift(equation.domain, dx), decimals=decimals,
                                meta=meta)
    if kind == EquationKind.CIRCLE and isinstance(params, CircleParams):
        center = [params.center[0] + dx, params.center[1] + dy]
        return circle(center, params.radius, decimals=decimals, meta=meta)
    if kind == EquationKind.ELLIPSE and isinstance(params, EllipseParams):
        center = [params.center[0] + dx, params.center[1] + dy]
        return ellipse(center, params.radius_x, params.radius_y, params.rotation,
                       decimals=decimals, meta=meta)
    if kind in (EquationKind.QUADRATIC_BEZIER, EquationKind.CUBIC_BEZIER) and isinstance(params, BezierParams):
        cps = [[p[0] + dx, p[1] + dy] for p in params.control_points]
        if kind == EquationKind.QUADRATIC_BEZIER and len(cps) == 3:
            return quadratic_bezier(*cps, decimals=decimals, meta=meta)
        if kind == EquationKind.CUBIC_BEZIER and len(cps) == 4:
            return cubic_bezier(*cps, decimals=decimals, meta=meta)
        return None
    if kind == EquationKind.ARC and isinstance(params, ArcParams):
        center = [params.center[0] + dx, params.center[1] + dy]
        return arc(center, params.radius, params.start_angle, params.end_angle, params.direction,
                   decimals=decimals, meta=meta)
    return None


def translate_equations(equations, dx=0.0, dy=0.0, decimals=None):
    """Translate every equation; entries that cannot be shifted become None."""
    return [translate_equation(eq, dx, dy, decimals=decimals) for eq in equations]
