"""
SVG path construction for fitted segments.

Fitters and the dispatcher both go through ``build_svg_path`` so a stored
result always rebuilds to the same path string.
"""

import math

from strokefit.equations.formatting import format_fixed
from strokefit.models import (
    ArcParams, ArcSegment, BezierParams, CircleParams, CircleSegment, ConstantParams,
    CubicSegment, EllipseParams, EllipseSegment, EquationKind, LinearParams, LinearSegment,
    QuadraticParams, QuadraticSegment, VerticalParams,
)

PATH_DECIMALS = 4
JOIN_TOLERANCE = 1e-9


def _fmt(point):
    return f"{format_fixed(point[0], PATH_DECIMALS)} {format_fixed(point[1], PATH_DECIMALS)}"


def arc_point(center, radius, angle):
    """Point on a circle at the given angle."""
    return [center[0] + radius * math.cos(angle), center[1] + radius * math.sin(angle)]


def segment_start(segment):
    """First point of a segment (closed shapes start at angle 0)."""
    if isinstance(segment, (LinearSegment, ArcSegment)):
        return segment.start
    if isinstance(segment, (QuadraticSegment, CubicSegment)):
        return segment.control_points[0]
    if isinstance(segment, CircleSegment):
        return [segment.center[0] + segment.radius, segment.center[1]]
    if isinstance(segment, EllipseSegment):
        return [segment.center[0] + segment.radius_x * math.cos(segment.rotation),
                segment.center[1] + segment.radius_x * math.sin(segment.rotation)]
    raise TypeError(f"Unsupported segment type: {type(segment).__name__}")


def segment_end(segment):
    """Last point of a segment."""
    if isinstance(segment, (LinearSegment, ArcSegment)):
        return segment.end
    if isinstance(segment, (QuadraticSegment, CubicSegment)):
        return segment.control_points[-1]
    return segment_start(segment)


def _joined(a, b):
    scale = max(1.0, abs(a[0]), abs(a[1]))
    return abs(a[0] - b[0]) <= JOIN_TOLERANCE * scale and abs(a[1] - b[1]) <= JOIN_TOLERANCE * scale


def _segment_commands(segment):
    if isinstance(segment, LinearSegment):
        return [f"L {_fmt(segment.end)}"]
    if isinstance(segment, QuadraticSegment):
        _, c, e = segment.control_points
        return [f"Q {_fmt(c)} {_fmt(e)}"]
    if isinstance(segment, CubicSegment):
        _, c1, c2, e = segment.control_points
        return [f"C {_fmt(c1)} {_fmt(c2)} {_fmt(e)}"]
    if isinstance(segment, ArcSegment):
        r = format_fixed(segment.radius, PATH_DECIMALS)
        large_arc = 1 if abs(segment.end_angle - segment.start_angle) > math.pi else 0
        sweep = 1 if segment.sweep_direction >= 0 else 0
        return [f"A {r} {r} 0 {large_arc} {sweep} {_fmt(segment.end)}"]
    if isinstance(segment, CircleSegment):
        r = format_fixed(segment.radius, PATH_DECIMALS)
        cx, cy = segment.center
        opposite = [cx - segment.radius, cy]
        start = segment_start(segment)
        return [f"A {r} {r} 0 1 1 {_fmt(opposite)}", f"A {r} {r} 0 1 1 {_fmt(start)}"]
    if isinstance(segment, EllipseSegment):
        rx = format_fixed(segment.radius_x, PATH_DECIMALS)
        ry = format_fixed(segment.radius_y, PATH_DECIMALS)
        deg = format_fixed(math.degrees(segment.rotation), PATH_DECIMALS)
        start = segment_start(segment)
        opposite = [2 * segment.center[0] - start[0], 2 * segment.center[1] - start[1]]
        return [f"A {rx} {ry} {deg} 1 1 {_fmt(opposite)}", f"A {rx} {ry} {deg} 1 1 {_fmt(start)}"]
    raise TypeError(f"Unsupported segment type: {type(segment).__name__}")


def build_svg_path(segments):
    """
    Build a space-separated SVG path from segments.
    
    Consecutive segments that share an endpoint continue the current
    subpath; any gap starts a new one with M.
    """
    parts = []
    pen = None
    for segment in segments:
        start = segment_start(segment)
        if pen is None or not _joined(pen, start):
            parts.append(f"M {_fmt(start)}")
        parts.extend(_segment_commands(segment))
        pen = segment_end(segment)
    return " ".join(parts)


def _line_points(equation):
    params = equation.params
    domain = equation.domain
    if domain is None:
        return None
    a, b = domain.start, domain.end
    if isinstance(params, LinearParams):
        return [a, params.slope * a + params.intercept], [b, params.slope * b + params.intercept]
    if isinstance(params, ConstantParams):
        return [a, params.y], [b, params.y]
    if isinstance(params, VerticalParams):
        return [params.x, a], [params.x, b]
    return None


def quadratic_controls(a, vertex, x0, x1):
    """
    Quadratic Bezier control points of ``y = a(x - h)^2 + k`` over [x0, x1].
    
    The middle control point is reconstructed from three samples of the
    parabola: P1 = 2 f(xm) - (f(x0) + f(x1)) / 2.
    """
    h, k = vertex

    def f(x):
        return a * (x - h) ** 2 + k

    xm = (x0 + x1) / 2
    y0, ym, y1 = f(x0), f(xm), f(x1)
    return [[x0, y0], [xm, 2 * ym - (y0 + y1) / 2], [x1, y1]]


def segment_from_equation(equation):
    """
    Rebuild a Segment from an equation's numeric params and domain.
    
    Returns None for equations without geometry (labels) or without the
    domain a line or parabola needs.
    """
    params = equation.params
    kind = equation.type
    
    if kind in (EquationKind.LINEAR, EquationKind.CONSTANT, EquationKind.VERTICAL):
        ends = _line_points(equation)
        if ends is None:
            return None
        return LinearSegment(start=ends[0], end=ends[1])
    if kind == EquationKind.QUADRATIC and isinstance(params, QuadraticParams):
        if equation.domain is None:
            return None
        cps = quadratic_controls(params.a, params.vertex, equation.domain.start, equation.domain.end)
        return QuadraticSegment(control_points=cps)
    if isinstance(params, BezierParams):
        if len(params.control_points) == 3:
            return QuadraticSegment(control_points=params.control_points)
        return CubicSegment(control_points=params.control_points)
    if isinstance(params, CircleParams):
        return CircleSegment(center=params.center, radius=params.radius)
    if isinstance(params, EllipseParams):
        return EllipseSegment(center=params.center, radius_x=params.radius_x,
                              radius_y=params.radius_y, rotation=params.rotation)
    if isinstance(params, ArcParams):
        return ArcSegment(
            center=params.center,
            radius=params.radius,
            start_angle=params.start_angle,
            end_angle=params.end_angle,
            sweep_direction=params.direction,
            start=arc_point(params.center, params.radius, params.start_angle),
            end=arc_point(params.center, params.radius, params.end_angle),
        )
    return None


def _reverse_line(segment):
    return LinearSegment(start=segment.end, end=segment.start, metrics=segment.metrics)


def _reverse_quadratic(segment):
    return QuadraticSegment(control_points=list(reversed(segment.control_points)),
                            metrics=segment.metrics)


def _dist2(a, b):
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2


def segments_from_equations(equations, original_points=None):
    """
    Rebuild an ordered segment chain from equations.
    
    Line and parabola equations record their domain in ascending order and
    lose the drawing direction; each such segment is flipped when that
    brings its start closer to where the chain currently is (the first
    stroke sample, then the previous segment's end).
    """
    segments = []
    anchor = None
    if original_points is not None and len(original_points) > 0:
        anchor = [float(original_points[0][0]), float(original_points[0][1])]
    
    for equation in equations:
        segment = segment_from_equation(equation)
        if segment is None:
            continue
        if anchor is not None:
            if isinstance(segment, LinearSegment):
                if _dist2(segment.end, anchor) < _dist2(segment.start, anchor):
                    segment = _reverse_line(segment)
            elif isinstance(segment, QuadraticSegment) and equation.type == EquationKind.QUADRATIC:
                if _dist2(segment.control_points[-1], anchor) < _dist2(segment.control_points[0], anchor):
                    segment = _reverse_quadratic(segment)
        segments.append(segment)
        anchor = segment_end(segment)
    return segments
