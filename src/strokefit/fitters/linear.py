"""
Single straight-line fitting.

A stroke is accepted as a line when no interior sample strays far from the
start-end chord. Steep lines become ``x = c``, flat lines ``y = c``.
"""

import math

import numpy as np

from strokefit.config import LinearConfig
from strokefit.equations import builder
from strokefit.fitters.base import (
    Fitter, build_result, failure, insufficient, metrics_from_residuals, power_of_ten_step,
)
from strokefit.geometry.preprocess import as_points, normalize_uniform, preprocess
from strokefit.models import ExportData, FailureReason, LinearSegment
from strokefit.paths import segments_from_equations
from strokefit.tracer import get_tracer, trace

MIN_POINTS = 2


def chord_distances(points, start, end):
    """Perpendicular distances of points from the infinite line start-end."""
    pts = np.asarray(points, dtype=float)
    dx, dy = end[0] - start[0], end[1] - start[1]
    length = math.hypot(dx, dy)
    if length == 0:
        return np.linalg.norm(pts - start, axis=1)
    return np.abs(dy * pts[:, 0] - dx * pts[:, 1] + end[0] * start[1] - end[1] * start[0]) / length


def linearity(points):
    """
    1 - max perpendicular distance / chord length over interior points.
    
    Returns None for a zero-length chord.
    """
    pts = np.asarray(points, dtype=float)
    start, end = pts[0], pts[-1]
    length = float(np.hypot(*(end - start)))
    if length == 0:
        return None
    if len(pts) <= 2:
        return 1.0
    return 1.0 - float(np.max(chord_distances(pts[1:-1], start, end))) / length


def axis_step(values, span=None):
    """Power-of-ten quantization step for one axis (exponent clamped to [-2, 2])."""
    if span is not None and span > 0:
        return power_of_ten_step(span, -2, 2)
    values = np.asarray(values, dtype=float)
    diff = float(np.ptp(values)) if values.size else 0.0
    if diff > 0:
        return power_of_ten_step(diff, -2, 2)
    magnitude = float(np.max(np.abs(values))) if values.size else 0.0
    return power_of_ten_step(magnitude, -2, 2) if magnitude > 0 else 0.0


def _quantize(value, step):
    if not step:
        return value
    return round(value / step) * step


class LinearFitter(Fitter):
    """Fits one straight line (oblique, vertical or horizontal)."""
    
    type_name = "linear"
    config_class = LinearConfig
    
    @trace(label="linear_approximate")
    def approximate(self, points, domain=None, overrides=None):
        opts = self.options(overrides)
        tracer = get_tracer()
        
        stroke = preprocess(points, domain=domain)
        pts = stroke.points
        if len(pts) < MIN_POINTS:
            return insufficient(self.type_name, len(pts), MIN_POINTS)
        
        # ratio of distances, so an isotropic frame gives the world value
        unit, _, _ = normalize_uniform(pts, stroke.domain)
        score = linearity(unit)
        if score is None:
            return failure(self.type_name, FailureReason.DEGENERATE_GEOMETRY,
                           "start and end points coincide", domain=stroke.domain)
        if score < opts.linearity_threshold:
            return failure(self.type_name, FailureReason.CONSTRAINT_VIOLATION,
                           "stroke is not linear enough", domain=stroke.domain,
                           linearity=score, threshold=opts.linearity_threshold)
        
        start, end = pts[0], pts[-1]
        dx, dy = end[0] - start[0], end[1] - start[1]
        slope = dy / dx if dx != 0 else math.inf
        
        x_step = y_step = 0.0
        if opts.snap and opts.quantize_control_axis:
            x_step = axis_step(pts[:, 0], domain.width if domain is not None else None)
            y_step = axis_step(pts[:, 1], domain.height if domain is not None else None)
        q_start = [_quantize(start[0], x_step), _quantize(start[1], y_step)]
        q_end = [_quantize(end[0], x_step), _quantize(end[1], y_step)]
        
        if abs(slope) > opts.vertical_slope_threshold:
            classification = "vertical"
            x = _quantize(float(np.mean(pts[:, 0])), x_step)
            ys = (q_start[1], q_end[1])
            equation = builder.vertical(x, (min(ys), max(ys)))
        elif abs(slope) < opts.horizontal_slope_threshold:
            classification = "horizontal"
            y = _quantize(float(np.mean(pts[:, 1])), y_step)
            xs = (q_start[0], q_end[0])
            equation = builder.horizontal(y, (min(xs), max(xs)))
        else:
            classification = "oblique"
            equation = builder.linear_through_points(q_start, q_end)
        
        segments = segments_from_equations([equation], pts)
        if not segments:
            return failure(self.type_name, FailureReason.DEGENERATE_GEOMETRY,
                           "quantized line collapsed to a point", domain=stroke.domain)
        line = segments[0]
        residuals = chord_distances(pts, np.array(line.start), np.array(line.end))
        line = LinearSegment(start=line.start, end=line.end, metrics=metrics_from_residuals(residuals))
        
        tracer.event(f"Line accepted ({classification})", linearity=score)
        
        return build_result(
            self.type_name,
            [line],
            [equation],
            knots=[line.start, line.end],
            domain=stroke.domain,
            export_data=ExportData(fitter=self.type_name, segments=[line]),
            classification=classification,
            linearity=score,
        )
