"""
Polyline fitting.

Douglas-Peucker picks the corners; every slice between corners is
classified as vertical, horizontal or oblique and joints are recomputed so
consecutive pieces meet exactly.
"""

import math

import numpy as np

from strokefit.config import PiecewiseLinearConfig
from strokefit.equations import builder
from strokefit.fitters.base import (
    Fitter, build_result, failure, insufficient, metrics_from_residuals,
)
from strokefit.fitters.linear import chord_distances, linearity
from strokefit.geometry.preprocess import normalize_uniform, preprocess
from strokefit.geometry.simplify import rdp_indices
from strokefit.models import (
    ConstantParams, EquationMeta, ExportData, FailureReason, LinearParams, LinearSegment,
    VerticalParams,
)
from strokefit.tracer import get_tracer, trace

MIN_POINTS = 2
CLOSE_SNAP = 1e-6


def _classify(points, opts):
    """
    Classify one slice and return its equation.
    
    A slice whose samples all sit inside a band of percent_tolerance times
    its chord length around the first sample's x (or y) is axis-aligned, as
    is a slice whose chord slope crosses the vertical/horizontal thresholds.
    """
    start, end = points[0], points[-1]
    dx, dy = end[0] - start[0], end[1] - start[1]
    chord = math.hypot(dx, dy)
    band = max(chord * opts.percent_tolerance, 1e-10)
    slope = dy / dx if dx != 0 else math.inf
    
    if np.all(np.abs(points[:, 0] - start[0]) < band) or abs(slope) > opts.vertical_slope_threshold:
        return builder.vertical(float(np.mean(points[:, 0])))
    if np.all(np.abs(points[:, 1] - start[1]) < band) or abs(slope) < opts.horizontal_slope_threshold:
        return builder.horizontal(float(np.mean(points[:, 1])))
    return builder.linear(slope, start)


def _y_at(params, x, fallback):
    if isinstance(params, LinearParams):
        return params.slope * x + params.intercept
    if isinstance(params, ConstantParams):
        return params.y
    return fallback


def _x_at(params, y, fallback):
    if isinstance(params, LinearParams):
        return (y - params.intercept) / params.slope
    if isinstance(params, VerticalParams):
        return params.x
    return fallback


def _joint(current, following, corner):
    """Meeting point of two consecutive pieces near the corner sample."""
    cur, nxt = current.params, following.params
    if isinstance(cur, VerticalParams):
        return [cur.x, _y_at(nxt, cur.x, corner[1])]
    if isinstance(cur, ConstantParams):
        return [_x_at(nxt, cur.y, corner[0]), cur.y]
    if isinstance(nxt, VerticalParams):
        return [nxt.x, _y_at(cur, nxt.x, corner[1])]
    if isinstance(nxt, ConstantParams):
        return [_x_at(cur, nxt.y, corner[0]), nxt.y]
    return [float(corner[0]), float(corner[1])]


def _parallel_axis_pair(current, following):
    """Both pieces vertical, or both constant."""
    cur, nxt = current.params, following.params
    return ((isinstance(cur, VerticalParams) and isinstance(nxt, VerticalParams))
            or (isinstance(cur, ConstantParams) and isinstance(nxt, ConstantParams)))


def _axis_value(equation):
    params = equation.params
    return params.x if isinstance(params, VerticalParams) else params.y


def _with_axis_value(equation, value):
    if isinstance(equation.params, VerticalParams):
        return builder.vertical(value)
    return builder.horizontal(value)


def _oblique(points):
    """Chord line through a slice's end samples, or None when the chord is axis-aligned."""
    start, end = points[0], points[-1]
    dx, dy = end[0] - start[0], end[1] - start[1]
    if dx == 0 or dy == 0:
        return None
    return builder.linear(dy / dx, start)


def _join_parallel(pieces, chunks):
    """
    Make consecutive parallel axis-aligned pieces meet.
    
    Pieces on the same line share its coordinate. Otherwise both pieces
    become chord lines through their corner samples; a piece whose chord is
    itself axis-aligned keeps its form.
    
    Returns:
        index of the first pair that still cannot meet, or None
    """
    for k in range(len(pieces) - 1):
        if not _parallel_axis_pair(pieces[k], pieces[k + 1]):
            continue
        value = _axis_value(pieces[k])
        if math.isclose(value, _axis_value(pieces[k + 1]), abs_tol=CLOSE_SNAP):
            pieces[k + 1] = _with_axis_value(pieces[k + 1], value)
            continue
        for i in (k, k + 1):
            replacement = _oblique(chunks[i])
            if replacement is not None:
                pieces[i] = replacement
        if _parallel_axis_pair(pieces[k], pieces[k + 1]):
            return k
    return None


def _end_on(equation, point):
    """Project a free stroke end onto its piece."""
    params = equation.params
    if isinstance(params, VerticalParams):
        return [params.x, float(point[1])]
    if isinstance(params, ConstantParams):
        return [float(point[0]), params.y]
    return [float(point[0]), float(point[1])]


def _with_range(equation, a, b, index):
    """Rebuild a classified piece with its final domain between joints a and b."""
    params = equation.params
    meta = EquationMeta(segment_index=index, source="piecewiseLinear")
    if isinstance(params, VerticalParams):
        return builder.vertical(params.x, (min(a[1], b[1]), max(a[1], b[1])), meta=meta)
    if isinstance(params, ConstantParams):
        return builder.horizontal(params.y, (min(a[0], b[0]), max(a[0], b[0])), meta=meta)
    return builder.linear(params.slope, params.point, (min(a[0], b[0]), max(a[0], b[0])),
                          intercept=params.intercept, meta=meta)


class PiecewiseLinearFitter(Fitter):
    """Fits a connected polyline of vertical, horizontal and oblique pieces."""
    
    type_name = "piecewiseLinear"
    config_class = PiecewiseLinearConfig
    
    @trace(label="piecewise_linear_approximate")
    def approximate(self, points, domain=None, overrides=None):
        opts = self.options(overrides)
        tracer = get_tracer()
        
        stroke = preprocess(points, domain=domain)
        pts = stroke.points
        if len(pts) < MIN_POINTS:
            return insufficient(self.type_name, len(pts), MIN_POINTS)
        
        unit, _, _ = normalize_uniform(pts, stroke.domain)
        corners = rdp_indices(unit, opts.simplify_tolerance)
        if len(corners) < 2:
            return failure(self.type_name, FailureReason.DEGENERATE_GEOMETRY,
                           "simplification left no segment", domain=stroke.domain)
        if len(corners) == 2:
            return failure(self.type_name, FailureReason.CONSTRAINT_VIOLATION,
                           "stroke simplifies to a single line; use the linear fitter",
                           domain=stroke.domain)
        
        pieces = []
        chunks = []
        scores = []
        for a, b in zip(corners[:-1], corners[1:]):
            chunk = pts[a:b + 1]
            chunks.append(chunk)
            pieces.append(_classify(chunk, opts))
            score = linearity(chunk)
            scores.append(score if score is not None else 0.0)
        
        blocked = _join_parallel(pieces, chunks)
        if blocked is not None:
            return failure(self.type_name, FailureReason.CONSTRAINT_VIOLATION,
                           "consecutive parallel pieces cannot be joined",
                           domain=stroke.domain, piece_index=blocked)
        
        joints = [_end_on(pieces[0], pts[0])]
        for k in range(len(pieces) - 1):
            joints.append(_joint(pieces[k], pieces[k + 1], pts[corners[k + 1]]))
        last = _end_on(pieces[-1], pts[-1])
        if math.hypot(last[0] - joints[0][0], last[1] - joints[0][1]) < CLOSE_SNAP:
            last = list(joints[0])
        joints.append(last)
        joints = [[float(x), float(y)] for x, y in joints]
        
        average = float(np.mean(scores))
        tracer.event(f"Polyline with {len(pieces)} pieces", average_linearity=average)
        if average < opts.segment_linearity_threshold:
            return failure(self.type_name, FailureReason.CONSTRAINT_VIOLATION,
                           "pieces are not linear enough", domain=stroke.domain,
                           average_linearity=average,
                           threshold=opts.segment_linearity_threshold)
        
        equations = [_with_range(eq, joints[k], joints[k + 1], k) for k, eq in enumerate(pieces)]
        
        # segment k runs between joints k and k + 1
        measured = []
        for k, chunk in enumerate(chunks):
            start, end = joints[k], joints[k + 1]
            residuals = chord_distances(chunk, np.array(start), np.array(end))
            measured.append(LinearSegment(start=start, end=end,
                                          metrics=metrics_from_residuals(residuals)))
        
        return build_result(
            self.type_name,
            measured,
            equations,
            knots=joints,
            domain=stroke.domain,
            export_data=ExportData(fitter=self.type_name, segments=measured,
                                   closed=joints[0] == joints[-1]),
            average_linearity=average,
            segment_linearity=scores,
            kinds=[eq.type.value for eq in equations],
        )
