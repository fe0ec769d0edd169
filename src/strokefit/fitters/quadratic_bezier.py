"""
Single quadratic Bezier fitting.

Endpoints are pinned to the first and last samples; the middle control
point is the weighted least-squares solution over the interior samples
(weight = the quadratic Bernstein basis 2t(1-t) at each index fraction).
Cheap shape gates run first so loops, wiggles and back-and-forth strokes
are rejected before any fit is attempted.
"""

import math

import numpy as np

from strokefit.config import SingleQuadraticConfig
from strokefit.equations import builder
from strokefit.fitters.base import Fitter, build_result, failure, insufficient
from strokefit.geometry.preprocess import as_points, denormalize_points, polyline_length, preprocess
from strokefit.models import (
    EPSILON, EquationMeta, ExportData, FailureReason, FitMetrics, PrimitiveKind, QuadraticSegment,
)
from strokefit.tracer import get_tracer, trace

MIN_POINTS = 3


def evaluate_quadratic(p0, p1, p2, t):
    """Points of a quadratic Bezier at parameters t (scalar or array)."""
    t = np.asarray(t, dtype=float)[..., None]
    mt = 1 - t
    return mt * mt * np.asarray(p0) + 2 * mt * t * np.asarray(p1) + t * t * np.asarray(p2)


def fit_quadratic_control(points):
    """
    Least-squares middle control point for fixed endpoints.
    
    Minimizes sum |P_i - (1-t)^2 P0 - t^2 P2 - w_i P1|^2 with w_i = 2t(1-t)
    and t_i = i / (n - 1).
    
    Returns:
        (p0, p1, p2) arrays, or None for fewer than two points
    """
    pts = as_points(points)
    n = len(pts)
    if n < 2:
        return None
    p0, p2 = pts[0], pts[-1]
    t = np.linspace(0.0, 1.0, n)[1:-1]
    interior = pts[1:-1]
    keep = (t > EPSILON) & (1 - t > EPSILON)
    t, interior = t[keep], interior[keep]
    
    if len(t) == 0:
        return p0.copy(), (p0 + p2) / 2, p2.copy()
    
    w = 2 * t * (1 - t)
    base = ((1 - t) ** 2)[:, None] * p0 + (t ** 2)[:, None] * p2
    p1 = (w[:, None] * (interior - base)).sum(axis=0) / float(np.sum(w * w))
    return p0.copy(), p1, p2.copy()


def quadratic_residuals(points, p0, p1, p2):
    """Distances between samples and the curve at their index-fraction parameters."""
    pts = as_points(points)
    if len(pts) == 0:
        return np.zeros(0)
    t = np.linspace(0.0, 1.0, len(pts)) if len(pts) > 1 else np.zeros(1)
    return np.linalg.norm(pts - evaluate_quadratic(p0, p1, p2, t), axis=1)


def count_extrema(points, diagonal, opts):
    """Prominent per-axis local extrema, at least ``extrema_persistence`` samples apart."""
    pts = as_points(points)
    if len(pts) < 3:
        return 0
    diag = max(diagonal, EPSILON)
    threshold = max(opts.extrema_prominence_ratio * diag * 0.2, 1e-4)
    total = 0
    for axis in range(2):
        values = pts[:, axis]
        last = -math.inf
        for i in range(1, len(values) - 1):
            before = values[i] - values[i - 1]
            after = values[i + 1] - values[i]
            is_peak = before > threshold and after < -threshold
            is_valley = before < -threshold and after > threshold
            if not (is_peak or is_valley) or i - last < opts.extrema_persistence:
                continue
            if min(abs(before), abs(after)) < opts.extrema_prominence_ratio * diag:
                continue
            total += 1
            last = i
    return total


def count_curvature_flips(points, opts):
    """Sign changes of the normalized turn (cross product) above the curvature threshold."""
    pts = as_points(points)
    if len(pts) < 4:
        return 0
    flips = 0
    last_sign = 0
    last_index = -math.inf
    for i in range(len(pts) - 2):
        v1 = pts[i + 1] - pts[i]
        v2 = pts[i + 2] - pts[i + 1]
        l1, l2 = float(np.hypot(*v1)), float(np.hypot(*v2))
        if l1 < EPSILON or l2 < EPSILON:
            continue
        cross = (v1[0] * v2[1] - v1[1] * v2[0]) / (l1 * l2)
        if abs(cross) < opts.curvature_threshold:
            continue
        sign = 1 if cross > 0 else -1
        if last_sign != 0 and sign != last_sign and i - last_index >= opts.curvature_persistence:
            flips += 1
        if sign != last_sign:
            last_index = i
        last_sign = sign
    return flips


def count_backtracks(points, diagonal, opts):
    """
    Steps that move backwards along the start-end direction by more than the tolerance.
    
    Returns:
        (count, worst_delta) with worst_delta <= 0
    """
    pts = as_points(points)
    base = pts[-1] - pts[0]
    length = float(np.hypot(*base))
    if length < EPSILON:
        return 0, 0.0
    progress = (pts - pts[0]) @ (base / length)
    deltas = np.diff(progress)
    backwards = deltas[deltas < -opts.monotonic_tolerance_ratio * diagonal]
    worst = float(backwards.min()) if backwards.size else 0.0
    return int(backwards.size), worst


class SingleQuadraticFitter(Fitter):
    """Fits one quadratic Bezier curve to an open, gently bending stroke."""
    
    type_name = "singleQuadratic"
    config_class = SingleQuadraticConfig
    
    def _reject(self, reason, message, domain, **context):
        return failure(self.type_name, reason, message, domain=domain, **context)
    
    @trace(label="single_quadratic_approximate")
    def approximate(self, points, domain=None, overrides=None):
        opts = self.options(overrides)
        
        raw = as_points(points)
        if len(raw) < MIN_POINTS:
            return insufficient(self.type_name, len(raw), MIN_POINTS, domain=domain)
        
        stroke = preprocess(raw, domain=domain, smooth_window=opts.smooth_window,
                            resample_count=opts.resample_count,
                            prune_tolerance=opts.prune_tolerance, closed=opts.closed)
        pts = stroke.points
        if len(pts) < 2:
            return self._reject(FailureReason.DEGENERATE_GEOMETRY, "degenerate stroke",
                                stroke.domain, point_count=len(pts))
        
        span = pts.max(axis=0) - pts.min(axis=0)
        diagonal = float(np.hypot(*span))
        length = polyline_length(pts)
        gap = float(np.hypot(*(pts[-1] - pts[0])))
        
        if length < opts.min_stroke_length:
            return self._reject(FailureReason.DEGENERATE_GEOMETRY, "stroke too short",
                                stroke.domain, length=length, required=opts.min_stroke_length)
        if diagonal < opts.min_diagonal:
            return self._reject(FailureReason.DEGENERATE_GEOMETRY, "stroke too small",
                                stroke.domain, diagonal=diagonal, required=opts.min_diagonal)
        if gap < diagonal * opts.closure_ratio:
            return self._reject(FailureReason.CONSTRAINT_VIOLATION, "stroke appears closed",
                                stroke.domain, start_end_distance=gap,
                                threshold=diagonal * opts.closure_ratio)
        
        extrema = count_extrema(pts, diagonal, opts)
        if extrema > opts.allowed_extrema:
            return self._reject(FailureReason.CONSTRAINT_VIOLATION, "too many extrema",
                                stroke.domain, extrema_count=extrema, allowed=opts.allowed_extrema)
        
        flips = count_curvature_flips(pts, opts)
        if flips > opts.allowed_curvature_flips:
            return self._reject(FailureReason.CONSTRAINT_VIOLATION,
                                "curvature flips exceed allowance", stroke.domain,
                                curvature_flips=flips, allowed=opts.allowed_curvature_flips)
        
        backtracks, worst = count_backtracks(pts, diagonal, opts)
        if backtracks > 0:
            return self._reject(FailureReason.CONSTRAINT_VIOLATION,
                                "significant backtracking detected", stroke.domain,
                                backtrack_count=backtracks, max_backtrack_delta=worst)
        
        fit = fit_quadratic_control(stroke.normalized)
        if fit is None:
            return self._reject(FailureReason.NUMERIC_SINGULARITY,
                                "unable to determine the control point", stroke.domain)
        p0, p1, p2 = denormalize_points(np.array(fit), stroke.domain)
        
        residuals = quadratic_residuals(pts, p0, p1, p2)
        rms = float(np.sqrt(np.mean(residuals ** 2)))
        max_error = float(residuals.max())
        safe_diag = diagonal if diagonal > EPSILON else 1.0
        if rms / safe_diag > opts.error_tolerance_ratio:
            return self._reject(FailureReason.TOLERANCE_EXCEEDED, "fit error above tolerance",
                                stroke.domain, normalized_rms=rms / safe_diag,
                                tolerance=opts.error_tolerance_ratio)
        
        controls = [p0.tolist(), p1.tolist(), p2.tolist()]
        segment = QuadraticSegment(control_points=controls,
                                   metrics=FitMetrics(rms=rms, max_error=max_error))
        equation = builder.quadratic_bezier(*controls, meta=EquationMeta(
            primitive=PrimitiveKind.QUADRATIC, source=self.type_name))
        
        get_tracer().event("Quadratic accepted", rms=rms)
        
        return build_result(
            self.type_name,
            [segment],
            [equation],
            knots=controls,
            domain=stroke.domain,
            export_data=ExportData(fitter=self.type_name, segments=[segment]),
            rms=rms,
            max_error=max_error,
            normalized_rms=rms / safe_diag,
            normalized_max=max_error / safe_diag,
            point_count=len(pts),
            stroke_length=length,
            diagonal=diagonal,
            start_end_distance=gap,
            extrema_count=extrema,
            curvature_flips=flips,
            backtrack_count=backtracks,
        )
