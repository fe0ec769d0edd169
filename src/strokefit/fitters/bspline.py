"""
Quadratic B-spline fitting for single-valued strokes y = f(x).

The fitter keeps the last prepared stroke (its cleaned samples, knot
candidates and knot ranking) so ``refit`` can re-solve at another knot
count without preprocessing again. A failed fit clears it.
"""

import math
from dataclasses import dataclass

import numpy as np

from strokefit.config import BSplineConfig
from strokefit.equations import builder
from strokefit.fitters.base import (
    Fitter, NumericSingularityError, build_result, failure, insufficient, metrics_from_residuals,
    power_of_ten_step, round_to_step,
)
from strokefit.fitters.bspline_engine import SplineModel, candidate_knots
from strokefit.geometry.clean import ensure_functional_samples
from strokefit.geometry.preprocess import as_points, bounding_box
from strokefit.models import (
    EquationMeta, ExportData, FailureReason, LinearSegment, PrimitiveKind,
    QuadraticParams, QuadraticSegment,
)
from strokefit.paths import quadratic_controls, segments_from_equations
from strokefit.tracer import get_tracer, trace

MIN_POINTS = 3
FLAT_EPSILON = 1e-9


def check_monotonicity(points, domain, tolerance_ratio=1e-3):
    """
    Direction of the stroke's x projection.
    
    Steps smaller than ``tolerance_ratio`` of the domain width are ignored.
    
    Returns:
        "increasing", "decreasing", or None when the stroke goes both ways
        (or nowhere)
    """
    pts = as_points(points)
    if len(pts) < 2 or domain is None:
        return None
    tolerance = (domain.x_max - domain.x_min) * tolerance_ratio
    steps = np.diff(pts[:, 0])
    forward = int(np.count_nonzero(steps > tolerance))
    backward = int(np.count_nonzero(steps < -tolerance))
    if forward > 0 and backward == 0:
        return "increasing"
    if backward > 0 and forward == 0:
        return "decreasing"
    return None


def set_custom_knots(knots):
    """
    Validate caller-chosen interior knots (unit-box x values).
    
    Returns:
        active knot vector with 0 and 1 added
    
    Raises:
        ValueError: a knot lies outside (0, 1) or the knots do not strictly increase
    """
    values = np.asarray(list(knots), dtype=float)
    if values.ndim != 1 or not np.all(np.isfinite(values)):
        raise ValueError("custom knots must be a flat sequence of finite numbers")
    if np.any(values <= 0) or np.any(values >= 1):
        raise ValueError("custom knots must lie strictly between 0 and 1")
    if np.any(np.diff(values) <= 0):
        raise ValueError("custom knots must be strictly increasing")
    return np.concatenate([[0.0], values, [1.0]])


def _equation_y(equation, x):
    params = equation.params
    if isinstance(params, QuadraticParams):
        h, k = params.vertex
        return params.a * (x - h) ** 2 + k
    return params.slope * x + params.intercept


@dataclass
class _Prepared:
    """Cleaned stroke plus the unit-box mapping and the cached spline model."""
    points: np.ndarray
    origin: np.ndarray
    scale: np.ndarray
    domain: object
    opts: BSplineConfig
    reversed: bool
    merged: int
    dropped: int
    model: SplineModel = None


class QuadraticBSplineFitter(Fitter):
    """Fits a quadratic regression spline with adaptively chosen knots."""
    
    type_name = "quadraticBSpline"
    config_class = BSplineConfig
    orient_from_points = False
    
    def __init__(self, config=None):
        super().__init__(config)
        self._prepared = None
    
    def _prepare(self, points, domain, opts):
        """Monotonicity gate, cleaning and unit-box mapping. Returns (prepared, failure)."""
        raw = as_points(points)
        if len(raw) < MIN_POINTS:
            return None, insufficient(self.type_name, len(raw), MIN_POINTS, domain=domain)
        
        used_domain = domain if domain is not None else bounding_box(raw)
        direction = check_monotonicity(raw, used_domain, opts.monotonic_tolerance_ratio)
        if direction is None:
            return None, failure(self.type_name, FailureReason.CONSTRAINT_VIOLATION,
                                 "non-monotonic stroke: x must move in one direction",
                                 domain=used_domain)
        pts = raw[::-1].copy() if direction == "decreasing" else raw
        
        merged = dropped = 0
        if opts.clean_samples:
            cleaned = ensure_functional_samples(pts)
            if not cleaned.ok:
                return None, failure(self.type_name, FailureReason.CONSTRAINT_VIOLATION,
                                     f"non-functional stroke: {cleaned.reason}", domain=used_domain)
            pts = cleaned.points
            merged, dropped = cleaned.merged, len(cleaned.dropped)
        else:
            pts = pts[np.argsort(pts[:, 0], kind="stable")]
        
        if len(pts) < 2:
            return None, insufficient(self.type_name, len(pts), 2, domain=used_domain)
        
        origin = pts.min(axis=0)
        span = pts.max(axis=0) - origin
        scale = np.where(span > 2 * FLAT_EPSILON, span, 1.0)
        return _Prepared(points=pts, origin=origin, scale=scale, domain=used_domain, opts=opts,
                         reversed=direction == "decreasing", merged=merged, dropped=dropped), None
    
    def _unit(self, prepared):
        return (prepared.points - prepared.origin) / prepared.scale
    
    def _snap(self, a, vertex, x0, x1, step):
        """
        Snap a vertex to the grid.
        
        Two adjustments compete: keep the curvature and move the vertex, or
        move the vertex and re-derive the curvature through the left end of
        the piece. The one whose middle control point stays closer to the
        unsnapped one wins; neither is used if it moves the piece's ends by
        more than a grid step.
        """
        h, k = vertex
        snapped = (round_to_step(h, step), round_to_step(k, step))
        reference = quadratic_controls(a, vertex, x0, x1)
        
        options = [(a, snapped)]
        y0 = a * (x0 - h) ** 2 + k
        if abs(x0 - snapped[0]) > FLAT_EPSILON:
            options.append(((y0 - snapped[1]) / (x0 - snapped[0]) ** 2, snapped))
        
        best = None
        best_distance = math.inf
        for cand_a, cand_vertex in options:
            controls = quadratic_controls(cand_a, cand_vertex, x0, x1)
            distance = abs(controls[1][1] - reference[1][1])
            if not math.isfinite(distance):
                continue
            moved = max(abs(controls[0][1] - reference[0][1]), abs(controls[2][1] - reference[2][1]))
            if moved > step:
                continue
            if distance < best_distance:
                best, best_distance = (cand_a, cand_vertex), distance
        return best
    
    def _equations(self, prepared, solution):
        """World-space equation per interval; flat pieces become lines."""
        ox, oy = prepared.origin
        sx, sy = prepared.scale
        opts = prepared.opts
        step = power_of_ten_step(max(sx, sy)) if opts.snap else None
        
        equations = []
        fallbacks = 0
        for index, ((a, b, c), (t0, t1)) in enumerate(zip(solution.polys,
                                                         zip(solution.active[:-1], solution.active[1:]))):
            x_range = (ox + sx * t0, ox + sx * t1)
            if abs(a) < FLAT_EPSILON:
                meta = EquationMeta(segment_index=index, primitive=PrimitiveKind.LINEAR,
                                    source=self.type_name)
                slope = b * sy / sx
                anchor = [x_range[0], oy + sy * (b * t0 + c)]
                equations.append(builder.linear(slope, anchor, x_range, meta=meta))
                continue
            
            world_a = a * sy / (sx * sx)
            vertex = (ox + sx * (-b / (2 * a)), oy + sy * (c - b * b / (4 * a)))
            quantized = False
            if step is not None:
                snapped = self._snap(world_a, vertex, x_range[0], x_range[1], step)
                if snapped is None:
                    fallbacks += 1
                else:
                    world_a, vertex = snapped
                    quantized = True
            meta = EquationMeta(segment_index=index, primitive=PrimitiveKind.QUADRATIC,
                                quantized=quantized, source=self.type_name)
            equations.append(builder.quadratic_vertex(world_a, vertex, x_range, meta=meta))
        return equations, fallbacks
    
    def _result(self, prepared, solution):
        equations, fallbacks = self._equations(prepared, solution)
        pts = prepared.points
        bounds = [eq.domain.start for eq in equations] + [equations[-1].domain.end]
        
        segments = []
        all_residuals = np.zeros(len(pts))
        for i, (equation, segment) in enumerate(zip(equations, segments_from_equations(equations))):
            lo, hi = bounds[i], bounds[i + 1]
            inside = (pts[:, 0] >= lo) & ((pts[:, 0] < hi) if i < len(equations) - 1 else (pts[:, 0] <= hi))
            residuals = pts[inside, 1] - _equation_y(equation, pts[inside, 0])
            all_residuals[inside] = residuals
            metrics = metrics_from_residuals(residuals)
            if isinstance(segment, LinearSegment):
                segments.append(LinearSegment(start=segment.start, end=segment.end, metrics=metrics))
            else:
                segments.append(QuadraticSegment(control_points=segment.control_points,
                                                 metrics=metrics))
        
        knots = [[x, _equation_y(eq, x)] for x, eq in zip(bounds, equations + equations[-1:])]
        overall = metrics_from_residuals(all_residuals)
        model = prepared.model
        
        get_tracer().event(f"Spline fitted with {len(solution.active)} knots", rms=overall.rms)
        
        return build_result(
            self.type_name,
            segments,
            equations,
            knots=knots,
            domain=prepared.domain,
            export_data=ExportData(fitter=self.type_name, segments=segments,
                                   knot_parameters=[float(v) for v in solution.active]),
            rms=overall.rms,
            max_error=overall.max_error,
            knot_count=len(solution.active),
            candidate_count=model.max_count,
            knot_ranking=[k.model_dump() for k in model.ranking],
            reversed=prepared.reversed,
            merged_samples=prepared.merged,
            dropped_samples=prepared.dropped,
            snapped=prepared.opts.snap,
            snap_fallbacks=fallbacks,
        )
    
    def _solve(self, prepared, candidates, count):
        unit = self._unit(prepared)
        try:
            prepared.model = SplineModel(unit[:, 0], unit[:, 1], candidates)
            solution = prepared.model.solve(min(count, prepared.model.max_count))
        except NumericSingularityError as e:
            return failure(self.type_name, FailureReason.NUMERIC_SINGULARITY, str(e),
                           domain=prepared.domain)
        self._prepared = prepared
        return self._result(prepared, solution)
    
    @trace(label="bspline_approximate")
    def approximate(self, points, domain=None, overrides=None):
        opts = self.options(overrides)
        self._prepared = None
        prepared, rejected = self._prepare(points, domain, opts)
        if rejected is not None:
            return rejected
        
        count = opts.knot_count if opts.knot_count else opts.max_knots
        count = max(opts.min_knots, min(opts.max_knots, count))
        candidates = candidate_knots(self._unit(prepared), opts.max_knots, opts.min_knot_distance)
        return self._solve(prepared, candidates, count)
    
    @trace(label="bspline_custom_knots")
    def approximate_with_custom_knots(self, points, knots, domain=None, overrides=None):
        """
        Fit with caller-chosen interior knots (x in the stroke's unit box).
        
        Raises:
            ValueError: invalid knots (see set_custom_knots)
        """
        active = set_custom_knots(knots)
        opts = self.options(overrides)
        self._prepared = None
        prepared, rejected = self._prepare(points, domain, opts)
        if rejected is not None:
            return rejected
        return self._solve(prepared, active, len(active))
    
    @trace(label="bspline_refit")
    def refit(self, knot_count):
        """
        Re-solve the last fitted stroke with another knot count.
        
        Reuses the cached candidates and knot ranking.
        
        Raises:
            ValueError: no stroke has been fitted yet, or knot_count is out of range
        """
        prepared = self._prepared
        if prepared is None or prepared.model is None:
            raise ValueError("refit() needs a successful approximate() first")
        opts = prepared.opts
        upper = min(opts.max_knots, prepared.model.max_count)
        if not isinstance(knot_count, (int, np.integer)) or not opts.min_knots <= knot_count <= upper:
            raise ValueError(f"knot_count must be an integer in [{opts.min_knots}, {upper}]")
        try:
            solution = prepared.model.solve(knot_count)
        except NumericSingularityError as e:
            return failure(self.type_name, FailureReason.NUMERIC_SINGULARITY, str(e),
                           domain=prepared.domain)
        return self._result(prepared, solution)
