"""
Circle and ellipse fitting.

The circle comes from Kasa's algebraic least squares (power sums of the
samples, one 2x2 solve). The ellipse takes the centroid as center, the
principal axis of the second moments as rotation and its axis lengths from
a closed-form fourth-moment system. Each candidate is gated on residual,
closure and coverage before one is chosen.
"""

import math
from dataclasses import dataclass, replace

import numpy as np

from strokefit.config import CircleConfig
from strokefit.equations import builder
from strokefit.fitters.base import (
    Fitter, NumericSingularityError, build_result, failure, insufficient, power_of_ten_step,
    round_to_step,
)
from strokefit.geometry.preprocess import (
    as_points, bounding_box, normalize_uniform, polyline_length, preprocess,
)
from strokefit.models import (
    EPSILON, CircleSegment, EllipseSegment, EquationMeta, ExportData, FailureReason, FitMetrics,
    PrimitiveKind,
)
from strokefit.tracer import get_tracer, trace

MIN_CIRCLE_POINTS = 3
MIN_ELLIPSE_POINTS = 5
MAX_COVERAGE = 2.0


@dataclass(frozen=True)
class ShapeCandidate:
    """One gated circle or ellipse hypothesis, in world coordinates."""
    kind: PrimitiveKind
    center: tuple
    radius_x: float
    radius_y: float
    rotation: float
    rms: float
    max_error: float
    coverage: float
    gap_ratio: float
    eccentricity: float
    success: bool
    snapped_from_ellipse: bool = False
    
    def summary(self):
        return {
            "success": self.success,
            "rms": self.rms,
            "coverage": self.coverage,
            "gap_ratio": self.gap_ratio,
            "eccentricity": self.eccentricity,
        }


def fit_circle(points):
    """
    Kasa algebraic circle fit.
    
    Returns:
        (center, radius) with radius the mean distance to the center
    
    Raises:
        NumericSingularityError: collinear or coincident samples
    """
    pts = as_points(points)
    n = len(pts)
    x, y = pts[:, 0], pts[:, 1]
    sx, sy = x.sum(), y.sum()
    sxx, syy, sxy = (x * x).sum(), (y * y).sum(), (x * y).sum()
    
    c = n * sxx - sx * sx
    d = n * sxy - sx * sy
    e = n * syy - sy * sy
    g = 0.5 * (n * ((x ** 3).sum() + (x * y * y).sum()) - sx * (sxx + syy))
    h = 0.5 * (n * ((x * x * y).sum() + (y ** 3).sum()) - sy * (sxx + syy))
    
    denominator = c * e - d * d
    if abs(denominator) < EPSILON:
        raise NumericSingularityError("circle normal equations are singular")
    
    center = np.array([(g * e - d * h) / denominator, (c * h - d * g) / denominator])
    radius = float(np.mean(np.linalg.norm(pts - center, axis=1)))
    if not math.isfinite(radius) or radius <= EPSILON:
        raise NumericSingularityError("circle radius vanished")
    return center, radius


def fit_ellipse(points):
    """
    Moment-based ellipse fit.
    
    Returns:
        (center, radius_x, radius_y, rotation); radius_x lies along rotation
    
    Raises:
        NumericSingularityError: the samples span no area
    """
    pts = as_points(points)
    center = pts.mean(axis=0)
    d = pts - center
    sxx = float(np.mean(d[:, 0] ** 2))
    syy = float(np.mean(d[:, 1] ** 2))
    sxy = float(np.mean(d[:, 0] * d[:, 1]))
    
    if abs(sxy) > 1e-12:
        rotation = 0.5 * math.atan2(2 * sxy, sxx - syy)
    else:
        rotation = 0.0 if sxx >= syy else math.pi / 2
    
    cos_t, sin_t = math.cos(rotation), math.sin(rotation)
    u = cos_t * d[:, 0] + sin_t * d[:, 1]
    v = -sin_t * d[:, 0] + cos_t * d[:, 1]
    u2, v2 = u * u, v * v
    m_u2, m_v2 = u2.mean(), v2.mean()
    m_u4, m_v4, m_u2v2 = (u2 * u2).mean(), (v2 * v2).mean(), (u2 * v2).mean()
    
    # fall back to the observed extents when the moment system is singular
    radius_x = max(float(np.max(np.abs(u))), EPSILON)
    radius_y = max(float(np.max(np.abs(v))), EPSILON)
    denom = m_u4 * m_v4 - m_u2v2 * m_u2v2
    if abs(denom) > 1e-12:
        a = (m_u2 * m_v4 - m_v2 * m_u2v2) / denom
        c = (m_v2 * m_u4 - m_u2 * m_u2v2) / denom
        if a > EPSILON and c > EPSILON:
            radius_x = 1 / math.sqrt(a)
            radius_y = 1 / math.sqrt(c)
    
    if radius_x <= EPSILON or radius_y <= EPSILON:
        raise NumericSingularityError("ellipse has no area")
    return center, radius_x, radius_y, rotation


def circle_residuals(points, center, radius):
    """Signed radial residuals of samples against a circle."""
    pts = as_points(points)
    return np.linalg.norm(pts - np.asarray(center), axis=1) - radius


def ellipse_residuals(points, center, radius_x, radius_y, rotation):
    """
    Approximate geometric residuals against an ellipse.
    
    Uses |1 - normalized radius| scaled by the larger semi-axis.
    """
    pts = as_points(points)
    d = pts - np.asarray(center)
    cos_t, sin_t = math.cos(rotation), math.sin(rotation)
    u = cos_t * d[:, 0] + sin_t * d[:, 1]
    v = -sin_t * d[:, 0] + cos_t * d[:, 1]
    normalized = np.sqrt(u * u / (radius_x ** 2 + EPSILON) + v * v / (radius_y ** 2 + EPSILON))
    return (1 - normalized) * max(radius_x, radius_y, EPSILON)


def ellipse_perimeter(radius_x, radius_y):
    """Ramanujan's second approximation of the ellipse perimeter."""
    if radius_x <= EPSILON or radius_y <= EPSILON:
        return 0.0
    h = (radius_x - radius_y) ** 2 / (radius_x + radius_y) ** 2
    return math.pi * (radius_x + radius_y) * (1 + 3 * h / (10 + math.sqrt(max(0.0, 4 - 3 * h))))


def shape_knots(center, radius_x, radius_y, rotation, count=4):
    """Evenly spaced on-curve points starting at parameter 0."""
    cos_t, sin_t = math.cos(rotation), math.sin(rotation)
    knots = []
    for i in range(count):
        theta = 2 * math.pi * i / count
        lx, ly = radius_x * math.cos(theta), radius_y * math.sin(theta)
        knots.append([center[0] + lx * cos_t - ly * sin_t, center[1] + lx * sin_t + ly * cos_t])
    return knots


class CircleFitter(Fitter):
    """Fits a single circle or ellipse to a (mostly) closed stroke."""
    
    type_name = "singleCircle"
    config_class = CircleConfig
    
    def _evaluate(self, kind, fit_points, center, rx, ry, rotation, length, gap, scale, opts):
        """Gate one hypothesis; all inputs in world coordinates."""
        if kind == PrimitiveKind.CIRCLE:
            residuals = circle_residuals(fit_points, center, rx)
            perimeter = 2 * math.pi * rx
            tolerance = opts.circle_rms_tolerance
            gap_ratio = gap / rx if rx > EPSILON else math.inf
            eccentricity = 0.0
        else:
            residuals = ellipse_residuals(fit_points, center, rx, ry, rotation)
            perimeter = ellipse_perimeter(rx, ry)
            tolerance = opts.ellipse_rms_tolerance
            mean_radius = (rx + ry) / 2
            gap_ratio = gap / mean_radius if mean_radius > EPSILON else math.inf
            eccentricity = 1 - min(rx, ry) / max(rx, ry)
        
        rms = float(np.sqrt(np.mean(residuals ** 2)))
        coverage = min(MAX_COVERAGE, length / perimeter) if perimeter > EPSILON else 0.0
        success = (
            rms <= tolerance * scale
            and gap_ratio <= opts.max_endpoint_gap_ratio
            and coverage >= opts.min_coverage_ratio
            and eccentricity <= opts.max_eccentricity
        )
        return ShapeCandidate(
            kind=kind,
            center=(float(center[0]), float(center[1])),
            radius_x=float(rx),
            radius_y=float(ry),
            rotation=float(rotation),
            rms=rms,
            max_error=float(np.max(np.abs(residuals))),
            coverage=coverage,
            gap_ratio=gap_ratio,
            eccentricity=eccentricity,
            success=success,
        )
    
    def _choose(self, circle, ellipse, evaluate, opts):
        """Pick between the gated candidates; returns None when both fail."""
        if ellipse is not None and ellipse.success:
            ratio = abs(ellipse.radius_x - ellipse.radius_y) / max(ellipse.radius_x, ellipse.radius_y)
            if ratio <= opts.circle_snap_ratio:
                if circle is not None and circle.success:
                    return circle
                mean_radius = (ellipse.radius_x + ellipse.radius_y) / 2
                snapped = evaluate(PrimitiveKind.CIRCLE, ellipse.center, mean_radius, mean_radius, 0.0)
                if snapped.success:
                    return replace(snapped, snapped_from_ellipse=True)
                return ellipse
            if circle is None or not circle.success or opts.prefer_ellipse:
                return ellipse
            if ellipse.rms + 1e-6 < circle.rms or ellipse.coverage > circle.coverage + 0.05:
                return ellipse
            return circle
        if circle is not None and circle.success:
            return circle
        return None
    
    def _quantize(self, chosen, step, evaluate, opts):
        """Snap center and radii to the grid and re-run the gates."""
        center = chosen.center
        if opts.quantize_center:
            center = (round_to_step(center[0], step), round_to_step(center[1], step))
        rx, ry = chosen.radius_x, chosen.radius_y
        if opts.quantize_axes:
            rx = round_to_step(rx, step)
            ry = round_to_step(ry, step)
        if rx <= EPSILON:
            rx = max(chosen.radius_x, step * 0.25)
        if ry <= EPSILON:
            ry = max(chosen.radius_y, step * 0.25)
        if chosen.kind == PrimitiveKind.CIRCLE:
            ry = rx
        snapped = evaluate(chosen.kind, center, rx, ry, chosen.rotation)
        return replace(snapped, success=chosen.success and snapped.success,
                       snapped_from_ellipse=chosen.snapped_from_ellipse), snapped.success
    
    @trace(label="circle_approximate")
    def approximate(self, points, domain=None, overrides=None):
        opts = self.options(overrides)
        tracer = get_tracer()
        
        raw = as_points(points)
        if len(raw) < MIN_CIRCLE_POINTS:
            return insufficient(self.type_name, len(raw), MIN_CIRCLE_POINTS, domain=domain)
        
        # algebraic fits run on unsmoothed samples; smoothing shrinks curves
        fit_stroke = preprocess(raw, domain=domain, resample_count=opts.resample_count,
                                prune_tolerance=opts.prune_tolerance)
        trace_stroke = preprocess(raw, domain=domain, smooth_window=opts.smooth_window,
                                  resample_count=opts.resample_count, closed=opts.closed)
        fit_points = fit_stroke.points
        if len(fit_points) < MIN_CIRCLE_POINTS:
            return insufficient(self.type_name, len(fit_points), MIN_CIRCLE_POINTS,
                                domain=fit_stroke.domain)
        
        used_domain = fit_stroke.domain
        unit, origin, unit_scale = normalize_uniform(fit_points, used_domain)
        
        traced = trace_stroke.points
        length = polyline_length(traced)
        gap = float(np.hypot(*(traced[-1] - traced[0])))
        scale = max(1.0, used_domain.width, used_domain.height)
        
        def evaluate(kind, center, rx, ry, rotation):
            return self._evaluate(kind, fit_points, center, rx, ry, rotation, length, gap, scale, opts)
        
        circle = ellipse = None
        try:
            c, r = fit_circle(unit)
            circle = evaluate(PrimitiveKind.CIRCLE, c * unit_scale + origin, r * unit_scale,
                              r * unit_scale, 0.0)
        except NumericSingularityError as e:
            tracer.event(f"Circle fit skipped: {e}", level="DEBUG")
        
        if opts.enable_ellipse and len(fit_points) >= MIN_ELLIPSE_POINTS:
            try:
                c, rx, ry, rotation = fit_ellipse(unit)
                ellipse = evaluate(PrimitiveKind.ELLIPSE, c * unit_scale + origin, rx * unit_scale,
                                   ry * unit_scale, rotation)
            except NumericSingularityError as e:
                tracer.event(f"Ellipse fit skipped: {e}", level="DEBUG")
        
        candidates = {
            "circle_candidate": circle.summary() if circle else None,
            "ellipse_candidate": ellipse.summary() if ellipse else None,
        }
        
        if circle is None and ellipse is None:
            return failure(self.type_name, FailureReason.NUMERIC_SINGULARITY,
                           "no circle or ellipse could be solved", domain=used_domain)
        
        chosen = self._choose(circle, ellipse, evaluate, opts)
        if chosen is None:
            best = min((c for c in (circle, ellipse) if c is not None), key=lambda c: c.rms)
            reason = (FailureReason.TOLERANCE_EXCEEDED
                      if best.rms > (opts.circle_rms_tolerance if best.kind == PrimitiveKind.CIRCLE
                                     else opts.ellipse_rms_tolerance) * scale
                      else FailureReason.CONSTRAINT_VIOLATION)
            return failure(self.type_name, reason, "circle/ellipse gates rejected the stroke",
                           domain=used_domain, stroke_length=length, closing_gap=gap,
                           **candidates)
        
        quantization = None
        if opts.quantization_enabled:
            bbox = bounding_box(fit_points)
            q_range = max(bbox.width, bbox.height, used_domain.width, used_domain.height, 1.0)
            step = power_of_ten_step(q_range)
            base_success = chosen.success
            chosen, snapped_ok = self._quantize(chosen, step, evaluate, opts)
            quantization = {"step": step, "success": snapped_ok, "base_success": base_success}
        
        metrics = FitMetrics(rms=chosen.rms, max_error=chosen.max_error, coverage=chosen.coverage)
        meta = EquationMeta(primitive=chosen.kind, quantized=quantization is not None,
                            source=self.type_name)
        if chosen.kind == PrimitiveKind.CIRCLE:
            segment = CircleSegment(center=list(chosen.center), radius=chosen.radius_x,
                                    metrics=metrics)
            equation = builder.circle(chosen.center, chosen.radius_x, meta=meta)
        else:
            segment = EllipseSegment(center=list(chosen.center), radius_x=chosen.radius_x,
                                     radius_y=chosen.radius_y, rotation=chosen.rotation,
                                     metrics=metrics)
            equation = builder.ellipse(chosen.center, chosen.radius_x, chosen.radius_y,
                                       chosen.rotation, meta=meta)
        
        knots = shape_knots(chosen.center, chosen.radius_x, chosen.radius_y, chosen.rotation)
        tracer.event(f"Selected {chosen.kind.value}", rms=chosen.rms, coverage=chosen.coverage)
        
        return build_result(
            self.type_name,
            [segment],
            [equation],
            knots=knots,
            domain=used_domain,
            export_data=ExportData(fitter=self.type_name, segments=[segment], closed=True,
                                   shape=chosen.kind.value),
            success=chosen.success,
            reason=None if chosen.success else FailureReason.TOLERANCE_EXCEEDED,
            message="" if chosen.success else "quantized shape failed the gates",
            selected_shape=chosen.kind.value,
            rms=chosen.rms,
            coverage=chosen.coverage,
            closing_gap=gap,
            closing_gap_ratio=chosen.gap_ratio,
            stroke_length=length,
            snapped_from_ellipse=chosen.snapped_from_ellipse,
            quantization=quantization,
            point_count=len(fit_points),
            **candidates,
        )
