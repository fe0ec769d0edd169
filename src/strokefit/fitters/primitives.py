"""
Candidate primitives for the multi-primitive optimizer.

Every candidate is fitted to one slice of samples with its endpoints
pinned to the slice ends, so neighbouring candidates share joints exactly.
Errors are distances from the samples to the primitive itself (exact for
lines and arcs, against a dense polyline for Bezier curves).

Candidates are light numpy-backed values; pydantic segments are only built
for the final chain.
"""

import math
from dataclasses import dataclass, replace

import numpy as np

from strokefit.fitters.base import NumericSingularityError
from strokefit.fitters.quadratic_bezier import evaluate_quadratic, fit_quadratic_control
from strokefit.models import (
    ArcSegment, CubicSegment, FitMetrics, LinearSegment, PrimitiveKind, QuadraticSegment,
)

BEZIER_SAMPLES = 64
MIN_ARC_RADIUS = 1e-3
MIN_ARC_SWEEP = 1e-3
COLLINEAR_EPSILON = 1e-6
COLLAPSE_EPSILON = 1e-6
TWO_PI = 2 * math.pi

# DP tie-break order
CANDIDATE_ORDER = (
    PrimitiveKind.LINEAR, PrimitiveKind.QUADRATIC, PrimitiveKind.CUBIC, PrimitiveKind.ARC,
)


@dataclass(frozen=True)
class Candidate:
    """
    One fitted primitive.
    
    ``controls`` holds the Bezier control points, or (start, end) for lines
    and arcs. Arcs also carry center, radius, start angle and a signed sweep.
    """
    kind: PrimitiveKind
    controls: np.ndarray
    center: np.ndarray = None
    radius: float = 0.0
    start_angle: float = 0.0
    sweep: float = 0.0
    
    @property
    def start(self):
        return self.controls[0]
    
    @property
    def end(self):
        return self.controls[-1]


def _bernstein3(t):
    t = np.asarray(t, dtype=float)
    mt = 1 - t
    return np.stack([mt ** 3, 3 * mt * mt * t, 3 * mt * t * t, t ** 3], axis=-1)


def evaluate_cubic(controls, t):
    return _bernstein3(t) @ np.asarray(controls)


def sample_candidate(candidate, count=BEZIER_SAMPLES):
    """Dense polyline along the candidate, start to end."""
    t = np.linspace(0.0, 1.0, count)
    if candidate.kind == PrimitiveKind.LINEAR:
        return candidate.start + t[:, None] * (candidate.end - candidate.start)
    if candidate.kind == PrimitiveKind.QUADRATIC:
        return evaluate_quadratic(*candidate.controls, t)
    if candidate.kind == PrimitiveKind.CUBIC:
        return evaluate_cubic(candidate.controls, t)
    angles = candidate.start_angle + candidate.sweep * t
    return candidate.center + candidate.radius * np.column_stack([np.cos(angles), np.sin(angles)])


def polyline_distances(points, polyline):
    """Distance from each point to the nearest point of a polyline."""
    pts = np.asarray(points, dtype=float)
    a = polyline[:-1]
    ab = polyline[1:] - a
    denom = np.einsum("ij,ij->i", ab, ab)
    denom = np.where(denom > 0, denom, 1.0)
    rel = pts[:, None, :] - a[None, :, :]
    t = np.clip(np.einsum("nij,ij->ni", rel, ab) / denom, 0.0, 1.0)
    nearest = a[None, :, :] + t[..., None] * ab[None, :, :]
    return np.min(np.linalg.norm(pts[:, None, :] - nearest, axis=2), axis=1)


def _arc_distances(points, candidate):
    rel = points - candidate.center
    radial = np.abs(np.linalg.norm(rel, axis=1) - candidate.radius)
    angles = np.arctan2(rel[:, 1], rel[:, 0])
    # progress along the sweep, in [0, 2pi)
    offset = np.mod((angles - candidate.start_angle) * np.sign(candidate.sweep), TWO_PI)
    inside = offset <= abs(candidate.sweep)
    to_ends = np.minimum(np.linalg.norm(points - candidate.start, axis=1),
                         np.linalg.norm(points - candidate.end, axis=1))
    return np.where(inside, radial, to_ends)


def candidate_distances(points, candidate):
    """Distance from each sample to the candidate primitive."""
    pts = np.asarray(points, dtype=float)
    if candidate.kind == PrimitiveKind.LINEAR:
        return polyline_distances(pts, np.array([candidate.start, candidate.end]))
    if candidate.kind == PrimitiveKind.ARC:
        return _arc_distances(pts, candidate)
    return polyline_distances(pts, sample_candidate(candidate))


def measure(points, candidate):
    """(rms, max_error) of the samples against the candidate."""
    d = candidate_distances(points, candidate)
    if d.size == 0:
        return 0.0, 0.0
    return float(np.sqrt(np.mean(d * d))), float(np.max(d))


# Fitting

def fit_line(points):
    pts = np.asarray(points, dtype=float)
    return Candidate(PrimitiveKind.LINEAR, np.array([pts[0], pts[-1]]))


def fit_quadratic(points):
    pts = np.asarray(points, dtype=float)
    if len(pts) < 3:
        return None
    return Candidate(PrimitiveKind.QUADRATIC, np.array(fit_quadratic_control(pts)))


def _unit(v):
    norm = float(np.linalg.norm(v))
    return v / norm if norm > 0 else v


def _chord_parameters(points):
    steps = np.linalg.norm(np.diff(points, axis=0), axis=1)
    t = np.concatenate([[0.0], np.cumsum(steps)])
    return t / t[-1] if t[-1] > 0 else np.linspace(0.0, 1.0, len(points))


def fit_cubic(points):
    """
    Cubic with end tangents from the first and last steps.
    
    The two tangent lengths come from the least-squares system over a
    chord-length parameterization, clamped to [1%, 100%] of the chord.
    """
    pts = np.asarray(points, dtype=float)
    if len(pts) < 4:
        return None
    p0, p3 = pts[0], pts[-1]
    tangent_start = _unit(pts[1] - p0)
    tangent_end = _unit(pts[-2] - p3)
    
    t = _chord_parameters(pts)
    basis = _bernstein3(t)
    a1 = basis[:, 1:2] * tangent_start
    a2 = basis[:, 2:3] * tangent_end
    target = pts - (basis[:, 0:1] + basis[:, 1:2]) * p0 - (basis[:, 2:3] + basis[:, 3:4]) * p3
    
    c00 = float(np.sum(a1 * a1))
    c01 = float(np.sum(a1 * a2))
    c11 = float(np.sum(a2 * a2))
    x0 = float(np.sum(a1 * target))
    x1 = float(np.sum(a2 * target))
    
    chord = float(np.linalg.norm(p3 - p0))
    det = c00 * c11 - c01 * c01
    if abs(det) < 1e-12:
        alpha1 = alpha2 = chord / 3
    else:
        alpha1 = (c11 * x0 - c01 * x1) / det
        alpha2 = (c00 * x1 - c01 * x0) / det
    
    alpha1 = max(0.01 * chord, min(alpha1, chord))
    alpha2 = max(0.01 * chord, min(alpha2, chord))
    controls = np.array([p0, p0 + alpha1 * tangent_start, p3 + alpha2 * tangent_end, p3])
    return Candidate(PrimitiveKind.CUBIC, controls)


def circumcircle(a, b, c):
    """Center and radius of the circle through three points, or None when collinear."""
    d = 2 * (a[0] * (b[1] - c[1]) + b[0] * (c[1] - a[1]) + c[0] * (a[1] - b[1]))
    if abs(d) < COLLINEAR_EPSILON:
        return None
    sa, sb, sc = a @ a, b @ b, c @ c
    center = np.array([
        (sa * (b[1] - c[1]) + sb * (c[1] - a[1]) + sc * (a[1] - b[1])) / d,
        (sa * (c[0] - b[0]) + sb * (a[0] - c[0]) + sc * (b[0] - a[0])) / d,
    ])
    radius = float(np.linalg.norm(a - center))
    if not math.isfinite(radius):
        raise NumericSingularityError("circumcircle is unbounded")
    return center, radius


def directed_sweep(start_angle, end_angle, direction):
    """Sweep from start to end turning in ``direction`` (+1 ccw), in (0, 2pi] signed."""
    span = math.fmod(end_angle - start_angle, TWO_PI)
    if direction > 0:
        span = span if span > 0 else span + TWO_PI
        return span
    span = -span
    span = span if span > 0 else span + TWO_PI
    return -span


def make_arc(center, start, end, direction):
    """Arc around center from start to end, radius from the start point."""
    radius = float(np.linalg.norm(start - center))
    a0 = math.atan2(start[1] - center[1], start[0] - center[0])
    a1 = math.atan2(end[1] - center[1], end[0] - center[0])
    return Candidate(PrimitiveKind.ARC, np.array([start, end]), center=np.asarray(center, float),
                     radius=radius, start_angle=a0, sweep=directed_sweep(a0, a1, direction))


def fit_arc(points):
    """Circular arc through the first, middle and last samples."""
    pts = np.asarray(points, dtype=float)
    if len(pts) < 3:
        return None
    start, mid, end = pts[0], pts[len(pts) // 2], pts[-1]
    circle = circumcircle(start, mid, end)
    if circle is None:
        return None
    center, radius = circle
    if radius < MIN_ARC_RADIUS:
        return None
    turn = (mid[0] - start[0]) * (end[1] - start[1]) - (mid[1] - start[1]) * (end[0] - start[0])
    # a counter-clockwise start, mid, end triangle means a counter-clockwise arc
    direction = 1 if turn > 0 else -1
    arc = make_arc(center, start, end, direction)
    if abs(arc.sweep) < MIN_ARC_SWEEP:
        return None
    return arc


FITTERS = {
    PrimitiveKind.LINEAR: fit_line,
    PrimitiveKind.QUADRATIC: fit_quadratic,
    PrimitiveKind.CUBIC: fit_cubic,
    PrimitiveKind.ARC: fit_arc,
}


# Transforms

def snap_to_grid(values, step, digits=6):
    """Vectorized round to the nearest multiple of step."""
    return np.round(np.round(np.asarray(values, dtype=float) / step) * step, digits)


def transform_candidate(candidate, scale, offset):
    """Apply p -> p * scale + offset to every coordinate of the candidate."""
    controls = candidate.controls * scale + offset
    if candidate.kind != PrimitiveKind.ARC:
        return replace(candidate, controls=controls)
    return replace(candidate, controls=controls, center=candidate.center * scale + offset,
                   radius=candidate.radius * scale)


def canonical_arc(center, start, end, direction):
    """
    Arc with both endpoints exactly on its circle.
    
    The center is moved onto the perpendicular bisector of start-end (the
    nearest such point to the given center).
    """
    mid = (start + end) / 2
    chord = end - start
    length = float(np.linalg.norm(chord))
    if length < COLLAPSE_EPSILON:
        return None
    normal = np.array([-chord[1], chord[0]]) / length
    center = mid + normal * float((center - mid) @ normal)
    arc = make_arc(center, start, end, direction)
    if arc.radius < MIN_ARC_RADIUS or abs(arc.sweep) < MIN_ARC_SWEEP:
        return None
    return arc


def quantize_candidate(candidate, step):
    """
    Snap anchors and control points to the grid (world coordinates).
    
    Returns None when the snapped primitive collapses.
    """
    snapped = snap_to_grid(candidate.controls, step)
    if np.linalg.norm(snapped[-1] - snapped[0]) < COLLAPSE_EPSILON:
        return None
    if candidate.kind != PrimitiveKind.ARC:
        return replace(candidate, controls=snapped)
    center = snap_to_grid(candidate.center, step)
    return canonical_arc(center, snapped[0], snapped[-1], 1 if candidate.sweep >= 0 else -1)


# Continuity

def start_tangent(candidate):
    if candidate.kind == PrimitiveKind.ARC:
        radial = candidate.start - candidate.center
        return _unit(np.array([-radial[1], radial[0]]) * np.sign(candidate.sweep))
    return _unit(candidate.controls[1] - candidate.controls[0])


def end_tangent(candidate):
    if candidate.kind == PrimitiveKind.ARC:
        radial = candidate.end - candidate.center
        return _unit(np.array([-radial[1], radial[0]]) * np.sign(candidate.sweep))
    return _unit(candidate.controls[-1] - candidate.controls[-2])


def with_start_tangent(candidate, direction):
    """Re-aim the entry control point along direction, keeping its distance."""
    if candidate.kind not in (PrimitiveKind.QUADRATIC, PrimitiveKind.CUBIC):
        return candidate
    controls = candidate.controls.copy()
    length = float(np.linalg.norm(controls[1] - controls[0]))
    controls[1] = controls[0] + direction * length
    return replace(candidate, controls=controls)


def with_end_tangent(candidate, direction):
    """Re-aim the exit control point along direction, keeping its distance."""
    if candidate.kind not in (PrimitiveKind.QUADRATIC, PrimitiveKind.CUBIC):
        return candidate
    controls = candidate.controls.copy()
    length = float(np.linalg.norm(controls[-1] - controls[-2]))
    controls[-2] = controls[-1] - direction * length
    return replace(candidate, controls=controls)


def with_start(candidate, point):
    """Move the start anchor onto point (arcs keep their center and direction)."""
    point = np.asarray(point, dtype=float)
    if candidate.kind == PrimitiveKind.ARC:
        return make_arc(candidate.center, point, candidate.end, 1 if candidate.sweep >= 0 else -1)
    controls = candidate.controls.copy()
    controls[0] = point
    return replace(candidate, controls=controls)


def to_segment(candidate, rms=0.0, max_error=0.0):
    """Pydantic Segment for a world-space candidate."""
    metrics = FitMetrics(rms=rms, max_error=max_error)
    cps = [[float(x), float(y)] for x, y in candidate.controls]
    if candidate.kind == PrimitiveKind.LINEAR:
        return LinearSegment(start=cps[0], end=cps[-1], metrics=metrics)
    if candidate.kind == PrimitiveKind.QUADRATIC:
        return QuadraticSegment(control_points=cps, metrics=metrics)
    if candidate.kind == PrimitiveKind.CUBIC:
        return CubicSegment(control_points=cps, metrics=metrics)
    return ArcSegment(
        center=[float(candidate.center[0]), float(candidate.center[1])],
        radius=candidate.radius,
        start_angle=candidate.start_angle,
        end_angle=candidate.start_angle + candidate.sweep,
        sweep_direction=1 if candidate.sweep >= 0 else -1,
        start=cps[0],
        end=cps[-1],
        metrics=metrics,
    )
