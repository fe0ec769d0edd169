"""
Quadratic regression spline engine.

Works on samples already normalized to the unit box with strictly
increasing x. The spline is a least-squares projection of the sample
polyline onto a degree-2 B-spline basis: Gram entries are integrated
numerically over [0, 1], the pentadiagonal normal equations are stored as
6-wide band rows (5 basis products + right-hand side) and solved by banded
Gaussian elimination.

Knot sequences always carry two virtual knots below 0 and two above 1, so
the basis is open/clamped at the ends of the drawing range.
"""

from dataclasses import dataclass

import numpy as np

from strokefit.fitters.base import NumericSingularityError
from strokefit.models import Knot
from strokefit.tracer import get_tracer

DEGREE = 2
LOWER_VIRTUAL = (-0.1, -0.05)
UPPER_VIRTUAL = (1.05, 1.1)
INTEGRATION_STEPS = 1000
BAND_WIDTH = 6
PIVOT_EPSILON = 1e-14
OUTLIER_SIGMA = 1.5
CURVATURE_WINDOW = 5


def padded_knots(active):
    """Full knot vector: two virtual knots on each side of the active knots."""
    return np.concatenate([LOWER_VIRTUAL, np.asarray(active, dtype=float), UPPER_VIRTUAL])


def basis_matrix(knots, ts, degree=DEGREE):
    """
    Evaluate every B-spline basis function at ts (Cox-de Boor recursion).
    
    Functions are zero outside the drawing window [knots[degree], knots[-degree-1]].
    
    Returns:
        (len(ts), len(knots) - degree - 1) array
    """
    knots = np.asarray(knots, dtype=float)
    ts = np.asarray(ts, dtype=float)[:, None]
    
    basis = ((knots[:-1] <= ts) & (ts < knots[1:])).astype(float)
    for k in range(1, degree + 1):
        count = len(knots) - 1 - k
        lo = knots[:count]
        hi = knots[k + 1:k + 1 + count]
        left_den = knots[k:k + count] - lo
        right_den = hi - knots[1:1 + count]
        left = np.divide(ts - lo, left_den, out=np.zeros((len(ts), count)), where=left_den > 0)
        right = np.divide(hi - ts, right_den, out=np.zeros((len(ts), count)), where=right_den > 0)
        basis = left * basis[:, :count] + right * basis[:, 1:count + 1]
    
    window = (ts[:, 0] >= knots[degree]) & (ts[:, 0] <= knots[-degree - 1])
    return basis * window[:, None]


def integration_grid(steps=INTEGRATION_STEPS):
    """Midpoint-rule nodes over [0, 1] and their common weight."""
    return (np.arange(steps) + 0.5) / steps, 1.0 / steps


def assemble_banded(knots, xs, ys):
    """
    Build the banded normal equations for the least-squares projection.
    
    Row i holds <N_i, N_{i-2..i+2}> in columns 0..4 and <N_i, f> in column
    5, where f is the linear interpolant of the samples.
    """
    ts, weight = integration_grid()
    basis = basis_matrix(knots, ts)
    target = np.interp(ts, xs, ys)
    
    gram = basis.T @ basis * weight
    rhs = basis.T @ target * weight
    
    size = gram.shape[0]
    band = np.zeros((size, BAND_WIDTH))
    for i in range(size):
        for j in range(5):
            col = i + j - 2
            if 0 <= col < size:
                band[i, j] = gram[i, col]
        band[i, 5] = rhs[i]
    return band


def solve_banded(band):
    """
    Solve a pentadiagonal system given as 6-wide band rows.
    
    Forward sweep scales each pivot row to a unit diagonal and eliminates the
    two rows below; back substitution then reads the solution off column 5.
    
    Raises:
        NumericSingularityError: a pivot vanished
    """
    ab = np.array(band, dtype=float)
    size = len(ab)
    for i in range(size):
        pivot = ab[i, 2]
        if abs(pivot) < PIVOT_EPSILON:
            raise NumericSingularityError(f"zero pivot in spline system at row {i}")
        ab[i, 2:] /= pivot
        for r in (1, 2):
            if i + r >= size:
                break
            factor = ab[i + r, 2 - r]
            for c in (2, 3, 4):
                ab[i + r, c - r] -= factor * ab[i, c]
            ab[i + r, 5] -= factor * ab[i, 5]
    
    coef = np.zeros(size)
    for i in range(size - 1, -1, -1):
        value = ab[i, 5]
        if i + 1 < size:
            value -= ab[i, 3] * coef[i + 1]
        if i + 2 < size:
            value -= ab[i, 4] * coef[i + 2]
        coef[i] = value
    return coef


def evaluate_spline(knots, coef, ts):
    return basis_matrix(knots, ts) @ coef


def interval_polynomials(active, knots, coef):
    """
    Per-interval power-basis coefficients (a, b, c) of y = a x^2 + b x + c.
    
    Each interval's piece is recovered exactly from three interior samples.
    """
    polys = []
    for x0, x1 in zip(active[:-1], active[1:]):
        width = x1 - x0
        ts = np.array([x0 + 0.25 * width, x0 + 0.5 * width, x0 + 0.75 * width])
        a, b, c = np.polyfit(ts, evaluate_spline(knots, coef, ts), 2)
        polys.append((float(a), float(b), float(c)))
    return polys


def second_derivative_jumps(polys):
    """|f''| jump across each interior knot (one entry per interior knot)."""
    second = np.array([2 * a for a, _, _ in polys])
    return np.abs(np.diff(second))


def rank_knots(values, diffs):
    """
    Assign removal priorities to interior knots.
    
    Knots are ordered by descending second-derivative jump; priority 0 is
    kept longest. Scores more than 1.5 sigma above the mean mark sharp
    features and are moved to the front of the order, so they are removed last.
    Pure: the inputs are not modified.
    
    Returns:
        list of Knot in ascending knot order
    """
    values = np.asarray(values, dtype=float)
    diffs = np.asarray(diffs, dtype=float)
    if len(values) == 0:
        return []
    
    std = float(np.std(diffs))
    if std > 0:
        outlier = diffs - float(np.mean(diffs)) > OUTLIER_SIGMA * std
    else:
        outlier = np.zeros(len(diffs), bool)
    
    by_score = sorted(range(len(values)), key=lambda i: (-diffs[i], i))
    order = [i for i in by_score if outlier[i]] + [i for i in by_score if not outlier[i]]
    
    priority = {index: rank for rank, index in enumerate(order)}
    return [Knot(value=float(values[i]), priority=priority[i], diff=float(diffs[i]))
            for i in range(len(values))]


def turn_curvature(points):
    """Signed turn (cross product of unit steps) at every sample; 0 at the ends."""
    pts = np.asarray(points, dtype=float)
    out = np.zeros(len(pts))
    if len(pts) < 3:
        return out
    v1 = pts[1:-1] - pts[:-2]
    v2 = pts[2:] - pts[1:-1]
    l1 = np.linalg.norm(v1, axis=1)
    l2 = np.linalg.norm(v2, axis=1)
    ok = (l1 > 0) & (l2 > 0)
    cross = v1[:, 0] * v2[:, 1] - v1[:, 1] * v2[:, 0]
    out[1:-1][ok] = cross[ok] / (l1[ok] * l2[ok])
    return out


def _smooth_profile(values, window=CURVATURE_WINDOW):
    if len(values) < window:
        return values.copy()
    kernel = np.ones(window) / window
    return np.convolve(np.pad(values, window // 2, mode="edge"), kernel, mode="valid")


def curvature_minima(points):
    """Interior indices where the smoothed |curvature| has a local minimum."""
    profile = np.abs(_smooth_profile(turn_curvature(points)))
    return [i for i in range(2, len(profile) - 2)
            if profile[i] <= profile[i - 1] and profile[i] <= profile[i + 1]
            and (profile[i] < profile[i - 1] or profile[i] < profile[i + 1])]


def _division_indices(n, count, minima):
    """Fractional sample indices for ``count`` knots, endpoints included."""
    min_gap = n * 0.1
    chosen = [0.0]
    for i in minima:
        if i - chosen[-1] >= min_gap:
            chosen.append(float(i))
    if chosen[-1] != n - 1:
        chosen.append(float(n - 1))
    
    # split runs that are too long
    max_gap = n * 0.2
    indices = [chosen[0]]
    for start, end in zip(chosen[:-1], chosen[1:]):
        if end - start > max_gap:
            pieces = int(np.ceil((end - start) / max_gap))
            indices.extend(start + j * (end - start) / pieces for j in range(1, pieces))
        indices.append(end)
    
    while len(indices) < count:
        gaps = np.diff(indices)
        widest = int(np.argmax(gaps))
        indices.insert(widest + 1, (indices[widest] + indices[widest + 1]) / 2)
    while len(indices) > count and len(indices) > 2:
        gaps = np.diff(indices)
        narrowest = int(np.argmin(gaps))
        # never drop the last endpoint
        drop = narrowest + 1 if narrowest + 1 < len(indices) - 1 else narrowest
        del indices[drop]
    return indices


def candidate_knots(points, count, min_distance):
    """
    Candidate knot positions in [0, 1] (x of the unit-box samples).
    
    Knots sit preferentially at low-curvature samples; runs are split or
    merged to reach ``count`` knots, then knots closer than
    ``min_distance`` to their predecessor (or to 1) are dropped.
    """
    pts = np.asarray(points, dtype=float)
    n = len(pts)
    if n <= 2 or count <= 2:
        return np.array([0.0, 1.0])
    
    indices = _division_indices(n, count, curvature_minima(pts))
    xs = np.interp(indices, np.arange(n), pts[:, 0])
    
    kept = [0.0]
    for x in xs[1:-1]:
        if x - kept[-1] >= min_distance and 1.0 - x >= min_distance:
            kept.append(float(x))
    kept.append(1.0)
    return np.array(kept)


@dataclass(frozen=True)
class SplineSolution:
    """One solved spline in unit-box coordinates."""
    active: np.ndarray
    knots: np.ndarray
    coef: np.ndarray
    polys: list
    
    def evaluate(self, xs):
        return evaluate_spline(self.knots, self.coef, xs)


def solve_spline(xs, ys, active):
    """
    Fit the spline with the given active knots (0 and 1 included).
    
    Raises:
        NumericSingularityError: the normal equations are singular
    """
    active = np.asarray(active, dtype=float)
    if len(active) < 2 or np.any(np.diff(active) <= 0):
        raise NumericSingularityError("knots must be strictly increasing")
    knots = padded_knots(active)
    coef = solve_banded(assemble_banded(knots, xs, ys))
    get_tracer().event(f"Spline solved with {len(active)} knots", level="DEBUG")
    return SplineSolution(active=active, knots=knots, coef=coef,
                          polys=interval_polynomials(active, knots, coef))


class SplineModel:
    """
    Cached candidates and knot ranking for one stroke.
    
    Ranking is computed once from the solve with every candidate; later
    solves at other knot counts only pick knots by priority.
    """
    
    def __init__(self, xs, ys, candidates):
        self.xs = np.asarray(xs, dtype=float)
        self.ys = np.asarray(ys, dtype=float)
        self.candidates = np.asarray(candidates, dtype=float)
        full = solve_spline(self.xs, self.ys, self.candidates)
        self.ranking = rank_knots(self.candidates[1:-1], second_derivative_jumps(full.polys))
    
    @property
    def max_count(self):
        return len(self.candidates)
    
    def active_for(self, count):
        """Endpoints plus the ``count - 2`` interior knots kept longest."""
        interior = sorted(k.value for k in self.ranking if k.priority < count - 2)
        return np.array([0.0] + interior + [1.0])
    
    def solve(self, count):
        return solve_spline(self.xs, self.ys, self.active_for(count))
