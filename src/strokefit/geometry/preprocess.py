"""
Stroke preprocessing for strokefit.

Bounding boxes, normalization to the unit box, smoothing, arc-length
resampling and collinear pruning, composed into the single ``preprocess``
pipeline that every fitter enters through.
"""

from dataclasses import dataclass

import numpy as np

from strokefit.models import EPSILON, Domain

DEFAULT_SMOOTH_WINDOW = 5


@dataclass(frozen=True)
class PreprocessedStroke:
    """Output of ``preprocess``: world points, unit-box points and the domain used."""
    points: np.ndarray
    normalized: np.ndarray
    domain: Domain


def as_points(points):
    """
    Convert a point sequence to an (n, 2) float64 array.
    
    Rows containing NaN or infinity are dropped.
    """
    if points is None:
        return np.zeros((0, 2))
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return np.zeros((0, 2))
    arr = arr.reshape(-1, 2)
    return arr[np.all(np.isfinite(arr), axis=1)]


def bounding_box(points):
    """Return the Domain enclosing the points, or None for an empty stroke."""
    pts = as_points(points)
    if len(pts) == 0:
        return None
    mins = pts.min(axis=0)
    maxs = pts.max(axis=0)
    return Domain(x_min=mins[0], x_max=maxs[0], y_min=mins[1], y_max=maxs[1])


def _spans(domain):
    w = domain.x_max - domain.x_min
    h = domain.y_max - domain.y_min
    return w, h


def normalize_points(points, domain=None):
    """
    Map points affinely into the unit box of ``domain``.
    
    Args:
        points: (n, 2) array-like
        domain: Domain to normalize against; defaults to the bounding box
    
    Returns:
        (normalized, domain)
    """
    pts = as_points(points)
    if domain is None:
        domain = bounding_box(pts)
    if domain is None:
        return pts.copy(), None
    
    w, h = _spans(domain)
    scale = np.array([w if w > 2 * EPSILON else 1.0, h if h > 2 * EPSILON else 1.0])
    origin = np.array([domain.x_min, domain.y_min])
    return (pts - origin) / scale, domain


def denormalize_points(points, domain):
    """Inverse of normalize_points; a degenerate axis collapses onto its minimum."""
    pts = as_points(points)
    w, h = _spans(domain)
    scale = np.array([w if w > 2 * EPSILON else 0.0, h if h > 2 * EPSILON else 0.0])
    origin = np.array([domain.x_min, domain.y_min])
    return pts * scale + origin


def normalize_uniform(points, domain=None):
    """
    Isotropic normalization: center on the domain center, divide by its larger span.
    
    Circles stay circles, which the per-axis unit box does not guarantee.
    
    Returns:
        (normalized, center, scale)
    """
    pts = as_points(points)
    if domain is None:
        domain = bounding_box(pts)
    center = np.array([(domain.x_min + domain.x_max) / 2, (domain.y_min + domain.y_max) / 2])
    scale = max(domain.width, domain.height)
    if scale <= 2 * EPSILON:
        scale = 1.0
    return (pts - center) / scale, center, scale


def normalize_symmetric(points):
    """
    Center on the bounding-box center and divide by the larger half-extent.
    
    The result lies in [-1, 1] on both axes.
    
    Returns:
        (normalized, center, scale)
    """
    pts = as_points(points)
    mins = pts.min(axis=0)
    maxs = pts.max(axis=0)
    center = (mins + maxs) / 2
    scale = float(np.max((maxs - mins) / 2))
    if scale <= EPSILON:
        scale = 1.0
    return (pts - center) / scale, center, scale


def smooth_points(points, window=DEFAULT_SMOOTH_WINDOW, closed=False):
    """
    Symmetric moving average.
    
    Open strokes clamp the window at the ends (endpoints average over fewer
    neighbours); closed strokes wrap around.
    """
    pts = as_points(points)
    n = len(pts)
    if window <= 1 or n <= 1 or window >= n:
        return pts.copy()
    
    half = window // 2
    
    if closed:
        idx = (np.arange(-half, n + half)) % n
        padded = pts[idx]
        kernel = np.ones(2 * half + 1) / (2 * half + 1)
        xs = np.convolve(padded[:, 0], kernel, mode="valid")
        ys = np.convolve(padded[:, 1], kernel, mode="valid")
        return np.column_stack([xs, ys])
    
    csum = np.vstack([np.zeros((1, 2)), np.cumsum(pts, axis=0)])
    lo = np.maximum(np.arange(n) - half, 0)
    hi = np.minimum(np.arange(n) + half, n - 1) + 1
    return (csum[hi] - csum[lo]) / (hi - lo)[:, None]


def cumulative_length(points):
    """Cumulative arc length along the polyline, starting at 0."""
    pts = as_points(points)
    if len(pts) == 0:
        return np.zeros(0)
    steps = np.linalg.norm(np.diff(pts, axis=0), axis=1)
    return np.concatenate([[0.0], np.cumsum(steps)])


def polyline_length(points):
    """Total length of the polyline."""
    lengths = cumulative_length(points)
    return float(lengths[-1]) if len(lengths) else 0.0


def resample_points(points, count, closed=False):
    """
    Resample uniformly by arc length using linear interpolation.
    
    Strokes with no more than ``count`` points are returned unchanged. In
    closed mode the stroke is closed back to its first point and the last
    sample equals the first.
    """
    pts = as_points(points)
    if count < 2 or len(pts) <= count:
        return pts.copy()
    
    work = np.vstack([pts, pts[:1]]) if closed else pts
    cum = cumulative_length(work)
    total = cum[-1]
    if total <= EPSILON:
        return np.repeat(work[:1], count, axis=0)
    
    targets = np.linspace(0.0, total, count)
    xs = np.interp(targets, cum, work[:, 0])
    ys = np.interp(targets, cum, work[:, 1])
    out = np.column_stack([xs, ys])
    out[0] = work[0]
    out[-1] = work[0] if closed else work[-1]
    return out


def prune_collinear(points, tolerance=1e-6):
    """
    Drop interior points that are collinear with their neighbours.
    
    A point is dropped when twice the triangle area it spans with the last
    kept point and the next point is below ``tolerance``. Endpoints are
    always kept. Repeated until stable so pruning an already pruned stroke
    changes nothing.
    """
    pts = as_points(points)
    if len(pts) <= 2 or tolerance <= 0:
        return pts.copy()
    
    while True:
        kept = [pts[0]]
        for i in range(1, len(pts) - 1):
            a = kept[-1]
            b = pts[i]
            c = pts[i + 1]
            area2 = abs((b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0]))
            if area2 >= tolerance:
                kept.append(b)
        kept.append(pts[-1])
        pruned = np.array(kept)
        if len(pruned) == len(pts):
            return pruned
        pts = pruned


def preprocess(points, domain=None, smooth_window=0, resample_count=0, prune_tolerance=0.0,
               closed=False):
    """
    Smooth, resample, prune and normalize a stroke, in that order.
    
    Each stage is skipped when its parameter disables it (window <= 1,
    count <= 1, tolerance <= 0).
    
    Args:
        points: raw stroke samples
        domain: Domain to normalize against; defaults to the processed bounding box
        smooth_window: moving-average window
        resample_count: number of arc-length samples
        prune_tolerance: collinearity tolerance (twice triangle area)
        closed: treat the stroke as a closed loop
    
    Returns:
        PreprocessedStroke
    """
    work = as_points(points)
    if smooth_window and smooth_window > 1:
        work = smooth_points(work, smooth_window, closed=closed)
    if resample_count and resample_count > 1:
        work = resample_points(work, resample_count, closed=closed)
    if prune_tolerance and prune_tolerance > 0:
        work = prune_collinear(work, prune_tolerance)
    
    normalized, used_domain = normalize_points(work, domain)
    return PreprocessedStroke(points=work, normalized=normalized, domain=used_domain)
