"""
Sample cleaning for single-valued y = f(x) fits.

Hand-drawn strokes that are "mostly" left-to-right still contain repeated x
values and small backtracks. ``ensure_functional_samples`` turns such a
stroke into strictly increasing x, or refuses when the stroke folds back.
"""

from dataclasses import dataclass, field

import numpy as np

from strokefit.geometry.preprocess import as_points

MAX_SIGN_CHANGES = 6


@dataclass
class FunctionalSamples:
    """Result of functional-sample cleaning."""
    ok: bool
    points: np.ndarray = None
    reason: str = ""
    merged: int = 0
    dropped: list = field(default_factory=list)


def ensure_functional_samples(points):
    """
    Merge near-equal x clusters and drop small backtracks.
    
    Tolerances scale with the stroke width: clusters within 0.2% of the
    width are averaged, backtracks up to 12% are dropped, anything larger
    rejects the stroke.
    
    Returns:
        FunctionalSamples with points sorted by x when ok
    """
    pts = as_points(points)
    if len(pts) < 2:
        return FunctionalSamples(ok=False, reason="at least two samples are required")
    
    width = max(float(np.ptp(pts[:, 0])), 1e-3)
    cluster_tol = max(1e-4, width * 0.002)
    severe_tol = max(0.05, width * 0.12)
    
    cleaned = [pts[0].copy()]
    merged = 0
    dropped = []
    
    for i in range(1, len(pts)):
        current = pts[i]
        dx = current[0] - cleaned[-1][0]
        
        if abs(dx) <= cluster_tol:
            cleaned[-1] = (cleaned[-1] + current) / 2
            merged += 1
            continue
        
        if dx < 0:
            if -dx <= severe_tol:
                dropped.append(i)
                continue
            return FunctionalSamples(ok=False, reason="stroke folds back along x", merged=merged,
                                     dropped=dropped)
        
        cleaned.append(current.copy())
    
    if len(cleaned) < 2:
        return FunctionalSamples(ok=False, reason="too few distinct x values", merged=merged,
                                 dropped=dropped)
    
    cleaned = np.array(cleaned)
    dxs = np.diff(cleaned[:, 0])
    signs = np.sign(dxs[np.abs(dxs) > 1e-6])
    sign_changes = int(np.count_nonzero(signs[1:] != signs[:-1])) if len(signs) > 1 else 0
    if sign_changes > MAX_SIGN_CHANGES:
        return FunctionalSamples(ok=False, reason="too many x reversals", merged=merged,
                                 dropped=dropped)
    
    order = np.lexsort((cleaned[:, 1], cleaned[:, 0]))
    return FunctionalSamples(ok=True, points=cleaned[order], merged=merged, dropped=dropped)
