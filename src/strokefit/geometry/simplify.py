"""
Polyline simplification using the Ramer-Douglas-Peucker algorithm, and
near-duplicate removal.
"""

import numpy as np

from strokefit.geometry.preprocess import as_points


def rdp_indices(points, epsilon):
    """
    Ramer-Douglas-Peucker simplification.
    
    Recursively keeps the sample farthest from the chord while it lies more
    than epsilon away.
    
    Args:
        points: (n, 2) array-like
        epsilon: maximum distance threshold
    
    Returns:
        sorted list of kept indices, always including both endpoints
    """
    pts = as_points(points)
    n = len(pts)
    if n <= 2:
        return list(range(n))
    
    keep = {0, n - 1}
    stack = [(0, n - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        distances = _perpendicular_distances(pts[first + 1:last], pts[first], pts[last])
        offset = int(np.argmax(distances))
        if distances[offset] > epsilon:
            split = first + 1 + offset
            keep.add(split)
            stack.append((first, split))
            stack.append((split, last))
    
    return sorted(keep)


def rdp_simplify(points, epsilon):
    """Simplified copy of the polyline (see rdp_indices)."""
    pts = as_points(points)
    return pts[rdp_indices(pts, epsilon)]


def _perpendicular_distances(points, start, end):
    """
    Distances from each point to the segment start-end.
    """
    line_vec = end - start
    line_len = np.linalg.norm(line_vec)
    
    if line_len == 0:
        return np.linalg.norm(points - start, axis=1)
    
    line_unit = line_vec / line_len
    projections = np.clip((points - start) @ line_unit, 0, line_len)
    nearest = start + np.outer(projections, line_unit)
    return np.linalg.norm(points - nearest, axis=1)


def remove_duplicate_points(points, tolerance):
    """
    Remove consecutive near-duplicate points.
    
    When the final sample lands within tolerance of the last kept point it
    replaces that point, so the stroke still ends where it ended.
    """
    pts = as_points(points)
    if len(pts) <= 1:
        return pts.copy()
    
    result = [pts[0]]
    for point in pts[1:]:
        if np.hypot(*(point - result[-1])) > tolerance:
            result.append(point)
    
    if len(result) > 1 and not np.array_equal(result[-1], pts[-1]):
        result[-1] = pts[-1]
    return np.array(result)
