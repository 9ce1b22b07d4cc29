"""Curve simplification module using Douglas-Peucker algorithm."""

from typing import List

import numpy as np

from .types import Contour


def perpendicular_distances(points: np.ndarray, start: np.ndarray, end: np.ndarray) -> np.ndarray:
    """Distance from each point to the infinite line through start and end.

    When start and end coincide this is the Euclidean distance to start.
    """
    direction = end - start
    length = np.hypot(direction[0], direction[1])
    offsets = points - start
    if length == 0:
        return np.hypot(offsets[:, 0], offsets[:, 1])
    cross = direction[0] * offsets[:, 1] - direction[1] * offsets[:, 0]
    return np.abs(cross) / length


def simplify(contour: Contour, tolerance: float) -> Contour:
    """Simplify contour using Douglas-Peucker algorithm.

    Raw contours have one point per boundary pixel. Ranges whose interior
    points all lie within ``tolerance`` of the chord between their anchors
    collapse to the anchors; otherwise the farthest point is kept and both
    halves are processed again.

    Args:
        contour: Array of (x, y) points
        tolerance: Maximum perpendicular deviation in pixels

    Returns:
        Simplified contour. The first and last points are always kept;
        inputs with 2 or fewer points are returned unchanged.
    """
    points = np.asarray(contour, dtype=np.float64)
    n = len(points)
    if n <= 2:
        return points

    keep = np.zeros(n, dtype=bool)
    keep[0] = keep[-1] = True

    # Explicit stack of (first, last) anchor index pairs
    stack = [(0, n - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        distances = perpendicular_distances(points[first + 1:last], points[first], points[last])
        farthest = int(np.argmax(distances))
        if distances[farthest] > tolerance:
            split = first + 1 + farthest
            keep[split] = True
            stack.append((split, last))
            stack.append((first, split))

    return points[keep]


def simplify_contours(contours: List[Contour], tolerance: float, min_points: int = 3) -> List[Contour]:
    """Simplify multiple contours, dropping those left with too few points.

    Args:
        contours: List of contours
        tolerance: Maximum perpendicular deviation in pixels
        min_points: Contours shorter than this after simplification are dropped

    Returns:
        List of simplified contours
    """
    simplified = (simplify(c, tolerance) for c in contours if len(c) > 1)
    return [c for c in simplified if len(c) >= min_points]
