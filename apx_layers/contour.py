"""Contour detection module for boundary tracing."""

import logging
from collections import deque
from typing import List

import numpy as np

from .types import ColorMask, Contour, ContourError

logger = logging.getLogger(__name__)


def boundary_map(occupancy: np.ndarray) -> np.ndarray:
    """Mark occupied pixels with at least one unoccupied or off-grid 4-neighbor.

    Args:
        occupancy: (H, W) boolean mask

    Returns:
        (H, W) boolean map of boundary pixels
    """
    padded = np.pad(occupancy, 1, mode="constant", constant_values=False)
    interior = (
        padded[:-2, 1:-1] & padded[2:, 1:-1] & padded[1:-1, :-2] & padded[1:-1, 2:]
    )
    return occupancy & ~interior


def trace(mask: ColorMask, min_points: int = 3) -> List[Contour]:
    """Trace one boundary contour per 4-connected component of a mask.

    Each component is explored breadth-first from its first pixel in
    row-major order. Every occupied pixel is visited exactly once, and a
    pixel is recorded when it lies on the mask boundary. Points appear in
    BFS order, so consecutive points are not necessarily adjacent on the
    boundary.

    Args:
        mask: Binary color mask
        min_points: Contours with fewer boundary points are discarded

    Returns:
        List of contours, each an (N, 2) float64 array of (x, y) points

    Raises:
        ContourError: If the mask does not match its declared size
    """
    occupancy = np.asarray(mask.occupancy, dtype=bool)
    if occupancy.shape != (mask.height, mask.width):
        raise ContourError(
            f"Mask occupancy shape {occupancy.shape} does not match {mask.width}x{mask.height}"
        )

    width, height = mask.width, mask.height
    occupied = occupancy.ravel()
    boundary = boundary_map(occupancy).ravel()
    visited = np.zeros(width * height, dtype=bool)

    contours = []
    dropped = 0

    for start in np.flatnonzero(occupied):
        if visited[start]:
            continue

        visited[start] = True
        queue = deque([int(start)])
        points = []

        while queue:
            idx = queue.popleft()
            y, x = divmod(idx, width)
            if boundary[idx]:
                points.append((x, y))

            # Neighbors: up, left, right, down
            if y > 0 and occupied[idx - width] and not visited[idx - width]:
                visited[idx - width] = True
                queue.append(idx - width)
            if x > 0 and occupied[idx - 1] and not visited[idx - 1]:
                visited[idx - 1] = True
                queue.append(idx - 1)
            if x < width - 1 and occupied[idx + 1] and not visited[idx + 1]:
                visited[idx + 1] = True
                queue.append(idx + 1)
            if y < height - 1 and occupied[idx + width] and not visited[idx + width]:
                visited[idx + width] = True
                queue.append(idx + width)

        if len(points) < min_points:
            dropped += 1
            continue
        contours.append(np.array(points, dtype=np.float64))

    logger.debug(f"Traced {len(contours)} contours ({dropped} below {min_points} points)")
    return contours
