"""Gradient-based edge detection."""

import logging

import cv2
import numpy as np

from .extract import luma
from .types import PixelBuffer

logger = logging.getLogger(__name__)


def gradient_magnitude(buffer: PixelBuffer) -> np.ndarray:
    """Sobel gradient magnitude of the buffer's BT.601 luma.

    Returns:
        (H, W) float64 array; border pixels are 0
    """
    if buffer.width < 3 or buffer.height < 3:
        return np.zeros((buffer.height, buffer.width), dtype=np.float64)

    gray = luma(buffer.rgb)
    gx = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
    magnitude = np.sqrt(gx ** 2 + gy ** 2)

    # Border pixels lack a full 3x3 neighborhood
    magnitude[0, :] = 0
    magnitude[-1, :] = 0
    magnitude[:, 0] = 0
    magnitude[:, -1] = 0
    return magnitude


def detect_edges(buffer: PixelBuffer, threshold: float = 20.0) -> np.ndarray:
    """Flag pixels whose gradient magnitude exceeds ``threshold``.

    Args:
        buffer: Source pixel buffer
        threshold: Magnitude threshold (strictly greater than)

    Returns:
        (H, W) boolean edge map
    """
    edges = gradient_magnitude(buffer) > threshold
    logger.debug(f"Edge map: {int(np.count_nonzero(edges))} pixels above {threshold}")
    return edges
