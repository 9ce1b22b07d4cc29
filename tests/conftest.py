"""Pytest configuration and fixtures."""

import numpy as np
import pytest

from apx_layers.raster_ingest import buffer_from_array
from apx_layers.types import Layer, VectorDocument

RED = (255, 0, 0)
WHITE = (255, 255, 255)


def make_buffer(rgb: np.ndarray, alpha: int = 255):
    """Build a PixelBuffer from an (H, W, 3) uint8 array with uniform alpha."""
    rgb = np.asarray(rgb, dtype=np.uint8)
    alpha_channel = np.full(rgb.shape[:2] + (1,), alpha, dtype=np.uint8)
    return buffer_from_array(np.concatenate([rgb, alpha_channel], axis=2))


@pytest.fixture
def red_white_buffer():
    """4x4 image: top-left 2x2 block red, the rest white."""
    image = np.full((4, 4, 3), WHITE, dtype=np.uint8)
    image[:2, :2] = RED
    return make_buffer(image)


@pytest.fixture
def two_color_buffer():
    """40x40 image: red left half, blue right half."""
    image = np.zeros((40, 40, 3), dtype=np.uint8)
    image[:, :20] = RED
    image[:, 20:] = (0, 0, 255)
    return make_buffer(image)


@pytest.fixture
def sample_document():
    """Two-layer document with square and triangle contours."""
    square = np.array([[10, 10], [30, 10], [30, 30], [10, 30]], dtype=np.float64)
    triangle = np.array([[5, 5], [15.5, 5], [10, 12.25]], dtype=np.float64)
    layers = [
        Layer(id="color_1", name="White (#ffffff)", color_hex="#ffffff", paths=[square]),
        Layer(
            id="color_2",
            name="Red (#ff0000)",
            color_hex="#ff0000",
            visible=False,
            paths=[triangle, square + 1],
        ),
    ]
    return VectorDocument(width=40, height=40, layers=layers)


@pytest.fixture
def rgba():
    """Factory fixture wrapping :func:`make_buffer`."""
    return make_buffer
