"""Tests for contour detection module."""

import numpy as np
import pytest

from apx_layers.contour import boundary_map, trace
from apx_layers.types import ColorMask, ContourError


def _mask(occupancy):
    occupancy = np.asarray(occupancy, dtype=bool)
    return ColorMask(width=occupancy.shape[1], height=occupancy.shape[0], occupancy=occupancy)


class TestBoundaryMap:
    """Test cases for boundary_map function."""

    def test_interior_excluded(self):
        """Test only pixels next to empty or off-grid cells are boundary."""
        occupancy = np.zeros((5, 5), dtype=bool)
        occupancy[1:4, 1:4] = True

        boundary = boundary_map(occupancy)

        assert boundary.sum() == 8
        assert not boundary[2, 2]

    def test_grid_edge_counts_as_boundary(self):
        """Test a full mask is boundary along the image border only."""
        boundary = boundary_map(np.ones((3, 3), dtype=bool))

        assert boundary.sum() == 8
        assert not boundary[1, 1]


class TestTrace:
    """Test cases for trace function."""

    def test_square_ring(self):
        """Test a 10x10 square gives one closed ring of its boundary pixels."""
        occupancy = np.zeros((20, 20), dtype=bool)
        occupancy[5:15, 5:15] = True

        contours = trace(_mask(occupancy))

        assert len(contours) == 1
        contour = contours[0]
        assert contour.shape == (36, 2)
        assert contour.dtype == np.float64

        points = {(int(x), int(y)) for x, y in contour}
        expected = {
            (x, y)
            for x in range(5, 15)
            for y in range(5, 15)
            if x in (5, 14) or y in (5, 14)
        }
        assert points == expected

    def test_deterministic(self):
        """Test tracing the same mask twice yields identical results."""
        rng = np.random.default_rng(3)
        mask = _mask(rng.random((30, 30)) > 0.5)

        first = trace(mask)
        second = trace(mask)

        assert len(first) == len(second)
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a, b)

    def test_one_contour_per_component(self):
        """Test separate 4-connected components give separate contours."""
        occupancy = np.zeros((10, 10), dtype=bool)
        occupancy[1:4, 1:4] = True
        occupancy[6:9, 6:9] = True

        contours = trace(_mask(occupancy))

        assert len(contours) == 2

    def test_diagonal_pixels_not_connected(self):
        """Test diagonal neighbors belong to different components."""
        occupancy = np.eye(4, dtype=bool)

        assert len(trace(_mask(occupancy), min_points=1)) == 4

    def test_small_contours_dropped(self):
        """Test components with too few boundary points are discarded."""
        occupancy = np.zeros((5, 5), dtype=bool)
        occupancy[2, 2] = True
        occupancy[0, 0:2] = True

        assert trace(_mask(occupancy), min_points=3) == []
        assert len(trace(_mask(occupancy), min_points=1)) == 2

    def test_bfs_start_is_first_pixel(self):
        """Test each contour starts at its component's first row-major pixel."""
        occupancy = np.zeros((6, 6), dtype=bool)
        occupancy[2:5, 1:4] = True

        contour = trace(_mask(occupancy))[0]

        np.testing.assert_array_equal(contour[0], [1, 2])

    def test_empty_mask(self):
        """Test an empty mask yields no contours."""
        assert trace(_mask(np.zeros((4, 4)))) == []

    def test_shape_mismatch(self):
        """Test inconsistent masks are rejected."""
        mask = ColorMask(width=3, height=3, occupancy=np.zeros((2, 2), dtype=bool))

        with pytest.raises(ContourError):
            trace(mask)
