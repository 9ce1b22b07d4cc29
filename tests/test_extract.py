"""Tests for layer extraction module."""

import numpy as np

from apx_layers import extract
from apx_layers.extract import assign_pixels, build_mask, chunk_size, clean_mask, luma, monochrome_mask
from apx_layers.types import ColorMask, PaletteEntry, PixelBuffer


def _entry(rgb, idx):
    return PaletteEntry(*rgb, pixel_count=0, id=f"color_{idx}")


class TestAssignPixels:
    """Test cases for assign_pixels function."""

    def test_nearest_color(self, two_color_buffer):
        """Test pixels go to their nearest palette entry."""
        palette = [_entry((250, 10, 10), 1), _entry((10, 10, 250), 2)]

        labels = assign_pixels(two_color_buffer, palette)

        assert (labels[:, :20] == 0).all()
        assert (labels[:, 20:] == 1).all()

    def test_ties_go_to_first_entry(self, rgba):
        """Test equidistant pixels take the earlier palette entry."""
        buffer = rgba(np.full((2, 2, 3), 100, dtype=np.uint8))
        palette = [_entry((90, 100, 100), 1), _entry((110, 100, 100), 2)]

        labels = assign_pixels(buffer, palette)

        assert (labels == 0).all()

    def test_transparent_unassigned(self):
        """Test transparent pixels are labelled -1."""
        samples = np.full((1, 2, 4), 255, dtype=np.uint8)
        samples[0, 1, 3] = 0
        buffer = PixelBuffer(width=2, height=1, samples=samples)

        labels = assign_pixels(buffer, [_entry((255, 255, 255), 1)])

        np.testing.assert_array_equal(labels, [[0, -1]])

    def test_empty_palette(self, red_white_buffer):
        """Test that no palette leaves every pixel unassigned."""
        assert (assign_pixels(red_white_buffer, []) == -1).all()

    def test_chunk_shrinks_with_palette_size(self):
        """Test large palettes get proportionally smaller pixel blocks."""
        assert chunk_size(256) * 256 <= extract._CHUNK_ELEMENTS
        assert chunk_size(2) > chunk_size(256)
        assert chunk_size(10 ** 9) == 1

    def test_blocked_assignment_matches_single_block(self, rgba, monkeypatch):
        """Test splitting pixels across many blocks gives the same labels."""
        rng = np.random.default_rng(11)
        buffer = rgba(rng.integers(0, 256, size=(9, 7, 3)).astype(np.uint8))
        palette = [_entry(tuple(int(v) for v in rng.integers(0, 256, 3)), i) for i in range(256)]
        expected = assign_pixels(buffer, palette)

        monkeypatch.setattr(extract, "_CHUNK_ELEMENTS", 1000)

        np.testing.assert_array_equal(assign_pixels(buffer, palette), expected)


class TestBuildMask:
    """Test cases for build_mask function."""

    def test_mask_for_entry(self):
        """Test the mask is True exactly where the label matches."""
        assignment = np.array([[0, 1], [1, -1]])

        mask = build_mask(assignment, 1)

        assert (mask.width, mask.height) == (2, 2)
        np.testing.assert_array_equal(mask.occupancy, [[False, True], [True, False]])
        assert mask.area == 2


class TestCleanMask:
    """Test cases for clean_mask function."""

    def test_clean_small_regions(self):
        """Test removing small regions from mask."""
        occupancy = np.zeros((50, 50), dtype=bool)
        # Large region
        occupancy[10:40, 10:40] = True
        # Small noise
        occupancy[0, 0] = True
        occupancy[1, 1] = True
        mask = ColorMask(width=50, height=50, occupancy=occupancy)

        cleaned = clean_mask(mask, min_area=10)

        assert cleaned.occupancy[20, 20]
        assert not cleaned.occupancy[0, 0]
        assert not cleaned.occupancy[1, 1]
        assert mask.occupancy[0, 0]

    def test_keep_map_preserves_small_regions(self):
        """Test components touching the keep map survive."""
        occupancy = np.zeros((10, 10), dtype=bool)
        occupancy[2, 2] = True
        occupancy[7, 7] = True
        keep = np.zeros((10, 10), dtype=bool)
        keep[2, 2] = True
        mask = ColorMask(width=10, height=10, occupancy=occupancy)

        cleaned = clean_mask(mask, min_area=4, keep=keep)

        assert cleaned.occupancy[2, 2]
        assert not cleaned.occupancy[7, 7]

    def test_min_area_one_is_noop(self):
        """Test that min_area 1 keeps everything."""
        occupancy = np.eye(5, dtype=bool)
        mask = ColorMask(width=5, height=5, occupancy=occupancy)

        assert clean_mask(mask, min_area=1) is mask


class TestMonochromeMask:
    """Test cases for monochrome thresholding."""

    def test_luma_weights(self):
        """Test BT.601 luma of primaries."""
        image = np.array([[[255, 0, 0], [0, 255, 0], [0, 0, 255]]], dtype=np.uint8)

        np.testing.assert_allclose(luma(image), [[76.245, 149.685, 29.07]])

    def test_dark_opaque_pixels(self):
        """Test dark opaque pixels are set and transparent ones are not."""
        samples = np.zeros((1, 3, 4), dtype=np.uint8)
        samples[0, 1, :3] = 255
        samples[0, :, 3] = [255, 255, 0]
        buffer = PixelBuffer(width=3, height=1, samples=samples)

        mask = monochrome_mask(buffer, threshold=128)

        np.testing.assert_array_equal(mask.occupancy, [[True, False, False]])
