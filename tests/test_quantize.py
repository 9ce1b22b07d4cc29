"""Tests for color quantization module."""

import numpy as np
import pytest

from apx_layers.extract import assign_pixels
from apx_layers.quantize import (
    kmeans_plus_plus,
    median_cut,
    quantize,
    quantize_buffer,
    rank_palette,
    refine_kmeans,
    sample_pixels,
)
from apx_layers.types import InvalidInputError, PixelBuffer, QuantizationError


class TestMedianCut:
    """Test cases for median_cut function."""

    def test_bichromatic_split(self):
        """Test two colors end up in separate boxes even when unbalanced."""
        pixels = np.array([[255, 0, 0]] * 3 + [[255, 255, 255]] * 13)

        boxes = median_cut(pixels, 2)

        assert sorted(boxes) == [((255, 0, 0), 3), ((255, 255, 255), 13)]

    def test_single_color(self):
        """Test a uniform sample yields one box."""
        pixels = np.full((20, 3), 77)

        assert median_cut(pixels, 16) == [((77, 77, 77), 20)]

    def test_box_count_bounded(self):
        """Test that the number of boxes never exceeds max_colors."""
        rng = np.random.default_rng(0)
        pixels = rng.integers(0, 256, size=(500, 3))

        for max_colors in (2, 3, 5, 16):
            boxes = median_cut(pixels, max_colors)
            assert 1 <= len(boxes) <= max_colors
            assert sum(count for _, count in boxes) == 500

    def test_empty(self):
        """Test that no pixels gives no boxes."""
        assert median_cut(np.zeros((0, 3), dtype=np.int64), 4) == []


class TestSamplePixels:
    """Test cases for sample_pixels function."""

    def test_excludes_transparent(self):
        """Test pixels below the alpha cutoff are ignored."""
        samples = np.zeros((1, 4, 4), dtype=np.uint8)
        samples[0, :, 3] = [0, 9, 10, 255]
        buffer = PixelBuffer(width=4, height=1, samples=samples)

        assert len(sample_pixels(buffer, alpha_cutoff=10)) == 2

    def test_stride_subsampling(self, rgba):
        """Test large inputs are reduced to at most the sample limit."""
        buffer = rgba(np.zeros((100, 100, 3), dtype=np.uint8))

        pixels = sample_pixels(buffer, sample_limit=1000)

        assert len(pixels) <= 1000
        assert len(pixels) == len(sample_pixels(buffer, sample_limit=1000))


class TestKMeansPlusPlus:
    """Test cases for centroid seeding."""

    def test_never_repeats_a_candidate(self):
        """Test a chosen color is not drawn again and candidates run out cleanly."""
        colors = np.array([[0, 0, 0], [255, 0, 0], [0, 255, 0]])
        weights = np.array([5, 1, 1])

        centroids = kmeans_plus_plus(colors, weights, 5, random_state=1)

        assert sorted(map(tuple, centroids.astype(int))) == sorted(map(tuple, colors))

    def test_spreads_over_distant_groups(self):
        """Test squared-distance weighting picks one color from each far group."""
        dark = [[0, 0, 0], [2, 0, 0], [0, 2, 0], [0, 0, 2]]
        light = [[255, 255, 255], [253, 255, 255], [255, 253, 255], [255, 255, 253]]
        colors = np.array(dark + light)
        weights = np.ones(len(colors))

        for seed in range(10):
            centroids = kmeans_plus_plus(colors, weights, 2, random_state=seed)

            assert len(centroids) == 2
            assert sorted(int(c[0] > 128) for c in centroids) == [0, 1]

    def test_deterministic(self):
        """Test that a fixed seed gives the same order."""
        colors = np.array([[0, 0, 0], [255, 0, 0], [0, 255, 0], [0, 0, 255]])
        weights = np.array([1, 2, 3, 4])

        first = kmeans_plus_plus(colors, weights, 4, random_state=7)
        second = kmeans_plus_plus(colors, weights, 4, random_state=7)

        np.testing.assert_array_equal(first, second)


class TestRefineKMeans:
    """Test cases for refine_kmeans function."""

    def test_moves_to_cluster_means(self):
        """Test refinement converges to the two cluster centers."""
        pixels = np.array([[0, 0, 0]] * 10 + [[10, 10, 10]] * 10 + [[200, 200, 200]] * 20)
        seeds = [((0, 0, 0), 10), ((10, 10, 10), 10), ((200, 200, 200), 20)]

        refined = refine_kmeans(pixels, seeds, 2, max_iter=10)

        assert sorted(refined) == [(5, 5, 5), (200, 200, 200)]

    def test_draws_k_from_larger_pool(self):
        """Test only n_clusters seeds are drawn from a finer median cut."""
        rng = np.random.default_rng(3)
        pixels = rng.integers(0, 256, size=(500, 3))
        pool = median_cut(pixels, 16)

        refined = refine_kmeans(pixels, pool, 4, max_iter=5)

        assert len(pool) > 4
        assert 1 <= len(refined) <= 4


class TestRankPalette:
    """Test cases for rank_palette function."""

    def test_ties_follow_returned_order(self, rgba):
        """Test an equidistant pixel goes to the entry listed first."""
        row = [(0, 0, 0)] * 5 + [(1, 0, 0)] + [(2, 0, 0)] * 10
        buffer = rgba(np.array([row], dtype=np.uint8))

        palette, assignment = rank_palette(buffer, [(0, 0, 0), (2, 0, 0)])

        assert [e.rgb for e in palette] == [(2, 0, 0), (0, 0, 0)]
        assert [e.pixel_count for e in palette] == [11, 5]
        assert assignment[0, 5] == 0
        np.testing.assert_array_equal(assignment, assign_pixels(buffer, palette))

    def test_drops_unused_colors(self, red_white_buffer):
        """Test colors that win no pixel are removed."""
        colors = [(240, 240, 240), (251, 251, 251), (255, 0, 0)]

        palette, assignment = rank_palette(red_white_buffer, colors)

        assert [e.rgb for e in palette] == [(251, 251, 251), (255, 0, 0)]
        assert [e.id for e in palette] == ["color_1", "color_2"]
        assert set(np.unique(assignment)) == {0, 1}


class TestQuantize:
    """Test cases for quantize function."""

    def test_bichromatic_two_colors(self, red_white_buffer):
        """Test exactly two entries matching the two input colors."""
        palette = quantize(red_white_buffer, 2)

        assert len(palette) == 2
        assert {entry.rgb for entry in palette} == {(255, 0, 0), (255, 255, 255)}

    def test_sorted_by_pixel_count(self, red_white_buffer):
        """Test entries are ordered by descending count with stable ids."""
        palette = quantize(red_white_buffer, 2)

        assert [e.pixel_count for e in palette] == [12, 4]
        assert [e.id for e in palette] == ["color_1", "color_2"]
        assert palette[0].hex == "#ffffff"

    def test_refined_bichromatic(self, two_color_buffer):
        """Test K-means mode keeps exact colors on a two-color image."""
        palette = quantize(two_color_buffer, 2, refine=True)

        assert {entry.rgb for entry in palette} == {(255, 0, 0), (0, 0, 255)}
        assert sum(e.pixel_count for e in palette) == 1600

    def test_fewer_colors_than_requested(self, rgba):
        """Test no padding when the image has fewer colors."""
        buffer = rgba(np.full((5, 5, 3), 30, dtype=np.uint8))

        palette = quantize(buffer, 16)

        assert len(palette) == 1
        assert palette[0].pixel_count == 25

    def test_assignment_matches_palette(self, red_white_buffer):
        """Test the label map indexes the returned palette."""
        palette, assignment = quantize_buffer(red_white_buffer, 2)

        red_index = [e.rgb for e in palette].index((255, 0, 0))
        assert (assignment[:2, :2] == red_index).all()
        assert np.count_nonzero(assignment == red_index) == 4

    def test_assignment_agrees_with_palette_order(self, rgba):
        """Test labels and counts equal a fresh assignment against the palette."""
        row = [(0, 0, 0)] * 5 + [(1, 0, 0)] + [(2, 0, 0)] * 10
        buffer = rgba(np.array([row], dtype=np.uint8))

        palette, assignment = quantize_buffer(buffer, 2)

        np.testing.assert_array_equal(assignment, assign_pixels(buffer, palette))
        counts = np.bincount(assignment.ravel(), minlength=len(palette))
        assert [e.pixel_count for e in palette] == list(counts)

    def test_transparent_pixels_unassigned(self):
        """Test transparent pixels get label -1 and no weight."""
        samples = np.zeros((2, 2, 4), dtype=np.uint8)
        samples[..., :3] = 200
        samples[0, :, 3] = 255
        buffer = PixelBuffer(width=2, height=2, samples=samples)

        palette, assignment = quantize_buffer(buffer, 4)

        assert palette[0].pixel_count == 2
        assert (assignment[1] == -1).all()

    def test_all_transparent(self, rgba):
        """Test that a fully transparent buffer is a quantization failure."""
        buffer = rgba(np.zeros((3, 3, 3), dtype=np.uint8), alpha=0)

        with pytest.raises(QuantizationError):
            quantize(buffer, 4)

    def test_missing_buffer(self):
        """Test that a missing buffer is invalid input."""
        with pytest.raises(InvalidInputError):
            quantize(None, 4)
