"""Color quantization using median cut with optional K-means refinement."""

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.cluster import KMeans

from .extract import assign_pixels
from .types import InvalidInputError, PaletteEntry, PixelBuffer, QuantizationError

logger = logging.getLogger(__name__)

# Median-cut leaves per requested color offered to k-means++ seeding
SEED_POOL_FACTOR = 4


def sample_pixels(buffer: PixelBuffer, alpha_cutoff: int = 10, sample_limit: int = 10000) -> np.ndarray:
    """Collect opaque pixels for clustering.

    Above ``sample_limit`` pixels the set is reduced by fixed-stride
    subsampling, so repeated runs see the same sample.

    Returns:
        (N, 3) int64 array of RGB values
    """
    pixels = buffer.rgb[buffer.opaque_mask(alpha_cutoff)].astype(np.int64)
    if sample_limit > 0 and len(pixels) > sample_limit:
        stride = math.ceil(len(pixels) / sample_limit)
        pixels = pixels[::stride]
    return pixels


def _split_box(box: np.ndarray) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Split a box along its widest channel.

    The cut starts at the median index and moves to the nearest position
    where the channel value changes, so equal colors stay in one half.
    Returns None when every pixel in the box has the same color.
    """
    ranges = box.max(axis=0) - box.min(axis=0)
    channel = int(np.argmax(ranges))
    if ranges[channel] == 0:
        return None

    ordered = box[np.argsort(box[:, channel], kind="stable")]
    values = ordered[:, channel]
    cuts = np.flatnonzero(values[1:] != values[:-1]) + 1
    mid = len(values) // 2
    cut = int(cuts[np.argmin(np.abs(cuts - mid))])
    return ordered[:cut], ordered[cut:]


def median_cut(pixels: np.ndarray, max_colors: int) -> List[Tuple[Tuple[int, int, int], int]]:
    """Partition pixels into at most ``max_colors`` boxes.

    Boxes are split level by level to a depth of ceil(log2(max_colors)).
    Within a level the widest boxes are split first, and splitting stops once
    the color budget is reached.

    Args:
        pixels: (N, 3) RGB samples
        max_colors: Upper bound on the number of boxes

    Returns:
        List of (rounded mean color, pixel count) per box, duplicates merged
    """
    if len(pixels) == 0:
        return []

    depth = math.ceil(math.log2(max_colors))
    boxes = [pixels]

    for _ in range(depth):
        order = sorted(
            range(len(boxes)),
            key=lambda i: -int((boxes[i].max(axis=0) - boxes[i].min(axis=0)).max()),
        )
        next_boxes = list(boxes)
        budget = max_colors - len(boxes)
        changed = False
        for i in order:
            if budget <= 0:
                break
            halves = _split_box(boxes[i])
            if halves is None:
                continue
            next_boxes[i] = halves[0]
            next_boxes.append(halves[1])
            budget -= 1
            changed = True
        boxes = next_boxes
        if not changed:
            break

    merged = {}
    for box in boxes:
        color = tuple(int(c) for c in np.rint(box.mean(axis=0)))
        merged[color] = merged.get(color, 0) + len(box)

    return list(merged.items())


def kmeans_plus_plus(
    colors: np.ndarray, weights: np.ndarray, n_clusters: int, random_state: int = 42
) -> np.ndarray:
    """Choose initial centroids from weighted candidate colors.

    The first centroid is drawn by weight, each following one with
    probability proportional to weight times the squared distance to the
    nearest centroid chosen so far. A chosen color has distance 0, so it
    is never drawn twice; fewer than ``n_clusters`` centroids come back
    when the candidates run out.
    """
    rng = np.random.default_rng(random_state)
    colors = colors.astype(np.float64)
    weights = weights.astype(np.float64)

    chosen = [int(rng.choice(len(colors), p=weights / weights.sum()))]
    nearest = np.sum((colors - colors[chosen[0]]) ** 2, axis=1)

    while len(chosen) < n_clusters:
        scores = weights * nearest
        total = scores.sum()
        if total <= 0:
            break
        idx = int(rng.choice(len(colors), p=scores / total))
        chosen.append(idx)
        nearest = np.minimum(nearest, np.sum((colors - colors[idx]) ** 2, axis=1))

    return colors[chosen]


def refine_kmeans(
    pixels: np.ndarray,
    seeds: Sequence[Tuple[Tuple[int, int, int], int]],
    n_clusters: int,
    max_iter: int = 10,
    random_state: int = 42,
) -> List[Tuple[int, int, int]]:
    """Cluster sampled pixels from k-means++ seeds.

    Args:
        pixels: (N, 3) sampled RGB values
        seeds: Candidate (color, count) pairs, usually more than ``n_clusters``
        n_clusters: Number of centroids to draw from ``seeds``
        max_iter: Iteration bound
        random_state: Seed for centroid initialization

    Returns:
        Refined colors, duplicates merged

    Raises:
        QuantizationError: If clustering fails
    """
    colors = np.array([color for color, _ in seeds], dtype=np.float64)
    weights = np.array([count for _, count in seeds], dtype=np.float64)

    try:
        init = kmeans_plus_plus(colors, weights, n_clusters, random_state)
        kmeans = KMeans(
            n_clusters=len(init),
            init=init,
            n_init=1,
            max_iter=max_iter,
            random_state=random_state,
        )
        kmeans.fit(pixels.astype(np.float64))
    except (ValueError, FloatingPointError) as e:
        raise QuantizationError(f"K-means refinement failed: {e}") from e

    logger.debug(
        f"K-means seeded {len(init)} of {len(colors)} candidates, "
        f"converged after {kmeans.n_iter_} iterations"
    )

    centers = np.clip(np.rint(kmeans.cluster_centers_), 0, 255).astype(int)
    refined = []
    for center in centers:
        color = tuple(int(c) for c in center)
        if color not in refined:
            refined.append(color)
    return refined


def rank_palette(
    buffer: PixelBuffer, colors: Sequence[Tuple[int, int, int]], alpha_cutoff: int = 10
) -> Tuple[List[PaletteEntry], np.ndarray]:
    """Order colors by full-buffer pixel count and assign every pixel.

    Nearest-color ties go to the earlier entry, so moving an entry forward
    can pull tied pixels onto it. Ranking repeats until the order is
    stable, which makes the returned counts and labels identical to
    ``assign_pixels(buffer, palette)``. Colors that win no pixel are dropped.

    Returns:
        Tuple of (palette, assignment)
    """
    entries = [PaletteEntry(r, g, b, 0, "") for r, g, b in colors]

    for _ in range(len(entries) + 1):
        assignment = assign_pixels(buffer, entries, alpha_cutoff)
        counts = np.bincount(assignment[assignment >= 0], minlength=len(entries))
        # Stable sort keeps the current order among equal counts
        order = [i for i in sorted(range(len(entries)), key=lambda i: -counts[i]) if counts[i] > 0]
        if order == list(range(len(entries))):
            break
        entries = [entries[i] for i in order]
    else:
        # Tie cycles are cut short; labels still index the final order
        logger.debug("Palette order did not settle; keeping last ranking")
        assignment = assign_pixels(buffer, entries, alpha_cutoff)
        counts = np.bincount(assignment[assignment >= 0], minlength=len(entries))
        keep = np.flatnonzero(counts)
        # Index -1 maps through the trailing slot to stay transparent
        remap = np.full(len(entries) + 1, -1, dtype=np.int32)
        remap[keep] = np.arange(len(keep), dtype=np.int32)
        assignment = remap[assignment]
        entries = [entries[i] for i in keep]
        counts = counts[keep]

    palette = [
        PaletteEntry(entry.r, entry.g, entry.b, int(counts[rank]), f"color_{rank + 1}")
        for rank, entry in enumerate(entries)
    ]
    return palette, assignment


def quantize_buffer(
    buffer: PixelBuffer,
    max_colors: int,
    refine: bool = False,
    alpha_cutoff: int = 10,
    sample_limit: int = 10000,
    kmeans_iterations: int = 10,
    random_state: int = 42,
) -> Tuple[List[PaletteEntry], np.ndarray]:
    """Reduce the buffer to a bounded palette and assign every pixel.

    Args:
        buffer: Source pixel buffer
        max_colors: Palette size bound, clamped to [2, 256]
        refine: Re-cluster with K-means, seeded by k-means++ over a finer
            median cut; the median-cut colors are kept if it fails
        alpha_cutoff: Pixels with alpha below this are ignored
        sample_limit: Sample size above which pixels are stride-subsampled
        kmeans_iterations: Iteration bound for refinement
        random_state: Seed for refinement

    Returns:
        Tuple of (palette, assignment)
        - palette: Entries in descending pixel-count order, ids color_1..n
        - assignment: (H, W) palette indices, -1 for transparent pixels

    Raises:
        InvalidInputError: If the buffer has no pixels
        QuantizationError: If the buffer has no opaque pixels
    """
    if buffer is None or buffer.samples.size == 0:
        raise InvalidInputError("Cannot quantize an empty pixel buffer")

    max_colors = max(2, min(256, int(max_colors)))
    pixels = sample_pixels(buffer, alpha_cutoff, sample_limit)
    if len(pixels) == 0:
        raise QuantizationError("No opaque pixels to quantize")

    seeds = median_cut(pixels, max_colors)
    colors = [color for color, _ in seeds]
    logger.info(f"Median cut produced {len(colors)} colors from {len(pixels)} samples")

    if refine and len(seeds) > 1:
        try:
            pool = median_cut(pixels, max_colors * SEED_POOL_FACTOR)
            colors = refine_kmeans(pixels, pool, max_colors, kmeans_iterations, random_state)
        except QuantizationError as e:
            logger.warning(f"{e}; keeping median-cut palette")

    palette, assignment = rank_palette(buffer, colors, alpha_cutoff)

    logger.debug(f"Palette: {[(e.hex, e.pixel_count) for e in palette]}")
    return palette, assignment


def quantize(buffer: PixelBuffer, max_colors: int, **kwargs) -> List[PaletteEntry]:
    """Quantize a pixel buffer to at most ``max_colors`` palette entries.

    Accepts the same keyword arguments as :func:`quantize_buffer`.
    """
    palette, _ = quantize_buffer(buffer, max_colors, **kwargs)
    return palette
