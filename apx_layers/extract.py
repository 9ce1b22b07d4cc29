"""Layer extraction module for separating color regions."""

import logging
from typing import Optional, Sequence

import numpy as np
from scipy import ndimage

from .types import ColorMask, ImageArray, PaletteEntry, PixelBuffer

logger = logging.getLogger(__name__)

# Upper bound on pixel-by-color distance entries computed per block
_CHUNK_ELEMENTS = 1 << 20

# BT.601 luma weights
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


def chunk_size(n_colors: int) -> int:
    """Pixels per block so each distance block stays near _CHUNK_ELEMENTS."""
    return max(1, _CHUNK_ELEMENTS // max(1, n_colors))


def assign_pixels(
    buffer: PixelBuffer, palette: Sequence[PaletteEntry], alpha_cutoff: int = 10
) -> np.ndarray:
    """Assign every opaque pixel to its nearest palette entry.

    Distance is squared Euclidean in RGB. Ties go to the entry that comes
    first in ``palette``. Transparent pixels are never assigned.

    Args:
        buffer: Source pixel buffer
        palette: Palette entries in priority order
        alpha_cutoff: Pixels with alpha below this are transparent

    Returns:
        (H, W) int32 label map of palette indices, -1 for transparent pixels
    """
    labels = np.full(buffer.height * buffer.width, -1, dtype=np.int32)
    if len(palette) == 0:
        return labels.reshape(buffer.height, buffer.width)

    colors = np.array([entry.rgb for entry in palette], dtype=np.int32)
    pixels = buffer.rgb.reshape(-1, 3).astype(np.int32)
    opaque = buffer.opaque_mask(alpha_cutoff).reshape(-1)
    opaque_idx = np.flatnonzero(opaque)

    chunk = chunk_size(len(colors))
    for start in range(0, len(opaque_idx), chunk):
        idx = opaque_idx[start:start + chunk]
        diff = pixels[idx, None, :] - colors[None, :, :]
        dist = np.einsum("ijk,ijk->ij", diff, diff)
        labels[idx] = np.argmin(dist, axis=1)

    return labels.reshape(buffer.height, buffer.width)


def build_mask(assignment: np.ndarray, index: int) -> ColorMask:
    """Create the occupancy mask for one palette entry.

    Args:
        assignment: Label map from :func:`assign_pixels`
        index: Position of the entry in the palette that produced the map

    Returns:
        ColorMask with True where the pixel belongs to the entry
    """
    height, width = assignment.shape
    return ColorMask(width=width, height=height, occupancy=assignment == index)


def clean_mask(
    mask: ColorMask, min_area: int = 4, keep: Optional[np.ndarray] = None
) -> ColorMask:
    """Clean mask by removing small noise regions.

    Args:
        mask: Binary mask
        min_area: Minimum area (in pixels) to keep
        keep: Optional boolean map; components touching it survive regardless
            of their size

    Returns:
        Cleaned mask (the input is not modified)
    """
    if min_area <= 1 or not mask.occupancy.any():
        return mask

    # Label 4-connected components
    labeled, num_features = ndimage.label(mask.occupancy)
    if num_features == 0:
        return mask

    sizes = np.bincount(labeled.ravel(), minlength=num_features + 1)
    survivors = sizes >= min_area
    survivors[0] = False

    if keep is not None:
        touched = np.unique(labeled[keep & mask.occupancy])
        survivors[touched[touched > 0]] = True

    removed = int(num_features - np.count_nonzero(survivors[1:]))
    if removed:
        logger.debug(f"Removed {removed} of {num_features} regions smaller than {min_area} px")

    return ColorMask(width=mask.width, height=mask.height, occupancy=survivors[labeled])


def luma(image: ImageArray) -> np.ndarray:
    """BT.601 luma of an (H, W, 3) RGB array as float64."""
    return image[..., :3].astype(np.float64) @ LUMA_WEIGHTS


def monochrome_mask(buffer: PixelBuffer, threshold: int = 128, alpha_cutoff: int = 10) -> ColorMask:
    """Binary mask of dark opaque pixels (luma below ``threshold``)."""
    occupancy = (luma(buffer.rgb) < threshold) & buffer.opaque_mask(alpha_cutoff)
    return ColorMask(width=buffer.width, height=buffer.height, occupancy=occupancy)
