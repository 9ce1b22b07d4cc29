"""Layer assembly: naming, ordering and fallback layers."""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .types import Color, Contour, Layer, LayerNaming, PaletteEntry, PixelBuffer

logger = logging.getLogger(__name__)

# Hue sector names, 30 degrees each, starting at 345
HUE_NAMES = [
    "Red",
    "Orange",
    "Yellow",
    "Yellow Green",
    "Green",
    "Teal",
    "Cyan",
    "Sky Blue",
    "Blue",
    "Violet",
    "Purple",
    "Magenta",
]

# (upper brightness bound, name) for gray colors
GRAY_NAMES = [
    (32, "Black"),
    (64, "Dark Gray"),
    (128, "Gray"),
    (196, "Light Gray"),
    (240, "Pale Gray"),
]


def rgb_to_hex(color: Color) -> str:
    """Format the RGB part of a color as #rrggbb."""
    r, g, b = color[:3]
    return f"#{int(r):02x}{int(g):02x}{int(b):02x}"


def hex_to_rgb(color_hex: str) -> Tuple[int, int, int]:
    """Parse #rrggbb (or #rgb) into an RGB tuple.

    Raises:
        ValueError: If the string is not a hex color
    """
    value = color_hex.strip().lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    if len(value) != 6:
        raise ValueError(f"Not a hex color: {color_hex!r}")
    return (int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))


def is_grayscale(color: Color, tolerance: int = 10) -> bool:
    r, g, b = (int(c) for c in color[:3])
    return abs(r - g) <= tolerance and abs(g - b) <= tolerance and abs(r - b) <= tolerance


def hue(color: Color) -> float:
    """Hue angle in degrees [0, 360); 0 for grays."""
    r, g, b = (int(c) / 255.0 for c in color[:3])
    high, low = max(r, g, b), min(r, g, b)
    if high == low:
        return 0.0
    if high == r:
        h = 60.0 * ((g - b) / (high - low))
    elif high == g:
        h = 60.0 * (2 + (b - r) / (high - low))
    else:
        h = 60.0 * (4 + (r - g) / (high - low))
    return h + 360.0 if h < 0 else h


def color_to_name(color: Color) -> Optional[str]:
    """Guess a human-readable name for a color.

    Returns:
        Name string, or None for desaturated colors with no clear hue
    """
    r, g, b = (int(c) for c in color[:3])

    if is_grayscale(color):
        brightness = round((r + g + b) / 3)
        for bound, name in GRAY_NAMES:
            if brightness < bound:
                return name
        return "White"

    high, low = max(r, g, b), min(r, g, b)
    saturation = 0.0 if high == 0 else (high - low) / high
    if saturation < 0.2:
        return None
    if high / 255.0 < 0.2:
        return "Dark"

    sector = int(((hue(color) + 15.0) % 360.0) // 30.0)
    return HUE_NAMES[sector]


def layer_name(color: Color, index: int, naming: LayerNaming = LayerNaming.COLOR_NAME) -> str:
    """Generate a layer name.

    Args:
        color: Layer color (R, G, B)
        index: Zero-based layer position
        naming: Naming scheme

    Returns:
        Layer name
    """
    if naming == LayerNaming.COLOR_NAME:
        color_hex = rgb_to_hex(color)
        name = color_to_name(color)
        return f"{name} ({color_hex})" if name else f"Color {color_hex}"

    if naming == LayerNaming.AUTO:
        if is_grayscale(color):
            brightness = round(sum(int(c) for c in color[:3]) / 3)
            return f"Gray {round(brightness / 255 * 100)}%"
        return color_to_name(color) or f"Color {index + 1}"

    return f"Layer {index + 1}"


def build_layer(
    entry: PaletteEntry,
    paths: List[Contour],
    index: int,
    naming: LayerNaming = LayerNaming.COLOR_NAME,
) -> Layer:
    """Create a visible Layer for one palette entry."""
    return Layer(
        id=entry.id,
        name=layer_name(entry.rgb, index, naming),
        color_hex=entry.hex,
        visible=True,
        paths=list(paths),
    )


def assemble_layers(
    traced: Sequence[Tuple[PaletteEntry, List[Contour]]],
    naming: LayerNaming = LayerNaming.COLOR_NAME,
    max_layers: int = 0,
) -> List[Layer]:
    """Turn traced palette entries into ordered Layer records.

    Entries without contours are dropped. Layers are ordered back-to-front
    by descending pixel count, so the largest color is painted first.

    Args:
        traced: (palette entry, simplified contours) pairs
        naming: Naming scheme
        max_layers: Keep only the largest N layers (0 = unlimited)

    Returns:
        Ordered list of layers with unique ids
    """
    kept = [(entry, paths) for entry, paths in traced if paths]
    kept.sort(key=lambda item: -item[0].pixel_count)
    kept = enforce_layer_limit(kept, max_layers)

    layers = []
    seen = set()
    for entry, paths in kept:
        if entry.id in seen:
            logger.warning(f"Duplicate layer id {entry.id} skipped")
            continue
        seen.add(entry.id)
        layers.append(build_layer(entry, paths, len(layers), naming))

    logger.info(f"Assembled {len(layers)} layers")
    return layers


def enforce_layer_limit(items: list, max_layers: int) -> list:
    """Truncate an ordered list to ``max_layers`` items (0 = unlimited)."""
    if max_layers <= 0 or len(items) <= max_layers:
        return items
    logger.info(f"Layer limit {max_layers} drops {len(items) - max_layers} layers")
    return items[:max_layers]


def mean_color(buffer: PixelBuffer, alpha_cutoff: int = 10) -> Tuple[int, int, int]:
    """Mean color of the opaque pixels, black when there are none."""
    opaque = buffer.rgb[buffer.opaque_mask(alpha_cutoff)]
    if len(opaque) == 0:
        return (0, 0, 0)
    return tuple(int(c) for c in np.rint(opaque.mean(axis=0)))


def rectangle_layer(
    width: int, height: int, color: Color = (0, 0, 0), naming: LayerNaming = LayerNaming.COLOR_NAME
) -> Layer:
    """Single full-canvas rectangle layer."""
    rect = np.array(
        [[0, 0], [width, 0], [width, height], [0, height]], dtype=np.float64
    )
    return Layer(
        id="layer_main",
        name=layer_name(color, 0, naming),
        color_hex=rgb_to_hex(color),
        visible=True,
        paths=[rect],
    )


def raster_layer(data_uri: str) -> Layer:
    """Layer embedding the source image instead of traced paths."""
    return Layer(
        id="layer_source",
        name="Source Image",
        color_hex="#000000",
        visible=True,
        paths=[],
        raster=data_uri,
    )
