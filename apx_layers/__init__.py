"""apx-layers: raster to layered SVG vectorization.

Converts a decoded RGBA pixel buffer into a vector document of independently
editable color layers using color quantization, per-color mask extraction,
boundary tracing and Douglas-Peucker simplification. Documents can be written
in plain, Illustrator-style or Photopea-style SVG and edited in place.
"""

from .pipeline import VectorizationEngine, convert, process_image, vectorize
from .svg import parse, parse_document, serialize, set_all_visibility, set_color, set_visibility
from .types import (
    ColorMode,
    ConversionResult,
    Dialect,
    EngineBusyError,
    InvalidInputError,
    Layer,
    LayerNaming,
    PixelBuffer,
    StageError,
    VectorDocument,
    VectorizationError,
    VectorizeOptions,
)

__version__ = "0.1.0"
__all__ = [
    "ColorMode",
    "ConversionResult",
    "Dialect",
    "EngineBusyError",
    "InvalidInputError",
    "Layer",
    "LayerNaming",
    "PixelBuffer",
    "StageError",
    "VectorDocument",
    "VectorizationEngine",
    "VectorizationError",
    "VectorizeOptions",
    "convert",
    "parse",
    "parse_document",
    "process_image",
    "serialize",
    "set_all_visibility",
    "set_color",
    "set_visibility",
    "vectorize",
]
