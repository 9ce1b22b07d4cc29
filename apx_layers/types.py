"""Common types, options and exceptions for apx-layers."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

# Type aliases
ImageArray = np.ndarray
Contour = np.ndarray  # (N, 2) float64 array of (x, y) points
Color = Union[Tuple[int, int, int], Tuple[int, int, int, int]]
PathData = str


class VectorizationError(Exception):
    """Base exception for vectorization errors."""

    pass


class InvalidInputError(VectorizationError):
    """Raised for zero-area or unreadable pixel buffers. Fatal."""

    pass


class EngineBusyError(VectorizationError):
    """Raised when a conversion is requested while another is in flight."""

    pass


class StageError(VectorizationError):
    """Recoverable failure of a single pipeline stage."""

    pass


class PreprocessError(StageError):
    """Exception raised during blur or downscale."""

    pass


class QuantizationError(StageError):
    """Exception raised during color quantization."""

    pass


class ContourError(StageError):
    """Exception raised during contour detection."""

    pass


class SerializationError(StageError):
    """Exception raised during SVG generation."""

    pass


class ColorMode(Enum):
    """How the pixel buffer is separated into layers."""

    COLOR = "color"
    MONOCHROME = "mono"


class LayerNaming(Enum):
    """Layer naming scheme."""

    COLOR_NAME = "color"
    INDEX = "index"
    AUTO = "auto"


class BlurMethod(Enum):
    """Pre-blur kernel."""

    GAUSSIAN = "gaussian"
    BOX = "box"


class Dialect(Enum):
    """Layer-group convention used when serializing a document."""

    PLAIN = "plain"
    ILLUSTRATOR = "illustrator"
    PHOTOPEA = "photopea"

    @classmethod
    def from_flags(cls, illustrator_compat: bool = False, photopea_compat: bool = False) -> "Dialect":
        """Map the caller's compatibility flags onto a dialect.

        Photopea takes precedence when both flags are set, matching the
        group attributes the layered generator writes.
        """
        if photopea_compat:
            return cls.PHOTOPEA
        if illustrator_compat:
            return cls.ILLUSTRATOR
        return cls.PLAIN


@dataclass(frozen=True)
class PixelBuffer:
    """Decoded RGBA image.

    ``samples`` is an (H, W, 4) uint8 array in row-major RGBA order. The array
    is marked read-only; stages that derive data from it work on copies.
    """

    width: int
    height: int
    samples: np.ndarray

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidInputError(
                f"Pixel buffer must have positive dimensions, got {self.width}x{self.height}"
            )
        samples = self.samples
        if not isinstance(samples, np.ndarray):
            raise InvalidInputError("Pixel buffer samples must be a numpy array")
        if samples.shape != (self.height, self.width, 4):
            raise InvalidInputError(
                f"Expected samples of shape {(self.height, self.width, 4)}, got {samples.shape}"
            )
        if samples.dtype != np.uint8:
            raise InvalidInputError(f"Expected uint8 samples, got {samples.dtype}")
        if samples.flags.writeable:
            samples = samples.copy()
            samples.setflags(write=False)
            object.__setattr__(self, "samples", samples)

    @property
    def rgb(self) -> ImageArray:
        """(H, W, 3) view of the color channels."""
        return self.samples[..., :3]

    @property
    def alpha(self) -> ImageArray:
        """(H, W) view of the alpha channel."""
        return self.samples[..., 3]

    def opaque_mask(self, alpha_cutoff: int = 10) -> np.ndarray:
        """Boolean (H, W) mask of pixels at or above the alpha cutoff."""
        return self.alpha >= alpha_cutoff


@dataclass
class PaletteEntry:
    """One representative color with its aggregate pixel weight."""

    r: int
    g: int
    b: int
    pixel_count: int
    id: str

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)

    @property
    def hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"


@dataclass
class ColorMask:
    """Binary occupancy bitmap for one palette entry."""

    width: int
    height: int
    occupancy: np.ndarray  # (H, W) bool

    @property
    def area(self) -> int:
        return int(np.count_nonzero(self.occupancy))


@dataclass
class Layer:
    """Named, colored, independently toggleable collection of contours.

    ``raster`` holds a PNG data URI for the embedded-source fallback layer;
    such a layer carries no paths.
    """

    id: str
    name: str
    color_hex: str
    visible: bool = True
    paths: List[Contour] = field(default_factory=list)
    raster: Optional[str] = None

    def manifest(self) -> Dict[str, object]:
        """Flat presentation record for this layer.

        Keys are snake_case (``id``, ``name``, ``color_hex``, ``visible``);
        the CLI writes a list of these records as its manifest JSON.
        """
        return {
            "id": self.id,
            "name": self.name,
            "color_hex": self.color_hex,
            "visible": self.visible,
        }


@dataclass
class VectorDocument:
    """Layered vector document. Layers are ordered back-to-front."""

    width: int
    height: int
    layers: List[Layer] = field(default_factory=list)
    dialect: Dialect = Dialect.PLAIN

    def manifest(self) -> List[Dict[str, object]]:
        return [layer.manifest() for layer in self.layers]

    def get_layer(self, layer_id: str) -> Optional[Layer]:
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        return None


@dataclass
class ConversionResult:
    """Output of one conversion: the document, its text form and manifest."""

    document: VectorDocument
    svg: str
    manifest: List[Dict[str, object]]
    elapsed: float = 0.0


@dataclass
class VectorizeOptions:
    """Configuration for one vectorization request."""

    # Separation
    color_mode: ColorMode = ColorMode.COLOR
    max_colors: int = 16
    refine: bool = False
    threshold: int = 128  # monochrome luma threshold

    # Preprocessing
    blur_radius: float = 0.0
    blur_method: BlurMethod = BlurMethod.GAUSSIAN
    max_image_size: int = 2000

    # Quantization
    alpha_cutoff: int = 10
    sample_limit: int = 10000
    kmeans_iterations: int = 10
    random_state: int = 42

    # Masks and tracing
    min_region_area: int = 4
    min_contour_points: int = 3
    edge_threshold: float = 20.0

    # Simplification
    simplify_tolerance: float = 0.5

    # Layers and output
    enable_layers: bool = True
    layer_naming: LayerNaming = LayerNaming.COLOR_NAME
    dialect: Dialect = Dialect.PLAIN
    max_layers: int = 0  # 0 = unlimited
    stroke_width: float = 0.0
    precision: int = 2

    # Orchestration
    timeout: Optional[float] = None

    def __post_init__(self):
        """Clamp numeric fields into their supported ranges."""
        self.max_colors = max(2, min(256, int(self.max_colors)))
        self.simplify_tolerance = max(0.0, float(self.simplify_tolerance))
        self.blur_radius = max(0.0, float(self.blur_radius))
        self.stroke_width = max(0.0, float(self.stroke_width))
        self.min_contour_points = max(3, int(self.min_contour_points))
        self.min_region_area = max(1, int(self.min_region_area))
        self.max_layers = max(0, int(self.max_layers))
        self.kmeans_iterations = max(1, int(self.kmeans_iterations))
        self.precision = max(0, int(self.precision))
        if self.max_image_size <= 0:
            raise ValueError(f"max_image_size must be positive, got {self.max_image_size}")

    def relaxed(self) -> "VectorizeOptions":
        """Parameter set for the empty-result retry."""
        return replace(
            self,
            max_colors=min(256, max(2 * self.max_colors, 24)),
            min_region_area=max(1, self.min_region_area // 2),
            refine=True,
        )
