"""Main pipeline orchestrator for apx-layers."""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

import numpy as np

from .contour import trace
from .edges import detect_edges
from .extract import build_mask, clean_mask, monochrome_mask
from .layers import assemble_layers, build_layer, mean_color, raster_layer, rectangle_layer
from .quantize import quantize_buffer
from .raster_ingest import blur, downscale, load_image, to_data_uri
from .simplify import simplify_contours
from .svg import fallback_svg, serialize
from .types import (
    ColorMask,
    ColorMode,
    Contour,
    ConversionResult,
    EngineBusyError,
    InvalidInputError,
    Layer,
    PaletteEntry,
    PixelBuffer,
    QuantizationError,
    SerializationError,
    StageError,
    VectorDocument,
    VectorizeOptions,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

# Progress milestones (percent)
PROGRESS_LOAD = 5
PROGRESS_BLUR = 15
PROGRESS_PREPROCESS = 30
PROGRESS_QUANTIZE = 40
PROGRESS_TRACE_END = 80
PROGRESS_ASSEMBLE = 85
PROGRESS_SERIALIZE = 90
PROGRESS_DONE = 100

MONO_LAYER_ID = "layer_mono"


class _Progress:
    """Forwards milestones to the caller's sink, never moving backwards."""

    def __init__(self, sink: Optional[ProgressCallback]):
        self.sink = sink
        self.percent = 0

    def __call__(self, stage: str, percent: float) -> None:
        percent = max(self.percent, min(100, int(percent)))
        self.percent = percent
        logger.debug(f"Progress {stage}: {percent}%")
        if self.sink is None:
            return
        try:
            self.sink(stage, percent)
        except Exception as e:
            logger.warning(f"Progress callback failed at {stage}: {e}")


class VectorizationEngine:
    """Drives one conversion at a time through the vectorization stages.

    Every stage failure except invalid input degrades the result instead of
    failing the call:

    - refinement failure keeps the median-cut palette
    - a failing color is skipped
    - quantization failure embeds the source image as a single layer
    - an empty result is retried once with relaxed options, then replaced by
      a full-canvas rectangle layer
    - layered serialization failure falls back to flat output, then to a
      minimal placeholder document
    """

    def __init__(self, options: Optional[VectorizeOptions] = None):
        """Initialize engine with default options.

        Args:
            options: Options used when a call does not pass its own
        """
        self.options = options or VectorizeOptions()
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _acquire(self) -> None:
        if not self._lock.acquire(blocking=False):
            raise EngineBusyError("A conversion is already in progress")

    def vectorize(
        self,
        buffer: PixelBuffer,
        options: Optional[VectorizeOptions] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> VectorDocument:
        """Convert a pixel buffer into a layered vector document.

        Args:
            buffer: Decoded source image (not modified)
            options: Per-call options (defaults to the engine's)
            progress: Optional ``(stage, percent)`` callback

        Returns:
            Non-empty VectorDocument

        Raises:
            InvalidInputError: If the buffer is missing or has no pixels
            EngineBusyError: If another conversion is in flight
        """
        self._acquire()
        try:
            report = _Progress(progress)
            doc = self._run(buffer, options or self.options, report)
            report("done", PROGRESS_DONE)
            return doc
        finally:
            self._lock.release()

    def convert(
        self,
        buffer: PixelBuffer,
        options: Optional[VectorizeOptions] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> ConversionResult:
        """Vectorize and serialize in one call.

        Returns:
            ConversionResult with the document, its SVG text and manifest
        """
        self._acquire()
        try:
            start = time.perf_counter()
            options = options or self.options
            report = _Progress(progress)
            doc = self._run(buffer, options, report)
            report("serialize", PROGRESS_SERIALIZE)
            svg = self._serialize(doc, options)
            report("done", PROGRESS_DONE)
            elapsed = time.perf_counter() - start
            logger.info(f"Converted {doc.width}x{doc.height} to {len(doc.layers)} layers in {elapsed:.2f}s")
            return ConversionResult(document=doc, svg=svg, manifest=doc.manifest(), elapsed=elapsed)
        finally:
            self._lock.release()

    def _run(self, buffer: PixelBuffer, options: VectorizeOptions, report: _Progress) -> VectorDocument:
        if buffer is None or not isinstance(buffer, PixelBuffer):
            raise InvalidInputError("A decoded pixel buffer is required")
        if buffer.samples.size == 0:
            raise InvalidInputError("Pixel buffer has no pixels")

        deadline = time.monotonic() + options.timeout if options.timeout else None
        report("load", PROGRESS_LOAD)

        buffer = self._preprocess(buffer, options, report)

        layers: Optional[List[Layer]] = []
        if self._expired(deadline):
            logger.warning("Timeout reached after preprocessing; skipping separation")
        else:
            layers = self._separate(buffer, options, report, deadline)

        if layers is None:
            layers = self._raster_fallback(buffer)
        elif not layers and not self._expired(deadline):
            logger.warning("No layers traced; retrying with relaxed parameters")
            relaxed = options.relaxed()
            edges = detect_edges(buffer, relaxed.edge_threshold)
            layers = self._separate(buffer, relaxed, report, deadline, edges) or []

        if not layers:
            color = mean_color(buffer, options.alpha_cutoff)
            logger.warning("Falling back to a full-canvas rectangle layer")
            layers = [rectangle_layer(buffer.width, buffer.height, color, options.layer_naming)]

        report("assemble", PROGRESS_ASSEMBLE)
        return VectorDocument(
            width=buffer.width, height=buffer.height, layers=layers, dialect=options.dialect
        )

    @staticmethod
    def _expired(deadline: Optional[float]) -> bool:
        return deadline is not None and time.monotonic() > deadline

    def _preprocess(self, buffer: PixelBuffer, options: VectorizeOptions, report: _Progress) -> PixelBuffer:
        """Blur then downscale, keeping the previous buffer when a step fails."""
        if options.blur_radius > 0:
            try:
                buffer = blur(buffer, options.blur_radius, options.blur_method)
            except StageError as e:
                logger.warning(f"Skipping blur: {e}")
        report("preprocess", PROGRESS_BLUR)

        try:
            buffer = downscale(buffer, options.max_image_size)
        except StageError as e:
            logger.warning(f"Skipping downscale: {e}")
        report("preprocess", PROGRESS_PREPROCESS)
        return buffer

    def _separate(
        self,
        buffer: PixelBuffer,
        options: VectorizeOptions,
        report: _Progress,
        deadline: Optional[float],
        edges: Optional[np.ndarray] = None,
    ) -> Optional[List[Layer]]:
        """Build layers in the configured color mode.

        Returns:
            Layers (possibly empty), or None when quantization failed
        """
        if options.color_mode == ColorMode.MONOCHROME:
            return self._monochrome_layers(buffer, options, report, edges)
        return self._color_layers(buffer, options, report, deadline, edges)

    def _color_layers(
        self,
        buffer: PixelBuffer,
        options: VectorizeOptions,
        report: _Progress,
        deadline: Optional[float],
        edges: Optional[np.ndarray],
    ) -> Optional[List[Layer]]:
        try:
            palette, assignment = quantize_buffer(
                buffer,
                options.max_colors,
                refine=options.refine,
                alpha_cutoff=options.alpha_cutoff,
                sample_limit=options.sample_limit,
                kmeans_iterations=options.kmeans_iterations,
                random_state=options.random_state,
            )
        except QuantizationError as e:
            logger.warning(f"Quantization failed: {e}")
            return None
        report("quantize", PROGRESS_QUANTIZE)

        traced = []
        span = PROGRESS_TRACE_END - PROGRESS_QUANTIZE
        for index, entry in enumerate(palette):
            if self._expired(deadline):
                logger.warning(f"Timeout reached; traced {index} of {len(palette)} colors")
                break
            try:
                paths = self._trace_mask(build_mask(assignment, index), options, edges)
            except StageError as e:
                logger.warning(f"Skipping color {entry.hex}: {e}")
                paths = []
            logger.debug(f"{entry.id} {entry.hex}: {entry.pixel_count} px, {len(paths)} paths")
            traced.append((entry, paths))
            report("trace", PROGRESS_QUANTIZE + span * (index + 1) / len(palette))

        return assemble_layers(traced, options.layer_naming, options.max_layers)

    def _monochrome_layers(
        self,
        buffer: PixelBuffer,
        options: VectorizeOptions,
        report: _Progress,
        edges: Optional[np.ndarray],
    ) -> List[Layer]:
        mask = monochrome_mask(buffer, options.threshold, options.alpha_cutoff)
        try:
            paths = self._trace_mask(mask, options, edges)
        except StageError as e:
            logger.warning(f"Monochrome tracing failed: {e}")
            paths = []
        report("trace", PROGRESS_TRACE_END)

        if not paths:
            return []
        entry = PaletteEntry(0, 0, 0, mask.area, MONO_LAYER_ID)
        return [build_layer(entry, paths, 0, options.layer_naming)]

    def _trace_mask(
        self, mask: ColorMask, options: VectorizeOptions, edges: Optional[np.ndarray]
    ) -> List[Contour]:
        """Clean, trace and simplify one mask."""
        mask = clean_mask(mask, options.min_region_area, keep=edges)
        contours = trace(mask, options.min_contour_points)
        return simplify_contours(contours, options.simplify_tolerance)

    def _raster_fallback(self, buffer: PixelBuffer) -> List[Layer]:
        try:
            return [raster_layer(to_data_uri(buffer))]
        except (OSError, ValueError) as e:
            logger.warning(f"Could not embed source image: {e}")
            return []

    def _serialize(self, doc: VectorDocument, options: VectorizeOptions) -> str:
        """Serialize with the layered, flat, placeholder fallback chain."""
        kwargs = dict(stroke_width=options.stroke_width, precision=options.precision)
        try:
            return serialize(doc, options.dialect, flat=not options.enable_layers, **kwargs)
        except SerializationError as e:
            logger.warning(f"Layered serialization failed: {e}")

        try:
            return serialize(doc, flat=True, **kwargs)
        except SerializationError as e:
            logger.warning(f"Flat serialization failed: {e}")
        return fallback_svg(doc.width, doc.height, "Vectorization failed")


def vectorize(
    buffer: PixelBuffer,
    options: Optional[VectorizeOptions] = None,
    progress: Optional[ProgressCallback] = None,
) -> VectorDocument:
    """Vectorize a pixel buffer with a fresh engine."""
    return VectorizationEngine(options).vectorize(buffer, progress=progress)


def convert(
    buffer: PixelBuffer,
    options: Optional[VectorizeOptions] = None,
    progress: Optional[ProgressCallback] = None,
) -> ConversionResult:
    """Vectorize and serialize a pixel buffer with a fresh engine."""
    return VectorizationEngine(options).convert(buffer, progress=progress)


def process_image(
    image_path: Union[str, Path],
    output_path: Optional[Union[str, Path]] = None,
    options: Optional[VectorizeOptions] = None,
    progress: Optional[ProgressCallback] = None,
) -> ConversionResult:
    """Process an image file through the vectorization pipeline.

    Convenience function for one-off processing.

    Args:
        image_path: Path to input image (JPG/PNG)
        output_path: Optional path to save SVG output
        options: Optional options object
        progress: Optional ``(stage, percent)`` callback

    Returns:
        ConversionResult for the image

    Raises:
        FileNotFoundError: If the input file doesn't exist
        InvalidInputError: If the input cannot be decoded

    Example:
        >>> result = process_image("input.png", "output.svg")
        >>> result = process_image("input.png", options=VectorizeOptions(max_colors=8))
    """
    buffer = load_image(image_path)
    result = convert(buffer, options, progress)

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(result.svg, encoding="utf-8")
        logger.info(f"Saved SVG to {output_path}")

    return result
