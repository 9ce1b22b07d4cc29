"""Raster ingestion and preprocessing for the pixel buffer."""

import base64
import io
import logging
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image, ImageOps
from scipy import ndimage
from skimage.filters import gaussian

from .types import BlurMethod, ImageArray, InvalidInputError, PixelBuffer, PreprocessError

logger = logging.getLogger(__name__)


def buffer_from_array(image: ImageArray) -> PixelBuffer:
    """Create a PixelBuffer from a numpy array.

    Args:
        image: Image array (H, W), (H, W, 3) or (H, W, 4). Float arrays are
            taken to be in [0, 1]; integer arrays in [0, 255].

    Returns:
        PixelBuffer with an opaque alpha channel added where missing

    Raises:
        InvalidInputError: If the array has an unsupported shape or is empty
    """
    image = np.asarray(image)

    if image.size == 0:
        raise InvalidInputError("Cannot build a pixel buffer from an empty array")

    if image.ndim == 2:
        # Grayscale - convert to RGB
        image = np.stack([image] * 3, axis=-1)

    if image.ndim != 3:
        raise InvalidInputError(f"Expected 2D or 3D array, got {image.ndim}D")

    if np.issubdtype(image.dtype, np.floating):
        image = np.clip(np.rint(image * 255.0), 0, 255)
    image = image.astype(np.uint8)

    channels = image.shape[2]
    if channels == 3:
        alpha = np.full(image.shape[:2] + (1,), 255, dtype=np.uint8)
        image = np.concatenate([image, alpha], axis=2)
    elif channels != 4:
        raise InvalidInputError(f"Expected 3 or 4 channels, got {channels}")

    height, width = image.shape[:2]
    return PixelBuffer(width=width, height=height, samples=image)


def buffer_from_bytes(width: int, height: int, data: bytes) -> PixelBuffer:
    """Create a PixelBuffer from raw row-major RGBA bytes."""
    if width <= 0 or height <= 0:
        raise InvalidInputError(f"Pixel buffer must have positive dimensions, got {width}x{height}")
    expected = width * height * 4
    if len(data) != expected:
        raise InvalidInputError(f"Expected {expected} bytes for {width}x{height} RGBA, got {len(data)}")
    samples = np.frombuffer(bytes(data), dtype=np.uint8).reshape(height, width, 4)
    return PixelBuffer(width=width, height=height, samples=samples)


def load_image(path: Union[str, Path]) -> PixelBuffer:
    """Decode an image file into a PixelBuffer.

    Args:
        path: Path to image file

    Returns:
        RGBA PixelBuffer

    Raises:
        FileNotFoundError: If file doesn't exist
        InvalidInputError: If file cannot be decoded
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")

    if not path.is_file():
        raise InvalidInputError(f"Path is not a file: {path}")

    try:
        with Image.open(path) as img:
            # Apply EXIF orientation transformation to handle rotation
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGBA":
                img = img.convert("RGBA")
            samples = np.array(img)
    except (IOError, OSError) as e:
        raise InvalidInputError(f"Failed to load image {path}: {e}") from e

    logger.info(f"Loaded {path.name}: {samples.shape[1]}x{samples.shape[0]}")
    return buffer_from_array(samples)


def downscale(buffer: PixelBuffer, max_size: int) -> PixelBuffer:
    """Downscale so that neither dimension exceeds ``max_size``.

    Aspect ratio is preserved; buffers already within bounds are returned
    unchanged.
    """
    width, height = buffer.width, buffer.height
    if width <= max_size and height <= max_size:
        return buffer

    if width > height:
        new_width = max_size
        new_height = max(1, int(height * (max_size / width)))
    else:
        new_height = max_size
        new_width = max(1, int(width * (max_size / height)))

    try:
        img = Image.fromarray(np.array(buffer.samples))
        resized = img.resize((new_width, new_height), Image.Resampling.LANCZOS)
    except (ValueError, OSError) as e:
        raise PreprocessError(f"Downscale failed: {e}") from e

    logger.info(f"Resized image: {width}x{height} -> {new_width}x{new_height}")
    return buffer_from_array(np.array(resized))


def blur(buffer: PixelBuffer, radius: float, method: BlurMethod = BlurMethod.GAUSSIAN) -> PixelBuffer:
    """Smooth the buffer to suppress single-pixel noise before quantization.

    Args:
        buffer: Source pixel buffer (not modified)
        radius: Blur radius in pixels; 0 returns the buffer unchanged
        method: Gaussian (sigma = radius) or box (window = 2 * radius + 1)

    Returns:
        New blurred PixelBuffer
    """
    if radius <= 0:
        return buffer

    samples = buffer.samples.astype(np.float64)
    try:
        if method == BlurMethod.BOX:
            size = 2 * int(round(radius)) + 1
            blurred = ndimage.uniform_filter(samples, size=(size, size, 1), mode="nearest")
        else:
            blurred = gaussian(samples, sigma=radius, channel_axis=-1, preserve_range=True, mode="nearest")
    except (ValueError, RuntimeError) as e:
        raise PreprocessError(f"Blur failed: {e}") from e

    blurred = np.clip(np.rint(blurred), 0, 255).astype(np.uint8)
    return PixelBuffer(width=buffer.width, height=buffer.height, samples=blurred)


def to_data_uri(buffer: PixelBuffer) -> str:
    """Encode the buffer as a base64 PNG data URI."""
    img = Image.fromarray(np.array(buffer.samples))
    stream = io.BytesIO()
    img.save(stream, format="PNG")
    encoded = base64.b64encode(stream.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
