"""Command-line interface for apx-layers."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .pipeline import process_image
from .types import (
    BlurMethod,
    ColorMode,
    Dialect,
    InvalidInputError,
    LayerNaming,
    VectorizationError,
    VectorizeOptions,
)


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="apx-layers",
        description="Convert a raster image into a layered SVG",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  apx-layers input.png -o output.svg
  apx-layers input.png --colors 8 --refine --dialect illustrator
  apx-layers scan.png --mode mono --simplify 1.5 --manifest layers.json
        """,
    )

    parser.add_argument("input", help="Input image file path")
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output SVG file path (default: input name with .svg extension)",
    )
    parser.add_argument(
        "-m",
        "--mode",
        choices=[m.value for m in ColorMode],
        default=ColorMode.COLOR.value,
        help="Color separation mode (default: color)",
    )
    parser.add_argument(
        "-c", "--colors", type=int, default=16, help="Maximum palette size, 2-256 (default: 16)"
    )
    parser.add_argument(
        "--refine", action="store_true", help="Refine the palette with K-means"
    )
    parser.add_argument(
        "-s",
        "--simplify",
        type=float,
        default=0.5,
        help="Simplification tolerance in pixels (default: 0.5)",
    )
    parser.add_argument(
        "--blur", type=float, default=0.0, help="Pre-blur radius in pixels (default: 0)"
    )
    parser.add_argument(
        "--blur-method",
        choices=[m.value for m in BlurMethod],
        default=BlurMethod.GAUSSIAN.value,
        help="Pre-blur kernel (default: gaussian)",
    )
    parser.add_argument(
        "--stroke-width", type=float, default=0.0, help="Path outline width (default: 0)"
    )
    parser.add_argument(
        "--no-layers", action="store_true", help="Emit flat paths without layer groups"
    )
    parser.add_argument(
        "--naming",
        choices=[n.value for n in LayerNaming],
        default=LayerNaming.COLOR_NAME.value,
        help="Layer naming scheme (default: color)",
    )
    parser.add_argument(
        "--dialect",
        choices=[d.value for d in Dialect],
        default=Dialect.PLAIN.value,
        help="Layer group convention (default: plain)",
    )
    parser.add_argument(
        "--max-size",
        type=int,
        default=2000,
        help="Downscale images larger than this in either dimension (default: 2000)",
    )
    parser.add_argument(
        "--max-layers", type=int, default=0, help="Keep only the largest N layers (default: all)"
    )
    parser.add_argument(
        "--manifest",
        default=None,
        help="Write the layer manifest as JSON to this path (records with id, name, color_hex, visible)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    return parser


def options_from_args(parsed: argparse.Namespace) -> VectorizeOptions:
    """Build VectorizeOptions from parsed arguments."""
    return VectorizeOptions(
        color_mode=ColorMode(parsed.mode),
        max_colors=parsed.colors,
        refine=parsed.refine,
        simplify_tolerance=parsed.simplify,
        blur_radius=parsed.blur,
        blur_method=BlurMethod(parsed.blur_method),
        stroke_width=parsed.stroke_width,
        enable_layers=not parsed.no_layers,
        layer_naming=LayerNaming(parsed.naming),
        dialect=Dialect(parsed.dialect),
        max_image_size=parsed.max_size,
        max_layers=parsed.max_layers,
    )


def main(args: Optional[list] = None) -> int:
    """Main entry point for CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(parsed.input)
    output_path = Path(parsed.output) if parsed.output else input_path.with_suffix(".svg")

    try:
        options = options_from_args(parsed)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Processing: {input_path}")
    print(f"  Mode: {options.color_mode.value}")
    print(f"  Colors: {options.max_colors}")
    print(f"  Dialect: {options.dialect.value}")

    try:
        result = process_image(input_path, output_path, options)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except InvalidInputError as e:
        print(f"Error: invalid input: {e}", file=sys.stderr)
        return 1
    except VectorizationError as e:
        print(f"Error processing image: {e}", file=sys.stderr)
        return 1

    print(f"  Layers: {len(result.manifest)}")
    print(f"  Output saved: {output_path}")

    if parsed.manifest:
        manifest_path = Path(parsed.manifest)
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        manifest_path.write_text(json.dumps(result.manifest, indent=2), encoding="utf-8")
        print(f"  Manifest saved: {manifest_path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
