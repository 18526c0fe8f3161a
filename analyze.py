#!/usr/bin/env python3
"""
Color extraction pipeline.

Extracts a palette from an image, classifies it into search buckets and
locates every palette color in the image.
Stages: Extract → Classify → Locate → Render
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from PIL import Image, ImageDraw

from buckets import BucketClassifier
from color_errors import ColorError
from color_names import default_namer
from locate_colors import ColorPosition, locate_colors as locate_in_buffer
from mmcq import quantize_boxes
from colorspace import rgb_to_hex
from palette_config import PipelineConfig, load_config
from pixel_buffer import PixelBuffer, open_image
from swatches import PaletteResult, extract_palette as extract_from_buffer


logger = logging.getLogger(__name__)

# Video thumbnails: a few frames, a few colors each
FRAME_MAX_DIMENSION = 200
FRAME_STRIDE = 5
FRAME_PALETTE_SIZE = 8
COLORS_PER_FRAME = 3
VIDEO_BASE_COLORS = 5


@dataclass
class ExtractionResult:
    """Output of a full re-extraction."""
    colors: list = field(default_factory=list)
    weights: list = field(default_factory=list)
    names: list = field(default_factory=list)
    positions: list = field(default_factory=list)  # ColorPosition per color
    buckets: dict = field(default_factory=dict)  # slot name -> bucket id
    accents: list = field(default_factory=list)
    accent_names: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'colors': self.colors,
            'weights': self.weights,
            'names': self.names,
            'positions': [p.to_dict() for p in self.positions],
            'buckets': self.buckets,
            'accents': self.accents,
            'accent_names': self.accent_names,
        }


@dataclass
class VideoPalette:
    base_colors: list
    preview_colors: list
    frames_processed: int

    def to_dict(self) -> dict:
        return {
            'base_colors': self.base_colors,
            'preview_colors': self.preview_colors,
            'frames_processed': self.frames_processed,
        }


# =============================================================================
# Pipeline
# =============================================================================

class ColorPipeline:
    """
    Sequences extraction, classification and location for one configuration.

    The bucket table is built once here and shared by every call, so colors
    indexed through a pipeline and queries classified through it agree.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.classifier = BucketClassifier(self.config.buckets)
        self.namer = default_namer()

    def extract_palette(self, pixels: PixelBuffer, desired_count: Optional[int] = None) -> PaletteResult:
        count = self.config.desired_count if desired_count is None else desired_count
        if count < 1:
            raise ValueError(f"desired_count must be positive, got {count}")
        return extract_from_buffer(pixels, count, self.config.quantizer,
                                   self.config.swatches, namer=self.namer)

    def classify_bucket(self, hex_value: str, metric: Optional[str] = None) -> Optional[str]:
        return self.classifier.classify(hex_value, metric or self.config.metric)

    def matches_buckets(self, stored_ids, query_hex: str) -> bool:
        return self.classifier.matches(stored_ids, query_hex, self.config.metric)

    def locate_colors(self, pixels: PixelBuffer, colors) -> list[ColorPosition]:
        return locate_in_buffer(pixels, colors, self.config.locator)

    def reextract(self, pixels: PixelBuffer, desired_count: Optional[int] = None) -> ExtractionResult:
        """
        Full re-extraction: palette, bucket slots and marker positions.

        Raises:
            UnsupportedChannelLayout: If the buffer has fewer than 3 channels
        """
        palette = self.extract_palette(pixels, desired_count)
        buckets = self.classifier.classify_slots(palette.colors, self.config.metric)
        positions = self.locate_colors(pixels, palette.colors)
        logger.debug("Re-extracted %d colors", len(palette.colors))

        return ExtractionResult(
            colors=palette.colors,
            weights=palette.weights,
            names=palette.names,
            positions=positions,
            buckets=buckets,
            accents=palette.accents,
            accent_names=palette.accent_names,
        )

    def extract_frame_colors(self, frame: PixelBuffer, per_frame: int = COLORS_PER_FRAME) -> list[str]:
        """Most frequent colors of one video frame."""
        samples = frame.resized(FRAME_MAX_DIMENSION).sample(stride=FRAME_STRIDE)
        boxes = quantize_boxes(samples, FRAME_PALETTE_SIZE, self.config.quantizer.split_priority)
        return [rgb_to_hex(*b.color) for b in boxes[:per_frame]]

    def extract_video_palette(self, frames, per_frame: int = COLORS_PER_FRAME,
                              base_count: int = VIDEO_BASE_COLORS) -> VideoPalette:
        """Colors from several frames in frame order. Frames that fail are skipped."""
        preview = []
        processed = 0
        for index, frame in enumerate(frames):
            try:
                colors = self.extract_frame_colors(frame, per_frame)
            except ColorError as e:
                logger.warning("Skipping frame %d: %s", index, e)
                continue
            if colors:
                processed += 1
            preview.extend(colors)

        return VideoPalette(
            base_colors=preview[:base_count],
            preview_colors=preview,
            frames_processed=processed,
        )


_default_pipeline = None


def default_pipeline() -> ColorPipeline:
    global _default_pipeline
    if _default_pipeline is None:
        _default_pipeline = ColorPipeline()
    return _default_pipeline


def extract_palette(pixels: PixelBuffer, desired_count: int = 5) -> dict:
    """{colors, weights, names} for up to desired_count colors."""
    palette = default_pipeline().extract_palette(pixels, desired_count)
    return {'colors': palette.colors, 'weights': palette.weights, 'names': palette.names}


def classify_bucket(hex_value: str, metric: str = 'euclidean') -> Optional[str]:
    """Nearest bucket id in the default table, None for an invalid hex."""
    return default_pipeline().classify_bucket(hex_value, metric)


def locate_colors(pixels: PixelBuffer, colors) -> list[dict]:
    """[{hex, x, y}] marker positions, one per color."""
    return [p.to_dict() for p in default_pipeline().locate_colors(pixels, colors)]


# =============================================================================
# Render
# =============================================================================

def render(result: ExtractionResult) -> str:
    """Plain-text report of a re-extraction."""
    if not result.colors:
        return "No colors found."

    lines = [f"Palette ({len(result.colors)} colors):"]
    slots = list(result.buckets.values())
    for i, hex_value in enumerate(result.colors):
        bucket = slots[i] if i < len(slots) else None
        line = f"  {i + 1}. {hex_value}  {result.names[i]:<22} {result.weights[i]:5.1f}%"
        line += f"  bucket: {bucket or '-'}"
        if i < len(result.positions):
            pos = result.positions[i]
            line += f"  at ({pos.x:.2f}, {pos.y:.2f})"
        lines.append(line)

    if result.accents:
        accents = ', '.join(f"{h} ({n})" for h, n in zip(result.accents, result.accent_names))
        lines.append(f"Accents: {accents}")

    return '\n'.join(lines)


def render_swatch_image(pixels: PixelBuffer, result: ExtractionResult, output_path: str) -> None:
    """
    Save the image with a marker per located color and a swatch strip with weights.
    """
    preview_width = 400
    swatch_height = 60
    text_height = 20
    marker_radius = 7

    img = Image.fromarray(pixels.rgb().copy())
    scale = preview_width / img.width if img.width else 1.0
    preview_height = max(1, round(img.height * scale))
    img = img.resize((preview_width, preview_height), Image.Resampling.BILINEAR)

    canvas = Image.new('RGB', (preview_width, preview_height + swatch_height + text_height),
                       (240, 240, 240))
    canvas.paste(img, (0, 0))
    draw = ImageDraw.Draw(canvas)

    for pos in result.positions:
        cx, cy = pos.x * preview_width, pos.y * preview_height
        draw.ellipse([cx - marker_radius, cy - marker_radius, cx + marker_radius, cy + marker_radius],
                     fill=pos.hex if pos.hex.startswith('#') else None,
                     outline=(255, 255, 255), width=2)

    x = 0
    for hex_value, weight in zip(result.colors, result.weights):
        width = round(preview_width * weight / 100)
        y = preview_height
        draw.rectangle([x, y, x + width, y + swatch_height], fill=hex_value)
        draw.text((x + 4, y + swatch_height + 4), f"{weight:.1f}%", fill=(0, 0, 0))
        x += width

    canvas.save(output_path)


# =============================================================================
# Main Pipeline
# =============================================================================

def analyze_image(image_path: str, pipeline: Optional[ColorPipeline] = None) -> tuple[ExtractionResult, PixelBuffer]:
    """Decode an image and run the full re-extraction on it.

    Returns:
        Tuple of (extraction_result, decoded_pixels)
    """
    pipeline = pipeline or default_pipeline()
    pixels = open_image(image_path)
    return pipeline.reextract(pixels), pixels


# =============================================================================
# CLI
# =============================================================================

def build_config(args) -> PipelineConfig:
    config = load_config(args.config) if args.config else PipelineConfig()
    return config.with_overrides(
        desired_count=args.count,
        metric=args.metric,
        strategy=args.strategy,
        buckets=args.buckets,
    )


def main(argv=None):
    import argparse
    import sys
    from pathlib import Path

    parser = argparse.ArgumentParser(
        description='Extract an image palette, its search buckets and color positions.'
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--input', '-i', help='Path to the image file')
    source.add_argument('--classify', metavar='HEX', help='Only print the bucket of a hex color')
    parser.add_argument('--count', '-n', type=int, default=None, help='Number of colors (default 5)')
    parser.add_argument('--strategy', choices=['vibrant', 'quantized', 'kmeans'], default=None)
    parser.add_argument('--metric', choices=['euclidean', 'ciede2000'], default=None)
    parser.add_argument('--buckets', choices=['ai', 'simple'], default=None, help='Bucket table')
    parser.add_argument('--config', '-c', default=None, help='JSON configuration file')
    parser.add_argument('--json', action='store_true', help='Print JSON instead of a report')
    parser.add_argument(
        '--output', '-o',
        nargs='?',
        const=True,
        default=None,
        help='Write a swatch image. Optionally specify path, otherwise auto-names from input.'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Log pipeline details')

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s %(name)s: %(message)s')

    try:
        pipeline = ColorPipeline(build_config(args))
    except (OSError, ValueError) as e:
        print(f"Error in configuration: {e}", file=sys.stderr)
        sys.exit(2)

    if args.classify:
        bucket = pipeline.classify_bucket(args.classify)
        if bucket is None:
            print(f"Error: invalid hex color {args.classify!r}", file=sys.stderr)
            sys.exit(1)
        print(bucket)
        return

    image_path = Path(args.input)

    try:
        result, pixels = analyze_image(str(image_path), pipeline)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error analyzing image: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(render(result))

    if args.output:
        if args.output is True:
            output_path = image_path.with_name(f"{image_path.stem}-palette.png")
        else:
            output_path = Path(args.output)

        try:
            render_swatch_image(pixels, result, str(output_path))
            if not args.json:
                print(f"\nWrote: {output_path}")
        except OSError as e:
            print(f"Error writing output: {e}", file=sys.stderr)
            sys.exit(1)


if __name__ == '__main__':
    main()
