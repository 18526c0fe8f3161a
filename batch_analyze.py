#!/usr/bin/env python3
"""Batch extract palettes from a directory of images and write JSON results."""

import argparse
import json
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from analyze import ColorPipeline, analyze_image, build_config
from pixel_buffer import open_image


def find_images(directory: Path) -> list[Path]:
    """Find all image files in directory."""
    extensions = {'.jpg', '.jpeg', '.png', '.webp'}
    images = set()
    for ext in extensions:
        images.update(directory.glob(f'*{ext}'))
        images.update(directory.glob(f'*{ext.upper()}'))
    return sorted(images)


def process_image(image_path: Path, output_dir: Path, pipeline: ColorPipeline) -> tuple:
    """Analyze one image and write its JSON result. Returns (output_file, color_count, elapsed)."""
    start = time.perf_counter()
    result, _ = analyze_image(str(image_path), pipeline)
    output_file = output_dir / f"{image_path.stem}-palette.json"
    output_file.write_text(json.dumps(result.to_dict(), indent=2))
    return output_file, len(result.colors), time.perf_counter() - start


def run_frames(images: list[Path], output_dir: Path, pipeline: ColorPipeline) -> None:
    """Treat the images as frames of one video, in name order."""
    frames = [open_image(str(p)) for p in images]
    palette = pipeline.extract_video_palette(frames)
    output_file = output_dir / 'video-palette.json'
    output_file.write_text(json.dumps(palette.to_dict(), indent=2))
    print(f"{len(images)} frames → {', '.join(palette.base_colors) or 'no colors'}")
    print(f"Wrote: {output_file}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Batch extract palettes and write JSON results.'
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Directory containing images to analyze'
    )
    parser.add_argument(
        '--output', '-o',
        required=True,
        help='Directory for JSON output files'
    )
    parser.add_argument('--count', '-n', type=int, default=None, help='Colors per image (default 5)')
    parser.add_argument('--strategy', choices=['vibrant', 'quantized', 'kmeans'], default=None)
    parser.add_argument('--metric', choices=['euclidean', 'ciede2000'], default=None)
    parser.add_argument('--buckets', choices=['ai', 'simple'], default=None, help='Bucket table')
    parser.add_argument('--config', '-c', default=None, help='JSON configuration file')
    parser.add_argument('--workers', '-w', type=int, default=4, help='Images analyzed in parallel')
    parser.add_argument(
        '--frames',
        action='store_true',
        help='Treat the images as video frames and write one combined palette'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Log pipeline details')

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s %(name)s: %(message)s')

    input_dir = Path(args.input)
    output_dir = Path(args.output)

    # Validate input directory
    if not input_dir.is_dir():
        print(f"Error: Input directory not found: {input_dir}", file=sys.stderr)
        sys.exit(2)
    if args.workers < 1:
        print("Error: --workers must be at least 1", file=sys.stderr)
        sys.exit(2)

    try:
        pipeline = ColorPipeline(build_config(args))
    except (OSError, ValueError) as e:
        print(f"Error in configuration: {e}", file=sys.stderr)
        sys.exit(2)

    output_dir.mkdir(parents=True, exist_ok=True)

    images = find_images(input_dir)
    if not images:
        print(f"No images found in {input_dir}", file=sys.stderr)
        sys.exit(2)

    if args.frames:
        try:
            run_frames(images, output_dir, pipeline)
        except Exception as e:
            print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
            sys.exit(1)
        return

    total = len(images)
    succeeded = 0
    failed = []

    batch_start = time.perf_counter()

    # The pipeline is immutable after construction, so workers share it
    with ThreadPoolExecutor(max_workers=args.workers) as executor:
        futures = [executor.submit(process_image, p, output_dir, pipeline) for p in images]

        for i, (image_path, future) in enumerate(zip(images, futures), 1):
            try:
                output_file, count, img_elapsed = future.result()
                print(f"[{i}/{total}] {image_path.name} → {count} colors ({img_elapsed:.2f}s)")
                succeeded += 1
            except Exception as e:
                error_msg = f"{type(e).__name__}: {e}"
                print(f"[{i}/{total}] {image_path.name} → ERROR: {error_msg}", file=sys.stderr)
                failed.append((image_path.name, error_msg))

    batch_elapsed = time.perf_counter() - batch_start

    # Summary
    print()
    print(f"Completed: {succeeded}/{total} succeeded in {batch_elapsed:.2f}s")
    if succeeded > 0:
        print(f"Average: {batch_elapsed / succeeded:.2f}s per image")
    if failed:
        print(f"Failed ({len(failed)}):")
        for name, error in failed:
            print(f"  - {name}: {error}")
        sys.exit(1)


if __name__ == '__main__':
    main()
