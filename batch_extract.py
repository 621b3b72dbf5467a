#!/usr/bin/env python3
"""Extract palettes from one image or a directory of images."""

import argparse
import logging
import sys
import time
from pathlib import Path

import numpy as np
from PIL import Image, ImageOps

from cluster_count import STRATEGIES, Constant, ElbowMethod, GapStatistic
from color_spaces import SPACES, format_hex
from extract_colors import ExtractOptions, extract_colors
from histogram import ImageMeta
from log_setup import setup_logging
from palette import Palette
from task_pool import MODES

# Images are cover-fitted to this size before extraction
RESIZE = (300, 300)
EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp'}


def find_images(directory: Path) -> list[Path]:
    """Find all image files in directory."""
    images = []
    for ext in EXTENSIONS:
        images.extend(directory.glob(f'*{ext}'))
        images.extend(directory.glob(f'*{ext.upper()}'))
    return sorted(set(images))


def load_image(path: Path, size=RESIZE) -> tuple[np.ndarray, ImageMeta]:
    """Decode an image to a flat RGB buffer, cover-fitted with nearest sampling."""
    with Image.open(path) as img:
        img = img.convert('RGB')
        if size is not None:
            img = ImageOps.fit(img, size, method=Image.Resampling.NEAREST)
        pixels = np.asarray(img, dtype=np.uint8)
    height, width, channels = pixels.shape
    return pixels.reshape(-1), ImageMeta(width=width, height=height, channels=channels)


def make_strategy(args: argparse.Namespace):
    """Build the cluster-count strategy selected on the command line."""
    if args.strategy == 'constant':
        return Constant(args.k)
    if args.strategy == 'gap':
        return GapStatistic(max_k=args.max_k)
    return ElbowMethod()


def format_palette(palette: Palette) -> str:
    """Render the roles and the centroid list as printable lines."""
    lines = [f"  {role:<7}{value}" for role, value in palette.roles().items()]
    total = sum(palette.centroids.values())
    lines.append("  centroids:")
    for rgb, count in sorted(palette.centroids.items(), key=lambda item: -item[1]):
        lines.append(f"    {format_hex(rgb)} {count / total * 100:5.1f}%")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Extract outer/inner/accent/third palettes from images.'
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--image', help='Single image to analyze')
    source.add_argument('--input', '-i', help='Directory containing images to analyze')
    parser.add_argument('--space', choices=sorted(SPACES), default='oklab',
                        help='Colour space used for clustering (default: oklab)')
    parser.add_argument('--strategy', choices=sorted(STRATEGIES), default='elbow',
                        help='How the number of clusters is chosen (default: elbow)')
    parser.add_argument('--k', type=int, default=10,
                        help='Cluster count for the constant strategy')
    parser.add_argument('--max-k', type=int, default=10,
                        help='Largest k tried by the gap strategy')
    parser.add_argument('--dispatcher', choices=MODES, default='inline',
                        help='Where clustering and saliency tasks run (default: inline)')
    parser.add_argument('--no-resize', action='store_true',
                        help=f'Process at full resolution instead of fitting to {RESIZE[0]}x{RESIZE[1]}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.image:
        images = [Path(args.image)]
        if not images[0].is_file():
            print(f"Error: Image not found: {images[0]}", file=sys.stderr)
            sys.exit(2)
    else:
        input_dir = Path(args.input)
        if not input_dir.is_dir():
            print(f"Error: Input directory not found: {input_dir}", file=sys.stderr)
            sys.exit(2)
        images = find_images(input_dir)
        if not images:
            print(f"No images found in {input_dir}", file=sys.stderr)
            sys.exit(2)

    options = ExtractOptions(color_space=args.space, strategy=make_strategy(args),
                             dispatcher=args.dispatcher)
    size = None if args.no_resize else RESIZE

    total = len(images)
    succeeded = 0
    failed = []
    batch_start = time.perf_counter()

    for i, image_path in enumerate(images, 1):
        try:
            img_start = time.perf_counter()
            pixels, meta = load_image(image_path, size)
            palette = extract_colors(pixels, meta, options, name=image_path.name)
            img_elapsed = time.perf_counter() - img_start

            print(f"[{i}/{total}] {image_path.name} ({img_elapsed:.2f}s)")
            print(format_palette(palette))
            succeeded += 1

        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            print(f"[{i}/{total}] {image_path.name} → ERROR: {error_msg}", file=sys.stderr)
            failed.append((image_path.name, error_msg))

    batch_elapsed = time.perf_counter() - batch_start

    # Summary
    if total > 1:
        print()
        print(f"Completed: {succeeded}/{total} succeeded in {batch_elapsed:.2f}s")
        if succeeded > 0:
            print(f"Average: {batch_elapsed / succeeded:.2f}s per image")
    if failed:
        print(f"Failed ({len(failed)}):", file=sys.stderr)
        for name, error in failed:
            print(f"  - {name}: {error}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
