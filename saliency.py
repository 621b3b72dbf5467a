"""
Itti-Koch style saliency map.

A pixel is salient when it differs from its surroundings at several scales.
The base "intensity" is the perceptual distance of each pixel from black in
the active colour space; a box-filtered pyramid provides the surroundings.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from color_spaces import ColorSpace, get_space, round_half_up
from histogram import native_pixels

logger = logging.getLogger(__name__)

SALIENCY_MAX = 255
# Peaks below this (relative to the brightest intensity) count as a flat image
FLAT_TOLERANCE = 1e-9


def ease_in_out_cubic(x: np.ndarray) -> np.ndarray:
    """4x^3 below 0.5, mirrored above."""
    x = np.asarray(x, dtype=np.float64)
    return np.where(x < 0.5, 4 * x ** 3, 1 - (-2 * x + 2) ** 3 / 2)


def intensity_map(space: ColorSpace, pixels, width: int, height: int, channels: int) -> np.ndarray:
    """Distance from black of every pixel, as a (height, width) float array."""
    native = native_pixels(pixels, channels, space)[:width * height]
    black = space.encode(np.zeros(3, dtype=np.uint8))
    distances = np.asarray(space.distance(native, black), dtype=np.float64)
    return distances.reshape(height, width)


def downsample(image: np.ndarray, height: int, width: int) -> np.ndarray:
    """2x2 box average into a (height, width) grid, clamping at the edges."""
    pad_y = max(0, 2 * height - image.shape[0])
    pad_x = max(0, 2 * width - image.shape[1])
    if pad_y or pad_x:
        image = np.pad(image, ((0, pad_y), (0, pad_x)), mode="edge")
    blocks = image[:2 * height, :2 * width].reshape(height, 2, width, 2)
    return blocks.mean(axis=(1, 3))


def compute(space: ColorSpace, pixels, width: int, height: int, channels: int) -> np.ndarray:
    """Compute the saliency of every pixel.

    Args:
        space: Colour space providing the intensity metric
        pixels: Raw buffer of width * height * channels bytes
        width: Image width
        height: Image height
        channels: 3 or 4

    Returns:
        Flat uint8 array of width * height values in [0, 255]. A flat image
        maps to all zeros; any other image reaches 255 somewhere.
    """
    if width == 0 or height == 0:
        return np.zeros(0, dtype=np.uint8)

    levels = int(math.floor(math.log2(min(width, height))))
    base = intensity_map(space, pixels, width, height, channels)

    ys = np.arange(height)
    xs = np.arange(width)
    total = np.zeros_like(base)
    previous = base
    for level in range(1, levels + 1):
        scale = 2 ** level
        down_h = max(1, height // scale)
        down_w = max(1, width // scale)
        previous = downsample(previous, down_h, down_w)
        # Corresponding coarse pixel for every base pixel
        rows = np.minimum(ys // scale, down_h - 1)
        cols = np.minimum(xs // scale, down_w - 1)
        total += np.abs(base - previous[np.ix_(rows, cols)])

    saliency = total / levels if levels else total

    peak = saliency.max()
    flat = peak <= FLAT_TOLERANCE * max(1.0, base.max())
    linear = np.zeros_like(saliency) if flat else saliency / peak
    scaled = round_half_up(ease_in_out_cubic(linear) * SALIENCY_MAX)
    return scaled.astype(np.uint8).reshape(-1)


@dataclass(frozen=True)
class SaliencyTask:
    """One saliency computation, shipped to a TaskPool."""
    name: str
    space: str
    pixels: np.ndarray
    width: int
    height: int
    channels: int

    @property
    def label(self) -> str:
        return f"saliency[{self.name} {self.space} {self.width}x{self.height}]"

    def __call__(self) -> np.ndarray:
        result = compute(get_space(self.space), self.pixels, self.width, self.height, self.channels)
        logger.debug(f"{self.name} Saliency computed, mean {result.mean() if result.size else 0:.1f}")
        return result
