"""
Colour histograms over raw pixel buffers.

A histogram maps every distinct native colour of an image (packed in the
encoding of the chosen colour space) to its pixel count. Entries are stored in
descending count order, ties broken by ascending colour, which is the order
used wherever seeding has to be deterministic.
"""

import math
from dataclasses import dataclass

import numpy as np

from color_spaces import ColorSpace


@dataclass(frozen=True)
class ImageMeta:
    """Geometry of a raw pixel buffer."""
    width: int
    height: int
    channels: int

    @property
    def pixels(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class Histogram:
    """Distinct colours and their counts, sorted by descending count."""
    colors: np.ndarray  # packed native colours, int64
    counts: np.ndarray  # pixel counts (float when saliency-weighted)

    def __post_init__(self):
        self.colors.setflags(write=False)
        self.counts.setflags(write=False)

    def __len__(self) -> int:
        return len(self.colors)

    @property
    def total(self):
        """Total pixel count (or total weighted mass)."""
        return self.counts.sum().item() if len(self) else 0

    def get(self, color: int, default=0):
        """Count for `color`, or `default` when the colour is absent."""
        matches = np.flatnonzero(self.colors == color)
        if len(matches) == 0:
            return default
        return self.counts[matches[0]].item()

    def to_pairs(self) -> np.ndarray:
        """Pack as an (n, 2) uint32 array of colour/count pairs.

        This is the form in which histograms travel to clustering tasks.

        Raises:
            ValueError: If a count does not fit the 32-bit transfer format
        """
        if len(self) and self.counts.max() > np.iinfo(np.uint32).max:
            raise ValueError("Histogram counts exceed the 32-bit pair format")
        return np.column_stack([self.colors, np.rint(self.counts)]).astype(np.uint32)

    @classmethod
    def from_arrays(cls, colors: np.ndarray, counts: np.ndarray) -> "Histogram":
        """Build from parallel arrays of unique colours and counts, sorting them."""
        colors = np.asarray(colors, dtype=np.int64)
        counts = np.asarray(counts)
        order = np.lexsort((colors, -counts))
        return cls(colors=colors[order].copy(), counts=counts[order].copy())

    @classmethod
    def from_pairs(cls, pairs: np.ndarray) -> "Histogram":
        """Rebuild a histogram shipped with `to_pairs`."""
        pairs = np.asarray(pairs).reshape(-1, 2)
        return cls.from_arrays(pairs[:, 0].astype(np.int64), pairs[:, 1].astype(np.int64))


def as_pixel_array(pixels) -> np.ndarray:
    """View a bytes-like object or array of 8-bit channel values as a flat uint8 array."""
    if isinstance(pixels, (bytes, bytearray, memoryview)):
        return np.frombuffer(pixels, dtype=np.uint8)
    return np.asarray(pixels, dtype=np.uint8).reshape(-1)


def native_pixels(pixels, channels: int, space: ColorSpace) -> np.ndarray:
    """Convert every pixel of a buffer to the space's packed encoding.

    The alpha channel of 4-channel buffers is ignored.
    """
    data = as_pixel_array(pixels)
    rgb = data.reshape(-1, channels)[:, :3]
    if len(rgb) == 0:
        return np.zeros(0, dtype=np.int64)
    return space.encode(rgb)


def build(pixels, width: int, height: int, channels: int, space: ColorSpace) -> Histogram:
    """Count every distinct native colour of an image.

    Args:
        pixels: Raw buffer of width * height * channels bytes
        width: Image width in pixels
        height: Image height in pixels
        channels: 3 (RGB) or 4 (RGBA)
        space: Colour space whose encoding keys the histogram

    Returns:
        Histogram sorted by descending count; empty for a 0-pixel image.
    """
    native = native_pixels(pixels, channels, space)[:width * height]
    colors, counts = np.unique(native, return_counts=True)
    return Histogram.from_arrays(colors, counts.astype(np.int64))


def build_weighted(pixels, width: int, height: int, channels: int, space: ColorSpace,
                   saliency: np.ndarray, weight: float) -> Histogram:
    """Count colours with every pixel boosted by its saliency.

    Each pixel contributes 1 + weight * saliency / 255. Counts are then rescaled
    so the total weighted mass equals the unweighted pixel count.
    """
    native = native_pixels(pixels, channels, space)[:width * height]
    weights = 1.0 + weight * np.asarray(saliency, dtype=np.float64).reshape(-1)[:len(native)] / 255.0
    colors, inverse = np.unique(native, return_inverse=True)
    counts = np.bincount(inverse.reshape(-1), weights=weights, minlength=len(colors))
    if len(native):
        counts = counts * (len(native) / weights.sum())
    return Histogram.from_arrays(colors, counts)


def trim(pixels, meta: ImageMeta, percent: float) -> tuple[np.ndarray, ImageMeta]:
    """Crop `percent` of the image away on each side.

    Packaging borders on album art would otherwise bias the outer colour.
    Bounds are round(dimension * percent / 100) and
    round(dimension * (1 - percent / 100)), rounding halves up.

    Returns:
        Tuple of (cropped flat uint8 buffer, cropped geometry)
    """
    data = as_pixel_array(pixels)
    x_min = math.floor(meta.width * percent / 100 + 0.5)
    x_max = math.floor(meta.width * (1 - percent / 100) + 0.5)
    y_min = math.floor(meta.height * percent / 100 + 0.5)
    y_max = math.floor(meta.height * (1 - percent / 100) + 0.5)

    image = data[:meta.pixels * meta.channels].reshape(meta.height, meta.width, meta.channels)
    cropped = np.ascontiguousarray(image[y_min:y_max, x_min:x_max]).reshape(-1)
    return cropped, ImageMeta(width=max(0, x_max - x_min), height=max(0, y_max - y_min),
                              channels=meta.channels)
