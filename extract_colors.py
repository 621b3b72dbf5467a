#!/usr/bin/env python3
"""
Extract a themed colour palette from a raw pixel buffer.

Pipeline:
1. Validate and trim the image borders
2. Start the saliency map (runs alongside clustering)
3. Build the colour histogram and cluster it with the chosen strategy
4. Wait for saliency, weight the histogram by it
5. Clamp, merge and assign the outer / inner / accent / third roles
"""

import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Optional, Union

from cluster_count import ElbowMethod, Strategy
from color_spaces import SPACES, ColorSpace, get_space
from histogram import ImageMeta, as_pixel_array, build, build_weighted, trim
from palette import DEFAULT_MIN_FOREGROUND_CONTRAST, Palette, select
from saliency import SaliencyTask
from task_pool import MODES, TaskPool, gather, get_pool

logger = logging.getLogger(__name__)

# Histogram colour/count pairs travel as 32-bit integers
MAX_PIXELS = 2 ** 32 - 1
SUPPORTED_CHANNELS = (3, 4)

DEFAULT_COLOR_SPACE = "oklab"
DEFAULT_CLAMP = 0.5
DEFAULT_TRIM_PERCENT = 2.5
DEFAULT_SALIENCY_WEIGHT = 2.0


class InvalidImageError(ValueError):
    """The pixel buffer or its metadata cannot be processed."""


@dataclass
class ExtractOptions:
    """Tunables for one extraction.

    clamp is a percentage floor: centroids move onto real image colours that
    cover at least that share of the pixels. True means a 0% floor, False
    skips clamping altogether.
    """
    color_space: str = DEFAULT_COLOR_SPACE
    strategy: Strategy = field(default_factory=ElbowMethod)
    clamp: Union[bool, float] = DEFAULT_CLAMP
    trim_percent: float = DEFAULT_TRIM_PERCENT
    min_foreground_contrast: float = DEFAULT_MIN_FOREGROUND_CONTRAST
    saliency_weight: float = DEFAULT_SALIENCY_WEIGHT
    dispatcher: Union[str, TaskPool, Executor] = "inline"

    def __post_init__(self):
        if isinstance(self.color_space, ColorSpace):
            self.color_space = self.color_space.key
        if self.color_space not in SPACES:
            raise ValueError(f"Unknown color space {self.color_space!r}, expected one of {sorted(SPACES)}")
        if not 0 <= self.trim_percent < 50:
            raise ValueError(f"trim_percent must be in [0, 50), got {self.trim_percent}")
        if not isinstance(self.clamp, bool) and not 0 <= self.clamp <= 100:
            raise ValueError(f"clamp must be a bool or a percentage in [0, 100], got {self.clamp}")
        if not 0 <= self.min_foreground_contrast <= 100:
            raise ValueError(f"min_foreground_contrast must be in [0, 100], got {self.min_foreground_contrast}")
        if self.saliency_weight < 0:
            raise ValueError(f"saliency_weight must be non-negative, got {self.saliency_weight}")
        if isinstance(self.dispatcher, str) and self.dispatcher not in MODES:
            raise ValueError(f"Unknown dispatcher {self.dispatcher!r}, expected one of {MODES}")

    @property
    def clamp_share(self) -> Optional[float]:
        """Clamp floor as a fraction of the pixels, or None when disabled."""
        if self.clamp is False:
            return None
        if self.clamp is True:
            return 0.0
        return self.clamp / 100


def to_meta(meta) -> ImageMeta:
    """Accept an ImageMeta or a mapping with width, height and channels."""
    if isinstance(meta, ImageMeta):
        return meta
    try:
        return ImageMeta(width=int(meta["width"]), height=int(meta["height"]),
                         channels=int(meta["channels"]))
    except (KeyError, TypeError) as e:
        raise InvalidImageError(f"Image metadata needs width, height and channels: {e}") from e


def validate(data, meta: ImageMeta) -> None:
    """Check a pixel buffer against its metadata.

    Raises:
        InvalidImageError: Unsupported channels, oversized image, or a buffer
            whose length disagrees with the metadata
    """
    if meta.channels not in SUPPORTED_CHANNELS:
        raise InvalidImageError(f"Unsupported channel count {meta.channels}, expected 3 or 4")
    if meta.width < 0 or meta.height < 0:
        raise InvalidImageError(f"Negative image size {meta.width}x{meta.height}")
    if meta.pixels > MAX_PIXELS:
        raise InvalidImageError(f"Image too large: {meta.pixels} pixels exceeds {MAX_PIXELS}")
    expected = meta.pixels * meta.channels
    if len(data) != expected:
        raise InvalidImageError(
            f"Buffer holds {len(data)} bytes, expected {expected} for "
            f"{meta.width}x{meta.height}x{meta.channels}")


def extract_colors(pixels, meta, options: Optional[ExtractOptions] = None,
                   name: str = "") -> Palette:
    """
    Extract the palette of an image.

    Args:
        pixels: Raw 8-bit buffer (bytes-like or numpy array) in row-major
            RGB or RGBA order
        meta: ImageMeta, or a mapping with width, height and channels
        options: Extraction tunables, defaults when omitted
        name: Label used in log lines

    Returns:
        Palette with every colour as packed 8-bit RGB

    Raises:
        InvalidImageError: If the image cannot be processed
        TaskError: If a clustering or saliency task failed
    """
    options = options or ExtractOptions()
    meta = to_meta(meta)
    data = as_pixel_array(pixels)
    validate(data, meta)

    data, meta = trim(data, meta, options.trim_percent)
    if meta.pixels == 0:
        raise InvalidImageError("No pixels left after trimming")

    space = get_space(options.color_space)
    pool = get_pool(options.dispatcher)
    logger.debug(f"{name} Extracting {meta.width}x{meta.height} in {space.key} "
                 f"with {options.strategy!r} ({pool.mode})")

    saliency_future = pool.run(SaliencyTask(name, space.key, data, meta.width, meta.height, meta.channels))

    histogram = build(data, meta.width, meta.height, meta.channels, space)
    logger.info(f"{name} Unique colors: {len(histogram)}")
    centroids = options.strategy(name, space, histogram, meta.pixels, pool)

    saliency, = gather([saliency_future])
    salient = build_weighted(data, meta.width, meta.height, meta.channels, space,
                             saliency, options.saliency_weight)

    return select(name, space, data, meta, centroids, histogram, salient,
                  options.clamp_share, options.min_foreground_contrast)
