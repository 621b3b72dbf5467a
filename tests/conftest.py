"""Shared synthetic images for the test suite."""

import numpy as np
import pytest

from histogram import Histogram, ImageMeta

BLACK = (0, 0, 0)
PALE = (240, 220, 180)
RED = (255, 0, 0)


def make_square_image(size=64, background=BLACK, square=PALE, dot=RED):
    """Background with a centred square (size / 2.67) holding a smaller dot."""
    image = np.zeros((size, size, 3), dtype=np.uint8)
    image[:, :] = background
    image[20:44, 20:44] = square
    image[28:36, 28:36] = dot
    return image


@pytest.fixture
def square_image():
    """64x64 RGB buffer: black background, pale square, red dot; with its meta."""
    image = make_square_image()
    return image.reshape(-1), ImageMeta(width=64, height=64, channels=3)


@pytest.fixture
def flat_image():
    image = np.full((16, 16, 3), 90, dtype=np.uint8)
    return image.reshape(-1), ImageMeta(width=16, height=16, channels=3)


def histogram_of(counts: dict) -> Histogram:
    """Histogram from a {colour: count} mapping."""
    return Histogram.from_arrays(np.array(list(counts), dtype=np.int64),
                                 np.array(list(counts.values()), dtype=np.int64))
