"""
Palette roles derived from raw k-means centroids.

Four stages, each consuming the previous centroid set and returning a new one:

1. Clamp: centroids snap to colours that really occur in the image.
2. Merge: centroids closer than the space's epsilon collapse into one.
3. Roles: outer (background), inner (foreground), accent and third.
4. Render: everything converts back to plain 8-bit RGB.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from color_spaces import ColorSpace, format_hex
from histogram import Histogram, ImageMeta, native_pixels
from kmeans import nearest

logger = logging.getLogger(__name__)

# Pixels outside this fraction of the half-diagonal circle define the background
OUTER_RING = 0.95
# Minimum share of the image for accent / third candidates
MIN_ROLE_SHARE = 0.01
# Minimum contrast of an accent against the background
ACCENT_MIN_CONTRAST = 9
DEFAULT_MIN_FOREGROUND_CONTRAST = 20

WHITE = np.array([255, 255, 255], dtype=np.uint8)
BLACK = np.array([0, 0, 0], dtype=np.uint8)


@dataclass(frozen=True)
class Palette:
    """Extraction result, every colour as packed 8-bit RGB."""
    centroids: dict  # rgb -> pixel count
    outer: int
    inner: int
    accent: int
    third: int
    inner_colors: list = field(default_factory=list)  # [(rgb, count)]
    outer_colors: list = field(default_factory=list)  # [(rgb, count)]

    def roles(self) -> dict:
        """The four role colours as '#rrggbb' strings."""
        return {
            "outer": format_hex(self.outer),
            "inner": format_hex(self.inner),
            "accent": format_hex(self.accent),
            "third": format_hex(self.third),
        }


def tally_nearest(space: ColorSpace, colors: np.ndarray, counts: np.ndarray,
                  centroids: np.ndarray) -> np.ndarray:
    """Total count mapped onto each centroid by nearest-centroid assignment."""
    if len(colors) == 0:
        return np.zeros(len(centroids), dtype=np.float64)
    labels, _ = nearest(space, colors, centroids)
    return np.bincount(labels, weights=np.asarray(counts, dtype=np.float64), minlength=len(centroids))


# =============================================================================
# Stage 1: Clamp to Source
# =============================================================================

def clamp_to_source(space: ColorSpace, centroids: dict, histogram: Histogram,
                    min_share: float) -> dict:
    """Move every centroid onto a colour of the source histogram.

    A centroid stays if its exact colour holds at least `min_share` of the
    pixels. Otherwise it moves to the nearest colour at or above the floor, or
    to the nearest colour below it when none qualifies. Counts of centroids
    landing on the same colour are summed.
    """
    total = histogram.total
    eligible = histogram.counts / total >= min_share
    candidates = histogram.colors[eligible] if eligible.any() else histogram.colors[~eligible]

    clamped = {}
    for color, count in centroids.items():
        exact = histogram.get(color)
        if exact and exact / total >= min_share:
            target = color
        else:
            d = np.asarray(space.distance(candidates, color))
            target = candidates[np.argmin(d)].item()
        clamped[target] = clamped.get(target, 0) + count
    return clamped


# =============================================================================
# Stage 2: Merge Imperceptible Differences
# =============================================================================

def merge_imperceptible(space: ColorSpace, centroids: dict) -> dict:
    """Union centroids closer than `space.epsilon` (transitively).

    Each group collapses onto its most prevalent member, counts summed.
    """
    colors = np.array(list(centroids), dtype=np.int64)
    n = len(colors)
    if n < 2:
        return dict(centroids)

    parent = list(range(n))

    def find(i):
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    close = np.asarray(space.distance(colors[:, None], colors[None, :])) < space.epsilon
    for i, j in zip(*np.nonzero(np.triu(close, k=1))):
        root_i, root_j = find(i), find(j)
        if root_i != root_j:
            parent[max(root_i, root_j)] = min(root_i, root_j)

    groups = {}
    for i in range(n):
        groups.setdefault(find(i), []).append(i)

    merged = {}
    for members in groups.values():
        counts = [centroids[colors[m].item()] for m in members]
        keep = colors[members[int(np.argmax(counts))]].item()
        merged[keep] = sum(counts)
    return merged


# =============================================================================
# Stage 3: Roles
# =============================================================================

def outer_color(space: ColorSpace, pixels, meta: ImageMeta, centroids: dict) -> int:
    """Background colour: the centroid dominating the image's outer ring."""
    keys = np.array(list(centroids), dtype=np.int64)
    native = native_pixels(pixels, meta.channels, space)[:meta.pixels]

    index = np.arange(meta.pixels)
    x = index % meta.width
    y = index // meta.width
    radius = max(meta.width, meta.height) / 2 * OUTER_RING
    ring = np.hypot(x - meta.width / 2, y - meta.height / 2) > radius

    if not ring.any():
        return max(centroids, key=centroids.get)

    colors, counts = np.unique(native[ring], return_counts=True)
    tally = tally_nearest(space, colors, counts, keys)
    return keys[int(np.argmax(tally))].item()


def inner_color(name: str, space: ColorSpace, salient: Histogram, centroids: dict,
                outer: int, total: int,
                min_contrast: float = DEFAULT_MIN_FOREGROUND_CONTRAST) -> tuple[int, dict]:
    """Foreground colour: the centroid most over-represented in salient areas.

    Falls back to the centroid contrasting most with `outer`, then to pure
    black or white, which is added to the centroids (taking one pixel from
    `outer`).

    Returns:
        Tuple of (inner colour, centroid set after any synthesis)
    """
    keys = np.array(list(centroids), dtype=np.int64)
    mass = tally_nearest(space, salient.colors, salient.counts, keys)
    salient_total = salient.total

    deltas = []
    for key, weighted in zip(keys.tolist(), mass.tolist()):
        if weighted == 0:
            continue
        delta = ((weighted / salient_total * 100 - centroids[key] / total * 100) + 100) / 2
        if delta > 0:
            deltas.append((key, delta))
    deltas.sort(key=lambda item: item[1], reverse=True)

    for key, _ in deltas:
        if space.contrast(outer, key) >= min_contrast:
            logger.debug(f"{name} Inner color from saliency: {format_hex(space.to_rgb(key))}")
            return key, centroids
    logger.info(f"{name} Inner color not found in saliency")

    best: Optional[int] = None
    best_contrast = 0.0
    for key in centroids:
        if key == outer:
            continue
        c = space.contrast(outer, key)
        if c > best_contrast:
            best, best_contrast = key, c
    if best is not None and best_contrast >= min_contrast:
        return best, centroids

    white = int(space.encode(WHITE))
    black = int(space.encode(BLACK))
    synthetic = white if space.contrast(outer, white) > space.contrast(outer, black) else black
    logger.info(f"{name} Inner color synthesized: {format_hex(space.to_rgb(synthetic))}")
    updated = dict(centroids)
    updated[synthetic] = updated.get(synthetic, 0) + 1
    updated[outer] = updated[outer] - 1
    return synthetic, updated


def partition(space: ColorSpace, centroids: dict, inner: int, outer: int) -> tuple[list, list]:
    """Split centroids by whether their lightness is nearer inner's or outer's.

    Returns:
        Tuple of (inner_colors, outer_colors) in centroid order
    """
    keys = list(centroids)
    lightness = np.atleast_1d(space.lightness(np.array(keys, dtype=np.int64)))
    inner_l = space.lightness(inner)
    outer_l = space.lightness(outer)
    nearer_outer = np.abs(lightness - inner_l) > np.abs(lightness - outer_l)
    inner_colors = [k for k, o in zip(keys, nearer_outer) if not o]
    outer_colors = [k for k, o in zip(keys, nearer_outer) if o]
    return inner_colors, outer_colors


def accent_color(space: ColorSpace, centroids: dict, inner_colors: list,
                 inner: int, outer: int, total: int) -> int:
    """Most colourful, distinct and prevalent foreground-side centroid, else inner."""
    best, best_score = None, 0.0
    for color in inner_colors:
        if color in (outer, inner):
            continue
        if centroids[color] / total < MIN_ROLE_SHARE:
            continue
        if space.contrast(outer, color) < ACCENT_MIN_CONTRAST:
            continue
        prevalence = centroids[color] / total * 100
        score = space.chroma(color) * space.distance(color, inner) * prevalence
        if score > best_score:
            best, best_score = color, score
    return inner if best is None else best


def third_color(space: ColorSpace, centroids: dict, outer_colors: list,
                inner: int, outer: int, accent: int, total: int) -> int:
    """Background-side centroid that best supports both inner and accent, else outer."""
    best, best_score = None, 0.0
    for color in outer_colors:
        if color in (outer, inner):
            continue
        if centroids[color] / total < MIN_ROLE_SHARE:
            continue
        contrast = min(space.contrast(color, inner), space.contrast(color, accent))
        score = contrast * centroids[color] / total * 100
        if score > best_score:
            best, best_score = color, score
    return outer if best is None else best


# =============================================================================
# Stage 4: Render
# =============================================================================

def to_palette(space: ColorSpace, centroids: dict, outer: int, inner: int, accent: int,
               third: int, inner_colors: list, outer_colors: list) -> Palette:
    """Convert every native colour back to packed RGB."""
    rgb_centroids = {}
    for color, count in centroids.items():
        rgb = space.to_rgb(color)
        rgb_centroids[rgb] = rgb_centroids.get(rgb, 0) + count
    return Palette(
        centroids=rgb_centroids,
        outer=space.to_rgb(outer),
        inner=space.to_rgb(inner),
        accent=space.to_rgb(accent),
        third=space.to_rgb(third),
        inner_colors=[(space.to_rgb(c), centroids[c]) for c in inner_colors],
        outer_colors=[(space.to_rgb(c), centroids[c]) for c in outer_colors],
    )


def select(name: str, space: ColorSpace, pixels, meta: ImageMeta, centroids: dict,
           histogram: Histogram, salient: Histogram, clamp_share: Optional[float],
           min_foreground_contrast: float = DEFAULT_MIN_FOREGROUND_CONTRAST) -> Palette:
    """Run every post-processing stage over raw centroids.

    Args:
        name: Label used in log lines
        space: Working colour space
        pixels: Trimmed pixel buffer
        meta: Geometry of `pixels`
        centroids: Raw k-means centroids (native colour -> count)
        histogram: Unweighted histogram of `pixels`
        salient: Saliency-weighted histogram of `pixels`
        clamp_share: Floor for clamping in [0, 1], or None to skip clamping
        min_foreground_contrast: Minimum APCA contrast of inner against outer
    """
    total = meta.pixels
    if clamp_share is not None:
        centroids = clamp_to_source(space, centroids, histogram, clamp_share)
    centroids = merge_imperceptible(space, centroids)

    outer = outer_color(space, pixels, meta, centroids)
    inner, centroids = inner_color(name, space, salient, centroids, outer, total,
                                   min_foreground_contrast)
    inner_colors, outer_colors = partition(space, centroids, inner, outer)
    accent = accent_color(space, centroids, inner_colors, inner, outer, total)
    third = third_color(space, centroids, outer_colors, inner, outer, accent, total)

    return to_palette(space, centroids, outer, inner, accent, third, inner_colors, outer_colors)
