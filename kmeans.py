"""
Deterministic k-means over a colour histogram.

Each distinct colour is a weighted point (weight = pixel count). Distances
always go through the colour space's own metric, so clustering in OKLab or
CIELAB stays perceptual. There is no randomness: seeds are taken greedily
from the most frequent colours.
"""

import logging
from dataclasses import dataclass

import numpy as np

from color_spaces import ColorSpace, get_space, pack, round_half_up, unpack
from histogram import Histogram

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 100
DISTANCE_CHUNK = 4096  # histogram rows per distance block


@dataclass(frozen=True)
class KMeansResult:
    """Outcome of one k-means run."""
    centroids: dict  # representative native colour -> aggregated count
    wcss: float  # count-weighted mean squared distance to the centroids
    k: int  # effective cluster count, may be lower than requested


def seed_centroids(space: ColorSpace, histogram: Histogram, k: int) -> np.ndarray:
    """Pick up to `k` seeds among the most frequent colours.

    A colour becomes a seed only if it is farther than `space.epsilon` from
    every seed already chosen.
    """
    colors = histogram.colors
    alive = np.ones(len(colors), dtype=bool)
    seeds = []
    while len(seeds) < k:
        remaining = np.flatnonzero(alive)
        if len(remaining) == 0:
            break
        seed = colors[remaining[0]]
        seeds.append(seed)
        alive &= np.asarray(space.distance(colors, seed)) > space.epsilon
    return np.array(seeds, dtype=np.int64)


def nearest(space: ColorSpace, colors: np.ndarray, centroids: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Index of, and distance to, the nearest centroid for every colour.

    Ties resolve to the lowest centroid index.
    """
    labels = np.empty(len(colors), dtype=np.int64)
    distances = np.empty(len(colors), dtype=np.float64)
    for start in range(0, len(colors), DISTANCE_CHUNK):
        block = colors[start:start + DISTANCE_CHUNK]
        d = np.asarray(space.distance(block[:, None], centroids[None, :])).reshape(len(block), len(centroids))
        best = np.argmin(d, axis=1)
        labels[start:start + len(block)] = best
        distances[start:start + len(block)] = d[np.arange(len(block)), best]
    return labels, distances


def update_centroids(channels: np.ndarray, weights: np.ndarray, labels: np.ndarray,
                     previous: np.ndarray) -> np.ndarray:
    """Count-weighted mean of each cluster, per channel, rounded to integers.

    Clusters left without members keep their previous centroid.
    """
    k = len(previous)
    totals = np.bincount(labels, weights=weights, minlength=k)
    sums = np.stack([
        np.bincount(labels, weights=weights * channels[:, c], minlength=k)
        for c in range(3)
    ], axis=-1)
    occupied = totals > 0
    means = previous.copy()
    means[occupied] = pack(round_half_up(sums[occupied] / totals[occupied, None]))
    return means


def run(name: str, space: ColorSpace, histogram: Histogram, k: int) -> KMeansResult:
    """Cluster a histogram into at most `k` colours.

    Args:
        name: Label used in log lines
        space: Colour space defining the encoding and the metric
        histogram: Colours to cluster, sorted by descending count
        k: Requested number of clusters

    Returns:
        KMeansResult whose centroids are real histogram colours.

    Raises:
        ValueError: If k <= 0 or the histogram is empty
    """
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")
    if len(histogram) == 0:
        raise ValueError("Cannot cluster an empty histogram")

    colors = histogram.colors
    weights = histogram.counts.astype(np.float64)
    channels = unpack(colors).astype(np.float64)

    centroids = seed_centroids(space, histogram, k)
    if len(centroids) < k:
        logger.debug(f"{name} k={k}: only {len(centroids)} distinct seeds, reducing k")
    k = len(centroids)

    labels = np.full(len(colors), -1, dtype=np.int64)
    for iteration in range(MAX_ITERATIONS):
        assigned, _ = nearest(space, colors, centroids)
        changed = bool(np.any(assigned != labels))
        labels = assigned
        if not changed:
            break
        centroids = update_centroids(channels, weights, labels, centroids)

    # Within-cluster dispersion against the computed means
    own = np.asarray(space.distance(colors, centroids[labels]), dtype=np.float64)
    wcss = float(np.sum(weights * own ** 2) / weights.sum())

    # Replace each mean by the closest colour that actually occurs in the cluster
    result = {}
    for cluster in range(k):
        members = np.flatnonzero(labels == cluster)
        if len(members) == 0:
            continue
        representative = colors[members[np.argmin(own[members])]].item()
        result[representative] = histogram.counts[members].sum().item()

    return KMeansResult(centroids=result, wcss=wcss, k=k)


@dataclass(frozen=True)
class KMeansTask:
    """One k-means run, shipped to a TaskPool.

    The space travels as its key and the histogram as `Histogram.to_pairs`
    output, so the task stays a flat picklable record for process executors.
    """
    name: str
    space: str
    pairs: np.ndarray  # (n, 2) uint32 colour/count pairs
    k: int

    @property
    def label(self) -> str:
        return f"kmeans[{self.name} {self.space} k={self.k}]"

    def __call__(self) -> KMeansResult:
        return run(self.name, get_space(self.space), Histogram.from_pairs(self.pairs), self.k)
