"""
Strategies choosing how many clusters to extract.

We don't know in advance how many colours best represent an image. Each
strategy is a callable

    strategy(name, space, histogram, total, pool) -> {native colour: count}

that fans several k-means runs out through a TaskPool, waits for all of them,
and returns the centroids of the run it settles on.
"""

import logging
import math
from typing import Protocol, Sequence

import numpy as np
from scipy import stats

from color_spaces import ColorSpace, round_half_up
from histogram import Histogram
from kmeans import KMeansResult, KMeansTask
from task_pool import TaskPool, gather

logger = logging.getLogger(__name__)

MAX_COLOR = 0xFFFFFF
IQR_FACTOR = 1.5


class Strategy(Protocol):
    def __call__(self, name: str, space: ColorSpace, histogram: Histogram,
                 total: int, pool: TaskPool) -> dict:
        ...


def run_many(name: str, space: ColorSpace, histogram: Histogram, ks: Sequence[int],
             pool: TaskPool) -> list[KMeansResult]:
    """Run k-means for every k in parallel and wait for all of them."""
    pairs = histogram.to_pairs()
    futures = [pool.run(KMeansTask(name, space.key, pairs, k)) for k in ks]
    return gather(futures)


# =============================================================================
# Constant
# =============================================================================

class Constant:
    """Always request the same number of clusters."""

    def __init__(self, k: int = 10):
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")
        self.k = k

    def __call__(self, name, space, histogram, total, pool):
        result, = run_many(name, space, histogram, [self.k], pool)
        return result.centroids

    def __repr__(self):
        return f"Constant(k={self.k})"


# =============================================================================
# Elbow Method
# =============================================================================

def remove_outliers(xs: Sequence[float], ys: Sequence[float]) -> tuple[list, list]:
    """Drop the points whose y lies beyond 1.5 IQR of the quartiles."""
    ordered = sorted(ys)
    q1 = ordered[len(ordered) // 4]
    q3 = ordered[(len(ordered) * 3) // 4]
    iqr = q3 - q1
    low, high = q1 - IQR_FACTOR * iqr, q3 + IQR_FACTOR * iqr
    kept = [(x, y) for x, y in zip(xs, ys) if low <= y <= high]
    return [x for x, _ in kept], [y for _, y in kept]


def robust_slope(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Least-squares slope of (x, y) after outlier removal; 0 if undefined."""
    if len(xs) < 2:
        return 0.0
    xs, ys = remove_outliers(xs, ys)
    if len(set(xs)) < 2:
        return 0.0
    return float(stats.linregress(xs, ys).slope)


def intersect(start_k: float, start_wcss: float, start_slope: float,
              end_k: float, end_wcss: float, end_slope: float) -> float:
    """k at which the two lines through the first point of each group cross.

    start: wcss = start_slope * (k - start_k) + start_wcss
    end:   wcss = end_slope * (k - end_k) + end_wcss

    Returns NaN for parallel lines.
    """
    denominator = start_slope - end_slope
    if denominator == 0:
        return math.nan
    return (end_wcss - end_slope * end_k - start_wcss + start_slope * start_k) / denominator


class ElbowMethod:
    """Pick k where WCSS stops dropping quickly.

    1. Compute WCSS for "early" k values (still dropping fast) and "late"
       k values (dropping slowly), all in parallel.
    2. Fit a robust line through each group.
    3. The optimal k is where the two lines intersect.

    The intersection is sensitive to the chosen samples and is undefined for
    parallel lines; the result is bounded to [1, unique colours], and parallel
    lines fall back to the largest early k.
    """

    def __init__(self, start: Sequence[int] = (1, 2, 3, 4), end: Sequence[int] = (50, 100)):
        if not start:
            raise ValueError("ElbowMethod needs at least one start k")
        self.start = sorted(start)
        self.end = sorted(end)

    def __call__(self, name, space, histogram, total, pool):
        n = len(histogram)
        if n == 1:
            result, = run_many(name, space, histogram, [1], pool)
            return result.centroids

        start = [k for k in self.start if k < n] or [1]
        end = [k for k in self.end if k < n]

        results = run_many(name, space, histogram, start + end, pool)
        start_points, end_points = results[:len(start)], results[len(start):]
        runs = dict(zip(start + end, results))

        end_ks = list(end)
        end_wcss = [r.wcss for r in end_points]
        # One cluster per unique colour has zero error
        if not end_ks or n > 2 * max(end_ks):
            end_ks.append(n)
            end_wcss.append(0.0)

        start_wcss = [r.wcss for r in start_points]
        start_slope = robust_slope(start, start_wcss)
        end_slope = robust_slope(end_ks, end_wcss)
        logger.debug(f"{name} Start slope: {start_slope} {start_wcss}")
        logger.debug(f"{name} End slope: {end_slope} {end_wcss}")

        raw = intersect(start[0], start_wcss[0], start_slope, end_ks[0], end_wcss[0], end_slope)
        if not math.isfinite(raw):
            logger.info(f"{name} Elbow undefined (slopes {start_slope}, {end_slope}), using k={start[-1]}")
            optimal = start[-1]
        else:
            optimal = min(max(int(round_half_up(raw)), 1), n)
        logger.info(f"{name} Optimal K: {optimal} (intersection at {raw:.3f})")

        if optimal in runs:
            return runs[optimal].centroids
        result, = run_many(name, space, histogram, [optimal], pool)
        return result.centroids

    def __repr__(self):
        return f"ElbowMethod(start={self.start}, end={self.end})"


# =============================================================================
# Gap Statistic
# =============================================================================

def uniform_reference(size: int) -> Histogram:
    """`size` colours spread evenly over the 24-bit cube, one count each."""
    size = max(1, min(size, MAX_COLOR))
    step = MAX_COLOR / size
    colors = round_half_up(np.arange(size) * step).astype(np.int64)
    return Histogram.from_arrays(colors, np.ones(size, dtype=np.int64))


def _log(value: float) -> float:
    return math.log(value) if value > 0 else -math.inf


class GapStatistic:
    """Pick the k whose clustering beats a uniform reference by the widest margin.

    gap(k) = ln(wcss_reference(k)) - ln(wcss_actual(k)); the first k with the
    largest gap wins. Tends to pick around 7 colours.
    """

    def __init__(self, min_k: int = 1, max_k: int = 10):
        if min_k <= 0 or max_k < min_k:
            raise ValueError(f"Invalid k range [{min_k}, {max_k}]")
        self.min_k = min_k
        self.max_k = max_k

    def __call__(self, name, space, histogram, total, pool):
        ks = list(range(self.min_k, self.max_k + 1))
        reference = uniform_reference(total)

        pairs, reference_pairs = histogram.to_pairs(), reference.to_pairs()
        futures = [pool.run(KMeansTask(name, space.key, pairs, k)) for k in ks]
        futures += [pool.run(KMeansTask(f"{name} reference", space.key, reference_pairs, k)) for k in ks]
        results = gather(futures)
        actual, references = results[:len(ks)], results[len(ks):]

        gaps = []
        for real, ref in zip(actual, references):
            gap = _log(ref.wcss) - _log(real.wcss)
            gaps.append(-math.inf if math.isnan(gap) else gap)

        best = int(np.argmax(gaps))
        logger.debug(f"{name} Gaps: {gaps}")
        logger.info(f"{name} Optimal K: {ks[best]}")
        return actual[best].centroids

    def __repr__(self):
        return f"GapStatistic(min_k={self.min_k}, max_k={self.max_k})"


STRATEGIES = {
    "constant": Constant,
    "elbow": ElbowMethod,
    "gap": GapStatistic,
}
