"""Tests for the deterministic k-means engine."""

import pickle

import numpy as np
import pytest

from color_spaces import OKLAB, RGB
from conftest import histogram_of
from histogram import build
from kmeans import KMeansTask, nearest, run, seed_centroids


@pytest.fixture
def two_groups():
    return histogram_of({0x000000: 10, 0x010101: 5, 0xFFFFFF: 8, 0xFEFEFE: 4})


@pytest.fixture
def three_groups():
    return histogram_of({
        0x000000: 20, 0x020202: 10,
        0xFF0000: 15, 0xFD0202: 5,
        0x0000FF: 12, 0x0202FD: 6,
    })


class TestSeeding:

    def test_most_frequent_first(self, two_groups):
        seeds = seed_centroids(RGB, two_groups, 2)
        assert seeds.tolist() == [0x000000, 0xFFFFFF]

    def test_skips_seeds_within_epsilon(self):
        histogram = histogram_of({0x000000: 5, 0x010000: 4, 0x00FF00: 1})
        # 0x010000 is exactly 1 away, not farther than epsilon
        seeds = seed_centroids(RGB, histogram, 3)
        assert seeds.tolist() == [0x000000, 0x00FF00]


class TestRun:

    def test_separates_groups(self, two_groups):
        result = run("test", RGB, two_groups, 2)
        assert result.centroids == {0x000000: 15, 0xFFFFFF: 12}
        assert result.k == 2
        assert result.wcss == pytest.approx(1.0)

    def test_centroids_are_histogram_colors(self, three_groups):
        result = run("test", RGB, three_groups, 3)
        assert set(result.centroids) <= set(three_groups.colors.tolist())
        assert sum(result.centroids.values()) == three_groups.total

    def test_deterministic(self, three_groups):
        first = run("test", OKLAB, three_groups, 3)
        second = run("test", OKLAB, three_groups, 3)
        assert first == second

    def test_more_clusters_lower_error(self, three_groups):
        assert run("test", RGB, three_groups, 3).wcss < run("test", RGB, three_groups, 1).wcss

    def test_one_cluster_per_color_has_no_error(self, two_groups):
        result = run("test", RGB, two_groups, 10)
        assert result.k == 4
        assert result.wcss == 0

    def test_reduces_k_for_indistinct_colors(self):
        pixels = np.array([[100, 100, 100]] * 3 + [[104, 104, 104]], dtype=np.uint8)
        histogram = build(pixels.reshape(-1), 4, 1, 3, OKLAB)
        result = run("test", OKLAB, histogram, 5)
        assert result.k == 1
        assert sum(result.centroids.values()) == 4

    def test_rejects_bad_input(self, two_groups):
        with pytest.raises(ValueError, match="positive"):
            run("test", RGB, two_groups, 0)
        with pytest.raises(ValueError, match="empty"):
            run("test", RGB, histogram_of({}), 2)


class TestNearest:

    def test_ties_go_to_lowest_index(self):
        colors = np.array([0x000000, 0x0A0A0A], dtype=np.int64)
        centroids = np.array([0x050505, 0x050505], dtype=np.int64)
        labels, distances = nearest(RGB, colors, centroids)
        assert labels.tolist() == [0, 0]
        assert np.allclose(distances, np.sqrt(75))


class TestKMeansTask:

    def test_call_matches_run(self, three_groups):
        task = KMeansTask("test", "oklab", three_groups.to_pairs(), 2)
        assert task() == run("test", OKLAB, three_groups, 2)
        assert task.label == "kmeans[test oklab k=2]"

    def test_picklable(self, three_groups):
        task = pickle.loads(pickle.dumps(KMeansTask("test", "rgb", three_groups.to_pairs(), 2)))
        assert task().k == 2

    def test_carries_only_pairs(self, three_groups):
        task = KMeansTask("test", "rgb", three_groups.to_pairs(), 3)
        assert task.pairs.dtype == np.uint32
        assert task.pairs.shape == (len(three_groups), 2)
        assert task().centroids == run("test", RGB, three_groups, 3).centroids
