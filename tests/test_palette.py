"""Tests for the palette selection stages."""

import numpy as np
import pytest

from color_spaces import OKLAB, RGB
from conftest import histogram_of
from palette import (Palette, accent_color, clamp_to_source, inner_color,
                     merge_imperceptible, outer_color, partition, third_color,
                     to_palette)

BLACK, WHITE, RED, NAVY = 0x000000, 0xFFFFFF, 0xFF0000, 0x000080
PALE = 0xF0DCB4


def oklab(*rgb):
    return int(OKLAB.encode(np.array(rgb, dtype=np.uint8)))


class TestClamp:

    @pytest.fixture
    def histogram(self):
        return histogram_of({BLACK: 90, 0x0A0A0A: 5, WHITE: 5})

    @pytest.fixture
    def centroids(self):
        return {0x0A0A0A: 5, 0xFAFAFA: 5, BLACK: 90}

    def test_rare_colors_move_to_common_ones(self, histogram, centroids):
        assert clamp_to_source(RGB, centroids, histogram, 0.06) == {BLACK: 100}

    def test_off_image_centroids_snap_to_nearest(self, histogram, centroids):
        clamped = clamp_to_source(RGB, centroids, histogram, 0.05)
        assert clamped == {0x0A0A0A: 5, WHITE: 5, BLACK: 90}

    def test_no_eligible_colors_falls_back_to_all(self, histogram, centroids):
        clamped = clamp_to_source(RGB, centroids, histogram, 0.95)
        assert clamped == {0x0A0A0A: 5, WHITE: 5, BLACK: 90}

    def test_zero_floor_keeps_real_colors(self, histogram, centroids):
        clamped = clamp_to_source(RGB, centroids, histogram, 0.0)
        assert set(clamped) <= set(histogram.colors.tolist())
        assert sum(clamped.values()) == 100

    def test_input_is_not_modified(self, histogram, centroids):
        clamp_to_source(RGB, centroids, histogram, 0.06)
        assert centroids == {0x0A0A0A: 5, 0xFAFAFA: 5, BLACK: 90}


class TestMerge:

    def test_transitive_groups_collapse(self):
        dark, mid, light, red = oklab(85, 85, 85), oklab(100, 100, 100), oklab(115, 115, 115), oklab(255, 0, 0)
        # Neighbouring grays are close, the outer two are not
        assert OKLAB.distance(dark, mid) < OKLAB.epsilon
        assert OKLAB.distance(mid, light) < OKLAB.epsilon
        assert OKLAB.distance(dark, light) > OKLAB.epsilon

        merged = merge_imperceptible(OKLAB, {dark: 5, mid: 10, light: 1, red: 20})
        assert merged == {mid: 16, red: 20}

    def test_result_is_perceptibly_distinct(self):
        centroids = {oklab(v, v, v): 1 + v % 7 for v in range(0, 256, 8)}
        merged = merge_imperceptible(OKLAB, centroids)
        keys = list(merged)
        for i, a in enumerate(keys):
            for b in keys[i + 1:]:
                assert OKLAB.distance(a, b) >= OKLAB.epsilon
        assert sum(merged.values()) == sum(centroids.values())

    def test_distinct_colors_untouched(self):
        centroids = {BLACK: 3, WHITE: 4}
        assert merge_imperceptible(RGB, centroids) == centroids


class TestRoles:

    def test_outer_is_the_border_color(self, square_image):
        pixels, meta = square_image
        centroids = {BLACK: 3520, PALE: 512, RED: 64}
        assert outer_color(RGB, pixels, meta, centroids) == BLACK

    def test_inner_prefers_salient_color(self):
        centroids = {BLACK: 80, WHITE: 10, 0x3C3C3C: 10}
        salient = histogram_of({BLACK: 60, WHITE: 30, 0x3C3C3C: 10})
        inner, updated = inner_color("test", RGB, salient, centroids, BLACK, 100)
        assert inner == WHITE
        assert updated == centroids

    def test_inner_is_synthesized_without_contrast(self):
        centroids = {BLACK: 100}
        salient = histogram_of({BLACK: 100})
        inner, updated = inner_color("test", RGB, salient, centroids, BLACK, 100)
        assert inner == WHITE
        assert updated == {BLACK: 99, WHITE: 1}
        assert centroids == {BLACK: 100}

    def test_partition_by_lightness(self):
        centroids = {BLACK: 50, 0x1E1E1E: 10, WHITE: 30, 0xDCDCDC: 10}
        inner_colors, outer_colors = partition(RGB, centroids, WHITE, BLACK)
        assert inner_colors == [WHITE, 0xDCDCDC]
        assert outer_colors == [BLACK, 0x1E1E1E]

    def test_accent_is_colorful(self):
        centroids = {BLACK: 70, WHITE: 20, RED: 10}
        assert accent_color(RGB, centroids, [WHITE, RED], WHITE, BLACK, 100) == RED

    def test_accent_needs_prevalence(self):
        centroids = {BLACK: 795, WHITE: 200, RED: 5}
        assert accent_color(RGB, centroids, [WHITE, RED], WHITE, BLACK, 1000) == WHITE

    def test_third_supports_inner_and_accent(self):
        centroids = {BLACK: 60, NAVY: 10, WHITE: 20, RED: 10}
        assert third_color(RGB, centroids, [BLACK, NAVY], WHITE, BLACK, RED, 100) == NAVY

    def test_third_falls_back_to_outer(self):
        centroids = {BLACK: 795, NAVY: 5, WHITE: 100, RED: 100}
        assert third_color(RGB, centroids, [BLACK, NAVY], WHITE, BLACK, RED, 1000) == BLACK


class TestPalette:

    def test_to_palette_converts_to_rgb(self):
        black, white = oklab(0, 0, 0), oklab(255, 255, 255)
        palette = to_palette(OKLAB, {black: 3, white: 1}, black, white, white, black, [white], [black])
        assert palette.centroids == {BLACK: 3, WHITE: 1}
        assert palette.inner_colors == [(WHITE, 1)]
        assert palette.outer_colors == [(BLACK, 3)]

    def test_roles(self):
        palette = Palette(centroids={BLACK: 1}, outer=BLACK, inner=WHITE, accent=RED, third=NAVY)
        assert palette.roles() == {
            "outer": "#000000",
            "inner": "#ffffff",
            "accent": "#ff0000",
            "third": "#000080",
        }
