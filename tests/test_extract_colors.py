"""End-to-end tests for extract_colors."""

import numpy as np
import pytest

from cluster_count import Constant, GapStatistic
from color_spaces import unpack
from extract_colors import ExtractOptions, InvalidImageError, extract_colors
from histogram import ImageMeta
from palette import Palette
from task_pool import InlinePool, TaskError

BLACK, PALE, RED = 0x000000, 0xF0DCB4, 0xFF0000


def assert_close(rgb, expected, tolerance=4):
    assert np.abs(unpack(rgb) - unpack(expected)).max() <= tolerance, f"{rgb:06x} != {expected:06x}"


class TestRoles:

    def test_rgb_roles(self, square_image):
        pixels, meta = square_image
        options = ExtractOptions(color_space="rgb", strategy=Constant(3))
        palette = extract_colors(pixels, meta, options, name="square")

        assert palette.outer == BLACK
        assert palette.inner == PALE
        assert palette.accent == RED
        assert palette.third == BLACK

    def test_oklab_roles(self, square_image):
        pixels, meta = square_image
        palette = extract_colors(pixels, meta, ExtractOptions(strategy=Constant(3)))

        assert palette.outer == BLACK
        assert_close(palette.inner, PALE)
        assert_close(palette.accent, RED)

    def test_centroids_cover_trimmed_image(self, square_image):
        pixels, meta = square_image
        palette = extract_colors(pixels, meta, ExtractOptions(color_space="rgb", strategy=Constant(3)))
        # 2.5% of 64 rounds to 2 pixels per side
        assert sum(palette.centroids.values()) == 60 * 60
        assert palette.centroids == {BLACK: 3600 - 576, PALE: 512, RED: 64}
        assert [color for color, _ in palette.inner_colors] == [PALE, RED]
        assert [color for color, _ in palette.outer_colors] == [BLACK]

    @pytest.mark.parametrize("space", ["rgb", "oklab", "lab"])
    def test_default_strategy(self, square_image, space):
        pixels, meta = square_image
        palette = extract_colors(pixels, meta, ExtractOptions(color_space=space))
        assert isinstance(palette, Palette)
        assert palette.outer == BLACK
        assert sum(palette.centroids.values()) == 60 * 60

    def test_gap_statistic(self, square_image):
        pixels, meta = square_image
        options = ExtractOptions(color_space="rgb", strategy=GapStatistic(1, 4))
        palette = extract_colors(pixels, meta, options)
        assert palette.outer == BLACK

    def test_rgba_input(self, square_image):
        pixels, meta = square_image
        rgba = np.concatenate([pixels.reshape(-1, 3), np.full((meta.pixels, 1), 255, dtype=np.uint8)], axis=1)
        options = ExtractOptions(color_space="rgb", strategy=Constant(3))
        palette = extract_colors(rgba.reshape(-1), {"width": 64, "height": 64, "channels": 4}, options)
        assert palette == extract_colors(pixels, meta, options)


class TestOptions:

    def test_defaults(self):
        options = ExtractOptions()
        assert options.color_space == "oklab"
        assert options.clamp_share == pytest.approx(0.005)
        assert options.trim_percent == 2.5
        assert options.dispatcher == "inline"

    def test_clamp_flags(self):
        assert ExtractOptions(clamp=True).clamp_share == 0.0
        assert ExtractOptions(clamp=False).clamp_share is None
        assert ExtractOptions(clamp=10).clamp_share == pytest.approx(0.1)

    @pytest.mark.parametrize("kwargs", [
        {"color_space": "hsv"},
        {"trim_percent": 50},
        {"clamp": 101},
        {"min_foreground_contrast": -1},
        {"saliency_weight": -0.5},
        {"dispatcher": "cluster"},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ExtractOptions(**kwargs)

    def test_clamp_disabled(self, square_image):
        pixels, meta = square_image
        palette = extract_colors(pixels, meta, ExtractOptions(color_space="rgb", strategy=Constant(3), clamp=False))
        assert palette.outer == BLACK


class TestDispatchers:

    @pytest.mark.parametrize("dispatcher", ["dedicated", "shared"])
    def test_same_result_as_inline(self, square_image, dispatcher):
        pixels, meta = square_image
        inline = extract_colors(pixels, meta, ExtractOptions(strategy=Constant(3)))
        threaded = extract_colors(pixels, meta, ExtractOptions(strategy=Constant(3), dispatcher=dispatcher))
        assert threaded == inline

    def test_pool_instance(self, square_image):
        pixels, meta = square_image
        palette = extract_colors(pixels, meta, ExtractOptions(strategy=Constant(2), dispatcher=InlinePool()))
        assert palette.outer == BLACK

    def test_task_failure_aborts(self, square_image):
        def broken(name, space, histogram, total, pool):
            return pool.run(lambda: 1 / 0).result()

        pixels, meta = square_image
        with pytest.raises(TaskError):
            extract_colors(pixels, meta, ExtractOptions(strategy=broken))


class TestInvalidImages:

    def test_channels(self):
        with pytest.raises(InvalidImageError, match="channel"):
            extract_colors(bytes(8), ImageMeta(width=2, height=2, channels=2))

    def test_buffer_length(self):
        with pytest.raises(InvalidImageError, match="expected 12"):
            extract_colors(bytes(10), ImageMeta(width=2, height=2, channels=3))

    def test_too_large(self):
        with pytest.raises(InvalidImageError, match="too large"):
            extract_colors(b"", ImageMeta(width=2 ** 16, height=2 ** 16 + 1, channels=3))

    def test_missing_meta(self):
        with pytest.raises(InvalidImageError):
            extract_colors(bytes(12), {"width": 2, "height": 2})

    def test_empty_image(self):
        with pytest.raises(InvalidImageError, match="No pixels"):
            extract_colors(b"", ImageMeta(width=0, height=0, channels=3))

    def test_is_a_value_error(self):
        assert issubclass(InvalidImageError, ValueError)
