"""Tests for dominant color extraction."""

from __future__ import annotations

import numpy as np
import pytest

from imagelens.analysis.palette import ColorProfiler, downsample, profile_colors, quantize
from imagelens.config import Settings
from imagelens.errors import ColorProfilingError
from imagelens.models import ColorSwatch


def _noise(width: int, height: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


class TestQuantize:
    def test_rounds_half_up_to_multiples_of_16(self) -> None:
        pixels = np.array([[7, 8, 24]], dtype=np.uint8)
        assert quantize(pixels).tolist() == [[0, 16, 32]]

    def test_top_of_range_is_capped_at_255(self) -> None:
        pixels = np.array([[247, 248, 255]], dtype=np.uint8)
        assert quantize(pixels).tolist() == [[240, 255, 255]]


class TestDownsample:
    def test_longest_side_bounded(self) -> None:
        sampled = downsample(_noise(400, 200))
        assert sampled.shape == (50, 100, 3)

    def test_small_images_untouched(self) -> None:
        image = _noise(30, 20)
        assert downsample(image) is image

    def test_rounds_target_size(self) -> None:
        # 333 x 250 scaled by 100/333 -> 100 x 75.08 -> 100 x 75
        sampled = downsample(_noise(333, 250))
        assert sampled.shape == (75, 100, 3)


class TestProfileColors:
    def test_solid_red_is_single_full_swatch(self) -> None:
        image = np.zeros((50, 50, 3), dtype=np.uint8)
        image[:, :, 0] = 255
        assert profile_colors(image) == (ColorSwatch(rgb=(255, 0, 0), percentage=100),)

    def test_random_image_bounds(self) -> None:
        palette = profile_colors(_noise(640, 480))
        assert 1 <= len(palette) <= 5
        assert all(0 <= s.percentage <= 100 for s in palette)
        percentages = [s.percentage for s in palette]
        assert percentages == sorted(percentages, reverse=True)
        assert all(0 <= channel <= 255 for s in palette for channel in s.rgb)

    def test_deterministic(self) -> None:
        image = _noise(250, 130, seed=7)
        assert profile_colors(image) == profile_colors(image.copy())

    def test_fewer_buckets_than_top_k(self) -> None:
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        image[:5, :5] = (255, 0, 0)
        image[:5, 5:] = (0, 255, 0)
        image[5:, :5] = (0, 0, 255)
        image[5:, 5:] = (255, 255, 255)
        palette = profile_colors(image)
        assert [s.percentage for s in palette] == [25, 25, 25, 25]
        # Equal counts keep row-major first-encounter order.
        assert [s.rgb for s in palette] == [(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 255)]

    def test_tie_break_follows_scan_order(self) -> None:
        image = np.array([[[0, 0, 255], [255, 0, 0]]], dtype=np.uint8)
        palette = profile_colors(image)
        assert [s.rgb for s in palette] == [(0, 0, 255), (255, 0, 0)]

    def test_truncates_to_top_k(self) -> None:
        palette = profile_colors(_noise(60, 60), top_k=3)
        assert len(palette) == 3

    def test_majority_color_first(self) -> None:
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        image[:3] = (250, 250, 250)
        palette = profile_colors(image)
        assert palette[0] == ColorSwatch(rgb=(0, 0, 0), percentage=70)
        assert palette[1] == ColorSwatch(rgb=(255, 255, 255), percentage=30)

    def test_alpha_channel_ignored(self) -> None:
        image = np.zeros((4, 4, 4), dtype=np.uint8)
        image[:, :, 1] = 128
        assert profile_colors(image) == (ColorSwatch(rgb=(0, 128, 0), percentage=100),)

    def test_grayscale_accepted(self) -> None:
        image = np.full((8, 8), 64, dtype=np.uint8)
        assert profile_colors(image) == (ColorSwatch(rgb=(64, 64, 64), percentage=100),)

    def test_rejects_float_raster(self) -> None:
        with pytest.raises(ColorProfilingError):
            profile_colors(np.zeros((4, 4, 3), dtype=np.float32))

    def test_rejects_empty_raster(self) -> None:
        with pytest.raises(ColorProfilingError):
            profile_colors(np.zeros((0, 4, 3), dtype=np.uint8))

    def test_rejects_unexpected_channels(self) -> None:
        with pytest.raises(ColorProfilingError):
            profile_colors(np.zeros((4, 4, 2), dtype=np.uint8))


class TestColorProfiler:
    def test_uses_configured_palette_size(self) -> None:
        profiler = ColorProfiler(Settings(palette_size=2))
        assert len(profiler.profile(_noise(50, 50))) == 2

    def test_swatch_hex(self) -> None:
        assert ColorSwatch(rgb=(255, 128, 0), percentage=10).hex == "#ff8000"
