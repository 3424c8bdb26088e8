"""Dominant color extraction by coarse histogram binning.

The image is downscaled so its longest side is at most ``max_side`` pixels,
each channel is snapped to the nearest multiple of ``step``, and the most
frequent buckets are reported as whole percentages of the sampled pixels.

Pixels are tallied in row-major order; buckets with equal counts keep the
order in which they were first encountered, so identical pixels always yield
an identical palette.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from imagelens.errors import ColorProfilingError
from imagelens.models import ColorSwatch, round_half_up

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from imagelens.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIDE = 100
DEFAULT_STEP = 16
DEFAULT_TOP_K = 5


def _as_rgb(image: NDArray[np.uint8]) -> NDArray[np.uint8]:
    if not isinstance(image, np.ndarray) or image.dtype != np.uint8:
        raise ColorProfilingError("Expected a uint8 numpy raster")
    if image.ndim == 2:
        image = np.stack([image] * 3, axis=-1)
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ColorProfilingError(f"Unsupported raster shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ColorProfilingError("Cannot profile an empty image")
    # Alpha is ignored, as a 2D canvas readback would.
    return np.ascontiguousarray(image[:, :, :3])


def downsample(image: NDArray[np.uint8], max_side: int = DEFAULT_MAX_SIDE) -> NDArray[np.uint8]:
    """Resample so that the longest side is at most ``max_side`` pixels."""
    height, width = image.shape[:2]
    scale = min(1.0, max_side / max(width, height))
    if scale >= 1.0:
        return image
    target = (
        max(1, round_half_up(width * scale)),
        max(1, round_half_up(height * scale)),
    )
    resized = Image.fromarray(image).resize(target, Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.uint8)


def quantize(pixels: NDArray[np.uint8], step: int = DEFAULT_STEP) -> NDArray[np.int32]:
    """Snap every channel to the nearest multiple of ``step`` (half-up), capped at 255."""
    snapped = np.floor(pixels.astype(np.float64) / step + 0.5) * step
    return np.minimum(snapped, 255).astype(np.int32)


def profile_colors(
    image: NDArray[np.uint8],
    *,
    max_side: int = DEFAULT_MAX_SIDE,
    step: int = DEFAULT_STEP,
    top_k: int = DEFAULT_TOP_K,
) -> tuple[ColorSwatch, ...]:
    """Reduce a raster to its most frequent quantized colors.

    Args:
        image: HxW, HxWx3 or HxWx4 uint8 array.
        max_side: Longest side of the sampled image.
        step: Quantization grid per channel.
        top_k: Maximum number of swatches to return.

    Returns:
        Up to ``top_k`` swatches sorted by descending percentage.

    Raises:
        ColorProfilingError: If the raster is malformed.
    """
    rgb = _as_rgb(image)
    try:
        sampled = downsample(rgb, max_side)
    except (ValueError, OSError) as exc:
        raise ColorProfilingError(f"Resampling failed: {exc}") from exc

    buckets = quantize(sampled.reshape(-1, 3), step)
    total = buckets.shape[0]
    keys = (buckets[:, 0] << 16) | (buckets[:, 1] << 8) | buckets[:, 2]

    unique_keys, first_seen, counts = np.unique(keys, return_index=True, return_counts=True)
    # Primary key: descending count. Secondary: first position in the row-major scan.
    order = np.lexsort((first_seen, -counts))[:top_k]

    swatches = tuple(
        ColorSwatch(
            rgb=(int(unique_keys[i] >> 16) & 0xFF, int(unique_keys[i] >> 8) & 0xFF, int(unique_keys[i]) & 0xFF),
            percentage=round_half_up(int(counts[i]) * 100 / total),
        )
        for i in order
    )
    logger.debug("Profiled %d sampled pixels into %d buckets", total, len(unique_keys))
    return swatches


class ColorProfiler:
    """Palette extraction configured from settings."""

    def __init__(self, settings: Settings) -> None:
        self._max_side = settings.palette_max_side
        self._step = settings.palette_step
        self._top_k = settings.palette_size

    def profile(self, image: NDArray[np.uint8]) -> tuple[ColorSwatch, ...]:
        return profile_colors(image, max_side=self._max_side, step=self._step, top_k=self._top_k)
