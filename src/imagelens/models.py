"""Value types shared by the analysis pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

RGB = tuple[int, int, int]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with ties going up, like JavaScript's ``Math.round``."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in source-image pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def clamped(self, image_width: float, image_height: float) -> BoundingBox:
        """Return the part of this box that lies inside ``[0, W] x [0, H]``.

        Raises:
            ValueError: If any component is NaN or infinite.
        """
        if not all(math.isfinite(v) for v in (self.x, self.y, self.width, self.height)):
            raise ValueError(f"Non-finite bounding box: {self}")

        x0, x1 = sorted((self.x, self.x + self.width))
        y0, y1 = sorted((self.y, self.y + self.height))
        x0 = _clamp(x0, 0.0, image_width)
        x1 = _clamp(x1, 0.0, image_width)
        y0 = _clamp(y0, 0.0, image_height)
        y1 = _clamp(y1, 0.0, image_height)
        return BoundingBox(x=x0, y=y0, width=x1 - x0, height=y1 - y0)


@dataclass(frozen=True)
class Detection:
    """One located object instance."""

    label: str
    confidence: float
    box: BoundingBox

    @classmethod
    def from_raw(
        cls,
        label: str,
        confidence: float,
        box: tuple[float, float, float, float],
        image_width: int,
        image_height: int,
    ) -> Detection | None:
        """Build a validated detection from untrusted detector output.

        The box is clamped into the image and the confidence into ``[0, 1]``.
        Returns None when any value is not finite.
        """
        if not math.isfinite(confidence):
            return None
        try:
            clamped = BoundingBox(*(float(v) for v in box)).clamped(image_width, image_height)
        except ValueError:
            return None
        return cls(label=str(label), confidence=_clamp(float(confidence), 0.0, 1.0), box=clamped)


@dataclass(frozen=True)
class Classification:
    """One whole-image label with its (unrounded) confidence."""

    label: str
    confidence: float


@dataclass(frozen=True)
class ColorSwatch:
    """A dominant color and its share of the sampled pixels."""

    rgb: RGB
    percentage: int

    @property
    def hex(self) -> str:
        r, g, b = self.rgb
        return f"#{r:02x}{g:02x}{b:02x}"


@dataclass(frozen=True)
class ImageStats:
    """Basic geometry of a submitted image."""

    width: int
    height: int
    aspect_ratio: float

    @classmethod
    def from_size(cls, width: int, height: int) -> ImageStats:
        if width <= 0 or height <= 0:
            raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
        return cls(width=int(width), height=int(height), aspect_ratio=round_half_up(width / height * 100) / 100)

    @classmethod
    def from_image(cls, image: NDArray[np.uint8]) -> ImageStats:
        """Measure an ``HxW`` or ``HxWxC`` raster."""
        if image.ndim < 2:
            raise ValueError(f"Expected a 2D raster, got shape {image.shape}")
        height, width = int(image.shape[0]), int(image.shape[1])
        return cls.from_size(width, height)


@dataclass(frozen=True)
class InferenceResult:
    """Detections and classifications produced together for one image.

    ``tag`` identifies the request that produced the result.
    """

    detections: tuple[Detection, ...]
    classifications: tuple[Classification, ...]
    tag: object = None


@dataclass(frozen=True)
class AnalysisResult:
    """Every result of one session, published in a single assignment."""

    inference: InferenceResult
    palette: tuple[ColorSwatch, ...] = field(default=())

    @property
    def detections(self) -> tuple[Detection, ...]:
        return self.inference.detections

    @property
    def classifications(self) -> tuple[Classification, ...]:
        return self.inference.classifications
