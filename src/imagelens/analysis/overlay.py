"""Detection overlay rendering onto a transparent RGBA surface.

Class colors are assigned fresh on every render pass from a fixed palette,
in the order classes first appear in the detection list, so re-rendering the
same list always reproduces the same colors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from PIL import Image, ImageColor, ImageDraw, ImageFont

from imagelens.models import round_half_up

if TYPE_CHECKING:
    from collections.abc import Sequence

    from imagelens.config import Settings
    from imagelens.models import RGB, Detection

logger = logging.getLogger(__name__)

BASE_COLORS: tuple[str, ...] = (
    "#FF0000",
    "#00FF00",
    "#0000FF",
    "#FFFF00",
    "#FF00FF",
    "#00FFFF",
    "#FF8000",
    "#8000FF",
    "#0080FF",
    "#FF0080",
)
TEXT_COLOR: RGB = (255, 255, 255)
LABEL_ALPHA = 179  # 70% opaque
LABEL_PADDING = 5

Rect = tuple[int, int, int, int]


@dataclass(frozen=True)
class OverlayItem:
    """Where and how one detection was drawn. Rects are inclusive ``(x0, y0, x1, y1)``."""

    label: str
    text: str
    color: RGB
    box: Rect
    label_rect: Rect


def assign_class_colors(detections: Sequence[Detection]) -> dict[str, RGB]:
    """Map each class label to a base color in first-seen order, wrapping after ten."""
    colors: dict[str, RGB] = {}
    for detection in detections:
        if detection.label not in colors:
            hex_color = BASE_COLORS[len(colors) % len(BASE_COLORS)]
            colors[detection.label] = ImageColor.getrgb(hex_color)[:3]  # type: ignore[assignment]
    return colors


def format_label(detection: Detection) -> str:
    return f"{detection.label} {round_half_up(detection.confidence * 100)}%"


def new_surface(width: int, height: int) -> Image.Image:
    """Create a blank overlay surface matching an image's dimensions."""
    return Image.new("RGBA", (width, height), (0, 0, 0, 0))


def clear(surface: Image.Image) -> None:
    surface.paste((0, 0, 0, 0), (0, 0, surface.width, surface.height))


def _clamp(value: float, low: int, high: int) -> int:
    return int(max(low, min(high, round(value))))


class DetectionOverlayRenderer:
    """Draws detection boxes and confidence labels."""

    def __init__(
        self,
        line_width: int = 3,
        label_height: int = 25,
        font_size: int = 16,
    ) -> None:
        self._line_width = line_width
        self._label_height = label_height
        self._font = ImageFont.load_default(size=font_size)

    @classmethod
    def from_settings(cls, settings: Settings) -> DetectionOverlayRenderer:
        return cls(
            line_width=settings.overlay_line_width,
            label_height=settings.overlay_label_height,
            font_size=settings.overlay_font_size,
        )

    def render(self, detections: Sequence[Detection], surface: Image.Image) -> list[OverlayItem]:
        """Clear ``surface`` and draw every detection on it.

        An empty list leaves the surface blank.
        """
        clear(surface)
        if not detections:
            return []

        colors = assign_class_colors(detections)
        draw = ImageDraw.Draw(surface, "RGBA")
        items = [self._draw_one(draw, surface.size, detection, colors[detection.label]) for detection in detections]
        logger.debug("Rendered %d detections across %d classes", len(items), len(colors))
        return items

    def _draw_one(
        self,
        draw: ImageDraw.ImageDraw,
        size: tuple[int, int],
        detection: Detection,
        color: RGB,
    ) -> OverlayItem:
        width, height = size
        box = detection.box
        x0 = _clamp(box.x, 0, width - 1)
        y0 = _clamp(box.y, 0, height - 1)
        x1 = _clamp(box.right, x0, width - 1)
        y1 = _clamp(box.bottom, y0, height - 1)
        draw.rectangle((x0, y0, x1, y1), outline=color, width=self._line_width)

        text = format_label(detection)
        label_rect = self._place_label(draw, text, (x0, y0, x1, y1), size)
        draw.rectangle(label_rect, fill=(*color, LABEL_ALPHA))

        lx0, ly0, _lx1, ly1 = label_rect
        text_top = ly0 + (ly1 - ly0 + 1 - self._text_height(draw, text)) // 2
        draw.text((lx0 + LABEL_PADDING, text_top), text, fill=TEXT_COLOR, font=self._font)
        return OverlayItem(
            label=detection.label,
            text=text,
            color=color,
            box=(x0, y0, x1, y1),
            label_rect=label_rect,
        )

    def _place_label(self, draw: ImageDraw.ImageDraw, text: str, box: Rect, size: tuple[int, int]) -> Rect:
        # Above the box when it fits, otherwise pinned inside the box's top edge.
        width, height = size
        x0, y0, x1, _y1 = box
        bar_height = min(self._label_height, height)
        text_width = int(draw.textlength(text, font=self._font)) + 2 * LABEL_PADDING
        bar_width = min(max(x1 - x0 + 1, text_width), width)

        top = y0 - bar_height if y0 - bar_height >= 0 else y0
        top = max(0, min(top, height - bar_height))
        left = max(0, min(x0, width - bar_width))
        return (left, top, left + bar_width - 1, top + bar_height - 1)

    def _text_height(self, draw: ImageDraw.ImageDraw, text: str) -> int:
        _left, top, _right, bottom = draw.textbbox((0, 0), text, font=self._font)
        return int(bottom - top)
