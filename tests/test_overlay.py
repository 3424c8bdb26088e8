"""Tests for the detection overlay renderer."""

from __future__ import annotations

import pytest

from imagelens.analysis.overlay import (
    BASE_COLORS,
    DetectionOverlayRenderer,
    assign_class_colors,
    format_label,
    new_surface,
)
from imagelens.config import Settings
from imagelens.models import BoundingBox, Detection


def _det(label: str, x: float = 10, y: float = 40, w: float = 30, h: float = 20, score: float = 0.9) -> Detection:
    return Detection(label=label, confidence=score, box=BoundingBox(x, y, w, h))


@pytest.fixture()
def renderer() -> DetectionOverlayRenderer:
    return DetectionOverlayRenderer()


class TestClassColors:
    def test_first_seen_order(self) -> None:
        colors = assign_class_colors([_det("dog"), _det("cat"), _det("dog"), _det("bird")])
        assert colors == {"dog": (255, 0, 0), "cat": (0, 255, 0), "bird": (0, 0, 255)}

    def test_wraps_after_ten_classes(self) -> None:
        colors = assign_class_colors([_det(f"class{i}") for i in range(11)])
        assert len(BASE_COLORS) == 10
        assert colors["class10"] == colors["class0"] == (255, 0, 0)
        assert colors["class9"] == (255, 0, 128)

    def test_depends_only_on_order(self) -> None:
        detections = [_det("car"), _det("person"), _det("car")]
        assert assign_class_colors(detections) == assign_class_colors(list(detections))
        assert assign_class_colors(list(reversed(detections)))["person"] == (0, 255, 0)


class TestFormatLabel:
    def test_rounds_to_whole_percent(self) -> None:
        assert format_label(_det("dog", score=0.826)) == "dog 83%"

    def test_ties_round_up(self) -> None:
        assert format_label(_det("dog", score=0.125)) == "dog 13%"


class TestRender:
    def test_repeated_render_reproduces_colors(self, renderer: DetectionOverlayRenderer) -> None:
        detections = [_det("dog"), _det("cat", x=60), _det("dog", y=80)]
        surface = new_surface(200, 150)
        first = renderer.render(detections, surface)
        second = renderer.render(detections, surface)
        assert first == second
        assert [item.color for item in first] == [(255, 0, 0), (0, 255, 0), (255, 0, 0)]

    def test_everything_drawn_inside_surface(self, renderer: DetectionOverlayRenderer) -> None:
        width, height = 120, 90
        detections = [
            _det("edge", x=-15, y=-10, w=50, h=40),
            _det("huge", x=0, y=0, w=500, h=500),
            _det("corner", x=110, y=85, w=30, h=30),
            _det("a very long label for a tiny box", x=100, y=2, w=5, h=5),
        ]
        items = renderer.render(detections, new_surface(width, height))
        assert len(items) == len(detections)
        for item in items:
            for x0, y0, x1, y1 in (item.box, item.label_rect):
                assert 0 <= x0 <= x1 <= width - 1
                assert 0 <= y0 <= y1 <= height - 1

    def test_label_sits_above_box_when_room(self, renderer: DetectionOverlayRenderer) -> None:
        (item,) = renderer.render([_det("dog", x=20, y=100, w=80, h=40)], new_surface(200, 200))
        assert item.box == (20, 100, 100, 140)
        assert item.label_rect[1] == 75
        assert item.label_rect[3] == 99
        assert item.label_rect[0] == 20

    def test_label_moves_inside_box_at_top_edge(self, renderer: DetectionOverlayRenderer) -> None:
        (item,) = renderer.render([_det("dog", x=20, y=5, w=80, h=60)], new_surface(200, 200))
        assert item.label_rect[1] == 5
        assert item.label_rect[3] == 29

    def test_box_outline_uses_class_color(self, renderer: DetectionOverlayRenderer) -> None:
        surface = new_surface(200, 200)
        (item,) = renderer.render([_det("dog", x=20, y=100, w=80, h=60)], surface)
        x0, y0, _x1, y1 = item.box
        assert surface.getpixel((x0, (y0 + y1) // 2)) == (255, 0, 0, 255)

    def test_render_clears_previous_drawing(self, renderer: DetectionOverlayRenderer) -> None:
        surface = new_surface(200, 200)
        renderer.render([_det("dog", x=20, y=100, w=80, h=60)], surface)
        renderer.render([_det("cat", x=150, y=150, w=20, h=20)], surface)
        assert surface.getpixel((20, 130)) == (0, 0, 0, 0)

    def test_empty_list_leaves_blank_surface(self, renderer: DetectionOverlayRenderer) -> None:
        surface = new_surface(100, 100)
        renderer.render([_det("dog")], surface)
        assert surface.getbbox() is not None

        assert renderer.render([], surface) == []
        assert surface.getbbox() is None

    def test_from_settings(self) -> None:
        renderer = DetectionOverlayRenderer.from_settings(Settings(overlay_label_height=10))
        (item,) = renderer.render([_det("dog", x=20, y=100, w=80, h=40)], new_surface(200, 200))
        assert item.label_rect[1] == 90
