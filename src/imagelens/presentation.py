"""Presentation boundary: tab selection, overlay redraws and chart data.

Switching tabs only changes which already-computed results are drawn; it
never asks the coordinator for new work.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from imagelens.analysis.overlay import clear, new_surface
from imagelens.models import round_half_up
from imagelens.schemas import snapshot

if TYPE_CHECKING:
    from collections.abc import Sequence

    from PIL import Image

    from imagelens.analysis.overlay import DetectionOverlayRenderer, OverlayItem
    from imagelens.models import Classification
    from imagelens.schemas import SessionSnapshot
    from imagelens.session import AnalysisCoordinator, AnalysisSession

logger = logging.getLogger(__name__)


class DisplayTab(StrEnum):
    DETECTION = "detection"
    CLASSIFICATION = "classification"


def ranked_pairs(classifications: Sequence[Classification]) -> list[tuple[str, int]]:
    """Chart-ready ``(label, percent)`` pairs in classifier order.

    Labels are cut at the first comma ("tabby, tabby cat" -> "tabby").
    """
    return [(c.label.split(",")[0].strip(), round_half_up(c.confidence * 100)) for c in classifications]


class ResultsView:
    """Keeps an overlay surface in step with the current session and tab."""

    def __init__(self, renderer: DetectionOverlayRenderer, tab: DisplayTab = DisplayTab.DETECTION) -> None:
        self._renderer = renderer
        self._tab = tab
        self._session: AnalysisSession | None = None
        self._surface: Image.Image | None = None
        self._items: list[OverlayItem] = []

    def bind(self, coordinator: AnalysisCoordinator) -> None:
        coordinator.add_listener(self.show)

    @property
    def active_tab(self) -> DisplayTab:
        return self._tab

    @property
    def session(self) -> AnalysisSession | None:
        return self._session

    @property
    def surface(self) -> Image.Image | None:
        return self._surface

    @property
    def items(self) -> list[OverlayItem]:
        return list(self._items)

    def show(self, session: AnalysisSession) -> None:
        """Display ``session``; superseded sessions are ignored."""
        if session.superseded:
            logger.debug("Ignoring update from superseded session %d", session.session_id)
            return
        if self._session is not session:
            self._session = session
            self._surface = new_surface(session.geometry.width, session.geometry.height)
        self._redraw()

    def select_tab(self, tab: DisplayTab) -> None:
        self._tab = tab
        self._redraw()

    def snapshot(self) -> SessionSnapshot | None:
        return snapshot(self._session) if self._session else None

    def _redraw(self) -> None:
        if self._surface is None or self._session is None:
            return
        if self._tab is DisplayTab.DETECTION:
            self._items = self._renderer.render(self._session.detections, self._surface)
        else:
            clear(self._surface)
            self._items = []
