"""Shared fakes for coordinator and presentation tests."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import numpy as np
import pytest

from imagelens.models import BoundingBox, Classification, Detection, InferenceResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray


def solid_image(rgb: tuple[int, int, int], width: int = 50, height: int = 50) -> NDArray[np.uint8]:
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = rgb
    return image


def result_for(image: NDArray[np.uint8], tag: object) -> InferenceResult:
    """Results that identify the image they came from by its first pixel."""
    marker = f"r{int(image[0, 0, 0])}"
    return InferenceResult(
        detections=(
            Detection(label=f"{marker}-dog", confidence=0.9, box=BoundingBox(5, 30, 20, 15)),
            Detection(label=f"{marker}-cat", confidence=0.75, box=BoundingBox(0, 0, 10, 10)),
        ),
        classifications=(
            Classification(label="tabby cat", confidence=0.82),
            Classification(label="tiger cat", confidence=0.11),
            Classification(label=marker, confidence=0.01),
        ),
        tag=tag,
    )


class FakeGateway:
    """In-memory stand-in for InferenceGateway with controllable timing."""

    def __init__(self, *, ready: bool = True, load_error: Exception | None = None) -> None:
        self._ready = ready
        self.load_error = load_error
        self.load_gate = asyncio.Event()
        self.initialize_calls = 0
        self.calls: list[object] = []
        self.failures: dict[object, Exception] = {}
        self._held: dict[object, asyncio.Event] = {}

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def initialize(self) -> None:
        self.initialize_calls += 1
        await self.load_gate.wait()
        if self.load_error is not None:
            raise self.load_error
        self._ready = True

    def hold(self, tag: object) -> None:
        self._held[tag] = asyncio.Event()

    def release(self, tag: object) -> None:
        self._held[tag].set()

    async def analyze(self, image: NDArray[np.uint8], *, tag: object = None) -> InferenceResult:
        self.calls.append(tag)
        gate = self._held.get(tag)
        if gate is not None:
            await gate.wait()
        if tag in self.failures:
            raise self.failures[tag]
        return result_for(image, tag)


@pytest.fixture()
def make_gateway() -> Callable[..., FakeGateway]:
    return FakeGateway


@pytest.fixture()
def make_image() -> Callable[..., NDArray[np.uint8]]:
    return solid_image
