"""One readiness gate in front of the detector and the classifier.

Both capabilities are loaded once, concurrently, and are then invoked
concurrently for every image. Either both are usable or neither is: a
failed load leaves the gateway unavailable until ``reinitialize`` is called.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

from imagelens.errors import GatewayNotReadyError, InferenceError, ModelLoadError
from imagelens.ml.image_classifier import OnnxImageClassifier
from imagelens.ml.object_detector import OnnxObjectDetector
from imagelens.models import Classification, Detection, InferenceResult

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from imagelens.config import Settings
    from imagelens.ml.image_classifier import ImageClassifier
    from imagelens.ml.inference import InferencePool
    from imagelens.ml.model_manager import ModelManager
    from imagelens.ml.object_detector import ObjectDetector

logger = logging.getLogger(__name__)

T = TypeVar("T")

DETECTOR = "detector"
CLASSIFIER = "classifier"


class GatewayState(StrEnum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class InferenceGateway:
    """Loads both capabilities once and runs them side by side per image."""

    def __init__(
        self,
        pool: InferencePool,
        detector_loader: Callable[[], ObjectDetector],
        classifier_loader: Callable[[], ImageClassifier],
        *,
        load_timeout: float | None = None,
        inference_timeout: float | None = None,
    ) -> None:
        self._pool = pool
        self._detector_loader = detector_loader
        self._classifier_loader = classifier_loader
        self._load_timeout = load_timeout
        self._inference_timeout = inference_timeout

        self._state = GatewayState.UNINITIALIZED
        self._detector: ObjectDetector | None = None
        self._classifier: ImageClassifier | None = None
        self._load_task: asyncio.Task[None] | None = None
        self._load_error: ModelLoadError | None = None

    @classmethod
    def from_settings(cls, settings: Settings, pool: InferencePool, manager: ModelManager) -> InferenceGateway:
        """Wire the ONNX-backed detector and classifier named in settings."""
        return cls(
            pool,
            lambda: OnnxObjectDetector.load(manager, settings),
            lambda: OnnxImageClassifier.load(manager, settings),
            load_timeout=settings.model_load_timeout,
            inference_timeout=settings.inference_timeout,
        )

    @property
    def state(self) -> GatewayState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is GatewayState.READY

    @property
    def loaded_models(self) -> list[str]:
        if not self.is_ready:
            return []
        return [self._detector.model_name, self._classifier.model_name]  # type: ignore[union-attr]

    async def initialize(self) -> None:
        """Load both capabilities, or join a load already in progress.

        Raises:
            ModelLoadError: If either capability failed to load, now or earlier.
        """
        if self._state is GatewayState.READY:
            return
        if self._load_error is not None:
            raise self._load_error
        if self._load_task is None:
            self._state = GatewayState.LOADING
            logger.info("Loading detector and classifier")
            self._load_task = asyncio.create_task(self._load())
        # One caller giving up must not abort the shared load.
        await asyncio.shield(self._load_task)

    async def reinitialize(self) -> None:
        """Drop loaded handles and any load failure, then load again."""
        if self._load_task is not None and not self._load_task.done():
            with contextlib.suppress(ModelLoadError):
                await asyncio.shield(self._load_task)
        self._state = GatewayState.UNINITIALIZED
        self._detector = None
        self._classifier = None
        self._load_task = None
        self._load_error = None
        await self.initialize()

    async def analyze(self, image: NDArray[np.uint8], *, tag: object = None) -> InferenceResult:
        """Run detection and classification concurrently on one decoded image.

        Args:
            image: HxWx3 RGB uint8 array.
            tag: Identity of the requester, echoed on the result.

        Raises:
            GatewayNotReadyError: If ``initialize`` has not succeeded.
            InferenceError: If either call fails or times out.
        """
        detector, classifier = self._detector, self._classifier
        if self._state is not GatewayState.READY or detector is None or classifier is None:
            raise GatewayNotReadyError(f"Gateway is {self._state}, not ready")

        try:
            raw_detections, raw_classifications = await asyncio.gather(
                self._pool.run(detector.detect, image, timeout=self._inference_timeout),
                self._pool.run(classifier.classify, image, timeout=self._inference_timeout),
            )
        except TimeoutError as exc:
            logger.warning("Inference timed out (tag=%s)", tag)
            raise InferenceError("Inference timed out") from exc
        except Exception as exc:
            logger.warning("Inference failed (tag=%s): %s", tag, exc)
            raise InferenceError(f"Inference failed: {exc}") from exc

        height, width = image.shape[:2]
        detections = tuple(
            d
            for d in (Detection.from_raw(r.label, r.score, r.box, width, height) for r in raw_detections)
            if d is not None
        )
        if len(detections) != len(raw_detections):
            logger.warning("Dropped %d malformed detections", len(raw_detections) - len(detections))

        classifications = tuple(Classification(label=c.label, confidence=float(c.confidence)) for c in raw_classifications)
        return InferenceResult(detections=detections, classifications=classifications, tag=tag)

    # -- Internal -----------------------------------------------------------

    async def _load(self) -> None:
        results = await asyncio.gather(
            self._load_one(DETECTOR, self._detector_loader),
            self._load_one(CLASSIFIER, self._classifier_loader),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            first = failures[0]
            if not isinstance(first, ModelLoadError):
                # Cancelled mid-load: allow a fresh attempt.
                self._state = GatewayState.UNINITIALIZED
                self._load_task = None
                raise first
            self._state = GatewayState.UNAVAILABLE
            self._load_error = first
            logger.error("Gateway unavailable: %s", first)
            raise first

        self._detector, self._classifier = results  # type: ignore[assignment]
        self._state = GatewayState.READY
        logger.info("Gateway ready (%s)", ", ".join(self.loaded_models))

    async def _load_one(self, capability: str, loader: Callable[[], T]) -> T:
        try:
            return await self._pool.run(loader, timeout=self._load_timeout)
        except Exception as exc:
            logger.exception("Failed to load %s", capability)
            raise ModelLoadError(capability, f"Failed to load {capability}: {exc}") from exc
