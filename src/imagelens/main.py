"""Application entry point: build, run and tear down the analysis stack."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from imagelens.analysis.overlay import DetectionOverlayRenderer
from imagelens.analysis.palette import ColorProfiler
from imagelens.config import get_settings
from imagelens.ml.gateway import InferenceGateway
from imagelens.ml.inference import InferencePool
from imagelens.ml.model_manager import OnnxModelManager
from imagelens.ml.preprocessing import ImagePreprocessor
from imagelens.presentation import ResultsView
from imagelens.session import AnalysisCoordinator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from imagelens.config import Settings
    from imagelens.session import AnalysisSession

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


@dataclass
class ImageLens:
    """The wired analysis stack for one process."""

    settings: Settings
    preprocessor: ImagePreprocessor
    gateway: InferenceGateway
    coordinator: AnalysisCoordinator
    view: ResultsView

    async def submit_upload(self, data: bytes, content_type: str | None) -> AnalysisSession:
        """Decode an upload and start a session for it.

        Raises:
            UnsupportedFileError: If the upload is not a decodable image.
        """
        image = await asyncio.to_thread(self.preprocessor.decode_upload, data, content_type)
        return self.coordinator.submit(image)


def _log_preload_failure(task: asyncio.Task[None]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Model preload failed; sessions will report the error: %s", task.exception())


@asynccontextmanager
async def open_analyzer(settings: Settings | None = None, *, preload: bool = True) -> AsyncIterator[ImageLens]:
    """Build the stack, optionally start loading models, and clean up on exit."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    logger.info(
        "Starting ImageLens (device=%s, max_concurrent=%s, detection=%s, classification=%s)",
        settings.device,
        settings.max_concurrent,
        settings.detection_model,
        settings.classification_model,
    )

    pool = InferencePool(settings)
    manager = OnnxModelManager(settings)
    gateway = InferenceGateway.from_settings(settings, pool, manager)
    coordinator = AnalysisCoordinator(gateway, ColorProfiler(settings).profile)
    view = ResultsView(DetectionOverlayRenderer.from_settings(settings))
    view.bind(coordinator)

    preload_task: asyncio.Task[None] | None = None
    if preload:
        preload_task = asyncio.create_task(gateway.initialize())
        preload_task.add_done_callback(_log_preload_failure)

    try:
        yield ImageLens(
            settings=settings,
            preprocessor=ImagePreprocessor.from_settings(settings),
            gateway=gateway,
            coordinator=coordinator,
            view=view,
        )
    finally:
        logger.info("Shutting down ImageLens")
        await coordinator.aclose()
        if preload_task is not None and not preload_task.done():
            preload_task.cancel()
            await asyncio.gather(preload_task, return_exceptions=True)
        pool.shutdown(wait=False)
        manager.shutdown()
        logger.info("ImageLens shutdown complete")
