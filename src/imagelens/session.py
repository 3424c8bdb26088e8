"""Analysis sessions and the coordinator that drives them.

Exactly one session is current. Submitting a new image supersedes it: work
already in flight for the old session keeps running, but every result is
checked against the current session id on arrival and dropped if stale.

State machine::

    IDLE -> MODELS_LOADING -> ANALYZING -> COMPLETE
    IDLE -> ANALYZING
    MODELS_LOADING | ANALYZING -> FAILED
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from imagelens.errors import ErrorKind, GatewayNotReadyError, ImageLensError, InferenceError, InvalidTransitionError
from imagelens.models import AnalysisResult, ImageStats

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from imagelens.models import Classification, ColorSwatch, Detection, InferenceResult

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    IDLE = "idle"
    MODELS_LOADING = "models_loading"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    FAILED = "failed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.MODELS_LOADING, SessionState.ANALYZING}),
    SessionState.MODELS_LOADING: frozenset({SessionState.ANALYZING, SessionState.FAILED}),
    SessionState.ANALYZING: frozenset({SessionState.COMPLETE, SessionState.FAILED}),
    SessionState.COMPLETE: frozenset(),
    SessionState.FAILED: frozenset(),
}


class InferenceBackend(Protocol):
    """What the coordinator needs from the inference gateway."""

    @property
    def is_ready(self) -> bool: ...

    async def initialize(self) -> None: ...

    async def analyze(self, image: NDArray[np.uint8], *, tag: object = None) -> InferenceResult: ...


class AnalysisSession:
    """The lifecycle of one submitted image.

    Result fields read as empty until the session completes; they are then
    published together from a single ``AnalysisResult``.
    """

    def __init__(self, session_id: int, image: NDArray[np.uint8], geometry: ImageStats) -> None:
        self.session_id = session_id
        self.image = image
        self.geometry = geometry
        self.superseded = False
        self._state = SessionState.IDLE
        self._result: AnalysisResult | None = None
        self._error: ImageLensError | None = None

    def __repr__(self) -> str:
        return f"AnalysisSession(id={self.session_id}, state={self._state})"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def result(self) -> AnalysisResult | None:
        return self._result

    @property
    def detections(self) -> tuple[Detection, ...]:
        return self._result.detections if self._result else ()

    @property
    def classifications(self) -> tuple[Classification, ...]:
        return self._result.classifications if self._result else ()

    @property
    def palette(self) -> tuple[ColorSwatch, ...]:
        return self._result.palette if self._result else ()

    @property
    def error(self) -> ErrorKind | None:
        return self._error.kind if self._error else None

    @property
    def error_message(self) -> str | None:
        return self._error.user_message if self._error else None

    def transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"Session {self.session_id}: {self._state} -> {target} is not allowed")
        logger.debug("Session %d: %s -> %s", self.session_id, self._state, target)
        self._state = target

    def complete(self, result: AnalysisResult) -> None:
        self.transition(SessionState.COMPLETE)
        self._result = result

    def fail(self, error: ImageLensError) -> None:
        self.transition(SessionState.FAILED)
        self._error = error


class AnalysisCoordinator:
    """Owns the current session and runs color profiling and inference for it."""

    def __init__(
        self,
        gateway: InferenceBackend,
        profile: Callable[[NDArray[np.uint8]], tuple[ColorSwatch, ...]],
    ) -> None:
        self._gateway = gateway
        self._profile = profile
        self._ids = itertools.count(1)
        self._current: AnalysisSession | None = None
        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._listeners: list[Callable[[AnalysisSession], None]] = []

    @property
    def current(self) -> AnalysisSession | None:
        return self._current

    @property
    def state(self) -> SessionState:
        return self._current.state if self._current else SessionState.IDLE

    def add_listener(self, listener: Callable[[AnalysisSession], None]) -> None:
        """Call ``listener`` with the current session after each visible change."""
        self._listeners.append(listener)

    def submit(self, image: NDArray[np.uint8]) -> AnalysisSession:
        """Start analyzing ``image``, superseding the current session.

        Must be called from a running event loop.

        Raises:
            ValueError: If the image has no usable dimensions.
        """
        session = AnalysisSession(next(self._ids), image, ImageStats.from_image(image))
        previous, self._current = self._current, session
        if previous is not None:
            previous.superseded = True
            logger.debug("Session %d superseded by %d", previous.session_id, session.session_id)

        session.transition(SessionState.ANALYZING if self._gateway.is_ready else SessionState.MODELS_LOADING)
        task = asyncio.create_task(self._run(session), name=f"imagelens-session-{session.session_id}")
        self._tasks[session.session_id] = task
        task.add_done_callback(lambda _t, sid=session.session_id: self._tasks.pop(sid, None))
        logger.info(
            "Session %d submitted (%dx%d, %s)",
            session.session_id,
            session.geometry.width,
            session.geometry.height,
            session.state,
        )
        self._notify(session)
        return session

    async def wait(self, session: AnalysisSession | None = None) -> AnalysisSession | None:
        """Wait until the work for ``session`` (default: current) has settled."""
        target = session or self._current
        if target is None:
            return None
        task = self._tasks.get(target.session_id)
        if task is not None:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]
        return target

    async def aclose(self) -> None:
        """Cancel outstanding session work."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # -- Internal -----------------------------------------------------------

    def _is_current(self, session: AnalysisSession) -> bool:
        return self._current is not None and self._current.session_id == session.session_id

    def _notify(self, session: AnalysisSession) -> None:
        for listener in self._listeners:
            listener(session)

    async def _run(self, session: AnalysisSession) -> None:
        palette_task = asyncio.create_task(
            self._profile_colors(session), name=f"imagelens-palette-{session.session_id}"
        )
        try:
            await self._analyze(session, palette_task)
        finally:
            if not palette_task.done():
                palette_task.cancel()
                await asyncio.gather(palette_task, return_exceptions=True)

    async def _analyze(self, session: AnalysisSession, palette_task: asyncio.Task[tuple[ColorSwatch, ...]]) -> None:
        try:
            if session.state is SessionState.MODELS_LOADING:
                await self._gateway.initialize()
                if not self._is_current(session):
                    logger.debug("Session %d is stale after model load", session.session_id)
                    return
                session.transition(SessionState.ANALYZING)
                self._notify(session)
            inference = await self._gateway.analyze(session.image, tag=session.session_id)
            palette = await palette_task
        except (ImageLensError, GatewayNotReadyError) as exc:
            error = exc if isinstance(exc, ImageLensError) else InferenceError(str(exc))
            if not self._is_current(session):
                logger.debug("Discarding %s from stale session %d", error.kind, session.session_id)
                return
            logger.warning("Session %d failed: %s", session.session_id, error)
            session.fail(error)
            self._notify(session)
            return

        if not self._is_current(session) or inference.tag != session.session_id:
            logger.debug("Discarding results from stale session %d", session.session_id)
            return
        session.complete(AnalysisResult(inference=inference, palette=palette))
        logger.info(
            "Session %d complete: %d detections, %d classifications, %d colors",
            session.session_id,
            len(session.detections),
            len(session.classifications),
            len(session.palette),
        )
        self._notify(session)

    async def _profile_colors(self, session: AnalysisSession) -> tuple[ColorSwatch, ...]:
        try:
            return await asyncio.to_thread(self._profile, session.image)
        except Exception:
            logger.warning("Color profiling failed for session %d", session.session_id, exc_info=True)
            return ()
