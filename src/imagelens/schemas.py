"""Pydantic schemas describing a session as the presentation layer sees it."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from imagelens.session import AnalysisSession


class BoxSchema(BaseModel):
    """Bounding box in source-image pixels."""

    x: float = Field(ge=0.0)
    y: float = Field(ge=0.0)
    width: float = Field(ge=0.0)
    height: float = Field(ge=0.0)


class DetectionSchema(BaseModel):
    """A single detected object."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    box: BoxSchema


class ClassificationSchema(BaseModel):
    """A single whole-image label; confidence is stored unrounded."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class SwatchSchema(BaseModel):
    """A dominant color."""

    rgb: tuple[int, int, int]
    hex: str
    percentage: int = Field(ge=0, le=100)


class GeometrySchema(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    aspect_ratio: float = Field(gt=0.0)


class SessionSnapshot(BaseModel):
    """Everything the presentation layer may render for one session."""

    session_id: int
    state: str = Field(description="'idle', 'models_loading', 'analyzing', 'complete' or 'failed'")
    geometry: GeometrySchema
    detections: list[DetectionSchema]
    classifications: list[ClassificationSchema]
    palette: list[SwatchSchema]
    error: str | None = None
    error_message: str | None = None


def snapshot(session: AnalysisSession) -> SessionSnapshot:
    """Capture a session's current state as a serializable snapshot."""
    return SessionSnapshot(
        session_id=session.session_id,
        state=str(session.state),
        geometry=GeometrySchema(
            width=session.geometry.width,
            height=session.geometry.height,
            aspect_ratio=session.geometry.aspect_ratio,
        ),
        detections=[
            DetectionSchema(
                label=d.label,
                confidence=d.confidence,
                box=BoxSchema(x=d.box.x, y=d.box.y, width=d.box.width, height=d.box.height),
            )
            for d in session.detections
        ],
        classifications=[ClassificationSchema(label=c.label, confidence=c.confidence) for c in session.classifications],
        palette=[SwatchSchema(rgb=s.rgb, hex=s.hex, percentage=s.percentage) for s in session.palette],
        error=str(session.error) if session.error else None,
        error_message=session.error_message,
    )
