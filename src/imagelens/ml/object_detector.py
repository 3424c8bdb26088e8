"""Object detection capability.

Implementations: YOLOS-tiny (default) and DETR ResNet-50, both set-prediction
detectors exported to ONNX with ``logits`` and ``pred_boxes`` outputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from imagelens.ml.model_manager import ModelTask, get_spec
from imagelens.ml.preprocessing import resize_normalize

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from imagelens.config import Settings
    from imagelens.ml.model_manager import ModelManager, ModelSpec

logger = logging.getLogger(__name__)

_PLACEHOLDER_LABEL = "N/A"


@dataclass(frozen=True)
class RawDetection:
    """Raw detection result before validation.

    ``box`` is ``(x, y, width, height)`` in pixel space of the original image.
    """

    box: tuple[float, float, float, float]
    label: str
    score: float


class ObjectDetector(Protocol):
    """Protocol for object detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: NDArray[np.uint8]) -> list[RawDetection]:
        """Detect objects in an image.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            List of raw detections with boxes, labels and scores.
        """
        ...


def softmax(logits: NDArray[np.float32], axis: int = -1) -> NDArray[np.float32]:
    shifted = logits - np.max(logits, axis=axis, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=axis, keepdims=True)


class OnnxObjectDetector:
    """Runs a DETR-style ONNX detector."""

    def __init__(
        self,
        spec: ModelSpec,
        session: InferenceSession,
        labels: dict[int, str],
        threshold: float = 0.5,
        max_detections: int = 20,
    ) -> None:
        if spec.task is not ModelTask.OBJECT_DETECTION:
            raise ValueError(f"Model '{spec.name}' is not an object detector")
        self._spec = spec
        self._session = session
        self._labels = labels
        self._threshold = threshold
        self._max_detections = max_detections
        self._input_names = [inp.name for inp in session.get_inputs()]
        self._output_names = [out.name for out in session.get_outputs()]

    @classmethod
    def load(cls, manager: ModelManager, settings: Settings) -> OnnxObjectDetector:
        """Download (if needed) and open the configured detection model."""
        spec = get_spec(settings.detection_model)
        return cls(
            spec,
            manager.get_session(spec.name),
            manager.load_labels(spec.name),
            threshold=settings.detection_threshold,
            max_detections=settings.max_detections,
        )

    @property
    def model_name(self) -> str:
        return self._spec.name

    def detect(self, image: NDArray[np.uint8]) -> list[RawDetection]:
        height, width = image.shape[:2]
        pixel_values = resize_normalize(image, self._spec.input_size, self._spec.mean, self._spec.std)

        feeds: dict[str, NDArray[np.generic]] = {}
        for name in self._input_names:
            if name == "pixel_mask":
                feeds[name] = np.ones((1, *pixel_values.shape[2:]), dtype=np.int64)
            else:
                feeds[name] = pixel_values
        outputs = dict(zip(self._output_names, self._session.run(None, feeds), strict=True))

        # The last class column is "no object".
        probs = softmax(outputs["logits"][0])[:, :-1]
        class_ids = probs.argmax(axis=-1)
        scores = probs.max(axis=-1)
        boxes = outputs["pred_boxes"][0]

        detections: list[RawDetection] = []
        for query in np.argsort(-scores, kind="stable"):
            score = float(scores[query])
            if score < self._threshold or len(detections) >= self._max_detections:
                break
            label = self._labels.get(int(class_ids[query]), _PLACEHOLDER_LABEL)
            if label == _PLACEHOLDER_LABEL:
                continue
            cx, cy, bw, bh = (float(v) for v in boxes[query])
            detections.append(
                RawDetection(
                    box=((cx - bw / 2) * width, (cy - bh / 2) * height, bw * width, bh * height),
                    label=label,
                    score=score,
                )
            )
        return detections
