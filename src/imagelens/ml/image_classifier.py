"""Whole-image classification capability.

Implementations: MobileNetV2 (default) and ViT-Base/16, ImageNet classifiers
exported to ONNX with a single ``logits`` output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from imagelens.ml.model_manager import ModelTask, get_spec
from imagelens.ml.object_detector import softmax
from imagelens.ml.preprocessing import resize_normalize

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from imagelens.config import Settings
    from imagelens.ml.model_manager import ModelManager, ModelSpec


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        """Classify an image and return ranked labels.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            List of classification results sorted by confidence (descending).
        """
        ...


class OnnxImageClassifier:
    """Runs an ONNX image classifier and keeps the top-k labels."""

    def __init__(self, spec: ModelSpec, session: InferenceSession, labels: dict[int, str], top_k: int = 3) -> None:
        if spec.task is not ModelTask.IMAGE_CLASSIFICATION:
            raise ValueError(f"Model '{spec.name}' is not an image classifier")
        self._spec = spec
        self._session = session
        self._labels = labels
        self._top_k = top_k
        self._input_name = session.get_inputs()[0].name

    @classmethod
    def load(cls, manager: ModelManager, settings: Settings) -> OnnxImageClassifier:
        """Download (if needed) and open the configured classification model."""
        spec = get_spec(settings.classification_model)
        return cls(
            spec,
            manager.get_session(spec.name),
            manager.load_labels(spec.name),
            top_k=settings.classification_top_k,
        )

    @property
    def model_name(self) -> str:
        return self._spec.name

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        pixel_values = resize_normalize(image, self._spec.input_size, self._spec.mean, self._spec.std)
        logits = self._session.run(None, {self._input_name: pixel_values})[0][0]
        probs = softmax(np.asarray(logits, dtype=np.float32))
        top = np.argsort(-probs, kind="stable")[: self._top_k]
        return [
            ClassificationResult(label=self._labels.get(int(i), str(int(i))), confidence=float(probs[i])) for i in top
        ]
