"""Model manager: download, load and cache ONNX models and their label maps.

Handles downloading model files from HuggingFace, creating and caching ONNX
InferenceSessions and reading label maps from each model's ``config.json``.
Sessions are held for the manager's lifetime; there is no idle eviction.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from imagelens.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is downloaded and return its file path."""
        ...

    def load_labels(self, model_name: str) -> dict[int, str]:
        """Return the model's class index to label mapping."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    OBJECT_DETECTION = "object_detection"
    IMAGE_CLASSIFICATION = "image_classification"


IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)
HALF_MEAN = (0.5, 0.5, 0.5)
HALF_STD = (0.5, 0.5, 0.5)


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX model."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    labels_filename: str
    task: ModelTask
    license: str
    input_size: tuple[int, int]
    mean: tuple[float, float, float]
    std: tuple[float, float, float]


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "yolos_tiny": ModelSpec(
        name="yolos_tiny",
        repo_id="Xenova/yolos-tiny",
        filename="model.onnx",
        subfolder="onnx",
        labels_filename="config.json",
        task=ModelTask.OBJECT_DETECTION,
        license="Apache-2.0",
        input_size=(512, 512),
        mean=IMAGENET_MEAN,
        std=IMAGENET_STD,
    ),
    "detr_resnet50": ModelSpec(
        name="detr_resnet50",
        repo_id="Xenova/detr-resnet-50",
        filename="model.onnx",
        subfolder="onnx",
        labels_filename="config.json",
        task=ModelTask.OBJECT_DETECTION,
        license="Apache-2.0",
        input_size=(800, 800),
        mean=IMAGENET_MEAN,
        std=IMAGENET_STD,
    ),
    "mobilenet_v2": ModelSpec(
        name="mobilenet_v2",
        repo_id="Xenova/mobilenet_v2_1.0_224",
        filename="model.onnx",
        subfolder="onnx",
        labels_filename="config.json",
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Other (see model card)",
        input_size=(224, 224),
        mean=HALF_MEAN,
        std=HALF_STD,
    ),
    "vit_base": ModelSpec(
        name="vit_base",
        repo_id="Xenova/vit-base-patch16-224",
        filename="model.onnx",
        subfolder="onnx",
        labels_filename="config.json",
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
        input_size=(224, 224),
        mean=HALF_MEAN,
        std=HALF_STD,
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Downloads, loads and caches ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Download a model from HuggingFace if not already present locally."""
        spec = get_spec(model_name)

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir / spec.name),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def load_labels(self, model_name: str) -> dict[int, str]:
        """Read the ``id2label`` table from the model's config file."""
        spec = get_spec(model_name)
        config_path = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.labels_filename,
                local_dir=str(self._models_dir / spec.name),
            )
        )
        config = json.loads(config_path.read_text(encoding="utf-8"))
        try:
            return {int(index): str(label) for index, label in config["id2label"].items()}
        except (KeyError, AttributeError, ValueError):
            raise ValueError(f"No usable id2label table in {config_path}") from None

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                return existing
            self._sessions[model_name] = session
            logger.info("Loaded session for %s", model_name)
            return session

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
