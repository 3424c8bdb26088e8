"""Environment-based configuration for ImageLens."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from IMAGELENS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGELENS_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"
    models_dir: str = "models"

    # Model selection (fixed for the process lifetime)
    detection_model: str = "yolos_tiny"
    classification_model: str = "mobilenet_v2"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency and timeouts (seconds)
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)
    model_load_timeout: float = Field(default=300.0, gt=0)
    inference_timeout: float = Field(default=30.0, gt=0)

    # Inference output shaping
    detection_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    max_detections: int = Field(default=20, ge=1)
    classification_top_k: int = Field(default=3, ge=1)

    # Color profiling
    palette_max_side: int = Field(default=100, ge=1)
    palette_step: int = Field(default=16, ge=1, le=128)
    palette_size: int = Field(default=5, ge=1)

    # Overlay rendering
    overlay_line_width: int = Field(default=3, ge=1)
    overlay_label_height: int = Field(default=25, ge=1)
    overlay_font_size: int = Field(default=16, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
