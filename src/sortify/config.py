"""Environment-based configuration for Sortify."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SORTIFY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SORTIFY_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model artifacts (None repo = local files only)
    models_dir: str = "models"
    models_repo_id: str | None = None
    presence_model: str = "model_sampah.onnx"
    category_model: str = "sortify_model-1.onnx"

    # Presence gate
    gate_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # Runtime bootstrap poll
    bootstrap_max_attempts: int = Field(default=50, ge=1)
    bootstrap_interval: float = Field(default=0.1, ge=0.0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Camera
    camera_enabled: bool = True
    camera_index: int = Field(default=0, ge=0)
    camera_width: int = Field(default=1280, ge=1)
    camera_height: int = Field(default=720, ge=1)

    # Scan persistence (None = disabled)
    persistence_url: str | None = None
    persistence_timeout: float = Field(default=10.0, gt=0.0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
