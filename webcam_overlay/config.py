"""
Environment overrides for the overlay configuration.

Values set here (``WEBCAM_OVERLAY_*`` variables or a ``.env`` file) win over
the JSON config file.
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.config import AppConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WEBCAM_OVERLAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Application Settings
    host: Optional[str] = Field(default=None)
    port: Optional[int] = Field(default=None)
    log_level: Optional[str] = Field(default=None)
    log_format: Optional[str] = Field(default=None)

    # Camera
    camera_source: Optional[str] = Field(default=None)

    # Models
    models_dir: Optional[str] = Field(default=None)
    default_model: Optional[str] = Field(default=None)

    # Inference
    device: Optional[str] = Field(default=None)
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    # Loop
    display_fps: Optional[float] = Field(default=None, gt=0.0)


def _camera_source(value: str):
    value = value.strip()
    if value.isdigit():
        return int(value)
    return value


def apply_settings_overrides(config: AppConfig, settings: Settings) -> AppConfig:
    if settings.host:
        config.app.host = settings.host
    if settings.port is not None:
        config.app.port = settings.port
    if settings.log_level:
        config.app.log_level = settings.log_level
    if settings.log_format:
        config.app.log_format = settings.log_format
    if settings.camera_source:
        config.camera.source = _camera_source(settings.camera_source)
    if settings.models_dir:
        config.models.models_dir = settings.models_dir
    if settings.default_model:
        config.models.default_model = settings.default_model
    if settings.device:
        config.inference.device = settings.device
    if settings.confidence_threshold is not None:
        config.inference.confidence_threshold = settings.confidence_threshold
    if settings.display_fps is not None:
        config.loop.display_fps = settings.display_fps
    return config
