import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, Union

from ..exceptions import ConfigurationError


@dataclass
class AppSettings:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_format: str = "color"
    suppress_cv_warnings: bool = False


@dataclass
class FocusConfig:
    enabled: bool = False
    min: float = 0.0
    max: float = 255.0
    step: float = 5.0


@dataclass
class CameraConfig:
    source: Union[int, str] = 0
    width: int = 0
    height: int = 0
    first_frame_timeout_seconds: float = 10.0
    focus: FocusConfig = field(default_factory=FocusConfig)


@dataclass
class ModelsConfig:
    models_dir: str = "models"
    default_model: Optional[str] = None
    default_input_size: Tuple[int, int] = (640, 640)
    default_output_layout: str = "interleaved"
    verify_checksums: bool = True


@dataclass
class InferenceConfig:
    engine: str = "onnx"
    device: str = "auto"
    confidence_threshold: float = 0.5
    onnx_log_severity_level: int = 2
    debug_log_raw_output: bool = False
    debug_log_raw_interval_seconds: float = 2.0
    debug_log_raw_values: int = 12
    debug_log_detections: bool = False
    debug_log_interval_seconds: float = 2.0
    debug_log_max_detections: int = 5


@dataclass
class LoopConfig:
    display_fps: float = 30.0
    max_consecutive_failures: int = 0


@dataclass
class StreamingConfig:
    fps_limit: float = 15.0
    jpeg_quality: int = 80
    box_color: Tuple[int, int, int] = (0, 255, 0)
    line_thickness: int = 3
    font_scale: float = 0.6


@dataclass
class AppConfig:
    app: AppSettings = field(default_factory=AppSettings)
    camera: CameraConfig = field(default_factory=CameraConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)


def _load_json(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be an object: {path}")
    return data


def _pair(value, name: str) -> Tuple[int, int]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigurationError(f"{name} must be a [width, height] pair")
    return int(value[0]), int(value[1])


def default_config() -> AppConfig:
    return AppConfig()


def parse_config(data: dict) -> AppConfig:
    app_data = data.get("app", {})
    app = AppSettings(
        host=app_data.get("host", AppSettings.host),
        port=int(app_data.get("port", AppSettings.port)),
        log_level=app_data.get("log_level", AppSettings.log_level),
        log_format=app_data.get("log_format", AppSettings.log_format),
        suppress_cv_warnings=bool(app_data.get("suppress_cv_warnings", False)),
    )

    camera_raw = data.get("camera", {})
    focus_raw = camera_raw.get("focus", {})
    focus = FocusConfig(
        enabled=bool(focus_raw.get("enabled", False)),
        min=float(focus_raw.get("min", FocusConfig.min)),
        max=float(focus_raw.get("max", FocusConfig.max)),
        step=float(focus_raw.get("step", FocusConfig.step)),
    )
    if focus.enabled and (focus.max <= focus.min or focus.step <= 0):
        raise ConfigurationError("camera.focus needs min < max and a positive step")
    camera = CameraConfig(
        source=camera_raw.get("source", 0),
        width=int(camera_raw.get("width", 0)),
        height=int(camera_raw.get("height", 0)),
        first_frame_timeout_seconds=float(camera_raw.get("first_frame_timeout_seconds", 10.0)),
        focus=focus,
    )

    models_raw = data.get("models", {})
    models = ModelsConfig(
        models_dir=models_raw.get("models_dir", ModelsConfig.models_dir),
        default_model=models_raw.get("default_model"),
        default_input_size=_pair(models_raw.get("default_input_size", [640, 640]), "models.default_input_size"),
        default_output_layout=models_raw.get("default_output_layout", ModelsConfig.default_output_layout),
        verify_checksums=bool(models_raw.get("verify_checksums", True)),
    )

    inference_raw = data.get("inference", {})
    inference = InferenceConfig(
        engine=inference_raw.get("engine", InferenceConfig.engine),
        device=inference_raw.get("device", InferenceConfig.device),
        confidence_threshold=float(inference_raw.get("confidence_threshold", 0.5)),
        onnx_log_severity_level=int(inference_raw.get("onnx_log_severity_level", 2)),
        debug_log_raw_output=bool(inference_raw.get("debug_log_raw_output", False)),
        debug_log_raw_interval_seconds=float(inference_raw.get("debug_log_raw_interval_seconds", 2.0)),
        debug_log_raw_values=int(inference_raw.get("debug_log_raw_values", 12)),
        debug_log_detections=bool(inference_raw.get("debug_log_detections", False)),
        debug_log_interval_seconds=float(inference_raw.get("debug_log_interval_seconds", 2.0)),
        debug_log_max_detections=int(inference_raw.get("debug_log_max_detections", 5)),
    )
    if not 0.0 <= inference.confidence_threshold <= 1.0:
        raise ConfigurationError("inference.confidence_threshold must be within [0, 1]")

    loop_raw = data.get("loop", {})
    loop = LoopConfig(
        display_fps=float(loop_raw.get("display_fps", 30.0)),
        max_consecutive_failures=int(loop_raw.get("max_consecutive_failures", 0)),
    )
    if loop.display_fps <= 0:
        raise ConfigurationError("loop.display_fps must be positive")

    streaming_raw = data.get("streaming", {})
    color = streaming_raw.get("box_color", [0, 255, 0])
    streaming = StreamingConfig(
        fps_limit=float(streaming_raw.get("fps_limit", 15.0)),
        jpeg_quality=int(streaming_raw.get("jpeg_quality", 80)),
        box_color=(int(color[0]), int(color[1]), int(color[2])),
        line_thickness=int(streaming_raw.get("line_thickness", 3)),
        font_scale=float(streaming_raw.get("font_scale", 0.6)),
    )

    return AppConfig(
        app=app,
        camera=camera,
        models=models,
        inference=inference,
        loop=loop,
        streaming=streaming,
    )


def load_config(path: str) -> AppConfig:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    return parse_config(_load_json(config_path))
