from .onnx_engine import OnnxDetectionEngine
from ..utils.config import InferenceConfig


def create_engine(model_path: str, config: InferenceConfig):
    engine_name = config.engine.lower()
    if engine_name in {"onnx", "onnxruntime"}:
        return OnnxDetectionEngine(
            model_path=model_path,
            device=config.device,
            log_severity_level=config.onnx_log_severity_level,
            debug_log_raw_output=config.debug_log_raw_output,
            debug_log_raw_interval_seconds=config.debug_log_raw_interval_seconds,
            debug_log_raw_values=config.debug_log_raw_values,
        )
    raise ValueError(f"Unsupported inference engine: {config.engine}")
