from typing import List, Optional, Tuple

import time

import numpy as np

from .base import InferenceEngine, RawOutput
from ..exceptions import InferenceFailure
from ..utils.logging import get_logger


class OnnxDetectionEngine(InferenceEngine):
    """ONNX Runtime session wrapper that returns the first graph output untouched."""
    def __init__(
        self,
        model_path: str,
        device: str = "auto",
        log_severity_level: int = 2,
        debug_log_raw_output: bool = False,
        debug_log_raw_interval_seconds: float = 2.0,
        debug_log_raw_values: int = 12,
    ):
        self.model_path = model_path
        self.device = device
        self.log_severity_level = log_severity_level
        self.debug_log_raw_output = debug_log_raw_output
        self.debug_log_raw_interval_seconds = debug_log_raw_interval_seconds
        self.debug_log_raw_values = debug_log_raw_values
        self.session = None
        self.input_name = None
        self.output_name = None
        self.input_shape: List = []
        self.input_dtype = np.float32
        self._last_raw_log_ts = 0.0
        self.logger = get_logger("inference.onnx")

    def load(self) -> None:
        import onnxruntime as ort

        providers = self._resolve_providers(self.device, ort.get_available_providers())
        session_options = ort.SessionOptions()
        session_options.log_severity_level = self.log_severity_level
        self.session = ort.InferenceSession(self.model_path, sess_options=session_options, providers=providers)
        model_input = self.session.get_inputs()[0]
        self.input_name = model_input.name
        self.input_shape = list(model_input.shape)
        self.input_dtype = self._resolve_input_dtype(model_input.type)
        self.output_name = self.session.get_outputs()[0].name
        self.logger.info(
            "Loaded ONNX model %s (input=%s%s output=%s providers=%s)",
            self.model_path,
            self.input_name,
            self.input_shape,
            self.output_name,
            providers,
        )

    def run(self, tensor: np.ndarray) -> RawOutput:
        if self.session is None:
            raise InferenceFailure("ONNX engine is not loaded")
        feed = tensor.astype(self.input_dtype, copy=False)
        try:
            outputs = self.session.run([self.output_name], {self.input_name: feed})
        except Exception as exc:
            raise InferenceFailure(f"ONNX Runtime call failed: {exc}") from exc
        raw = RawOutput.from_array(outputs[0])
        self._maybe_log_raw_output(raw)
        return raw

    def declared_input_size(self) -> Optional[Tuple[int, int]]:
        if len(self.input_shape) != 4:
            return None
        height, width = self.input_shape[2], self.input_shape[3]
        if isinstance(height, int) and isinstance(width, int) and height > 0 and width > 0:
            return width, height
        return None

    def close(self) -> None:
        self.session = None

    def _resolve_input_dtype(self, type_name: str):
        if not type_name:
            return np.float32
        if "float16" in type_name:
            return np.float16
        return np.float32

    def _resolve_providers(self, device: str, available_providers) -> List[str]:
        value = (device or "auto").lower()
        if value.startswith("cpu"):
            return ["CPUExecutionProvider"]
        if "CUDAExecutionProvider" in available_providers:
            return ["CUDAExecutionProvider", "CPUExecutionProvider"]
        if value.startswith("cuda") or value.startswith("gpu"):
            self.logger.warning("CUDAExecutionProvider unavailable; falling back to CPUExecutionProvider")
        return ["CPUExecutionProvider"]

    def _maybe_log_raw_output(self, raw: RawOutput) -> None:
        if not self.debug_log_raw_output:
            return

        now = time.time()
        if now - self._last_raw_log_ts < self.debug_log_raw_interval_seconds:
            return
        self._last_raw_log_ts = now

        if len(raw) == 0:
            self.logger.info("Raw output shape=%s (empty)", raw.shape)
            return
        stats = {
            "min": float(np.min(raw.data)),
            "max": float(np.max(raw.data)),
            "mean": float(np.mean(raw.data)),
        }
        sample = [round(float(v), 4) for v in raw.data[: self.debug_log_raw_values]]
        self.logger.info("Raw output shape=%s stats=%s head=%s", raw.shape, stats, sample)
