import asyncio
from concurrent.futures import Executor
from typing import List, Optional

import numpy as np

from .exceptions import InferenceFailure
from .inference.base import Frame, RawOutput, ScaledDetection
from .inference.decode import DEFAULT_CONFIDENCE_THRESHOLD, OutputDecoder
from .inference.scaling import scale_detections
from .inference.tensor import TensorBuilder
from .session import ModelSession


class DetectionPipeline:
    """Frame -> tensor -> inference -> decode -> display-space detections for one session.

    ``prepare`` and ``finalize`` are synchronous; ``infer`` is the only step
    that suspends, running the engine call on ``executor``.
    """
    def __init__(
        self,
        session: ModelSession,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        executor: Optional[Executor] = None,
    ):
        self.session = session
        self.config = session.config
        self.threshold = threshold
        self.executor = executor
        self.tensor_builder = TensorBuilder(session.config)
        self.decoder = OutputDecoder(session.config, threshold)

    def prepare(self, frame: Optional[Frame]) -> np.ndarray:
        return self.tensor_builder.build(frame)

    async def infer(self, tensor: np.ndarray) -> RawOutput:
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(self.executor, self.session.engine.run, tensor)
        except InferenceFailure:
            raise
        except Exception as exc:
            raise InferenceFailure(f"Inference failed for model '{self.session.name}': {exc}") from exc
        if not isinstance(raw, RawOutput):
            raw = RawOutput.from_array(raw)
        return raw

    def finalize(self, raw: RawOutput, display_width: float, display_height: float) -> List[ScaledDetection]:
        detections = self.decoder.decode(raw)
        return scale_detections(detections, self.config, display_width, display_height)

    async def run(
        self,
        frame: Frame,
        display_width: Optional[float] = None,
        display_height: Optional[float] = None,
    ) -> List[ScaledDetection]:
        tensor = self.prepare(frame)
        raw = await self.infer(tensor)
        if display_width is None:
            display_width = frame.width
        if display_height is None:
            display_height = frame.height
        return self.finalize(raw, display_width, display_height)
