from typing import List

import numpy as np

from .base import CenterBox, Detection, RawOutput
from ..exceptions import MalformedOutput
from ..session import ModelConfig, OutputLayout

DEFAULT_CONFIDENCE_THRESHOLD = 0.5


def _interleaved_records(raw: RawOutput, num_classes: int) -> np.ndarray:
    stride = 4 + num_classes
    length = len(raw)
    if length % stride != 0:
        raise MalformedOutput(
            f"Output length {length} is not a multiple of the record size {stride} "
            f"(4 box values + {num_classes} classes)"
        )
    return raw.data.reshape(-1, stride)


def _planar_records(raw: RawOutput, num_classes: int) -> np.ndarray:
    if len(raw.shape) < 2:
        raise MalformedOutput(f"Planar output needs [attributes, predictions] dims, got shape {raw.shape}")
    num_attributes, num_predictions = raw.shape[-2], raw.shape[-1]
    if num_attributes != 4 + num_classes:
        raise MalformedOutput(
            f"Output has {num_attributes} attributes per prediction, expected {4 + num_classes} "
            f"for {num_classes} classes"
        )
    size = num_attributes * num_predictions
    if len(raw) < size:
        raise MalformedOutput(f"Output holds {len(raw)} values, shape {raw.shape} needs {size}")
    # attribute a of candidate i sits at a * num_predictions + i
    return raw.data[:size].reshape(num_attributes, num_predictions).T


def candidate_records(raw: RawOutput, config: ModelConfig) -> np.ndarray:
    """View the raw output as one row per candidate: ``[cx, cy, w, h, p_0 .. p_n-1]``."""
    num_classes = config.num_classes
    if num_classes <= 0:
        raise MalformedOutput("Model has no classes")
    if config.output_layout is OutputLayout.INTERLEAVED:
        return _interleaved_records(raw, num_classes)
    if config.output_layout is OutputLayout.PLANAR:
        return _planar_records(raw, num_classes)
    raise MalformedOutput(f"Unsupported output layout: {config.output_layout}")


def decode_output(
    raw: RawOutput,
    config: ModelConfig,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> List[Detection]:
    records = candidate_records(raw, config)
    if records.shape[0] == 0:
        return []

    class_scores = records[:, 4:]
    # argmax keeps the first index on ties
    class_ids = np.argmax(class_scores, axis=1)
    scores = class_scores[np.arange(len(class_scores)), class_ids]
    keep = np.flatnonzero(scores > threshold)

    detections: List[Detection] = []
    for idx in keep:
        cx, cy, w, h = records[idx, :4]
        detections.append(
            Detection(
                class_id=int(class_ids[idx]),
                confidence=float(scores[idx]),
                box=CenterBox(float(cx), float(cy), float(w), float(h)),
            )
        )
    return detections


class OutputDecoder:
    def __init__(self, config: ModelConfig, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD):
        self.config = config
        self.threshold = threshold

    def decode(self, raw: RawOutput) -> List[Detection]:
        return decode_output(raw, self.config, self.threshold)
