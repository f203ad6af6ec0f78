from typing import Iterable, List

from .base import CenterBox, Detection, Rect, ScaledDetection
from ..session import ModelConfig


def scale_box(
    box: CenterBox,
    model_width: float,
    model_height: float,
    display_width: float,
    display_height: float,
) -> Rect:
    """Map a center-form box in model-input pixels to a corner-form display rect.

    NaN and infinite inputs propagate into the result unchanged; the overlay
    renderer is the stage that refuses to draw them.
    """
    return Rect(
        x=(box.center_x - box.width / 2) / model_width * display_width,
        y=(box.center_y - box.height / 2) / model_height * display_height,
        w=box.width / model_width * display_width,
        h=box.height / model_height * display_height,
    )


def label_for(config: ModelConfig, class_id: int) -> str:
    if 0 <= class_id < config.num_classes:
        return config.labels[class_id]
    return f"class_{class_id}"


def scale_detections(
    detections: Iterable[Detection],
    config: ModelConfig,
    display_width: float,
    display_height: float,
) -> List[ScaledDetection]:
    return [
        ScaledDetection(
            label=label_for(config, det.class_id),
            confidence=det.confidence,
            rect=scale_box(det.box, config.input_width, config.input_height, display_width, display_height),
            class_id=det.class_id,
        )
        for det in detections
    ]
