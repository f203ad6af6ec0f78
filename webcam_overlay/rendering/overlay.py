import math
from typing import Iterable, List, Tuple

import cv2
import numpy as np

from ..inference.base import Frame, Rect, ScaledDetection

_TO_BGR = {
    "RGB": cv2.COLOR_RGB2BGR,
    "RGBA": cv2.COLOR_RGBA2BGR,
    "BGRA": cv2.COLOR_BGRA2BGR,
}


def format_label(det: ScaledDetection) -> str:
    return f"{det.label} ({det.confidence * 100:.1f}%)"


def label_origin(rect: Rect) -> Tuple[int, int]:
    """Text goes just above the box, or 20px from the top when the box touches the top edge."""
    x = int(round(rect.x))
    if rect.y > 10:
        return x, int(round(rect.y - 5))
    return x, 20


_INT32_MAX = 2**31 - 1


def is_drawable(rect: Rect) -> bool:
    """All corners must be finite and fit the int32 pixel coordinates OpenCV draws with."""
    corners = (rect.x, rect.y, rect.x + rect.w, rect.y + rect.h)
    return all(math.isfinite(v) and abs(v) < _INT32_MAX for v in corners)


def to_bgr(frame: Frame) -> np.ndarray:
    order = frame.channel_order.upper()
    if order == "BGR":
        return frame.pixels.copy()
    return cv2.cvtColor(frame.pixels, _TO_BGR[order])


class OverlayRenderer:
    """Holds the overlay of the latest finished tick and draws it onto frames.

    ``render`` clears the previous overlay before taking the new detections,
    so the overlay always reflects exactly one tick.
    """
    def __init__(
        self,
        color: Tuple[int, int, int] = (0, 255, 0),
        thickness: int = 3,
        font_scale: float = 0.6,
    ):
        self.color = tuple(color)
        self.thickness = thickness
        self.font_scale = font_scale
        self.render_calls = 0
        self.version = 0
        self._detections: List[ScaledDetection] = []

    def clear(self) -> None:
        self._detections = []
        self.version += 1

    def render(self, detections: Iterable[ScaledDetection]) -> None:
        self.clear()
        self._detections = list(detections)
        self.render_calls += 1

    def current(self) -> List[ScaledDetection]:
        return list(self._detections)

    def compose(self, frame: Frame) -> np.ndarray:
        """Return a BGR copy of ``frame`` with the current overlay drawn on it."""
        image = to_bgr(frame)
        for det in self._detections:
            self.draw_detection(image, det)
        return image

    def draw_detection(self, image: np.ndarray, det: ScaledDetection) -> bool:
        rect = det.rect
        if not is_drawable(rect):
            return False
        top_left = (int(round(rect.x)), int(round(rect.y)))
        bottom_right = (int(round(rect.x + rect.w)), int(round(rect.y + rect.h)))
        cv2.rectangle(image, top_left, bottom_right, self.color, self.thickness)
        cv2.putText(
            image,
            format_label(det),
            label_origin(rect),
            cv2.FONT_HERSHEY_SIMPLEX,
            self.font_scale,
            self.color,
            max(1, self.thickness - 1),
        )
        return True
