from typing import Optional, Tuple

import cv2
import numpy as np

from .base import Frame
from ..exceptions import FrameUnavailable
from ..session import ModelConfig

_TO_RGB = {
    "BGR": cv2.COLOR_BGR2RGB,
    "BGRA": cv2.COLOR_BGRA2RGB,
    "RGBA": cv2.COLOR_RGBA2RGB,
}


def _to_rgb(frame: Frame) -> np.ndarray:
    pixels = frame.pixels
    order = frame.channel_order.upper()
    channels = pixels.shape[2] if pixels.ndim == 3 else 1
    if channels != len(order):
        raise FrameUnavailable(f"Frame has {channels} channels but order is {frame.channel_order}")
    if order == "RGB":
        return pixels
    code = _TO_RGB.get(order)
    if code is None:
        raise FrameUnavailable(f"Unsupported channel order: {frame.channel_order}")
    return cv2.cvtColor(pixels, code)


def resize_stretch(image: np.ndarray, new_size: Tuple[int, int]) -> np.ndarray:
    """Resize to ``(width, height)`` without padding (aspect ratio may change)."""
    new_w, new_h = new_size
    orig_h, orig_w = image.shape[:2]
    if (orig_w, orig_h) == (new_w, new_h):
        return image
    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)


def build_tensor(frame: Optional[Frame], config: ModelConfig, out: Optional[np.ndarray] = None) -> np.ndarray:
    """Turn a frame into the ``[1, 3, H, W]`` float32 RGB tensor in [0, 1].

    Channel planes are ordered R, G, B and each plane is row-major, so the
    flattened tensor is all reds, then all greens, then all blues.
    """
    if frame is None or frame.pixels is None or frame.pixels.size == 0:
        raise FrameUnavailable("No frame available")
    if frame.width <= 0 or frame.height <= 0:
        raise FrameUnavailable("Frame has no pixels")

    rgb = _to_rgb(frame)
    resized = resize_stretch(rgb, (config.input_width, config.input_height))
    chw = np.transpose(resized, (2, 0, 1))
    if out is None:
        out = np.empty((1, 3, config.input_height, config.input_width), dtype=np.float32)
    np.divide(chw, 255.0, out=out[0], dtype=np.float32)
    return out


class TensorBuilder:
    """Builds tensors for one model into a reused scratch buffer.

    The returned array is overwritten by the next ``build`` call.
    """
    def __init__(self, config: ModelConfig):
        self.config = config
        self._buffer = np.empty(self.shape, dtype=np.float32)

    @property
    def shape(self) -> Tuple[int, int, int, int]:
        return 1, 3, self.config.input_height, self.config.input_width

    def build(self, frame: Optional[Frame]) -> np.ndarray:
        return build_tensor(frame, self.config, out=self._buffer)
