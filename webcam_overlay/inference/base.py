from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class Frame:
    """One captured video frame; ``pixels`` is an ``H x W x C`` uint8 array."""
    pixels: np.ndarray
    channel_order: str = "BGR"

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(frozen=True)
class RawOutput:
    """Engine result: a flat float buffer plus the shape the engine reported."""
    data: np.ndarray
    shape: Tuple[int, ...]

    @classmethod
    def from_array(cls, output) -> "RawOutput":
        array = np.asarray(output, dtype=np.float32)
        return cls(data=array.reshape(-1), shape=tuple(int(dim) for dim in array.shape))

    def __len__(self) -> int:
        return int(self.data.shape[0])


@dataclass(frozen=True)
class CenterBox:
    center_x: float
    center_y: float
    width: float
    height: float


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    w: float
    h: float

    def as_list(self):
        return [self.x, self.y, self.w, self.h]


@dataclass(frozen=True)
class Detection:
    class_id: int
    confidence: float
    box: CenterBox


@dataclass(frozen=True)
class ScaledDetection:
    label: str
    confidence: float
    rect: Rect
    class_id: int = -1

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "class_id": self.class_id,
            "confidence": self.confidence,
            "rect": self.rect.as_list(),
        }


class InferenceEngine:
    input_name: Optional[str] = None
    output_name: Optional[str] = None

    def load(self) -> None:
        raise NotImplementedError

    def run(self, tensor: np.ndarray) -> RawOutput:
        raise NotImplementedError

    def declared_input_size(self) -> Optional[Tuple[int, int]]:
        """Return ``(width, height)`` when the graph declares a static input shape."""
        return None

    def close(self) -> None:
        pass
