import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import cv2

from ..exceptions import CameraAccessFailure, FrameUnavailable
from ..inference.base import Frame
from ..utils.config import CameraConfig
from ..utils.logging import get_logger


@dataclass(frozen=True)
class FocusRange:
    min: float
    max: float
    step: float

    def to_dict(self) -> dict:
        return {"min": self.min, "max": self.max, "step": self.step}


class CameraState:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.connected = False
        self.last_frame_ts = 0.0
        self.last_error: Optional[str] = None
        self.fps = 0.0
        self.frame_size: Optional[tuple] = None

    def update(self, **kwargs) -> None:
        with self._lock:
            for key, value in kwargs.items():
                setattr(self, key, value)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "connected": self.connected,
                "last_frame_ts": self.last_frame_ts,
                "last_error": self.last_error,
                "fps": self.fps,
                "frame_size": list(self.frame_size) if self.frame_size else None,
            }


class CameraSource:
    """Local camera read on a background thread; ``read`` returns the newest frame."""
    def __init__(
        self,
        config: CameraConfig,
        capture_factory: Optional[Callable] = None,
        min_backoff: float = 0.05,
        max_backoff: float = 2.0,
    ) -> None:
        self.config = config
        self.capture_factory = capture_factory or cv2.VideoCapture
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff
        self.state = CameraState()
        self.focus_value: Optional[float] = None
        self._cap = None
        self._cap_lock = threading.Lock()
        self._frame_lock = threading.Lock()
        self._frame: Optional[Frame] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = get_logger("camera")

    @property
    def opened(self) -> bool:
        return self._cap is not None

    def open(self) -> None:
        source = self.config.source
        cap = self.capture_factory(source)
        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            self.state.update(connected=False, last_error="open_failed")
            raise CameraAccessFailure(source, "no device available or permission denied")

        if self.config.width > 0 and self.config.height > 0:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)

        self._cap = cap
        self._stop_event.clear()
        self.state.update(connected=True, last_error=None)
        self._thread = threading.Thread(target=self._run, name="camera-capture", daemon=True)
        self._thread.start()
        self.logger.info("Camera %r opened", source)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None
        with self._cap_lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None
        self.state.update(connected=False)

    def read(self) -> Frame:
        with self._frame_lock:
            frame = self._frame
        if frame is None:
            raise FrameUnavailable("Camera has not produced a frame yet")
        return frame

    async def wait_for_frame(self, timeout: float) -> Frame:
        deadline = time.monotonic() + timeout
        while True:
            try:
                return self.read()
            except FrameUnavailable:
                if time.monotonic() >= deadline:
                    raise CameraAccessFailure(self.config.source, f"no frame within {timeout:.1f}s")
            await asyncio.sleep(0.05)

    def focus_capability(self) -> Optional[FocusRange]:
        focus = self.config.focus
        if not focus.enabled or self._cap is None:
            return None
        return FocusRange(min=focus.min, max=focus.max, step=focus.step)

    def set_focus(self, value: float) -> bool:
        capability = self.focus_capability()
        if capability is None:
            raise ValueError("Camera does not expose manual focus")
        if not capability.min <= value <= capability.max:
            raise ValueError(f"Focus {value} outside [{capability.min}, {capability.max}]")
        steps = (value - capability.min) / capability.step
        if abs(steps - round(steps)) > 1e-6:
            raise ValueError(f"Focus {value} is not a multiple of step {capability.step} from {capability.min}")

        with self._cap_lock:
            if self._cap is None:
                raise ValueError("Camera is not open")
            self._cap.set(cv2.CAP_PROP_AUTOFOCUS, 0)
            applied = bool(self._cap.set(cv2.CAP_PROP_FOCUS, float(value)))
        if not applied:
            self.logger.warning("Camera rejected focus distance %s", value)
        self.focus_value = float(value)
        return applied

    def _publish(self, pixels) -> None:
        frame = Frame(pixels=pixels, channel_order="BGR")
        with self._frame_lock:
            self._frame = frame

    def _run(self) -> None:
        backoff = self.min_backoff
        fps_window_start = time.time()
        frame_counter = 0

        while not self._stop_event.is_set():
            with self._cap_lock:
                if self._cap is None:
                    break
                ok, pixels = self._cap.read()
            now = time.time()
            if not ok or pixels is None:
                self.state.update(last_error="read_failed")
                self.logger.warning("Camera read failed")
                self._stop_event.wait(backoff)
                backoff = min(backoff * 2, self.max_backoff)
                continue

            backoff = self.min_backoff
            frame_counter += 1
            if now - fps_window_start >= 1.0:
                self.state.update(fps=frame_counter / (now - fps_window_start))
                fps_window_start = now
                frame_counter = 0

            self._publish(pixels)
            self.state.update(
                connected=True,
                last_frame_ts=now,
                last_error=None,
                frame_size=(pixels.shape[1], pixels.shape[0]),
            )
