import asyncio
import time
from typing import Callable, Optional


class FrameRequest:
    """Handle for one pending refresh callback."""
    def __init__(self, handle: asyncio.TimerHandle, request_id: int):
        self._handle = handle
        self.request_id = request_id

    def cancel(self) -> None:
        self._handle.cancel()

    def cancelled(self) -> bool:
        return self._handle.cancelled()


class FrameClock:
    """Display refresh signal for the event loop.

    ``request_frame`` runs the callback once, at the next refresh boundary of a
    fixed-rate clock, with the boundary timestamp in milliseconds. Callbacks
    are one-shot; a consumer that wants to keep running requests again.
    """
    def __init__(self, fps: float = 30.0, loop: Optional[asyncio.AbstractEventLoop] = None):
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.fps = fps
        self.interval = 1.0 / fps
        self._loop = loop
        self._next_id = 0

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def request_frame(self, callback: Callable[[float], None]) -> FrameRequest:
        loop = self._event_loop()
        now = loop.time()
        boundary = (int(now / self.interval) + 1) * self.interval
        self._next_id += 1
        timestamp_ms = time.time() * 1000 + (boundary - now) * 1000
        handle = loop.call_at(boundary, callback, timestamp_ms)
        return FrameRequest(handle, self._next_id)

    def cancel_frame(self, request: Optional[FrameRequest]) -> None:
        if request is not None:
            request.cancel()
