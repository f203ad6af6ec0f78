import threading
from typing import Optional, Tuple

import cv2

MJPEG_BOUNDARY = "frame"
_PART_HEADER = f"--{MJPEG_BOUNDARY}\r\nContent-Type: image/jpeg\r\n\r\n".encode("ascii")


class FrameStore:
    """Latest composed JPEG, shared by every viewer of the stream."""
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: Optional[Tuple[bytes, int]] = None

    def update(self, jpeg_bytes: bytes, timestamp_ms: int) -> None:
        with self._lock:
            self._frame = (jpeg_bytes, timestamp_ms)

    def get(self) -> Optional[Tuple[bytes, int]]:
        with self._lock:
            return self._frame


def encode_jpeg(image, quality: int) -> bytes:
    encode_params = [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)]
    success, buffer = cv2.imencode(".jpg", image, encode_params)
    if not success:
        raise RuntimeError("Failed to encode JPEG frame")
    return buffer.tobytes()


def mjpeg_part(jpeg_bytes: bytes) -> bytes:
    return _PART_HEADER + jpeg_bytes + b"\r\n"
