import os

import cv2

from .logging import get_logger


def configure_opencv_logging(suppress: bool) -> None:
    if not suppress:
        return

    os.environ.setdefault("OPENCV_LOG_LEVEL", "ERROR")
    os.environ.setdefault("OPENCV_VIDEOIO_DEBUG", "0")
    if hasattr(cv2, "utils") and hasattr(cv2.utils, "logging"):
        cv2.utils.logging.setLogLevel(cv2.utils.logging.LOG_LEVEL_SILENT)
        get_logger("opencv").info("OpenCV logging set to silent")
