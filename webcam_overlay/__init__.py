"""Webcam object detection overlay."""

__version__ = "0.1.0"

# Lazy imports keep cv2/onnxruntime out of lightweight imports
__all__ = [
    'OverlayService',
    'DetectionLoop',
    'OutputLayout',
    'ModelConfig',
    'create_app',
]


def __getattr__(name):
    """Lazy import of modules."""
    if name == 'OverlayService':
        from .service import OverlayService
        return OverlayService
    elif name == 'DetectionLoop':
        from .loop import DetectionLoop
        return DetectionLoop
    elif name in ('OutputLayout', 'ModelConfig'):
        from .session import ModelConfig, OutputLayout
        return OutputLayout if name == 'OutputLayout' else ModelConfig
    elif name == 'create_app':
        from .api.app import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
