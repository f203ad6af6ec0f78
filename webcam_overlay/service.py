import asyncio
import contextlib
import functools
import time
from concurrent.futures import ThreadPoolExecutor
from typing import AsyncIterator, Callable, List, Optional

import cv2

from .exceptions import CameraAccessFailure, FrameUnavailable, ModelLoadFailure
from .ingestion.camera import CameraSource
from .loop import DetectionLoop
from .rendering.overlay import OverlayRenderer
from .scheduling import FrameClock
from .session import ModelSession, list_models, load_model_session
from .utils.config import AppConfig
from .utils.logging import get_logger
from .utils.opencv import configure_opencv_logging
from .utils.streaming import FrameStore, encode_jpeg, mjpeg_part


class StatusBoard:
    """User-visible status line, mirrored on the preview page."""
    def __init__(self) -> None:
        self.message = "Starting..."
        self.error: Optional[str] = None
        self.model: Optional[str] = None
        self.updated_ts = time.time()

    def update(self, message: str, error: Optional[str] = None, model: Optional[str] = None) -> None:
        self.message = message
        self.error = error
        if model is not None:
            self.model = model
        self.updated_ts = time.time()

    def snapshot(self) -> dict:
        return {
            "message": self.message,
            "error": self.error,
            "model": self.model,
            "updated_ts": self.updated_ts,
        }


class OverlayService:
    """Wires camera, detection loop and overlay together and owns the active model session."""
    def __init__(
        self,
        config: AppConfig,
        camera=None,
        engine_factory: Optional[Callable] = None,
    ) -> None:
        self.config = config
        self.camera = camera or CameraSource(config.camera)
        stream_cfg = config.streaming
        self.renderer = OverlayRenderer(
            color=stream_cfg.box_color,
            thickness=stream_cfg.line_thickness,
            font_scale=stream_cfg.font_scale,
        )
        self.clock = FrameClock(config.loop.display_fps)
        # one worker keeps engine calls strictly sequential
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="inference")
        inference_cfg = config.inference
        self.loop = DetectionLoop(
            frame_source=self.camera,
            renderer=self.renderer,
            clock=self.clock,
            threshold=inference_cfg.confidence_threshold,
            executor=self.executor,
            max_consecutive_failures=config.loop.max_consecutive_failures,
            debug_log_detections=inference_cfg.debug_log_detections,
            debug_log_interval_seconds=inference_cfg.debug_log_interval_seconds,
            debug_log_max_detections=inference_cfg.debug_log_max_detections,
        )
        self.status = StatusBoard()
        self.frame_store = FrameStore()
        self.session: Optional[ModelSession] = None
        self.engine_factory = engine_factory
        self._selection = 0
        self._running = False
        self._display_task: Optional[asyncio.Task] = None
        self.logger = get_logger("service")

    def available_models(self) -> List[str]:
        return list_models(self.config.models.models_dir)

    async def start(self) -> None:
        """Open the camera, wait for its first frame, then load the default model."""
        self.logger.info("Starting overlay service")
        self._running = True
        configure_opencv_logging(self.config.app.suppress_cv_warnings)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.camera.open)
            await self.camera.wait_for_frame(self.config.camera.first_frame_timeout_seconds)
        except CameraAccessFailure as exc:
            self.logger.error("%s", exc)
            self.status.update(f"Error accessing camera: {exc.message}", error=exc.error_code)
            return

        self._display_task = loop.create_task(self._display())
        model_name = self.config.models.default_model
        if not model_name:
            models = self.available_models()
            if not models:
                self.status.update(
                    f"No models found in {self.config.models.models_dir}",
                    error=ModelLoadFailure.error_code,
                )
                self.logger.error("No models found in %s", self.config.models.models_dir)
                return
            model_name = models[0]
        await self.select_model(model_name)

    async def stop(self) -> None:
        self.logger.info("Stopping overlay service")
        self._running = False
        self.loop.cancel()
        if self._display_task:
            self._display_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._display_task
            self._display_task = None
        await self.loop.drain()
        self.camera.stop()
        if self.session is not None:
            self.session.engine.close()
            self.session = None
        self.executor.shutdown(wait=False)

    async def select_model(self, model_name: str) -> bool:
        """Stop detection, load ``model_name`` and restart detection with it.

        Only the most recent selection may start the loop; a load that
        finishes after a newer selection is dropped.
        """
        self._selection += 1
        token = self._selection
        self.loop.cancel()
        self.renderer.clear()
        self.status.update(f"Loading model: {model_name}...", model=model_name)

        loader = functools.partial(
            load_model_session,
            model_name,
            self.config.models,
            self.config.inference,
            self.engine_factory,
        )
        try:
            session = await asyncio.get_running_loop().run_in_executor(None, loader)
        except ModelLoadFailure as exc:
            self.logger.error("%s", exc)
            if token == self._selection:
                self.status.update(
                    f"Error loading model: {exc.details or exc.message}",
                    error=exc.error_code,
                    model=model_name,
                )
            return False

        if token != self._selection or not self._running:
            self.logger.info("Dropping model %s: a newer selection superseded it", model_name)
            session.engine.close()
            return False

        previous = self.session
        self.session = session
        if previous is not None:
            # queued behind any stale inference still running on the old engine
            self.executor.submit(previous.engine.close)
        self.status.update("Model loaded. Starting detection...", model=model_name)
        self.loop.start(session)
        self.status.update("Detecting objects in real time...", model=model_name)
        return True

    def focus_info(self) -> dict:
        capability = self.camera.focus_capability()
        return {
            "supported": capability is not None,
            "range": capability.to_dict() if capability else None,
            "value": self.camera.focus_value,
        }

    def set_focus(self, value: float) -> dict:
        applied = self.camera.set_focus(value)
        info = self.focus_info()
        info["applied"] = applied
        return info

    def current_detections(self) -> List[dict]:
        return [det.to_dict() for det in self.renderer.current()]

    def snapshot(self) -> dict:
        return {
            "status": self.status.snapshot(),
            "loop": self.loop.snapshot(),
            "camera": self.camera.state.snapshot(),
        }

    def compose_latest(self) -> Optional[bytes]:
        try:
            frame = self.camera.read()
        except FrameUnavailable:
            return None
        image = self.renderer.compose(frame)
        jpeg_bytes = encode_jpeg(image, self.config.streaming.jpeg_quality)
        self.frame_store.update(jpeg_bytes, int(time.time() * 1000))
        return jpeg_bytes

    def latest_jpeg(self) -> Optional[bytes]:
        entry = self.frame_store.get()
        if not entry:
            return None
        return entry[0]

    async def stream_frames(self) -> AsyncIterator[bytes]:
        last_ts = 0
        while self._running:
            entry = self.frame_store.get()
            if not entry or entry[1] == last_ts:
                await asyncio.sleep(0.02)
                continue
            jpeg_bytes, last_ts = entry
            yield mjpeg_part(jpeg_bytes)

    async def _display(self) -> None:
        interval = 1.0 / max(0.1, self.config.streaming.fps_limit)
        while self._running:
            try:
                self.compose_latest()
            except (RuntimeError, cv2.error) as exc:
                self.logger.warning("Failed to update stream frame: %s", exc)
            await asyncio.sleep(interval)
