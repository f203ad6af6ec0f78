"""
Continuous, cancellable detection loop.

One tick runs per refresh of the frame clock and a new tick is only requested
once the previous one has finished, so ticks never overlap. Every tick carries
the generation it was started under; starting or cancelling the loop bumps the
generation, and a tick whose inference completes under a stale generation
drops its result instead of drawing it.
"""
import asyncio
import functools
import time
from concurrent.futures import Executor
from dataclasses import asdict, dataclass
from enum import Enum
from typing import List, Optional, Set

from .exceptions import FrameUnavailable, InferenceFailure, MalformedOutput
from .inference.base import ScaledDetection
from .inference.decode import DEFAULT_CONFIDENCE_THRESHOLD
from .pipeline import DetectionPipeline
from .scheduling import FrameClock, FrameRequest
from .session import ModelSession
from .utils.logging import get_logger


class LoopState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"


@dataclass
class LoopStats:
    ticks: int = 0
    rendered: int = 0
    skipped: int = 0
    failures: int = 0
    stale_discarded: int = 0
    consecutive_failures: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class DetectionLoop:
    def __init__(
        self,
        frame_source,
        renderer,
        clock: FrameClock,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        executor: Optional[Executor] = None,
        max_consecutive_failures: int = 0,
        debug_log_detections: bool = False,
        debug_log_interval_seconds: float = 2.0,
        debug_log_max_detections: int = 5,
    ) -> None:
        self.frame_source = frame_source
        self.renderer = renderer
        self.clock = clock
        self.threshold = threshold
        self.executor = executor
        self.max_consecutive_failures = max(0, max_consecutive_failures)
        self.debug_log_detections = debug_log_detections
        self.debug_log_interval_seconds = debug_log_interval_seconds
        self.debug_log_max_detections = debug_log_max_detections
        self.state = LoopState.IDLE
        self.generation = 0
        self.stats = LoopStats()
        self.last_error: Optional[str] = None
        self._pipeline: Optional[DetectionPipeline] = None
        self._request: Optional[FrameRequest] = None
        self._pending: Set[asyncio.Task] = set()
        self._last_debug_log_ts = 0.0
        self.logger = get_logger("loop")

    @property
    def session(self) -> Optional[ModelSession]:
        return self._pipeline.session if self._pipeline else None

    @property
    def running(self) -> bool:
        return self.state is LoopState.RUNNING

    def start(self, session: ModelSession) -> int:
        """Run the loop for ``session``; any current run is cancelled first."""
        if self.state is not LoopState.IDLE:
            self.cancel()
        self.generation += 1
        self._pipeline = DetectionPipeline(session, threshold=self.threshold, executor=self.executor)
        self.stats.consecutive_failures = 0
        self.last_error = None
        self.state = LoopState.RUNNING
        self.logger.info("Detection loop started (model=%s generation=%d)", session.name, self.generation)
        self._launch(self.generation)
        return self.generation

    def cancel(self) -> None:
        if self.state is LoopState.IDLE:
            return
        self.state = LoopState.CANCELLING
        self.clock.cancel_frame(self._request)
        self._request = None
        self.generation += 1
        self._pipeline = None
        self.state = LoopState.IDLE
        self.logger.info("Detection loop cancelled (generation=%d)", self.generation)

    async def drain(self) -> None:
        """Wait for ticks that are still in flight, including stale ones."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def snapshot(self) -> dict:
        session = self.session
        return {
            "state": self.state.value,
            "generation": self.generation,
            "model": session.name if session else None,
            "last_error": self.last_error,
            "stats": self.stats.to_dict(),
        }

    def _launch(self, generation: int) -> None:
        task = asyncio.get_running_loop().create_task(self._tick(generation, self._pipeline))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_refresh(self, generation: int, _timestamp_ms: float) -> None:
        self._request = None
        if generation != self.generation or self.state is not LoopState.RUNNING:
            return
        self._launch(generation)

    def _schedule_next(self, generation: int) -> None:
        if generation != self.generation or self.state is not LoopState.RUNNING:
            return
        self._request = self.clock.request_frame(functools.partial(self._on_refresh, generation))

    async def _tick(self, generation: int, pipeline: DetectionPipeline) -> None:
        self.stats.ticks += 1
        try:
            frame = self.frame_source.read()
            tensor = pipeline.prepare(frame)
            raw = await pipeline.infer(tensor)
            if generation != self.generation:
                self.stats.stale_discarded += 1
                self.logger.debug("Discarding result of stale generation %d", generation)
                return
            detections = pipeline.finalize(raw, frame.width, frame.height)
            self.renderer.render(detections)
            self.stats.rendered += 1
            self.stats.consecutive_failures = 0
            self._maybe_log_detections(detections)
        except FrameUnavailable as exc:
            if generation == self.generation:
                self.stats.skipped += 1
                self.logger.debug("Skipping tick: %s", exc.message)
        except (MalformedOutput, InferenceFailure) as exc:
            if generation != self.generation:
                self.stats.stale_discarded += 1
                return
            self._record_failure(exc)
        except Exception as exc:
            if generation != self.generation:
                self.stats.stale_discarded += 1
                self.logger.debug("Stale tick of generation %d failed: %s", generation, exc)
                return
            self.logger.exception("Detection loop stopped by unexpected error")
            self.last_error = str(exc)
            self.cancel()
        finally:
            self._schedule_next(generation)

    def _record_failure(self, exc) -> None:
        self.stats.failures += 1
        self.stats.consecutive_failures += 1
        self.last_error = str(exc)
        self.logger.error("Tick aborted: %s", exc)
        self.renderer.clear()
        limit = self.max_consecutive_failures
        if limit and self.stats.consecutive_failures >= limit:
            self.logger.error("Halting detection loop after %d consecutive failures", limit)
            self.cancel()

    def _maybe_log_detections(self, detections: List[ScaledDetection]) -> None:
        if not self.debug_log_detections:
            return

        now = time.time()
        if now - self._last_debug_log_ts < self.debug_log_interval_seconds:
            return
        self._last_debug_log_ts = now

        sample = []
        for det in detections[: self.debug_log_max_detections]:
            sample.append(
                {
                    "label": det.label,
                    "confidence": round(det.confidence, 3),
                    "rect": [round(v, 1) for v in det.rect.as_list()],
                }
            )
        self.logger.info("Detections: count=%d sample=%s", len(detections), sample)
