import asyncio
import json
import time

import cv2
import numpy as np

from webcam_overlay.exceptions import CameraAccessFailure, FrameUnavailable
from webcam_overlay.inference.base import Frame, InferenceEngine
from webcam_overlay.service import OverlayService
from webcam_overlay.utils.config import default_config


class FakeCamera:
    def __init__(self, fail=False):
        self.fail = fail
        self.frame = None
        self.focus_value = None
        self.stopped = False

        class _State:
            def snapshot(self):
                return {"connected": True}

        self.state = _State()

    def open(self):
        if self.fail:
            raise CameraAccessFailure(0, "permission denied")
        self.frame = Frame(pixels=np.zeros((48, 64, 3), dtype=np.uint8))

    def stop(self):
        self.stopped = True

    def read(self):
        if self.frame is None:
            raise FrameUnavailable("no frame")
        return self.frame

    async def wait_for_frame(self, timeout):
        return self.read()

    def focus_capability(self):
        return None


class FakeEngine(InferenceEngine):
    def __init__(self, path):
        self.path = path
        self.closed = False

    def load(self):
        pass

    def run(self, tensor):
        return np.array([32, 32, 16, 16, 0.9], dtype=np.float32)

    def close(self):
        self.closed = True


def _service(tmp_path, camera=None, models=("person",)):
    for name in models:
        model_dir = tmp_path / name
        model_dir.mkdir()
        (model_dir / "best.onnx").write_bytes(b"graph")
        (model_dir / "labels.json").write_text(json.dumps([name]), encoding="utf-8")
    config = default_config()
    config.models.models_dir = str(tmp_path)
    config.models.default_input_size = (64, 64)
    config.loop.display_fps = 200
    return OverlayService(config, camera=camera or FakeCamera(), engine_factory=lambda path, inference: FakeEngine(path))


async def _wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def test_start_loads_first_model_and_detects(tmp_path):
    service = _service(tmp_path, models=("person", "zebra"))

    async def scenario():
        await service.start()
        await _wait_until(lambda: service.renderer.render_calls >= 1)
        await _wait_until(lambda: service.latest_jpeg() is not None)
        detections = service.current_detections()
        snapshot = service.snapshot()
        await service.stop()
        return detections, snapshot

    detections, snapshot = asyncio.run(scenario())

    assert snapshot["status"]["message"] == "Detecting objects in real time..."
    assert snapshot["status"]["model"] == "person"
    assert snapshot["loop"]["state"] == "running"
    assert detections[0]["label"] == "person"
    assert service.camera.stopped


def test_camera_failure_is_reported(tmp_path):
    service = _service(tmp_path, camera=FakeCamera(fail=True))

    async def scenario():
        await service.start()
        status = service.status.snapshot()
        await service.stop()
        return status

    status = asyncio.run(scenario())

    assert status["message"].startswith("Error accessing camera:")
    assert status["error"] == "CAMERA_ACCESS_FAILED"
    assert service.session is None


def test_model_load_failure_leaves_loop_idle(tmp_path):
    service = _service(tmp_path)

    async def scenario():
        await service.start()
        ok = await service.select_model("missing")
        result = ok, service.status.snapshot(), service.loop.snapshot()
        await service.stop()
        return result

    ok, status, loop = asyncio.run(scenario())

    assert ok is False
    assert status["message"].startswith("Error loading model:")
    assert status["error"] == "MODEL_LOAD_FAILED"
    assert loop["state"] == "idle"


def test_switching_models_closes_previous_engine(tmp_path):
    service = _service(tmp_path, models=("person", "zebra"))

    async def scenario():
        await service.start()
        first = service.session
        ok = await service.select_model("zebra")
        await _wait_until(lambda: first.engine.closed)
        await _wait_until(lambda: any(d["label"] == "zebra" for d in service.current_detections()))
        active = service.session.name
        await service.stop()
        return ok, active

    ok, active = asyncio.run(scenario())

    assert ok is True
    assert active == "zebra"


def test_only_latest_selection_starts_loop(tmp_path):
    service = _service(tmp_path, models=("person", "zebra"))

    async def scenario():
        await service.start()
        results = await asyncio.gather(service.select_model("person"), service.select_model("zebra"))
        active = service.session.name
        await service.stop()
        return results, active

    results, active = asyncio.run(scenario())

    assert results == [False, True]
    assert active == "zebra"


def test_focus_unsupported(tmp_path):
    service = _service(tmp_path)

    assert service.focus_info() == {"supported": False, "range": None, "value": None}


def test_unsupported_engine_reported_on_status(tmp_path):
    service = _service(tmp_path)
    service.engine_factory = None
    service.config.inference.engine = "tensorrt"

    async def scenario():
        await service.start()
        result = service.status.snapshot(), service.loop.snapshot()
        await service.stop()
        return result

    status, loop = asyncio.run(scenario())

    assert status["message"].startswith("Error loading model:")
    assert "tensorrt" in status["message"]
    assert status["error"] == "MODEL_LOAD_FAILED"
    assert loop["state"] == "idle"


def test_display_survives_drawing_errors(tmp_path):
    service = _service(tmp_path)
    compose = service.renderer.compose
    failures = []

    def flaky_compose(frame):
        if not failures:
            failures.append(frame)
            raise cv2.error("Overload resolution failed")
        return compose(frame)

    service.renderer.compose = flaky_compose

    async def scenario():
        await service.start()
        await _wait_until(lambda: service.latest_jpeg() is not None)
        await service.stop()

    asyncio.run(scenario())

    assert failures
    assert service.camera.stopped
