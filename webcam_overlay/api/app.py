from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse, Response, StreamingResponse

from ..service import OverlayService
from ..utils.config import AppConfig
from ..utils.logging import get_logger, setup_logging
from ..utils.streaming import MJPEG_BOUNDARY
from .schemas import FocusUpdate, ModelSelect

PREVIEW_HTML = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Webcam Object Detection</title>
    <style>
      body { margin: 0; background: #0b0c0f; color: #f0f0f0; font-family: Arial, sans-serif; }
      header { padding: 12px 16px; background: #141722; display: flex; gap: 16px; align-items: center; }
      .frame { display: flex; justify-content: center; padding: 16px; }
      img { max-width: 100%; border: 1px solid #2b2f3a; }
      #status { padding: 0 16px; color: #9fe29f; }
      #status.error { color: #ff7b7b; }
      #focus-controls[hidden] { display: none; }
    </style>
  </head>
  <body>
    <header>
      <label>Model <select id="model-select"></select></label>
      <span id="focus-controls" hidden>
        <label>Focus <input type="range" id="focus-slider"></label>
        <span id="focus-value"></span>
      </span>
    </header>
    <p id="status">Starting...</p>
    <div class="frame">
      <img src="/stream" alt="Live stream" />
    </div>
    <script>
      const statusEl = document.getElementById("status");
      const select = document.getElementById("model-select");
      const slider = document.getElementById("focus-slider");

      async function refreshStatus() {
        const res = await fetch("/status");
        const body = await res.json();
        statusEl.textContent = body.status.message;
        statusEl.className = body.status.error ? "error" : "";
      }

      async function loadModels() {
        const res = await fetch("/models");
        const body = await res.json();
        select.innerHTML = "";
        for (const name of body.models) {
          const option = document.createElement("option");
          option.value = name;
          option.textContent = name;
          option.selected = name === body.active;
          select.appendChild(option);
        }
      }

      async function loadFocus() {
        const res = await fetch("/focus");
        const body = await res.json();
        if (!body.supported) return;
        slider.min = body.range.min;
        slider.max = body.range.max;
        slider.step = body.range.step;
        if (body.value !== null) slider.value = body.value;
        document.getElementById("focus-value").textContent = slider.value;
        document.getElementById("focus-controls").hidden = false;
      }

      select.addEventListener("change", async () => {
        await fetch("/models/select", {
          method: "POST",
          headers: {"Content-Type": "application/json"},
          body: JSON.stringify({name: select.value}),
        });
        refreshStatus();
      });

      slider.addEventListener("input", async () => {
        document.getElementById("focus-value").textContent = slider.value;
        await fetch("/focus", {
          method: "POST",
          headers: {"Content-Type": "application/json"},
          body: JSON.stringify({value: Number(slider.value)}),
        });
      });

      loadModels();
      loadFocus();
      refreshStatus();
      setInterval(refreshStatus, 1000);
    </script>
  </body>
</html>"""


def create_app(config: AppConfig, service: Optional[OverlayService] = None) -> FastAPI:
    setup_logging(config.app.log_level, config.app.log_format)
    logger = get_logger("api")
    service = service or OverlayService(config)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        logger.info("API startup")
        await service.start()
        yield
        logger.info("API shutdown")
        await service.stop()

    app = FastAPI(title="Webcam Object Detection Overlay", lifespan=lifespan)
    app.state.service = service

    @app.get("/", response_class=HTMLResponse)
    def preview():
        return HTMLResponse(content=PREVIEW_HTML)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/status")
    def status() -> dict:
        return service.snapshot()

    @app.get("/models")
    def models() -> dict:
        session = service.session
        return {
            "models": service.available_models(),
            "active": session.name if session else None,
        }

    @app.post("/models/select")
    async def select_model(data: ModelSelect) -> dict:
        if data.name not in service.available_models():
            raise HTTPException(status_code=404, detail=f"Unknown model '{data.name}'")
        loaded = await service.select_model(data.name)
        board = service.status.snapshot()
        if not loaded:
            if board["error"]:
                raise HTTPException(status_code=502, detail=board["message"])
            raise HTTPException(status_code=409, detail="Superseded by a newer model selection")
        return {"active": data.name, "status": board}

    @app.get("/focus")
    def focus() -> dict:
        return service.focus_info()

    @app.post("/focus")
    def set_focus(data: FocusUpdate) -> dict:
        if not service.focus_info()["supported"]:
            raise HTTPException(status_code=404, detail="Manual focus is not supported")
        try:
            return service.set_focus(data.value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/stream")
    def stream():
        return StreamingResponse(
            service.stream_frames(),
            media_type=f"multipart/x-mixed-replace; boundary={MJPEG_BOUNDARY}",
        )

    @app.get("/snapshot")
    def snapshot():
        frame = service.latest_jpeg()
        if frame is None:
            raise HTTPException(status_code=404, detail="No frame available yet")
        return Response(content=frame, media_type="image/jpeg")

    @app.get("/detections")
    def detections() -> dict:
        return {"detections": service.current_detections()}

    return app
