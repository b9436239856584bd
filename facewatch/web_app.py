import time
from pathlib import Path
from typing import Iterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from .config import BASE_DIR, CONFIDENCE_MAX, CONFIDENCE_MIN, CONFIDENCE_STEP
from .exceptions import CameraError, FaceWatchError
from .logger import setup_logger
from .runtime import FaceWatchRuntime, ModelStatus

WEB_DIR = Path(BASE_DIR) / "web"
TEMPLATES_DIR = WEB_DIR / "templates"
STATIC_DIR = WEB_DIR / "static"
logger = setup_logger("web_app")


class SettingsBody(BaseModel):
    confidence: Optional[float] = None
    muted: Optional[bool] = None


def _mjpeg_frame_generator(runtime: FaceWatchRuntime) -> Iterator[bytes]:
    while True:
        frame = runtime.get_jpeg_frame()
        if frame is None:
            time.sleep(0.1)
            continue
        yield (
            b"--frame\r\n"
            b"Content-Type: image/jpeg\r\n\r\n" + frame + b"\r\n"
        )
        time.sleep(0.05)


def create_web_app(
    runtime: Optional[FaceWatchRuntime] = None,
    camera_index: Optional[int] = None,
    load_models: bool = True,
) -> FastAPI:
    app = FastAPI(title="FaceWatch Dashboard", version="1.0.0")
    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    if runtime is None:
        runtime = FaceWatchRuntime() if camera_index is None else FaceWatchRuntime(camera_index=camera_index)
    app.state.runtime = runtime

    @app.on_event("startup")
    def _startup() -> None:
        logger.info("Dashboard starting (detector=%s, camera=%s)", runtime.detector_kind, runtime.camera_index)
        if load_models:
            runtime.load_models_async()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        runtime.shutdown()

    @app.get("/", response_class=HTMLResponse)
    def dashboard(request: Request):
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "confidence": runtime.settings.confidence,
                "confidence_min": CONFIDENCE_MIN,
                "confidence_max": CONFIDENCE_MAX,
                "confidence_step": CONFIDENCE_STEP,
                "muted": runtime.settings.muted,
            },
        )

    @app.get("/api/health")
    def health():
        return {"ok": runtime.status is not ModelStatus.FAILED, "status": runtime.status.value}

    @app.get("/api/stream/camera")
    def camera_stream():
        logger.info("MJPEG client connected")
        return StreamingResponse(
            _mjpeg_frame_generator(runtime),
            media_type="multipart/x-mixed-replace; boundary=frame",
        )

    @app.get("/api/state")
    def state(since: int = 0):
        return JSONResponse(runtime.get_state(since=since))

    @app.get("/api/known-faces")
    def known_faces():
        return [
            {"id": face.id, "name": face.name, "category": face.category, "image_url": face.image_url}
            for face in runtime.known_faces
        ]

    @app.post("/api/camera/start")
    def start_camera():
        try:
            started = runtime.start_camera()
        except CameraError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except FaceWatchError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"ok": True, "started": started, "running": True}

    @app.post("/api/camera/stop")
    def stop_camera():
        stopped = runtime.stop_camera()
        return {"ok": True, "stopped": stopped, "running": False}

    @app.post("/api/mute/toggle")
    def toggle_mute():
        return {"ok": True, "muted": runtime.toggle_mute()}

    @app.post("/api/settings")
    def update_settings(payload: SettingsBody):
        try:
            if payload.confidence is not None:
                runtime.set_confidence(payload.confidence)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if payload.muted is not None:
            runtime.set_muted(payload.muted)
        return {"ok": True, "settings": runtime.settings.to_dict()}

    return app
