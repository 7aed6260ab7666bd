"""HTTP control surface for a running orchestrator."""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException
from pydantic import BaseModel, Field

from .orchestrator import Orchestrator

logger = structlog.get_logger(__name__)


class RunRequest(BaseModel):
    files: list[str] = Field(default_factory=list, description="Test files to run, in order")


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    app = FastAPI(title="Browser Tester", version="0.1.0")
    app.state.orchestrator = orchestrator

    def _orchestrator() -> Orchestrator:
        o = app.state.orchestrator
        if o is None:
            raise HTTPException(status_code=503, detail="orchestrator not ready")
        return o

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "healthy", "service": "browser-tester"}

    @app.get("/status")
    async def status():
        o = _orchestrator()
        return {
            "in_flight": o.in_flight,
            "isolate": o.config.isolate,
            "running": sorted(o.tracker.running),
            "sandboxes": list(o.registry),
            "runs_started": o.runs_started,
            "runs_finished": o.runs_finished,
        }

    @app.post("/runs", status_code=202)
    async def start_run(request: RunRequest, background_tasks: BackgroundTasks):
        o = _orchestrator()
        if not request.files:
            raise HTTPException(status_code=400, detail="files must not be empty")
        queued = o.in_flight
        background_tasks.add_task(o.request_run, request.files)
        logger.info("Run requested", files=len(request.files), queued=queued)
        return {"accepted": True, "queued": queued, "files": request.files}

    return app
