"""FastAPI app exposing ingestion, lock and disk health endpoints.

Provides endpoints for:
- Liveness and disk health
- Held ingestion locks (debugging)
- Method recommendation (probe only)
- Starting an ingestion and forcing a scratch cleanup
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from ..config import IngestConfig
from ..ingest.models import IngestStatus
from ..pipeline import IngestPipeline, build_pipeline

_STATUS_CODES = {
    IngestStatus.SUCCEEDED: 200,
    IngestStatus.IN_PROGRESS: 409,
    IngestStatus.DENIED: 507,
    IngestStatus.EXHAUSTED: 502,
}


def _require_url(value: Any) -> str:
    url = str(value or "").strip()
    if not url:
        raise HTTPException(status_code=400, detail="url_required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise HTTPException(status_code=400, detail="invalid_url")
    return url


def _scratch_destination(value: Any, scratch_dir: Path) -> Optional[Path]:
    """Resolve a requested output path; it must stay inside the scratch dir."""
    if not value:
        return None
    root = Path(scratch_dir).resolve()
    destination = (root / Path(str(value))).resolve()
    if destination == root or not destination.is_relative_to(root):
        raise HTTPException(status_code=400, detail="destination_outside_scratch")
    return destination


def create_ingest_router(pipeline: IngestPipeline) -> APIRouter:
    """Create the ingestion API router around one pipeline."""
    router = APIRouter(prefix="/api", tags=["ingest"])

    @router.get("/health/disk")
    async def get_disk_health() -> JSONResponse:
        status = await pipeline.disk.get_status()
        return JSONResponse(status.to_dict())

    @router.get("/ingest/locks")
    def get_locks() -> JSONResponse:
        """List resource keys with an ingestion in flight."""
        return JSONResponse({"locks": [entry.to_dict() for entry in pipeline.lock.entries()]})

    @router.get("/ingest/recommend")
    async def get_recommendation(url: str = "") -> JSONResponse:
        recommendation = await pipeline.orchestrator.get_recommended_method(_require_url(url))
        return JSONResponse(recommendation.to_dict())

    @router.post("/ingest")
    async def post_ingest(body: Dict[str, Any] = Body(...)) -> JSONResponse:  # type: ignore[valid-type]
        """Ingest one URL.

        Body:
            url: str - http(s) URL of the media file
            destination: str - Optional output path inside the scratch dir
                (relative paths are taken from the scratch dir)
        """
        url = _require_url(body.get("url"))
        destination = _scratch_destination(body.get("destination"), pipeline.config.scratch_dir)

        result = await pipeline.orchestrator.ingest(url, destination)
        return JSONResponse(result.to_dict(), status_code=_STATUS_CODES[result.status])

    @router.post("/disk/cleanup")
    async def post_cleanup() -> JSONResponse:
        report = await pipeline.disk.cleanup_temp_files()
        return JSONResponse(report.to_dict())

    return router


def create_app(
    *,
    config: Optional[IngestConfig] = None,
    pipeline: Optional[IngestPipeline] = None,
    monitor: bool = True,
) -> FastAPI:
    pipeline = pipeline or build_pipeline(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if monitor:
            pipeline.disk.start_monitoring()
        try:
            yield
        finally:
            await pipeline.close()

    app = FastAPI(title="MediaIngest", lifespan=lifespan)
    app.state.pipeline = pipeline
    app.include_router(create_ingest_router(pipeline))

    @app.get("/api/health")
    def api_health() -> JSONResponse:
        return JSONResponse({"ok": True})

    return app
