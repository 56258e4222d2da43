"""
FastAPI entrypoint serving the registry index.
"""

from __future__ import annotations

import os
import time
from datetime import timezone
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from .. import __version__
from ..errors import ConfigurationError, RepofeedError
from ..gitlab import GitLabAPIError
from ..logger import configure_logging, get_logger, level_from_name
from ..registry import AggregationEngine
from ..settings import load_settings
from .dependencies import engine_dependency, telemetry_enabled
from .telemetry import Telemetry

app = FastAPI(title="repofeed", version=__version__)
telemetry = Telemetry()
log = get_logger(__name__)


class TelemetryResponse(BaseModel):
    builds: int
    rebuilds: int
    failures: int
    served: int
    not_modified: int
    last_build: Optional[Dict[str, Any]] = None


@app.exception_handler(RepofeedError)
def repofeed_error_handler(_request: Request, exc: RepofeedError) -> PlainTextResponse:
    log.error("build_aborted", error=str(exc), kind=type(exc).__name__)
    return PlainTextResponse(str(exc), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.exception_handler(GitLabAPIError)
def gitlab_error_handler(_request: Request, exc: GitLabAPIError) -> PlainTextResponse:
    log.error("gitlab_unavailable", error=str(exc), status=exc.status_code)
    return PlainTextResponse(
        f"upstream GitLab error: {exc}", status_code=status.HTTP_502_BAD_GATEWAY
    )


@app.get("/healthz")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/packages.json")
def packages(
    request: Request,
    force: bool = False,
    engine: AggregationEngine = Depends(engine_dependency),
) -> Response:
    enabled = engine.settings.telemetry_enabled
    start_time = time.time()
    try:
        result = engine.run(force=force)
    except Exception as exc:
        if enabled:
            telemetry.record_failure(exc, (time.time() - start_time) * 1000.0, forced=force)
        raise
    response = artifact_response(engine.index_path, request.headers.get("if-modified-since"))
    if enabled:
        telemetry.record_build(result, forced=force)
        telemetry.record_serve(not_modified=response.status_code == status.HTTP_304_NOT_MODIFIED)
    return response


@app.get("/telemetry", response_model=TelemetryResponse)
def telemetry_snapshot(enabled: bool = Depends(telemetry_enabled)) -> TelemetryResponse:
    if not enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Telemetry disabled"
        )
    return TelemetryResponse(**telemetry.snapshot())


def parse_http_date(value: Optional[str]) -> Optional[float]:
    """POSIX time of an HTTP date header; None when absent or malformed."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def artifact_response(path: Path, if_modified_since: Optional[str] = None) -> Response:
    """Serve ``path`` as JSON, answering 304 when the client copy is current."""
    with path.open("rb") as handle:
        mtime = int(os.fstat(handle.fileno()).st_mtime)
        headers = {
            "Last-Modified": formatdate(mtime, usegmt=True),
            "Cache-Control": "max-age=0",
        }
        since = parse_http_date(if_modified_since)
        if since is not None and since >= mtime:
            return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)
        body = handle.read()
    return Response(content=body, media_type="application/json", headers=headers)


def run() -> None:
    """CLI entrypoint to run the FastAPI server."""
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from exc
    configure_logging(
        level=level_from_name(settings.log_level),
        json_output=settings.log_format == "json",
    )
    uvicorn.run(
        "repofeed.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
