from __future__ import annotations

import dataclasses
import logging
import os
import threading
import time

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from .config import load_config
from .service import GenerationService
from .utils import configure_logging, json_dumps, log_event, utc_now_iso
from .validators import sanitize_limit

app = FastAPI(title="qagen API")

ENDPOINTS = {
    "health": "GET /health",
    "trigger": "POST /trigger",
    "tickets": "GET /tickets?limit=50",
    "status": "GET /status",
    "webhook": "POST /webhook/test-runner",
}

_SERVICE: GenerationService | None = None
_SERVICE_LOCK = threading.Lock()
_STARTED_AT = time.monotonic()

logger = logging.getLogger("qagen.admin")


class RunnerCallback(BaseModel):
    model_config = ConfigDict(extra="allow")

    key: str | None = None
    status: str | None = None
    passed: int | None = None
    failed: int | None = None


def set_service(service: GenerationService | None) -> None:
    global _SERVICE
    with _SERVICE_LOCK:
        _SERVICE = service


def get_service() -> GenerationService:
    global _SERVICE
    with _SERVICE_LOCK:
        if _SERVICE is None:
            _SERVICE = GenerationService(load_config())
        return _SERVICE


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("QG_ADMIN_TOKEN")
    if not token:
        return
    if request.headers.get("X-Admin-Token") != token:
        raise HTTPException(status_code=401, detail="unauthorized")


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("qagen")
    except Exception:  # noqa: BLE001
        return "unknown"


@app.on_event("startup")
def _startup() -> None:
    configure_logging("qagen.admin")
    get_service().start()


@app.on_event("shutdown")
def _shutdown() -> None:
    with _SERVICE_LOCK:
        service = _SERVICE
    if service is not None:
        service.shutdown()


@app.get("/")
def root() -> dict[str, object]:
    return {"name": "qagen", "version": _get_version(), "endpoints": ENDPOINTS}


@app.get("/health")
def health(service: GenerationService = Depends(get_service)) -> dict[str, object]:
    return {
        "status": "ok",
        "timestamp": utc_now_iso(),
        "scheduler": service.get_schedule_summary(),
    }


@app.post("/trigger", dependencies=[Depends(_require_admin_token)])
def trigger(service: GenerationService = Depends(get_service)) -> JSONResponse:
    result = service.trigger_pass_now()
    if not result.accepted:
        raise HTTPException(status_code=409, detail=result.reason or "already_running")
    return JSONResponse(
        status_code=202,
        content={"status": "accepted", "owner": "manual", "timestamp": utc_now_iso()},
    )


@app.get("/tickets", dependencies=[Depends(_require_admin_token)])
def tickets(
    limit: str | None = None, service: GenerationService = Depends(get_service)
) -> list[dict[str, object]]:
    records = service.list_recent(sanitize_limit(limit))
    return [dataclasses.asdict(record) for record in records]


@app.get("/status")
def status(service: GenerationService = Depends(get_service)) -> dict[str, object]:
    outcome = service.last_outcome()
    return {
        "uptime_seconds": round(time.monotonic() - _STARTED_AT, 3),
        "timestamp": utc_now_iso(),
        "lock": service.get_lock_status().to_dict(),
        "schedule": service.get_schedule_summary(),
        "last_outcome": outcome.summary() if outcome else None,
        "last_error": service.last_error(),
    }


@app.post("/webhook/test-runner")
def runner_webhook(payload: RunnerCallback | None = None) -> dict[str, object]:
    body = payload.model_dump(exclude_none=True) if payload else {}
    log_event(logger, logging.INFO, "test_runner_callback", payload=json_dumps(body))
    return {"received": True, "timestamp": utc_now_iso()}
