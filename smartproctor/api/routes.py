"""
FastAPI route definitions for the proctoring service.

  GET    /health                   — liveness / readiness check
  POST   /sessions                 — create and start a monitored session
  GET    /sessions                 — all sessions known to this process
  GET    /sessions/{id}            — live state of one session
  GET    /sessions/{id}/alerts     — newest-first alert log of one session
  POST   /sessions/{id}/stop       — stop a session, return its summary
  POST   /sessions/{id}/recordings — count one captured evidence clip
  DELETE /sessions/{id}            — forget a session (stopping it if active)
  DELETE /sessions                 — forget every stopped session
  GET    /alerts                   — merged newest-first feed (admin panel)
  GET    /config                   — every operator setting
  GET    /config/{key}             — one operator setting
  PUT    /config/{key}             — store an operator setting
  DELETE /config/{key}             — remove one setting
  DELETE /config                   — remove every setting
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from smartproctor.config import SessionConfig
from smartproctor.errors import ConfigurationError, InvalidStateError, SamplerUnavailable
from smartproctor.session.controller import SessionController, SessionState
from smartproctor.session.registry import SessionRegistry
from smartproctor.storage.config_store import ConfigStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def _config_store(request: Request) -> ConfigStore:
    return request.app.state.config_store


def _session_or_404(request: Request, session_id: str) -> SessionController:
    try:
        return _registry(request).get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"session {session_id} not found")


# ── Health ─────────────────────────────────────────────────────────────────────

@router.get("/health")
def health(request: Request) -> dict[str, Any]:
    sessions = _registry(request).sessions()
    store = _config_store(request)
    return {
        "status": "ok",
        "sessions": {
            "total":  len(sessions),
            "active": sum(1 for s in sessions if s.state is SessionState.ACTIVE),
        },
        "dependencies": {
            "configStore": store.backend,
        },
    }


# ── Sessions ───────────────────────────────────────────────────────────────────

class StartSessionRequest(BaseModel):
    session_id:           str   | None = None
    tick_interval_ms:     int   | None = None
    alert_capacity:       int   | None = None
    surveillance_enabled: bool  | None = None
    profile:              str   | None = None
    repeat_alerts:        bool  | None = None
    identity_threshold:   float | None = None
    seed:                 int   | None = None    # simulated sampler seed


@router.post("/sessions", status_code=201)
def start_session(req: StartSessionRequest, request: Request) -> dict[str, Any]:
    overrides = req.model_dump(exclude_none=True, exclude={"session_id", "seed"})
    config = replace(SessionConfig.from_settings(), **overrides)

    try:
        controller = _registry(request).create(
            session_id=req.session_id,
            config=config,
            seed=req.seed,
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except SamplerUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"signal source unavailable: {exc}")
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    return controller.snapshot()


@router.get("/sessions")
def list_sessions(request: Request) -> list[dict[str, Any]]:
    return [s.snapshot() for s in _registry(request).sessions()]


@router.get("/sessions/{session_id}")
def get_session(session_id: str, request: Request) -> dict[str, Any]:
    return _session_or_404(request, session_id).snapshot()


@router.get("/sessions/{session_id}/alerts")
def session_alerts(
    session_id: str,
    request: Request,
    limit: int = Query(20, ge=1, le=1000),
) -> list[dict[str, Any]]:
    controller = _session_or_404(request, session_id)
    return [a.to_dict() for a in controller.alert_log.recent(limit)]


@router.post("/sessions/{session_id}/stop")
def stop_session(session_id: str, request: Request) -> dict[str, Any]:
    controller = _session_or_404(request, session_id)
    try:
        summary = controller.stop()
    except InvalidStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return summary.to_dict()


@router.post("/sessions/{session_id}/recordings")
def add_recording(session_id: str, request: Request) -> dict[str, Any]:
    controller = _session_or_404(request, session_id)
    try:
        controller.add_recording()
    except InvalidStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return controller.snapshot()


@router.delete("/sessions/{session_id}", status_code=204)
def delete_session(session_id: str, request: Request) -> None:
    try:
        _registry(request).remove(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"session {session_id} not found")


@router.delete("/sessions", status_code=200)
def prune_sessions(request: Request) -> dict[str, int]:
    return {"removed": _registry(request).prune()}


@router.get("/alerts")
def recent_alerts(
    request: Request,
    limit: int = Query(20, ge=1, le=1000),
) -> list[dict[str, Any]]:
    return _registry(request).recent_alerts(limit)


# ── Operator config ────────────────────────────────────────────────────────────

class ConfigValue(BaseModel):
    value: Any


@router.get("/config")
def list_config(request: Request) -> dict[str, Any]:
    return _config_store(request).items()


@router.get("/config/{key}")
def get_config(key: str, request: Request) -> dict[str, Any]:
    value = _config_store(request).get(key)
    if value is None:
        raise HTTPException(status_code=404, detail=f"config key {key!r} not set")
    return {"key": key, "value": value}


@router.put("/config/{key}")
def put_config(key: str, body: ConfigValue, request: Request) -> dict[str, Any]:
    _config_store(request).set(key, body.value)
    logger.info("Config key %r updated", key)
    return {"key": key, "value": body.value}


@router.delete("/config/{key}", status_code=204)
def delete_config(key: str, request: Request) -> None:
    _config_store(request).clear(key)


@router.delete("/config", status_code=204)
def clear_config(request: Request) -> None:
    _config_store(request).clear()
    logger.info("Config store cleared")
