"""
FastAPI application entry point.

Lifespan:
  startup  → choose the config store backend → start the result publisher
             (when enabled) → build the session registry
  shutdown → stop every active session (releases sampler handles)
           → drain and close the result publisher
"""
from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI

from smartproctor.config import get_settings
from smartproctor.session.registry import SessionRegistry
from smartproctor.storage.config_store import ConfigStore, open_config_store

if TYPE_CHECKING:
    from smartproctor.publisher.result_publisher import BackgroundPublisher

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)
settings = get_settings()


def build_publisher() -> BackgroundPublisher | None:
    if not settings.publish_results:
        return None

    from smartproctor.publisher.result_publisher import BackgroundPublisher
    return BackgroundPublisher()


def build_registry(publisher: BackgroundPublisher | None = None) -> SessionRegistry:
    """Registry whose callbacks enqueue on the result publisher, if there is one."""
    if publisher is None:
        return SessionRegistry()

    registry: SessionRegistry

    def _on_alert(session_id, alert) -> None:
        try:
            score = registry.get(session_id).assessment.suspicion_score
        except KeyError:
            score = None
        publisher.submit_alert(session_id, alert, score)

    registry = SessionRegistry(on_alert=_on_alert, on_session_complete=publisher.submit_summary)
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Startup ────────────────────────────────────────────────────────────
    logger.info("Proctoring service starting up …")

    if getattr(app.state, "config_store", None) is None:
        app.state.config_store = open_config_store()
    if getattr(app.state, "registry", None) is None:
        app.state.publisher = build_publisher()
        app.state.registry  = build_registry(app.state.publisher)

    yield

    # ── Shutdown ───────────────────────────────────────────────────────────
    logger.info("Proctoring service shutting down …")
    app.state.registry.stop_all()
    if app.state.publisher is not None:
        app.state.publisher.close()


def create_app(
    registry:     SessionRegistry | None = None,
    config_store: ConfigStore | None = None,
    publisher:    BackgroundPublisher | None = None,
) -> FastAPI:
    app = FastAPI(
        title       = "SmartProctor Risk Engine",
        description = "Suspicion scoring and alerting for proctored exam sessions",
        version     = "1.0.0",
        lifespan    = lifespan,
    )
    app.state.registry     = registry
    app.state.config_store = config_store
    app.state.publisher    = publisher

    from smartproctor.api.routes import router
    app.include_router(router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "smartproctor.main:app",
        host   = "0.0.0.0",
        port   = settings.port,
        reload = False,
        workers= 1,       # sessions live in process memory — more workers split them
    )
