"""
Registry of concurrently monitored sessions (the admin-panel view).

Sessions are independent SessionController instances keyed by session id.
The registry only holds references; the merged alert feed is built by
reading each session's own log, so no mutable state is shared between
sessions.
"""
from __future__ import annotations

import logging
import threading
import uuid
from typing import Callable

from smartproctor.config import SessionConfig, get_settings
from smartproctor.ml.risk_aggregator import Alert
from smartproctor.modules.signal_sampler import SignalSampler, SimulatedSampler
from smartproctor.session.controller import (
    AlertCallback,
    SessionController,
    SessionState,
    SessionSummary,
    SummaryCallback,
)

logger = logging.getLogger(__name__)

SamplerFactory = Callable[[SessionConfig, "int | None"], SignalSampler]
SessionAlertCallback = Callable[[str, Alert], None]


def simulated_sampler_factory(config: SessionConfig, seed: int | None = None) -> SignalSampler:
    """Simulated signal source; falls back to the configured sampler_seed when no seed is given."""
    if seed is None:
        seed = get_settings().sampler_seed
    return SimulatedSampler(
        preset               = config.profile,
        seed                 = seed,
        surveillance_enabled = config.surveillance_enabled,
    )


class SessionRegistry:

    def __init__(
        self,
        sampler_factory:     SamplerFactory = simulated_sampler_factory,
        on_alert:            SessionAlertCallback | None = None,
        on_session_complete: SummaryCallback | None = None,
        run_scheduler:       bool = True,
    ) -> None:
        self._sampler_factory = sampler_factory
        self._on_alert        = on_alert
        self._on_complete     = on_session_complete
        self._run_scheduler   = run_scheduler
        self._sessions: dict[str, SessionController] = {}
        self._lock = threading.Lock()

    def create(
        self,
        session_id: str | None = None,
        config:     SessionConfig | None = None,
        sampler:    SignalSampler | None = None,
        seed:       int | None = None,
        start:      bool = True,
    ) -> SessionController:
        """
        Build, register and (by default) start a new session.
        A session whose start fails is not registered.
        """
        config     = (config or SessionConfig.from_settings()).validate()
        sampler    = sampler or self._sampler_factory(config, seed)
        session_id = session_id or uuid.uuid4().hex

        controller = SessionController(
            sampler             = sampler,
            config              = config,
            session_id          = session_id,
            on_alert            = self._alert_callback_for(session_id),
            on_session_complete = self._on_complete,
            run_scheduler       = self._run_scheduler,
        )
        with self._lock:
            if controller.session_id in self._sessions:
                raise ValueError(f"session {controller.session_id} already exists")
            self._sessions[controller.session_id] = controller

        if start:
            try:
                controller.start()
            except Exception:
                with self._lock:
                    self._sessions.pop(controller.session_id, None)
                raise
        return controller

    def get(self, session_id: str) -> SessionController:
        with self._lock:
            return self._sessions[session_id]

    def sessions(self) -> list[SessionController]:
        with self._lock:
            return list(self._sessions.values())

    def stop(self, session_id: str) -> SessionSummary:
        return self.get(session_id).stop()

    def remove(self, session_id: str) -> SessionSummary | None:
        """
        Forget a session, stopping it first when it is still ACTIVE.
        Returns its summary (None for a session that never started).
        """
        with self._lock:
            controller = self._sessions.pop(session_id)
        if controller.state is SessionState.ACTIVE:
            controller.stop()
        logger.info("Session %s removed from registry", session_id)
        return controller.summary

    def prune(self) -> int:
        """Forget every STOPPED session; returns how many were dropped."""
        with self._lock:
            stopped = [sid for sid, c in self._sessions.items() if c.state is SessionState.STOPPED]
            for sid in stopped:
                del self._sessions[sid]
        if stopped:
            logger.info("Pruned %d stopped sessions", len(stopped))
        return len(stopped)

    def stop_all(self) -> list[SessionSummary]:
        summaries = []
        for controller in self.sessions():
            if controller.state is SessionState.ACTIVE:
                summaries.append(controller.stop())
        logger.info("Stopped %d active sessions", len(summaries))
        return summaries

    def recent_alerts(self, k: int = 20) -> list[dict]:
        """Newest-first alerts across all sessions, each tagged with its session id."""
        if k <= 0:
            return []
        tagged = [
            (alert, controller.session_id)
            for controller in self.sessions()
            for alert in controller.alert_log.recent(k)
        ]
        tagged.sort(key=lambda item: item[0].timestamp, reverse=True)
        return [{**alert.to_dict(), "sessionId": sid} for alert, sid in tagged[:k]]

    def _alert_callback_for(self, session_id: str) -> AlertCallback | None:
        if self._on_alert is None:
            return None

        def _callback(alert: Alert) -> None:
            self._on_alert(session_id, alert)

        return _callback
