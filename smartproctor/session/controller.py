"""
SessionController — lifecycle and tick loop of one proctored session.

    IDLE ──start()──▶ ACTIVE ──stop()──▶ STOPPED (terminal)

Each tick pulls one reading from the sampler, evaluates it, appends the
resulting alerts to the session's AlertLog, fires `on_alert` for each and
updates the violation counter.  stop() cancels the ticker, releases the
sampler and returns the SessionSummary, which is built exactly once.

Threading:
  • one background ticker thread per ACTIVE session (threading.Event wait)
  • ticks are serialised by a re-entrant lock; stop() waits for an
    in-flight tick and joins the ticker before returning, so no tick runs
    after stop() returns
  • the first stop() call owns the shutdown; later or concurrent calls
    wait for its summary instead of re-entering the locks
"""
from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from smartproctor.config import SessionConfig
from smartproctor.errors import InvalidStateError, SamplerUnavailable
from smartproctor.ml.profiles import get_profile
from smartproctor.ml.risk_aggregator import (
    Alert,
    AlertType,
    RiskAggregator,
    RiskAssessment,
    sampler_lost_alert,
)
from smartproctor.ml.session_report import SessionReport, build_report
from smartproctor.modules.signal_sampler import SignalSampler
from smartproctor.session.alert_log import AlertLog

logger = logging.getLogger(__name__)

# One suspicion score per tick; an hour at the default 1 s interval
HISTORY_LIMIT = 3600

AlertCallback   = Callable[[Alert], None]
SummaryCallback = Callable[["SessionSummary"], None]


class SessionState(str, Enum):
    IDLE    = "IDLE"
    ACTIVE  = "ACTIVE"
    STOPPED = "STOPPED"


@dataclass
class SessionSummary:
    """Final results handed to the host when a session stops."""
    session_id:            str
    total_elapsed_seconds: float
    violation_count:       int
    final_suspicion_score: int
    alert_count:           int
    last_assessment:       RiskAssessment
    suspicion_history:     list[int]   = field(default_factory=list)
    recent_alerts:         list[Alert] = field(default_factory=list)
    profile:               str  = "standard"
    surveillance_enabled:  bool = False
    sampler_failures:      int  = 0
    started_at:            datetime | None = None
    stopped_at:            datetime | None = None
    report:                SessionReport | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId":           self.session_id,
            "totalElapsedSeconds": self.total_elapsed_seconds,
            "violationCount":      self.violation_count,
            "finalSuspicionScore": self.final_suspicion_score,
            "alertCount":          self.alert_count,
            "lastAssessment":      self.last_assessment.to_dict(),
            "suspicionHistory":    list(self.suspicion_history),
            "recentAlerts":        [a.to_dict() for a in self.recent_alerts],
            "profile":             self.profile,
            "surveillanceEnabled": self.surveillance_enabled,
            "samplerFailures":     self.sampler_failures,
            "startedAt":           self.started_at.isoformat() if self.started_at else None,
            "stoppedAt":           self.stopped_at.isoformat() if self.stopped_at else None,
            "report":              self.report.to_dict() if self.report else None,
        }


class AlertDebouncer:
    """
    Lets an alert type through only on the tick its condition starts to
    hold; repeats are dropped until a tick where the type does not fire.
    """

    def __init__(self) -> None:
        self._active: set[AlertType] = set()

    def filter(self, alerts: list[Alert]) -> list[Alert]:
        current = {a.type for a in alerts}
        passed  = [a for a in alerts if a.type not in self._active]
        self._active = current
        return passed


class SessionController:

    def __init__(
        self,
        sampler:             SignalSampler,
        config:              SessionConfig | None = None,
        session_id:          str | None = None,
        on_alert:            AlertCallback | None = None,
        on_session_complete: SummaryCallback | None = None,
        run_scheduler:       bool = True,
        clock:               Callable[[], datetime] | None = None,
    ) -> None:
        self.config     = (config or SessionConfig()).validate()
        self.session_id = session_id or uuid.uuid4().hex
        self._sampler   = sampler
        self._on_alert  = on_alert
        self._on_complete   = on_session_complete
        self._run_scheduler = run_scheduler
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._aggregator = RiskAggregator(
            profile              = get_profile(self.config.profile),
            surveillance_enabled = self.config.surveillance_enabled,
            identity_threshold   = self.config.identity_threshold,
        )
        self._log       = AlertLog(self.config.alert_capacity)
        self._debouncer = None if self.config.repeat_alerts else AlertDebouncer()

        self._state       = SessionState.IDLE
        self._state_lock  = threading.Lock()
        self._tick_lock   = threading.RLock()
        self._stop_event  = threading.Event()
        self._stopped     = threading.Event()
        self._stopping    = False
        self._thread: threading.Thread | None = None
        self._tick_thread: int | None = None

        self._assessment       = RiskAssessment()
        self._violations       = 0
        self._alert_total      = 0
        self._ticks            = 0
        self._sampler_failures = 0
        self._recordings       = 0
        self._history:  deque[int]   = deque(maxlen=HISTORY_LIMIT)
        self._timeline: deque[Alert] = deque(maxlen=HISTORY_LIMIT)

        self._started_at: datetime | None = None
        self._summary:    SessionSummary | None = None

    # ── Read-only views ─────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def assessment(self) -> RiskAssessment:
        return self._assessment

    @property
    def violation_count(self) -> int:
        return self._violations

    @property
    def alert_count(self) -> int:
        return self._alert_total

    @property
    def elapsed_seconds(self) -> float:
        return self._ticks * self.config.tick_interval_seconds

    @property
    def alert_log(self) -> AlertLog:
        return self._log

    @property
    def summary(self) -> SessionSummary | None:
        return self._summary

    def snapshot(self) -> dict[str, Any]:
        return {
            "sessionId":      self.session_id,
            "state":          self._state.value,
            "elapsedSeconds": self.elapsed_seconds,
            "violationCount": self._violations,
            "alertCount":     self._alert_total,
            "recordings":     self._recordings,
            "assessment":     self._assessment.to_dict(),
            "profile":        self.config.profile,
        }

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def start(self) -> None:
        with self._state_lock:
            if self._state is not SessionState.IDLE:
                raise InvalidStateError(
                    f"session {self.session_id} cannot start from {self._state.value}"
                )
            try:
                self._sampler.open()
            except SamplerUnavailable as exc:
                self._release_sampler()
                logger.warning("Session %s: sampler unavailable at start: %s", self.session_id, exc)
                raise
            except Exception as exc:
                self._release_sampler()
                logger.warning("Session %s: sampler failed to open: %s", self.session_id, exc)
                raise SamplerUnavailable(str(exc)) from exc

            self._started_at = self._clock()
            self._stop_event.clear()
            self._state = SessionState.ACTIVE

            if self._run_scheduler:
                self._thread = threading.Thread(
                    target=self._run,
                    name=f"session-{self.session_id[:8]}",
                    daemon=True,
                )
                self._thread.start()

        logger.info(
            "Session %s started (profile=%s, interval=%dms, surveillance=%s)",
            self.session_id, self.config.profile,
            self.config.tick_interval_ms, self.config.surveillance_enabled,
        )

    def stop(self) -> SessionSummary | None:
        """
        Stop the session and return its summary.  Safe to call from any
        thread, repeatedly, and from inside an `on_alert` callback.

        Returns None only when called from inside a tick while another
        thread is already stopping the session; that thread finishes the
        stop as soon as the tick returns.
        """
        with self._state_lock:
            if self._state is SessionState.IDLE:
                raise InvalidStateError(f"session {self.session_id} was never started")
            owner = not self._stopping
            self._stopping = True
            self._stop_event.set()

        if not owner:
            if not self._stopped.is_set() and self._tick_thread == threading.get_ident():
                return None
            self._stopped.wait()
            return self._summary

        # Lock order: never hold _state_lock while waiting on _tick_lock
        with self._tick_lock:
            self._state = SessionState.STOPPED

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None

        try:
            self._release_sampler()
            summary = self._summary = self._build_summary()
        finally:
            self._stopped.set()

        logger.info(
            "Session %s stopped: %.0fs elapsed, %d violations, %d alerts, final score %d",
            self.session_id, summary.total_elapsed_seconds, summary.violation_count,
            summary.alert_count, summary.final_suspicion_score,
        )
        self._emit_complete(summary)
        return summary

    def __enter__(self) -> "SessionController":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._state is SessionState.ACTIVE:
            self.stop()
        else:
            self._release_sampler()

    def add_recording(self, count: int = 1) -> int:
        """Count evidence clips captured by the host; each raises report confidence."""
        if count < 1:
            raise ValueError(f"count must be at least 1, got {count}")
        with self._state_lock:
            if self._state is not SessionState.ACTIVE or self._stopping:
                raise InvalidStateError(
                    f"session {self.session_id} is not recording ({self._state.value})"
                )
            self._recordings += count
            return self._recordings

    # ── Tick pipeline ───────────────────────────────────────────────────────

    def tick(self) -> RiskAssessment | None:
        """Run one evaluation cycle.  No-op unless the session is ACTIVE."""
        with self._tick_lock:
            if self._state is not SessionState.ACTIVE or self._stop_event.is_set():
                return None
            self._tick_thread = threading.get_ident()
            try:
                return self._tick()
            finally:
                self._tick_thread = None

    def _tick(self) -> RiskAssessment:
        now = self._clock()
        try:
            reading = self._sampler.sample()
        except Exception as exc:
            self._sampler_failures += 1
            logger.warning("Session %s: sampler lost: %s", self.session_id, exc)
            alerts = [sampler_lost_alert(str(exc) or type(exc).__name__, now)]
        else:
            assessment, alerts, _ = self._aggregator.evaluate(reading, self._violations, now)
            if self._debouncer is not None:
                alerts = self._debouncer.filter(alerts)
            self._violations += sum(1 for a in alerts if a.is_violation)
            assessment.violation_count = self._violations
            self._assessment = assessment
            self._history.append(assessment.suspicion_score)

        self._ticks += 1
        for alert in alerts:
            # on_alert, or another thread, may stop the session mid-tick
            if self._stop_event.is_set():
                break
            self._log.append(alert)
            self._timeline.append(alert)
            self._alert_total += 1
            self._emit_alert(alert)

        return self._assessment

    def _run(self) -> None:
        interval = self.config.tick_interval_seconds
        logger.debug("Session %s ticker running every %.3fs", self.session_id, interval)
        while not self._stop_event.wait(interval):
            try:
                self.tick()
            except Exception as exc:
                logger.error("Session %s tick failed: %s", self.session_id, exc, exc_info=True)

    # ── Internal helpers ────────────────────────────────────────────────────

    def _emit_alert(self, alert: Alert) -> None:
        if self._on_alert is None:
            return
        try:
            self._on_alert(alert)
        except Exception as exc:
            logger.error("Session %s on_alert callback failed: %s", self.session_id, exc, exc_info=True)

    def _emit_complete(self, summary: SessionSummary) -> None:
        if self._on_complete is None:
            return
        try:
            self._on_complete(summary)
        except Exception as exc:
            logger.error("Session %s on_session_complete callback failed: %s",
                         self.session_id, exc, exc_info=True)

    def _release_sampler(self) -> None:
        try:
            self._sampler.close()
        except Exception as exc:
            logger.warning("Session %s: sampler close failed: %s", self.session_id, exc)

    def _build_summary(self) -> SessionSummary:
        history = list(self._history)
        return SessionSummary(
            session_id            = self.session_id,
            total_elapsed_seconds = self.elapsed_seconds,
            violation_count       = self._violations,
            final_suspicion_score = self._assessment.suspicion_score,
            alert_count           = self._alert_total,
            last_assessment       = self._assessment,
            suspicion_history     = history,
            recent_alerts         = self._log.recent(),
            profile               = self.config.profile,
            surveillance_enabled  = self.config.surveillance_enabled,
            sampler_failures      = self._sampler_failures,
            started_at            = self._started_at,
            stopped_at            = self._clock(),
            report                = build_report(list(self._timeline), history, self._recordings),
        )
