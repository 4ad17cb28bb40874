"""
Risk Aggregator — turns one SignalReading into a composite suspicion score
(0 – 100), a threat level, a list of human-readable risk factors and the
alerts that fire for this tick.

The composite formula and every threshold come from a ScoringProfile
(see smartproctor.ml.profiles for the documented weights).  Evaluation is pure:
no I/O, no state carried between calls.  Out-of-range inputs are clamped,
never rejected, so evaluate() cannot raise on any reading.

Alert rules (independent, checked on every tick):
    identity not verified        → CRITICAL identity_verification_failed  (+1 violation)
    suspicion score > 70         → CRITICAL risk_prediction               (+1 violation)
    connection_stability < 60    → HIGH     connection_unstable
    stress > 85                  → MEDIUM   behavioral_anomaly
    surveillance score > 70      → HIGH     surveillance_alert
"""
from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NamedTuple

from smartproctor.ml.profiles import STANDARD, ScoringProfile
from smartproctor.modules.signal_sampler import SignalReading, clamp_score

logger = logging.getLogger(__name__)


# ── Enumerations ──────────────────────────────────────────────────────────────

class ThreatLevel(str, Enum):
    LOW      = "LOW"
    MEDIUM   = "MEDIUM"
    HIGH     = "HIGH"
    CRITICAL = "CRITICAL"


class Severity(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class AlertType(str, Enum):
    IDENTITY_VERIFICATION_FAILED = "identity_verification_failed"
    RISK_PREDICTION              = "risk_prediction"
    CONNECTION_UNSTABLE          = "connection_unstable"
    BEHAVIORAL_ANOMALY           = "behavioral_anomaly"
    SURVEILLANCE_ALERT           = "surveillance_alert"
    QUALITY_DEGRADED             = "quality_degraded"
    AUDIO_ANOMALY                = "audio_anomaly"
    SAMPLER_LOST                 = "sampler_lost"


class AlertSource(str, Enum):
    IDENTITY     = "identity"
    RISK_MODEL   = "risk_model"
    DEVICE       = "device"
    BEHAVIOR     = "behavior"
    AUDIO        = "audio"
    SURVEILLANCE = "surveillance"
    SAMPLER      = "sampler"


# Alert types that also count as a violation
VIOLATION_TYPES = frozenset({
    AlertType.IDENTITY_VERIFICATION_FAILED,
    AlertType.RISK_PREDICTION,
})


# ── Output dataclasses ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Alert:
    """One emitted alert.  Immutable once created."""
    id:         str
    timestamp:  datetime
    type:       AlertType
    severity:   Severity
    message:    str
    source:     AlertSource
    confidence: float             # 0 – 100

    @property
    def is_violation(self) -> bool:
        return self.type in VIOLATION_TYPES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id":         self.id,
            "timestamp":  self.timestamp.isoformat(),
            "type":       self.type.value,
            "severity":   self.severity.value,
            "message":    self.message,
            "source":     self.source.value,
            "confidence": round(self.confidence, 2),
        }


def make_alert(
    alert_type: AlertType,
    severity:   Severity,
    message:    str,
    source:     AlertSource,
    confidence: float,
    now:        datetime | None = None,
) -> Alert:
    """Build an Alert with a time + random derived id."""
    ts = now or datetime.now(timezone.utc)
    return Alert(
        id         = f"{int(ts.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}",
        timestamp  = ts,
        type       = alert_type,
        severity   = severity,
        message    = message,
        source     = source,
        confidence = clamp_score(confidence),
    )


def sampler_lost_alert(reason: str, now: datetime | None = None) -> Alert:
    """Alert raised when the signal source drops out during a session."""
    return make_alert(
        AlertType.SAMPLER_LOST,
        Severity.CRITICAL,
        f"Signal source unavailable: {reason}",
        AlertSource.SAMPLER,
        100.0,
        now,
    )


@dataclass
class RiskAssessment:
    """Engine state after one tick."""
    suspicion_score:     int         = 0
    threat_level:        ThreatLevel = ThreatLevel.LOW
    risk_factors:        list[str]   = field(default_factory=list)
    confidence_interval: float       = 0.0
    violation_count:     int         = 0
    # Unfloored composite, kept for diagnostics
    cheating_probability: float      = 0.0
    surveillance_active:  bool       = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "suspicionScore":      self.suspicion_score,
            "threatLevel":         self.threat_level.value,
            "riskFactors":         list(self.risk_factors),
            "confidenceInterval":  round(self.confidence_interval, 2),
            "violationCount":      self.violation_count,
            "cheatingProbability": round(self.cheating_probability, 2),
            "surveillanceActive":  self.surveillance_active,
        }


class Evaluation(NamedTuple):
    assessment:      RiskAssessment
    alerts:          list[Alert]
    violation_delta: int


# ── Pure scoring helpers ──────────────────────────────────────────────────────

def cheating_probability(
    reading:             SignalReading,
    identity_verified:   bool,
    surveillance_active: bool,
    profile:             ScoringProfile = STANDARD,
) -> float:
    """Weighted composite of a *clamped* reading, clamped to [0, 100]."""
    surveillance = reading.surveillance_threat_score if surveillance_active else 0.0
    raw = (
        (100.0 - reading.authenticity)         * profile.authenticity_weight
        + (100.0 - reading.attention)          * profile.attention_weight
        + reading.stress                       * profile.stress_weight
        + (0.0 if identity_verified else profile.identity_penalty)
        + (100.0 - reading.connection_stability) * profile.connection_weight
        + (surveillance or 0.0)                * profile.surveillance_weight
        + reading.gaze_deviation               * profile.gaze_weight
        + reading.head_movement                * profile.head_movement_weight
        + reading.audio_level                  * profile.audio_weight
    )
    return clamp_score(raw)


def suspicion_score(probability: float) -> int:
    return int(math.floor(clamp_score(probability)))


def classify_threat(score: float, bands: tuple[float, float, float] = STANDARD.threat_bands) -> ThreatLevel:
    low, medium, high = bands
    if score < low:
        return ThreatLevel.LOW
    if score < medium:
        return ThreatLevel.MEDIUM
    if score < high:
        return ThreatLevel.HIGH
    return ThreatLevel.CRITICAL


def risk_factors(
    reading:             SignalReading,
    identity_verified:   bool,
    surveillance_active: bool,
    profile:             ScoringProfile = STANDARD,
) -> list[str]:
    factors: list[str] = []
    if reading.stress > profile.stress_factor_above:
        factors.append("High stress levels detected")
    if reading.attention < profile.attention_factor_below:
        factors.append("Low attention span")
    if not identity_verified:
        factors.append("Identity verification failed")
    if reading.connection_stability < profile.connection_unstable_below:
        factors.append("Connection unstable")
    if surveillance_active and reading.surveillance_threat_score > profile.surveillance_factor_above:
        factors.append("Surveillance model flagged suspicious behavior")
    return factors


# ── Aggregator ────────────────────────────────────────────────────────────────

class RiskAggregator:
    """Stateless evaluator bound to one scoring profile."""

    def __init__(
        self,
        profile:              ScoringProfile = STANDARD,
        surveillance_enabled: bool = True,
        identity_threshold:   float | None = None,
    ) -> None:
        self.profile              = profile
        self.surveillance_enabled = surveillance_enabled
        self.identity_threshold   = identity_threshold

    def evaluate(
        self,
        reading:                  SignalReading,
        previous_violation_count: int = 0,
        now:                      datetime | None = None,
    ) -> Evaluation:
        p = self.profile
        r = reading.clamped()

        verified = r.is_identity_verified(self.identity_threshold)
        surveillance_active = self.surveillance_enabled and r.surveillance_threat_score is not None

        probability = cheating_probability(r, verified, surveillance_active, p)
        score       = suspicion_score(probability)
        factors     = risk_factors(r, verified, surveillance_active, p)

        alerts: list[Alert] = []

        def fire(alert_type, severity, message, source, confidence):
            alerts.append(make_alert(alert_type, severity, message, source, confidence, now))

        if not verified:
            fire(AlertType.IDENTITY_VERIFICATION_FAILED, Severity.CRITICAL,
                 f"Identity verification failed ({r.identity_confidence:.0f}% confidence)",
                 AlertSource.IDENTITY, r.identity_confidence)

        if score > p.risk_alert_above:
            fire(AlertType.RISK_PREDICTION, Severity.CRITICAL,
                 f"High cheating probability detected ({score}%)",
                 AlertSource.RISK_MODEL, r.model_confidence)

        if r.connection_stability < p.connection_unstable_below:
            fire(AlertType.CONNECTION_UNSTABLE, Severity.HIGH,
                 f"Connection unstable ({r.connection_stability:.0f}% stability, "
                 f"{r.connection_latency_ms:.0f} ms latency)",
                 AlertSource.DEVICE, r.connection_stability)

        if r.stress > p.stress_alert_above:
            fire(AlertType.BEHAVIORAL_ANOMALY, Severity.MEDIUM,
                 f"Extremely high stress levels ({r.stress:.0f}%)",
                 AlertSource.BEHAVIOR, 80.0)

        if surveillance_active and r.surveillance_threat_score > p.surveillance_alert_above:
            fire(AlertType.SURVEILLANCE_ALERT, Severity.HIGH,
                 f"Surveillance model detected suspicious activity "
                 f"({r.surveillance_threat_score:.0f}%)",
                 AlertSource.SURVEILLANCE, r.surveillance_threat_score)

        if p.quality_alert_below is not None and r.signal_quality < p.quality_alert_below:
            fire(AlertType.QUALITY_DEGRADED, Severity.MEDIUM,
                 f"Signal quality degraded ({r.signal_quality:.0f}%)",
                 AlertSource.DEVICE, r.signal_quality)

        if p.audio_alert_above is not None and r.audio_level > p.audio_alert_above:
            fire(AlertType.AUDIO_ANOMALY, Severity.MEDIUM,
                 f"Unusual audio activity detected ({r.audio_level:.0f}%)",
                 AlertSource.AUDIO, r.audio_level)

        if p.gaze_alert_above is not None and r.gaze_deviation > p.gaze_alert_above:
            fire(AlertType.BEHAVIORAL_ANOMALY, Severity.MEDIUM,
                 f"Gaze deviation detected - looking away ({r.gaze_deviation:.0f})",
                 AlertSource.BEHAVIOR, 75.0)

        if p.head_movement_alert_above is not None and r.head_movement > p.head_movement_alert_above:
            fire(AlertType.BEHAVIORAL_ANOMALY, Severity.LOW,
                 f"Excessive head movement detected ({r.head_movement:.0f}%)",
                 AlertSource.BEHAVIOR, r.head_movement)

        if p.attention_alert_below is not None and r.attention < p.attention_alert_below:
            fire(AlertType.BEHAVIORAL_ANOMALY, Severity.MEDIUM,
                 f"Low attention detected ({r.attention:.0f}%)",
                 AlertSource.BEHAVIOR, 80.0)

        if p.multi_factor_alert_min is not None and len(factors) >= p.multi_factor_alert_min:
            fire(AlertType.BEHAVIORAL_ANOMALY, Severity.HIGH,
                 f"Multiple risk factors detected ({len(factors)})",
                 AlertSource.BEHAVIOR, 90.0)

        violation_delta = sum(1 for a in alerts if a.is_violation)

        assessment = RiskAssessment(
            suspicion_score      = score,
            threat_level         = classify_threat(score, p.threat_bands),
            risk_factors         = factors,
            confidence_interval  = r.model_confidence,
            violation_count      = max(0, previous_violation_count) + violation_delta,
            cheating_probability = probability,
            surveillance_active  = surveillance_active,
        )

        if alerts:
            logger.debug(
                "evaluate: score=%d level=%s alerts=%s",
                score, assessment.threat_level.value, [a.type.value for a in alerts],
            )

        return Evaluation(assessment, alerts, violation_delta)
