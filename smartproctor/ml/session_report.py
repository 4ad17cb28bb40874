"""
Post-session analysis of an alert timeline.

Produces the report attached to every SessionSummary:
  • weighted risk score  — alert confidence × pattern weight × multiplier,
                           divided by the summed weights
  • behavioural pattern  — consistent | sporadic | clustered | progressive
                           (insufficient_data below two alerts)
  • risk level           — MINIMAL | LOW | MEDIUM | HIGH | CRITICAL after
                           alert-count and pattern adjustments
  • recommendations      — by risk level plus pattern-specific extras
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import numpy as np

from smartproctor.ml.risk_aggregator import Alert, AlertType

logger = logging.getLogger(__name__)

# (weight, risk multiplier) per alert type; unlisted types are not weighted
PATTERN_WEIGHTS: dict[AlertType, tuple[float, float]] = {
    AlertType.IDENTITY_VERIFICATION_FAILED: (0.80, 1.5),
    AlertType.RISK_PREDICTION:              (0.90, 2.0),
    AlertType.AUDIO_ANOMALY:                (0.70, 1.3),
    AlertType.BEHAVIORAL_ANOMALY:           (0.60, 1.2),
    AlertType.SURVEILLANCE_ALERT:           (0.85, 1.8),
}

_PATTERN_ORDER = ("consistent", "sporadic", "clustered", "progressive")

_RECOMMENDATIONS: dict[str, list[str]] = {
    "CRITICAL": [
        "Immediate intervention required",
        "Consider terminating the examination session",
        "Flag for urgent review by the academic integrity committee",
        "Document all evidence with timestamped screenshots",
        "Contact the student for immediate clarification",
        "Schedule a comprehensive follow-up investigation",
    ],
    "HIGH": [
        "Enhanced monitoring protocols activated",
        "Send an immediate warning notification to the student",
        "Increase screenshot capture frequency",
        "Enable real-time proctor intervention",
        "Schedule additional verification checkpoints",
        "Prepare a detailed incident report for review",
    ],
    "MEDIUM": [
        "Standard monitoring protocols sufficient",
        "Continue regular screenshot capture",
        "Note behavioural patterns for trend analysis",
        "Consider additional verification questions",
        "Monitor for pattern escalation",
    ],
    "LOW": [
        "Standard monitoring sufficient",
        "No immediate action required",
        "File report for compliance documentation",
        "Monitor for future pattern development",
    ],
    "MINIMAL": [
        "Normal session completion",
        "Archive report for record-keeping",
        "Session integrity maintained",
    ],
}


@dataclass
class BehaviouralPattern:
    pattern:              str
    confidence:           float
    avg_interval_minutes: float = 0.0
    variance_hours:       float = 0.0
    pattern_scores:       dict[str, float] = field(default_factory=dict)


@dataclass
class SessionReport:
    risk_score:      float
    risk_level:      str
    confidence:      float
    pattern:         BehaviouralPattern
    recommendations: list[str]
    alert_breakdown: dict[str, int]
    mean_suspicion:  float
    peak_suspicion:  int

    def to_dict(self) -> dict[str, Any]:
        return {
            "riskScore":       round(self.risk_score, 3),
            "riskLevel":       self.risk_level,
            "confidence":      self.confidence,
            "pattern": {
                "pattern":            self.pattern.pattern,
                "confidence":         self.pattern.confidence,
                "avgIntervalMinutes": round(self.pattern.avg_interval_minutes, 4),
                "varianceHours":      round(self.pattern.variance_hours, 6),
                "patternScores":      dict(self.pattern.pattern_scores),
            },
            "recommendations": list(self.recommendations),
            "alertBreakdown":  dict(self.alert_breakdown),
            "meanSuspicion":   round(self.mean_suspicion, 2),
            "peakSuspicion":   self.peak_suspicion,
        }


def weighted_risk_score(alerts: Iterable[Alert]) -> float:
    total_score  = 0.0
    total_weight = 0.0
    for alert in alerts:
        weights = PATTERN_WEIGHTS.get(alert.type)
        if weights is None:
            continue
        weight, multiplier = weights
        total_score  += alert.confidence * weight * multiplier
        total_weight += weight
    return total_score / total_weight if total_weight > 0 else 0.0


def analyze_pattern(alerts: Sequence[Alert]) -> BehaviouralPattern:
    """Classify the timing of alerts.  `alerts` must be oldest-first."""
    if len(alerts) < 2:
        return BehaviouralPattern(pattern="insufficient_data", confidence=0.0)

    stamps_ms = np.array(sorted(a.timestamp.timestamp() * 1000.0 for a in alerts))
    intervals = np.diff(stamps_ms)
    avg_interval = float(intervals.mean())
    variance     = float(intervals.var())

    scores = {name: 0.0 for name in _PATTERN_ORDER}
    if variance < avg_interval * 0.3:
        scores["consistent"] = 80.0
    elif variance > avg_interval * 2:
        scores["sporadic"] = 70.0
    else:
        scores["clustered"] = 60.0

    recent = alerts[-5:]
    if len(recent) >= 3:
        recent_avg = float(np.mean([a.confidence for a in recent]))
        older = alerts[:-5]
        older_avg = float(np.mean([a.confidence for a in older])) if older else 0.0
        if recent_avg > older_avg * 1.2:
            scores["progressive"] = 75.0

    # Ties go to the later pattern
    dominant = _PATTERN_ORDER[0]
    for name in _PATTERN_ORDER[1:]:
        if not scores[dominant] > scores[name]:
            dominant = name

    return BehaviouralPattern(
        pattern              = dominant,
        confidence           = max(scores.values()),
        avg_interval_minutes = avg_interval / 1000.0 / 60.0,
        variance_hours       = variance / 1000.0 / 60.0 / 60.0,
        pattern_scores       = scores,
    )


def determine_risk_level(score: float, alert_count: int, pattern: BehaviouralPattern) -> str:
    adjusted = score
    if alert_count > 10:
        adjusted += 10
    elif alert_count > 5:
        adjusted += 5

    if pattern.pattern == "consistent":
        adjusted += 15
    if pattern.pattern == "progressive":
        adjusted += 10
    if pattern.pattern_scores.get("progressive", 0.0) > 50:
        adjusted += 8

    if adjusted >= 85:
        return "CRITICAL"
    if adjusted >= 70:
        return "HIGH"
    if adjusted >= 55:
        return "MEDIUM"
    if adjusted >= 35:
        return "LOW"
    return "MINIMAL"


def recommendations_for(risk_level: str, pattern: BehaviouralPattern) -> list[str]:
    recs = list(_RECOMMENDATIONS[risk_level])
    if pattern.pattern == "consistent":
        recs.append(
            "Consistent violation pattern detected - recommend systematic review "
            "of examination procedures"
        )
    if pattern.pattern == "progressive":
        recs.append(
            "Progressive risk escalation observed - immediate attention recommended "
            "to prevent further violations"
        )
    return recs


def build_report(
    alerts:            Sequence[Alert],
    suspicion_history: Sequence[int] = (),
    recordings:        int = 0,
) -> SessionReport:
    """Analyse a whole session.  `alerts` may be in any order."""
    ordered = sorted(alerts, key=lambda a: a.timestamp)

    score   = weighted_risk_score(ordered)
    pattern = analyze_pattern(ordered)
    level   = determine_risk_level(score, len(ordered), pattern)

    history = np.asarray(suspicion_history, dtype=float)
    report = SessionReport(
        risk_score      = score,
        risk_level      = level,
        confidence      = float(min(95, 70 + len(ordered) * 2 + recordings * 5)),
        pattern         = pattern,
        recommendations = recommendations_for(level, pattern),
        alert_breakdown = dict(Counter(a.type.value for a in ordered)),
        mean_suspicion  = float(history.mean()) if history.size else 0.0,
        peak_suspicion  = int(history.max()) if history.size else 0,
    )
    logger.info(
        "Session report: risk=%.1f level=%s pattern=%s alerts=%d",
        report.risk_score, report.risk_level, pattern.pattern, len(ordered),
    )
    return report
