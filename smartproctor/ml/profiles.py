"""
Scoring profiles — named weight / threshold presets for the risk aggregator.

Each monitoring level (webcam, single-camera AI, gaze / head tracking,
wired camera + mic) scores with slightly different weights and alert rules.

`standard` composite (default):
    (100 - authenticity)         × 0.30
  + (100 - attention)            × 0.20
  +  stress                      × 0.15
  +  identity penalty            20 flat when identity is not verified
  + (100 - connection_stability) × 0.10
  +  surveillance_threat_score   × 0.25   (0 when surveillance is inactive)

`gaze_tracking` scores only gaze deviation × 0.5 + head movement × 0.3
+ audio level × 0.2; identity still alerts but adds no penalty.

The weights are not normalised: the sum is clamped to [0, 100] and
floored to an integer.
"""
from __future__ import annotations

from dataclasses import dataclass

from smartproctor.errors import ConfigurationError


@dataclass(frozen=True)
class ScoringProfile:
    name: str

    # ── Composite weights ────────────────────────────────────────────────
    authenticity_weight:  float = 0.30
    attention_weight:     float = 0.20
    stress_weight:        float = 0.15
    identity_penalty:     float = 20.0    # flat, not scaled
    connection_weight:    float = 0.10
    surveillance_weight:  float = 0.25
    gaze_weight:          float = 0.0
    head_movement_weight: float = 0.0
    audio_weight:         float = 0.0

    # ── Threat bands: score < low → LOW, < medium → MEDIUM, < high → HIGH ─
    threat_bands: tuple[float, float, float] = (25.0, 50.0, 75.0)

    # ── Risk-factor thresholds ───────────────────────────────────────────
    stress_factor_above:       float = 70.0
    attention_factor_below:    float = 50.0
    connection_unstable_below: float = 60.0
    surveillance_factor_above: float = 60.0

    # ── Alert thresholds ─────────────────────────────────────────────────
    risk_alert_above:         float = 70.0
    stress_alert_above:       float = 85.0
    surveillance_alert_above: float = 70.0

    # Optional rules, disabled when None
    quality_alert_below:       float | None = None
    audio_alert_above:         float | None = None
    attention_alert_below:     float | None = None
    multi_factor_alert_min:    int   | None = None
    gaze_alert_above:          float | None = None
    head_movement_alert_above: float | None = None


STANDARD = ScoringProfile(name="standard")

# Single-camera AI level: heavier behavioural weights, light identity penalty
AI_ENHANCED = ScoringProfile(
    name                   = "ai_enhanced",
    authenticity_weight    = 0.40,
    attention_weight       = 0.30,
    stress_weight          = 0.20,
    identity_penalty       = 3.0,
    connection_weight      = 0.0,
    surveillance_weight    = 0.0,
    stress_alert_above     = 80.0,
    attention_alert_below  = 40.0,
    multi_factor_alert_min = 3,
)

# Wired camera / microphone level: device health feeds the alerts
WIRED = ScoringProfile(
    name                      = "wired",
    attention_weight          = 0.25,
    stress_weight             = 0.20,
    connection_weight         = 0.0,
    connection_unstable_below = 70.0,
    quality_alert_below       = 60.0,
    audio_alert_above         = 80.0,
)

# Gaze / head tracking level: motion and audio only
GAZE_TRACKING = ScoringProfile(
    name                      = "gaze_tracking",
    authenticity_weight       = 0.0,
    attention_weight          = 0.0,
    stress_weight             = 0.0,
    identity_penalty          = 0.0,
    connection_weight         = 0.0,
    surveillance_weight       = 0.0,
    gaze_weight               = 0.5,
    head_movement_weight      = 0.3,
    audio_weight              = 0.2,
    stress_alert_above        = 100.0,   # stress is not tracked at this level
    audio_alert_above         = 80.0,
    gaze_alert_above          = 40.0,
    head_movement_alert_above = 70.0,
)

PROFILES: dict[str, ScoringProfile] = {
    p.name: p for p in (STANDARD, AI_ENHANCED, GAZE_TRACKING, WIRED)
}


def get_profile(name: str) -> ScoringProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ConfigurationError(
            f"unknown scoring profile {name!r} (known: {', '.join(sorted(PROFILES))})"
        ) from None
