"""
Signal sampler — the per-tick source of sensor readings.

A SignalReading bundles the sub-scores that the camera / microphone /
device stack would produce for one tick.  There are no real detectors
here: `SimulatedSampler` draws each sub-score from a uniform range so
the rest of the engine can run without any hardware.

Sampler contract:
    open()   — acquire device handles; may raise SamplerUnavailable
    sample() — return one SignalReading; may raise SamplerUnavailable
    close()  — release device handles; must be safe to call repeatedly
"""
from __future__ import annotations

import abc
import logging
import math
from dataclasses import dataclass, fields, replace

import numpy as np

from smartproctor.errors import SamplerUnavailable

logger = logging.getLogger(__name__)

# Identity is considered verified when face-match confidence exceeds this
IDENTITY_THRESHOLD = 75.0


def clamp_score(value, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp to [low, high].  None and NaN map to `low`; never raises."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return low
    if math.isnan(value):
        return low
    return max(low, min(high, value))


# ── Reading ───────────────────────────────────────────────────────────────────

_BOUNDED_FIELDS = (
    "identity_confidence",
    "attention",
    "stress",
    "engagement",
    "authenticity",
    "voice_clarity",
    "voice_naturalness",
    "voice_consistency",
    "environment_quality",
    "connection_stability",
    "signal_quality",
    "audio_level",
    "gaze_deviation",
    "head_movement",
    "model_confidence",
)


@dataclass(frozen=True)
class SignalReading:
    """Sub-scores for one tick.  Defaults describe a clean, compliant frame."""
    identity_confidence: float = 100.0
    # None → derived from identity_confidence against IDENTITY_THRESHOLD
    identity_verified: bool | None = None

    attention:    float = 100.0
    stress:       float = 0.0
    engagement:   float = 100.0
    authenticity: float = 100.0

    voice_clarity:     float = 100.0
    voice_naturalness: float = 100.0
    voice_consistency: float = 100.0

    environment_quality: float = 100.0

    connection_stability:  float = 100.0
    connection_latency_ms: float = 0.0
    signal_quality:        float = 100.0
    audio_level:           float = 0.0

    # Distance of the gaze point from screen centre, and head motion
    gaze_deviation: float = 0.0
    head_movement:  float = 0.0

    # None when the surveillance model is not running
    surveillance_threat_score: float | None = None

    # Self-reported certainty of the (simulated) models
    model_confidence: float = 90.0

    def clamped(self) -> "SignalReading":
        """Return a copy with every bounded sub-score forced into range."""
        changes = {name: clamp_score(getattr(self, name)) for name in _BOUNDED_FIELDS}
        changes["connection_latency_ms"] = clamp_score(
            self.connection_latency_ms, 0.0, math.inf,
        )
        if self.surveillance_threat_score is not None:
            changes["surveillance_threat_score"] = clamp_score(self.surveillance_threat_score)
        return replace(self, **changes)

    def is_identity_verified(self, threshold: float | None = None) -> bool:
        if threshold is not None:
            return clamp_score(self.identity_confidence) > threshold
        if self.identity_verified is not None:
            return bool(self.identity_verified)
        return clamp_score(self.identity_confidence) > IDENTITY_THRESHOLD

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# ── Sampler interface ─────────────────────────────────────────────────────────

class SignalSampler(abc.ABC):
    """
    Pull-based source of SignalReadings, one per tick.

    Subclasses must implement `sample()`.  `open()` / `close()` default to
    no-ops for sources that hold no device handles.
    """

    def open(self) -> None:
        """Acquire camera / microphone handles."""

    @abc.abstractmethod
    def sample(self) -> SignalReading:
        """Produce the reading for the current tick."""

    def close(self) -> None:
        """Release every handle acquired by open()."""

    def __enter__(self) -> "SignalSampler":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ── Simulated sampler ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SimulationPreset:
    """Uniform ranges (low, high) for each simulated sub-score."""
    identity_confidence:  tuple[float, float] = (0.0, 100.0)
    attention:            tuple[float, float] | None = None   # None → derived from gaze
    stress:               tuple[float, float] = (0.0, 100.0)
    engagement:           tuple[float, float] = (70.0, 100.0)
    authenticity:         tuple[float, float] = (80.0, 100.0)
    voice_clarity:        tuple[float, float] = (60.0, 100.0)
    voice_naturalness:    tuple[float, float] = (70.0, 100.0)
    voice_consistency:    tuple[float, float] = (75.0, 100.0)
    lighting:             tuple[float, float] = (60.0, 100.0)
    background:           tuple[float, float] = (70.0, 100.0)
    connection_stability: tuple[float, float] = (85.0, 100.0)
    connection_latency:   tuple[float, float] = (10.0, 30.0)
    signal_quality:       tuple[float, float] = (80.0, 100.0)
    audio_level:          tuple[float, float] = (0.0, 100.0)
    head_movement:        tuple[float, float] = (0.0, 100.0)
    surveillance_threat:  tuple[float, float] = (0.0, 100.0)
    model_confidence:     tuple[float, float] = (85.0, 100.0)


SIMULATION_PRESETS: dict[str, SimulationPreset] = {
    # Webcam-only session: noisy face match, attention from gaze deviation
    "standard": SimulationPreset(),
    "ai_enhanced": SimulationPreset(),
    # Wired camera + microphone: steadier identity and attention
    "wired": SimulationPreset(
        identity_confidence = (90.0, 100.0),
        attention           = (75.0, 100.0),
        authenticity        = (85.0, 100.0),
        voice_clarity       = (85.0, 100.0),
        voice_naturalness   = (80.0, 100.0),
        lighting            = (80.0, 100.0),
    ),
    # Gaze / head tracking: face found in roughly nine frames out of ten
    "gaze_tracking": SimulationPreset(
        identity_confidence = (72.5, 100.0),
    ),
}


class SimulatedSampler(SignalSampler):
    """
    Pseudo-random stand-in for the camera / audio / device stack.

    `available=False` makes open() fail the way a denied camera permission
    does; `failure_rate` is the per-tick probability of a lost reading.
    """

    def __init__(
        self,
        preset: str | SimulationPreset = "standard",
        seed: int | None = None,
        surveillance_enabled: bool = False,
        available: bool = True,
        failure_rate: float = 0.0,
    ) -> None:
        if isinstance(preset, str):
            try:
                preset = SIMULATION_PRESETS[preset]
            except KeyError:
                raise ValueError(f"unknown simulation preset {preset!r}") from None
        self._preset = preset
        self._rng = np.random.default_rng(seed)
        self._surveillance_enabled = surveillance_enabled
        self._available = available
        self._failure_rate = failure_rate
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self) -> None:
        if not self._available:
            raise SamplerUnavailable("camera permission denied")
        self._is_open = True
        logger.info("Simulated sampler opened (surveillance=%s)", self._surveillance_enabled)

    def close(self) -> None:
        if self._is_open:
            logger.info("Simulated sampler closed")
        self._is_open = False

    def _draw(self, bounds: tuple[float, float]) -> float:
        low, high = bounds
        return float(math.floor(self._rng.uniform(low, high)))

    def sample(self) -> SignalReading:
        if not self._is_open:
            raise SamplerUnavailable("sampler is not open")
        if self._failure_rate and self._rng.random() < self._failure_rate:
            raise SamplerUnavailable("camera frame lost")

        p = self._preset
        if p.attention is None:
            gaze_x, gaze_y = self._rng.uniform(0.0, 100.0, size=2)
            deviation = math.hypot(gaze_x - 50.0, gaze_y - 50.0)
            attention = float(math.floor(100.0 - deviation * 2))
        else:
            attention = self._draw(p.attention)
            deviation = (100.0 - attention) / 2.0

        audio_level = self._draw(p.audio_level)
        lighting = self._draw(p.lighting)
        background = self._draw(p.background)
        noise = 100.0 - audio_level

        surveillance = None
        if self._surveillance_enabled:
            surveillance = self._draw(p.surveillance_threat)

        return SignalReading(
            identity_confidence   = self._draw(p.identity_confidence),
            attention             = attention,
            stress                = self._draw(p.stress),
            engagement            = self._draw(p.engagement),
            authenticity          = self._draw(p.authenticity),
            voice_clarity         = self._draw(p.voice_clarity),
            voice_naturalness     = self._draw(p.voice_naturalness),
            voice_consistency     = self._draw(p.voice_consistency),
            environment_quality   = round((lighting + background + noise) / 3.0, 1),
            connection_stability  = self._draw(p.connection_stability),
            connection_latency_ms = self._draw(p.connection_latency),
            signal_quality        = self._draw(p.signal_quality),
            audio_level           = audio_level,
            surveillance_threat_score = surveillance,
            model_confidence      = self._draw(p.model_confidence),
            gaze_deviation        = round(deviation, 1),
            head_movement         = self._draw(p.head_movement),
        )
