import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from powshield.config import Settings
from powshield.models.trust_state import TrustState

HEADLESS_UA = re.compile(r"Headless|Phantom|Slimer", re.IGNORECASE)
TOOLING_UA = re.compile(r"curl|wget|python|axios|go-http|java/", re.IGNORECASE)

TOOLING_UA_PENALTY = 0.6
EMPTY_UA_PENALTY = 0.3
MISSING_HINT_PENALTY = 0.2

# Each detection is charged once, however many signals report it
DETECTION_PENALTIES = {
    "headless_ua": 0.6,
    "webdriver": 0.6,
    "worker_failed": 0.2,
    "timer_anomaly": 0.2,
    "low_entropy": 0.3,
    "no_plugins": 0.2,
    "no_languages": 0.2,
    "zero_viewport": 0.3,
    "impossible_mouse_speed": 0.2,
    "render_error": 0.2,
    "attestation_failed": 0.6,
}

# Flag names reported by the browser collector. Unknown flags are ignored.
FLAG_DETECTIONS = {
    "headless_ua": "headless_ua",
    "webdriver": "webdriver",
    "worker_fail": "worker_failed",
    "worker_failed": "worker_failed",
    "worker_error": "worker_failed",
    "timer_anomaly": "timer_anomaly",
    "negative_delta": "timer_anomaly",
    "negative_time": "timer_anomaly",
    "low_behavioral_entropy": "low_entropy",
    "low_entropy_path": "low_entropy",
    "no_plugins": "no_plugins",
    "no_languages": "no_languages",
    "zero_viewport": "zero_viewport",
    "impossible_mouse_speed": "impossible_mouse_speed",
    "canvas_error": "render_error",
    "render_error": "render_error",
    "attestation_failed": "attestation_failed",
}

# Timer resolution below this (ms) over a 250ms check indicates a patched clock
MIN_TIMING_DRIFT_MS = 10.0
MIN_BEHAVIORAL_ENTROPY = 50.0


class RiskSignals(BaseModel):
    """
    Client telemetry as submitted with a verification. Every field is optional.

    Accepts the collector's camelCase keys (`timingDrift`, `workerIntegrity`, ...)
    as well as the snake_case field names.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)

    user_agent: str | None = Field(default=None, alias="ua")
    cpu: int | None = Field(default=None, ge=0)
    memory: float | None = Field(default=None, ge=0)
    webdriver: bool | None = None
    canvas_hash: str | None = None
    behavioral_entropy: float | None = None
    timing_drift: float | None = None
    worker_integrity: bool | None = None
    flags: list[str] = Field(default_factory=list)
    engine_version: str | None = None


class Decision(str, Enum):
    ALLOW = "allow"
    SHADOW_THROTTLE = "shadow_throttle"
    DENY = "deny"


class RiskScorer:
    """Combines request telemetry and trust state into a cumulative suspicion score."""

    def __init__(
        self,
        burst_threshold: int = 30,
        burst_penalty: float = 0.5,
        shadow_throttle_threshold: float = 0.7,
        deny_threshold: float = 5.0,
    ):
        self.burst_threshold = burst_threshold
        self.burst_penalty = burst_penalty
        self.shadow_throttle_threshold = shadow_throttle_threshold
        self.deny_threshold = deny_threshold

    @classmethod
    def from_settings(cls, settings: Settings) -> "RiskScorer":
        return cls(
            burst_threshold=settings.burst_threshold,
            burst_penalty=settings.burst_penalty,
            shadow_throttle_threshold=settings.shadow_throttle_threshold,
            deny_threshold=settings.deny_threshold,
        )

    def assess(
        self, signals: RiskSignals, state: TrustState, *, expect_telemetry: bool = True
    ) -> float:
        """Return the penalty for this request without touching the state."""
        risk = 0.0
        detections = set()

        ua = signals.user_agent or ""
        if not ua:
            risk += EMPTY_UA_PENALTY
        if HEADLESS_UA.search(ua):
            detections.add("headless_ua")
        if TOOLING_UA.search(ua):
            risk += TOOLING_UA_PENALTY

        if expect_telemetry:
            if not signals.cpu:
                risk += MISSING_HINT_PENALTY
            if not signals.memory:
                risk += MISSING_HINT_PENALTY
            if signals.webdriver:
                detections.add("webdriver")
            if signals.worker_integrity is False:
                detections.add("worker_failed")
            if signals.timing_drift is not None and signals.timing_drift < MIN_TIMING_DRIFT_MS:
                detections.add("timer_anomaly")
            if (
                signals.behavioral_entropy is not None
                and signals.behavioral_entropy < MIN_BEHAVIORAL_ENTROPY
            ):
                detections.add("low_entropy")
            detections.update(
                FLAG_DETECTIONS[flag] for flag in signals.flags if flag in FLAG_DETECTIONS
            )

        # Sorted so the float sum does not depend on set ordering
        risk += sum(DETECTION_PENALTIES[name] for name in sorted(detections))

        if len(state.recent_requests) > self.burst_threshold:
            risk += self.burst_penalty

        return risk

    def compute_risk(
        self, signals: RiskSignals, state: TrustState, *, expect_telemetry: bool = True
    ) -> float:
        """Add this request's penalty into the cumulative score and return the new score."""
        state.score += self.assess(signals, state, expect_telemetry=expect_telemetry)
        return state.score

    def decide(self, score: float) -> Decision:
        if score > self.deny_threshold:
            return Decision.DENY
        if score > self.shadow_throttle_threshold:
            return Decision.SHADOW_THROTTLE
        return Decision.ALLOW
