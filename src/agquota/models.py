"""Data models for agquota."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Platform(Enum):
    """Process table flavour a record was read from."""

    WINDOWS = "windows"
    UNIX = "unix"


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """A process that looks like the language server."""

    pid: int
    command_line: str
    platform: Platform


@dataclass(slots=True, frozen=True)
class ConnectionCandidate:
    """Unverified guess at where the language server listens."""

    pid: int
    extension_port: int | None = None
    connect_port: int | None = None
    csrf_token: str | None = None

    @property
    def has_port(self) -> bool:
        return self.extension_port is not None or self.connect_port is not None

    @property
    def has_token(self) -> bool:
        return bool(self.csrf_token)

    @property
    def is_viable(self) -> bool:
        """A candidate needs at least a port or a token to be worth probing."""
        return self.has_port or self.has_token

    @property
    def completeness(self) -> int:
        """Rank used to order probing: both fields > token only > port only."""
        if self.has_port and self.has_token:
            return 2
        if self.has_token:
            return 1
        return 0

    @property
    def ports(self) -> list[int]:
        """Extracted ports, connect port first."""
        return [p for p in (self.connect_port, self.extension_port) if p is not None]


@dataclass(slots=True, frozen=True)
class ResolvedConnection:
    """Probe-verified port and token pair."""

    connect_port: int
    csrf_token: str | None
    extension_port: int | None = None
    pid: int | None = None


@dataclass(slots=True, frozen=True)
class ModelQuota:
    """Quota state of a single model."""

    model_id: str
    label: str
    remaining_percentage: float | None  # None means unknown, not exhausted
    is_exhausted: bool
    time_until_reset_formatted: str
    reset_time: datetime | None = None


@dataclass(slots=True, frozen=True)
class PromptCredits:
    """Prompt credit totals for the account."""

    available: int
    monthly: int

    @property
    def remaining_percentage(self) -> float:
        if self.monthly <= 0:
            return 0.0
        return max(0.0, min(100.0, self.available / self.monthly * 100))


@dataclass(slots=True, frozen=True)
class QuotaSnapshot:
    """Immutable reading of every model's quota at one point in time."""

    timestamp: datetime
    models: tuple[ModelQuota, ...] = field(default_factory=tuple)
    prompt_credits: PromptCredits | None = None

    def get_model(self, model_id: str) -> ModelQuota | None:
        for model in self.models:
            if model.model_id == model_id:
                return model
        return None


class RetryPhase(Enum):
    """Segments of the startup backoff schedule."""

    FAST = "fast"
    SLOW = "slow"
    WAITING = "waiting"


FAST_PHASE_ATTEMPTS = 12
SLOW_PHASE_ATTEMPTS = 9
MAX_ATTEMPTS = FAST_PHASE_ATTEMPTS + SLOW_PHASE_ATTEMPTS


@dataclass(slots=True, frozen=True)
class RetryState:
    """Position of the startup retry controller in its schedule."""

    attempt: int = 0
    phase: RetryPhase = RetryPhase.FAST

    @classmethod
    def for_attempt(cls, attempt: int) -> "RetryState":
        if attempt < FAST_PHASE_ATTEMPTS:
            phase = RetryPhase.FAST
        elif attempt < MAX_ATTEMPTS:
            phase = RetryPhase.SLOW
        else:
            phase = RetryPhase.WAITING
        return cls(attempt=attempt, phase=phase)


class LifecycleKind(Enum):
    """Discrete states the display layer renders."""

    LOADING = "loading"
    ACTIVE = "active"
    ERROR = "error"
    WAITING = "waiting"


@dataclass(slots=True, frozen=True)
class LifecycleEvent:
    """Lifecycle signal emitted by the retry controller."""

    kind: LifecycleKind
    message: str | None = None
