"""Data models for the launcher.

Defines the lifecycle enum, step records, shell results and the small value
types exchanged between launcher components.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class LifecycleState(str, Enum):
    """Lifecycle of one launcher instance.

    ``working`` is the only transient state; every other state is settled
    until the next explicit operation.
    """

    IDLE = "idle"
    WORKING = "working"
    RUNNING = "running"
    ERROR = "error"
    STOPPED = "stopped"


class StepStatus(str, Enum):
    """Status of a single progress record."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Step:
    """Immutable progress record appended to the step log.

    Attributes:
        id: Position of the step within its cycle (1-based)
        status: Outcome of the step
        message: Human-readable message
        timestamp: When the step was recorded (UTC)
    """

    id: int
    status: StepStatus
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ShellResult:
    """Uniform result of every command invocation.

    A nonzero exit code is data, not an exception; callers inspect
    ``exit_code`` (or ``ok``) and use ``stderr`` as diagnostic text.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class PKCEPair:
    """PKCE verifier/challenge pair for one authorization attempt."""

    verifier: str
    challenge: str


@dataclass
class EnvState:
    """Gateway credentials read from the state directory's ``.env`` file."""

    gateway_token: str | None
    port: int

    @property
    def configured(self) -> bool:
        return bool(self.gateway_token)
