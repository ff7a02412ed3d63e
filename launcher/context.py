"""Launch context shared by the orchestrator and its components.

There is no global launcher state: the orchestrator owns one LaunchContext
and passes it to every component it drives.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from launcher.config import LauncherConfig
from launcher.models import EnvState, Step, StepStatus
from launcher.shell import ShellExecutor
from launcher.state_dir import StateDirectory

logger = logging.getLogger(__name__)

# Logical launch steps used as the progress denominator
EXPECTED_STEP_COUNT = 8

StepListener = Callable[[Step], None]


class SoftFailureTracker:
    """Counts consecutive non-fatal failures per kind for the process lifetime.

    Soft failures never end a cycle in error. Once a kind repeats
    ``threshold`` times in a row its warnings carry a reset hint.
    """

    def __init__(self, threshold: int = 3) -> None:
        self.threshold = threshold
        self._counts: dict[str, int] = {}

    def record_failure(self, kind: str) -> int:
        self._counts[kind] = self._counts.get(kind, 0) + 1
        return self._counts[kind]

    def record_success(self, kind: str) -> None:
        self._counts.pop(kind, None)

    def count(self, kind: str) -> int:
        return self._counts.get(kind, 0)

    def escalated(self, kind: str) -> bool:
        return self.count(kind) >= self.threshold

    def annotate(self, kind: str, message: str) -> str:
        """Record a failure of ``kind`` and return the warning text to show."""
        count = self.record_failure(kind)
        if count < self.threshold:
            return message
        logger.error(f"{kind} soft failure repeated {count} times in a row")
        return (
            f"{message} (happened {count} times in a row; "
            "if this persists, run 'launcher reset')"
        )


class StepLog:
    """Ordered, append-only record of one orchestration cycle.

    Cleared only when a new cycle begins. Observers receive each new step
    and may read an immutable snapshot at any time.
    """

    def __init__(self) -> None:
        self._steps: list[Step] = []
        self._listeners: list[StepListener] = []

    def append(self, status: StepStatus, message: str) -> Step:
        """Record a step, log it and hand it to every listener.

        A listener that raises is logged and skipped; the step is kept.

        Returns:
            The new step, numbered from 1 within the cycle
        """
        step = Step(id=len(self._steps) + 1, status=status, message=message)
        self._steps.append(step)

        log_level = {
            StepStatus.ERROR: logging.ERROR,
            StepStatus.WARNING: logging.WARNING,
        }.get(status, logging.INFO)
        logger.log(log_level, f"[{status.value}] {message}")

        for listener in list(self._listeners):
            try:
                listener(step)
            except Exception:
                logger.exception("Step listener failed")
        return step

    def running(self, message: str) -> Step:
        """Record a step that is in progress."""
        return self.append(StepStatus.RUNNING, message)

    def done(self, message: str) -> Step:
        """Record a completed step."""
        return self.append(StepStatus.DONE, message)

    def warning(self, message: str) -> Step:
        """Record a non-fatal problem."""
        return self.append(StepStatus.WARNING, message)

    def error(self, message: str) -> Step:
        """Record a fatal problem."""
        return self.append(StepStatus.ERROR, message)

    def clear(self) -> None:
        """Drop all steps at the start of a new cycle."""
        self._steps = []

    def subscribe(self, listener: StepListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def snapshot(self) -> tuple[Step, ...]:
        """Immutable copy of the steps so far."""
        return tuple(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self):
        return iter(tuple(self._steps))

    @property
    def completed_count(self) -> int:
        """Number of steps with status done."""
        return sum(1 for s in self._steps if s.status == StepStatus.DONE)

    @property
    def current(self) -> Step | None:
        """The latest step if it is still in progress."""
        if self._steps and self._steps[-1].status == StepStatus.RUNNING:
            return self._steps[-1]
        return None

    @property
    def errors(self) -> list[Step]:
        """Steps with status error, in order."""
        return [s for s in self._steps if s.status == StepStatus.ERROR]

    @property
    def warnings(self) -> list[Step]:
        """Steps with status warning, in order."""
        return [s for s in self._steps if s.status == StepStatus.WARNING]

    def progress(self, denominator: int = EXPECTED_STEP_COUNT) -> float:
        """Completed fraction of the expected steps, clamped to 1.0."""
        return min(self.completed_count / denominator, 1.0)


@dataclass
class LaunchContext:
    """Everything a component needs for one launcher instance.

    Attributes:
        config: Launcher configuration
        executor: Command execution boundary
        state: State directory accessor
        steps: Step log of the current cycle
        transport: Optional httpx transport for gateway and OAuth requests
        env: Gateway credentials, loaded during setup
        soft_failures: Consecutive soft-failure counters
    """

    config: LauncherConfig
    executor: ShellExecutor
    state: StateDirectory
    steps: StepLog = field(default_factory=StepLog)
    transport: httpx.AsyncBaseTransport | None = None
    env: EnvState | None = None
    soft_failures: SoftFailureTracker = field(default_factory=SoftFailureTracker)

    @classmethod
    def create(
        cls,
        config: LauncherConfig,
        executor: ShellExecutor,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "LaunchContext":
        state = StateDirectory(
            config.state_dir,
            default_port=config.port,
            legacy_root=config.legacy_state_dir,
        )
        return cls(
            config=config,
            executor=executor,
            state=state,
            transport=transport,
            soft_failures=SoftFailureTracker(config.soft_failure_threshold),
        )
