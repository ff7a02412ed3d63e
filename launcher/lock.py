"""Cross-process lock for launcher cycles.

Two launcher processes must never drive the same container at once. The
lock is a small JSON file in the state directory naming the process and
command that holds it. A lock whose process has exited is reclaimed.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "launcher.lock"


@dataclass(frozen=True)
class LockHolder:
    """Who holds the lock, as recorded in the lock file."""

    pid: int
    command: str = "unknown"
    since: float | None = None

    def describe(self) -> str:
        if self.since is None:
            return f"'{self.command}' (PID: {self.pid})"
        started = time.strftime("%H:%M:%S", time.localtime(self.since))
        return f"'{self.command}' (PID: {self.pid}, since {started})"


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Owned by another user
        return True
    return True


class LaunchLock:
    """Lock held around `up`, `restart` and `reset`.

    Usage:
        with LaunchLock(config.state_dir, command="up"):
            await orchestrator.start()

    Attributes:
        lock_path: Path to the lock file
        command: Command name recorded for other processes to report
    """

    def __init__(self, state_dir: Path, command: str = "launcher") -> None:
        self.lock_path = state_dir / LOCK_FILE_NAME
        self.command = command

    def holder(self) -> LockHolder | None:
        """Parse the lock file; None if it is missing or unreadable."""
        try:
            raw = self.lock_path.read_text().strip()
        except FileNotFoundError:
            return None

        # Bare PID files are still honored
        if raw.isdigit():
            return LockHolder(pid=int(raw))
        try:
            data = json.loads(raw)
            since = data.get("since")
            return LockHolder(
                pid=int(data["pid"]),
                command=str(data.get("command", "unknown")),
                since=float(since) if since is not None else None,
            )
        except (ValueError, KeyError, TypeError, AttributeError):
            logger.warning(f"Ignoring unreadable lock file {self.lock_path}")
            return None

    def get_holder_pid(self) -> int | None:
        holder = self.holder()
        return holder.pid if holder else None

    def acquire(self) -> bool:
        """Take the lock unless another live process holds it.

        Returns:
            True if this process now holds the lock
        """
        holder = self.holder()
        if holder is not None and holder.pid != os.getpid() and pid_alive(holder.pid):
            logger.info(f"Lock held by {holder.describe()}")
            return False
        if holder is not None and holder.pid != os.getpid():
            logger.info(f"Reclaiming stale lock from PID {holder.pid}")

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        record = {"pid": os.getpid(), "command": self.command, "since": time.time()}
        tmp = self.lock_path.with_suffix(".tmp")
        tmp.write_text(json.dumps(record))
        tmp.replace(self.lock_path)
        return True

    def release(self) -> None:
        """Remove the lock file if this process still owns it."""
        holder = self.holder()
        if holder is not None and holder.pid != os.getpid():
            logger.warning(f"Not releasing lock now held by PID {holder.pid}")
            return
        self.lock_path.unlink(missing_ok=True)

    def __enter__(self) -> "LaunchLock":
        """Acquire on entry.

        Raises:
            RuntimeError: If another live launcher holds the lock
        """
        if not self.acquire():
            holder = self.holder()
            who = holder.describe() if holder else "(unknown PID)"
            raise RuntimeError(f"Another launcher is running {who}")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()
