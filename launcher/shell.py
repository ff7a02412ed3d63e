"""Command execution boundary.

Every interaction with the operating environment goes through a
``ShellExecutor``. The real implementation spawns processes; the scripted
implementation returns canned results for tests and dry runs.
"""

import asyncio
import logging
import shlex
import subprocess
from collections.abc import Callable, Sequence
from typing import Protocol

from launcher.errors import ShellError
from launcher.models import ShellResult

logger = logging.getLogger(__name__)

# Exit code reported when a command exceeds its timeout (matches coreutils `timeout`)
TIMEOUT_EXIT_CODE = 124


class ShellExecutor(Protocol):
    """Narrow capability for running external commands.

    Implementations never raise for nonzero exit codes; they raise
    ShellError only when the process cannot be invoked.
    """

    async def run(self, args: Sequence[str]) -> ShellResult: ...


class SubprocessExecutor:
    """Runs commands as child processes and captures their output.

    The blocking ``subprocess.run`` call is pushed to a worker thread so each
    command is a suspension point for the event loop.
    """

    def __init__(
        self,
        env: dict[str, str] | None = None,
        timeout: float = 300,
    ) -> None:
        """Initialize the executor.

        Args:
            env: Environment for child processes (None inherits ours)
            timeout: Maximum seconds any single command may run
        """
        self.env = env
        self.timeout = timeout

    async def run(self, args: Sequence[str]) -> ShellResult:
        """Run a command to completion.

        Args:
            args: Program and arguments

        Returns:
            ShellResult with exit code and captured output

        Raises:
            ShellError: If the program cannot be found or spawned
        """
        argv = list(args)
        if not argv:
            raise ShellError("Empty command")

        logger.debug(f"Running: {shlex.join(argv)}")

        try:
            completed = await asyncio.to_thread(
                subprocess.run,
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self.env,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {self.timeout}s: {argv[0]}")
            return ShellResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout="",
                stderr=f"{argv[0]} timed out after {self.timeout}s",
            )
        except FileNotFoundError as e:
            raise ShellError(f"{argv[0]}: command not found") from e
        except OSError as e:
            raise ShellError(f"Failed to run {argv[0]}: {e}") from e

        if completed.returncode != 0:
            logger.debug(
                f"{argv[0]} exited {completed.returncode}: {completed.stderr.strip()[:200]}"
            )

        return ShellResult(
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


Matcher = Callable[[list[str]], bool]


class ScriptedExecutor:
    """Fake executor returning canned results.

    Handlers are checked in order of registration and the first match wins.
    Commands that match nothing get ``default``. Every invocation is
    recorded in ``command_log`` for assertions.

    Usage:
        executor = ScriptedExecutor()
        executor.on("which", ScriptedExecutor.ok("/usr/local/bin/docker\\n"))
        executor.on(lambda a: "pull" in a, ScriptedExecutor.fail("timeout"))
    """

    def __init__(self, default: ShellResult | None = None) -> None:
        self.handlers: list[tuple[Matcher, Callable[[], ShellResult]]] = []
        self.command_log: list[list[str]] = []
        self.default = default or ShellResult(1, "", "command not scripted")

    def on(self, match: str | Sequence[str] | Matcher, result: ShellResult) -> None:
        """Register a canned result.

        Args:
            match: A program name (matches args[0]), a command prefix
                (sequence of leading args), or a predicate over the args
            result: Result returned when the handler matches
        """
        self.handlers.append((self._matcher(match), lambda: result))

    def on_sequence(
        self, match: str | Sequence[str] | Matcher, results: Sequence[ShellResult]
    ) -> None:
        """Register results returned in order; the last one repeats.

        Raises:
            ValueError: If results is empty
        """
        remaining = list(results)
        if not remaining:
            raise ValueError("on_sequence needs at least one result")

        def next_result() -> ShellResult:
            return remaining.pop(0) if len(remaining) > 1 else remaining[0]

        self.handlers.append((self._matcher(match), next_result))

    @staticmethod
    def _matcher(match: str | Sequence[str] | Matcher) -> Matcher:
        if isinstance(match, str):
            program = match
            matcher: Matcher = lambda args: bool(args) and args[0] == program
        elif callable(match):
            matcher = match
        else:
            prefix = list(match)
            matcher = lambda args: args[: len(prefix)] == prefix
        return matcher

    async def run(self, args: Sequence[str]) -> ShellResult:
        argv = list(args)
        self.command_log.append(argv)
        for matcher, produce in self.handlers:
            if matcher(argv):
                return produce()
        return self.default

    def calls(self, predicate: Matcher) -> list[list[str]]:
        """Return recorded commands matching a predicate."""
        return [args for args in self.command_log if predicate(args)]

    @staticmethod
    def ok(stdout: str = "") -> ShellResult:
        return ShellResult(exit_code=0, stdout=stdout, stderr="")

    @staticmethod
    def fail(stderr: str = "mock error", exit_code: int = 1) -> ShellResult:
        return ShellResult(exit_code=exit_code, stdout="", stderr=stderr)


# Exit code reported when the program itself could not be spawned
NOT_FOUND_EXIT_CODE = 127


async def try_run(executor: ShellExecutor, args: Sequence[str]) -> ShellResult:
    """Run a command, folding spawn failures into a failed ShellResult.

    For probes where "cannot run the engine CLI" and "engine CLI said no"
    lead to the same decision.
    """
    try:
        return await executor.run(args)
    except ShellError as e:
        logger.debug(f"Could not run {args[0] if args else '<empty>'}: {e}")
        return ShellResult(exit_code=NOT_FOUND_EXIT_CODE, stdout="", stderr=str(e))
