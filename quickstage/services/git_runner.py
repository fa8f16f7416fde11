"""Runs the git CLI with timeouts, output capture and path-list batching."""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from git import Git
from git.exc import GitCommandNotFound

from ..models import CommandResult

logger = logging.getLogger(__name__)

_QUOTE_TRIGGERS = (" ", "\t", "\n", "\r", '"')


def quote_argument(argument: Optional[str]) -> str:
    """
    Quote an argument using the Windows command-line convention.

    Backslashes are only special when they precede a double quote: ``n``
    backslashes before a quote become ``2n + 1``, and trailing backslashes are
    doubled so that the closing quote survives.
    """
    if argument is None:
        return '""'
    if argument and not any(c in argument for c in _QUOTE_TRIGGERS):
        return argument

    parts = ['"']
    backslashes = 0
    for char in argument:
        if char == "\\":
            backslashes += 1
            continue
        if char == '"':
            parts.append("\\" * (backslashes * 2 + 1))
            parts.append('"')
            backslashes = 0
            continue
        if backslashes:
            parts.append("\\" * backslashes)
            backslashes = 0
        parts.append(char)

    if backslashes:
        parts.append("\\" * (backslashes * 2))
    parts.append('"')
    return "".join(parts)


def command_line(args: Sequence[str]) -> str:
    """Render an argument list as a single quoted command line."""
    return " ".join(quote_argument(a) for a in args)


def build_git_args(base_args: Sequence[str], *paths: str) -> List[str]:
    """Append ``--`` and the non-empty paths to a base command."""
    args = list(base_args)
    paths = [p for p in paths if p]
    if not paths:
        return args
    return args + ["--"] + paths


def chunk_paths(
    base_args: Sequence[str],
    paths: Iterable[str],
    max_paths: int = 200,
    max_length: int = 30_000,
) -> List[List[str]]:
    """
    Split paths so that no chunk exceeds the path count or command length caps.

    A single path longer than the length cap still gets a chunk of its own.
    """
    base_length = len(command_line(base_args)) + 3  # " --"
    chunks: List[List[str]] = []
    current: List[str] = []
    length = base_length

    for path in paths:
        if not path or not path.strip():
            continue
        path = path.strip()
        additional = 1 + len(quote_argument(path))

        if current and (len(current) >= max_paths or length + additional > max_length):
            chunks.append(current)
            current = []
            length = base_length

        current.append(path)
        length += additional

    if current:
        chunks.append(current)
    return chunks


@dataclass
class BatchOutcome:
    """Aggregate result of a batched path command."""

    total: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    first_error: str = ""
    invocations: int = 0

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    def merge(self, other: "BatchOutcome") -> None:
        self.total += other.total
        self.succeeded.extend(other.succeeded)
        self.failed.extend(other.failed)
        self.invocations += other.invocations
        if not self.first_error:
            self.first_error = other.first_error


class GitRunner:
    """Executes git commands through GitPython's command wrapper."""

    def __init__(
        self,
        executable: str = "git",
        timeout_short: float = 30,
        timeout_medium: float = 120,
        timeout_long: float = 300,
        max_paths_per_command: int = 200,
        max_arguments_length: int = 30_000,
    ):
        self.executable = executable
        self.timeout_short = timeout_short
        self.timeout_medium = timeout_medium
        self.timeout_long = timeout_long
        self.max_paths_per_command = max_paths_per_command
        self.max_arguments_length = max_arguments_length

    def run(
        self,
        args: Sequence[str],
        cwd: str,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run ``git <args>`` in ``cwd`` and capture both output streams.

        Never raises for a non-zero exit or a timeout; inspect the returned
        CommandResult (or call ``raise_for_status()``).
        """
        args = list(args)
        if timeout is None or timeout <= 0:
            timeout = self.timeout_short

        if not cwd or not os.path.isdir(cwd):
            logger.warning("git %s: working directory %r does not exist", command_line(args), cwd)
            return CommandResult(args=args, exit_code=-1, stderr=f"Working directory not found: {cwd}")

        logger.debug("git %s (cwd=%s, timeout=%ss)", command_line(args), cwd, timeout)
        started = time.monotonic()
        try:
            status, stdout, stderr = Git(cwd).execute(
                [self.executable, *args],
                with_extended_output=True,
                with_exceptions=False,
                kill_after_timeout=timeout,
                strip_newline_in_stdout=False,
                env={"GIT_TERMINAL_PROMPT": "0"},
            )
        except GitCommandNotFound as e:
            logger.warning("git executable %r could not be started: %s", self.executable, e)
            return CommandResult(args=args, exit_code=-1, stderr=str(e))

        elapsed = time.monotonic() - started
        stdout = stdout if isinstance(stdout, str) else stdout.decode("utf-8", "replace")
        stderr = stderr if isinstance(stderr, str) else stderr.decode("utf-8", "replace")

        timed_out = status != 0 and (stderr.startswith("Timeout:") or elapsed >= timeout)
        if timed_out:
            stderr = f"Git command timed out ({timeout:g}s): git {command_line(args)}"

        result = CommandResult(
            args=args,
            exit_code=status,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
            timeout=timeout,
        )
        error = result.error()
        if error is not None:
            logger.warning("%s", error)
        return result

    def run_batched(
        self, base_args: Sequence[str], paths: Iterable[str], cwd: str
    ) -> BatchOutcome:
        """
        Run ``git <base_args> -- <paths>`` in chunks.

        A failed chunk is retried one path at a time. The first error message
        seen is kept even when the retries succeed.
        """
        unique = list(dict.fromkeys(p.strip() for p in paths if p and p.strip()))
        outcome = BatchOutcome(total=len(unique))

        for chunk in chunk_paths(
            base_args, unique, self.max_paths_per_command, self.max_arguments_length
        ):
            timeout = self.timeout_medium if len(chunk) > 1 else self.timeout_short
            result = self.run(build_git_args(base_args, *chunk), cwd, timeout)
            outcome.invocations += 1
            if result.ok:
                outcome.succeeded.extend(chunk)
                continue

            if not outcome.first_error and result.stderr.strip():
                outcome.first_error = result.stderr.strip()

            for path in chunk:
                single = self.run(build_git_args(base_args, path), cwd, self.timeout_short)
                outcome.invocations += 1
                if single.ok:
                    outcome.succeeded.append(path)
                    continue
                outcome.failed.append(path)
                if not outcome.first_error and single.stderr.strip():
                    outcome.first_error = single.stderr.strip()

        return outcome
