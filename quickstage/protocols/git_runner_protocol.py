"""Git runner protocol interface."""

from typing import Iterable, Optional, Protocol, Sequence, runtime_checkable

from ..models import CommandResult


@runtime_checkable
class GitRunnerProtocol(Protocol):
    """Protocol for running git CLI commands."""

    timeout_short: float
    timeout_medium: float
    timeout_long: float

    def run(
        self, args: Sequence[str], cwd: str, timeout: Optional[float] = None
    ) -> CommandResult:
        """Run ``git <args>`` in ``cwd``. Never raises for a failed command."""
        ...

    def run_batched(self, base_args: Sequence[str], paths: Iterable[str], cwd: str):
        """Run a path command in chunks, retrying failed chunks path by path."""
        ...
