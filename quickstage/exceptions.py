"""Error taxonomy shared by the quickstage services."""

from typing import List, Optional, Sequence, Union

from git.exc import GitCommandError


class QuickStageError(Exception):
    """Base class for all quickstage errors."""


class RepositoryNotFoundError(QuickStageError):
    """No git repository root could be resolved for the project."""

    def __init__(self, searched: Optional[Sequence[str]] = None):
        self.searched: List[str] = [s for s in (searched or []) if s]
        where = ", ".join(self.searched) if self.searched else "project"
        super().__init__(f"No Git repository found (searched: {where})")


class PathOutsideRootError(QuickStageError):
    """A path resolved outside the root it is expected to live under."""

    def __init__(self, path: str, root: str):
        self.path = path
        self.root = root
        super().__init__(f"Path {path!r} is outside {root!r}")


class ParseAnomalyError(QuickStageError):
    """A malformed record in git's machine-readable output."""

    def __init__(self, record: str, reason: str):
        self.record = record
        self.reason = reason
        super().__init__(f"{reason}: {record!r}")


class ProcessFailureError(GitCommandError, QuickStageError):
    """A git command exited with a non-zero status."""


class ProcessTimeoutError(ProcessFailureError):
    """A git command did not finish in time and was killed."""

    def __init__(
        self,
        command: Union[List[str], str],
        timeout: float,
        stderr: Optional[str] = None,
    ):
        self.timeout = timeout
        super().__init__(
            command, status=f"timed out after {timeout:g}s", stderr=stderr
        )
