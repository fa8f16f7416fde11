"""Git-related model classes."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..exceptions import ProcessFailureError, ProcessTimeoutError


class ChangeKind(str, Enum):
    """Kind of difference between the working tree / index and the last commit."""

    ADDED = "Added"
    MODIFIED = "Modified"
    DELETED = "Deleted"
    RENAMED = "Renamed"
    UNKNOWN = "Unknown"


class ChangeEntry(BaseModel):
    """
    One observed difference reported by ``git status``.

    ``path`` and ``original_path`` are repository-relative. ``project_path`` and
    ``original_project_path`` are the same locations expressed relative to the
    project root (None when a location falls outside it).
    """

    path: str
    original_path: Optional[str] = None
    change_kind: ChangeKind
    working_tree_time: Optional[datetime] = None
    is_staged: bool = False
    is_unstaged: bool = False
    project_path: Optional[str] = None
    original_project_path: Optional[str] = None

    @property
    def file_name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


class AssetInfo(BaseModel):
    """UI-facing projection of a ChangeEntry, keyed by its project path."""

    asset_path: str
    original_path: Optional[str] = None
    change_kind: ChangeKind
    last_known_change_time: Optional[datetime] = None
    working_tree_time: Optional[datetime] = None
    is_staged: bool = False
    is_unstaged: bool = False
    repo_path: Optional[str] = None
    original_repo_path: Optional[str] = None

    @property
    def file_name(self) -> str:
        return self.asset_path.rsplit("/", 1)[-1]

    @property
    def is_move(self) -> bool:
        """True when the entry pairs two different repository locations."""
        return bool(self.original_repo_path) and (
            self.original_repo_path.lower() != (self.repo_path or "").lower()
        )

    @classmethod
    def from_change(
        cls, entry: ChangeEntry, last_known_change_time: Optional[datetime]
    ) -> "AssetInfo":
        return cls(
            asset_path=entry.project_path or entry.path,
            original_path=entry.original_project_path,
            change_kind=entry.change_kind,
            last_known_change_time=last_known_change_time,
            working_tree_time=entry.working_tree_time,
            is_staged=entry.is_staged,
            is_unstaged=entry.is_unstaged,
            repo_path=entry.path,
            original_repo_path=entry.original_path,
        )

    def update_from(
        self, entry: ChangeEntry, last_known_change_time: Optional[datetime]
    ) -> None:
        """Refresh in place so that UI identity survives a rescan."""
        self.original_path = entry.original_project_path
        self.change_kind = entry.change_kind
        self.last_known_change_time = last_known_change_time
        self.working_tree_time = entry.working_tree_time
        self.is_staged = entry.is_staged
        self.is_unstaged = entry.is_unstaged
        self.repo_path = entry.path
        self.original_repo_path = entry.original_path


class CommandResult(BaseModel):
    """Outcome of a single git invocation."""

    args: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    timeout: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def error(self) -> Optional[ProcessFailureError]:
        """The typed error describing this failure, or None on success."""
        command = ["git", *self.args]
        if self.timed_out:
            return ProcessTimeoutError(command, self.timeout or 0, self.stderr)
        if self.exit_code != 0:
            return ProcessFailureError(command, self.exit_code, self.stderr)
        return None

    def raise_for_status(self) -> "CommandResult":
        error = self.error()
        if error is not None:
            raise error
        return self


class PathRequest(BaseModel):
    """A repository-relative path targeted by a stage or discard operation."""

    repo_path: str
    change_kind: ChangeKind = ChangeKind.MODIFIED
    is_staged: bool = False
    is_folder: bool = False
    primary: bool = True  # companion paths (sidecars, rename sources) are not counted


class OperationKind(str, Enum):
    STAGE = "Stage"
    UNSTAGE = "Unstage"
    DISCARD = "Discard"
    COMMIT = "Commit"
    COMMIT_AND_PUSH = "CommitAndPush"


class OperationRequest(BaseModel):
    """
    A pending mutation of version-control state.

    ``paths`` holds the repository-relative paths whose ownership the operation
    changes on success (added for Stage, removed for Unstage).
    """

    kind: OperationKind
    repository_root: str
    paths: List[str] = Field(default_factory=list)
    requests: List[PathRequest] = Field(default_factory=list)
    message: Optional[str] = None

    def can_merge(self, other: "OperationRequest") -> bool:
        return self.kind == other.kind and self.repository_root == other.repository_root

    def merge(self, other: "OperationRequest") -> "OperationRequest":
        """Coalesce a later request of the same kind and repository into this one."""
        if not self.can_merge(other):
            raise ValueError(
                f"Cannot merge {other.kind.value} for {other.repository_root} into "
                f"{self.kind.value} for {self.repository_root}"
            )
        paths = list(dict.fromkeys(self.paths + other.paths))
        requests = {r.repo_path: r for r in self.requests}
        for request in other.requests:
            requests[request.repo_path] = request
        return OperationRequest(
            kind=self.kind,
            repository_root=self.repository_root,
            paths=paths,
            requests=list(requests.values()),
            message=other.message if other.message is not None else self.message,
        )


class OperationResult(BaseModel):
    success: bool
    summary: str = ""
    affected_paths: List[str] = Field(default_factory=list)  # repo paths that succeeded
    commit_succeeded: bool = False
    committed_message: Optional[str] = None


class RepositoryStatusInfo(BaseModel):
    staged_count: int = 0
    unstaged_count: int = 0

    @property
    def has_changes(self) -> bool:
        return self.staged_count > 0 or self.unstaged_count > 0


class Notification(BaseModel):
    """
    A message for the UI layer.

    Blocking notifications (commit / push results) must be acknowledged by the
    user; everything else is transient.
    """

    message: str
    blocking: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
