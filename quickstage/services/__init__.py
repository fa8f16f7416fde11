"""Services for the application."""

from .change_scanner import ChangeScanner
from .commit_history import CommitHistory
from .git_operations import GitOperations
from .git_runner import GitRunner
from .operation_scheduler import DispatchStatus, OperationScheduler
from .ownership_tracker import StagedOwnershipTracker
from .path_translator import PathTranslator
from .rename_resolver import RelevanceSet, RenameResolver
from .staging_session import StagingSession

__all__ = [
    "ChangeScanner",
    "CommitHistory",
    "DispatchStatus",
    "GitOperations",
    "GitRunner",
    "OperationScheduler",
    "PathTranslator",
    "RelevanceSet",
    "RenameResolver",
    "StagedOwnershipTracker",
    "StagingSession",
]
