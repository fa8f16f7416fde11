"""Models for the application."""

from .git_models import (
    AssetInfo,
    ChangeEntry,
    ChangeKind,
    CommandResult,
    Notification,
    OperationKind,
    OperationRequest,
    OperationResult,
    PathRequest,
    RepositoryStatusInfo,
)

__all__ = [
    "AssetInfo",
    "ChangeEntry",
    "ChangeKind",
    "CommandResult",
    "Notification",
    "OperationKind",
    "OperationRequest",
    "OperationResult",
    "PathRequest",
    "RepositoryStatusInfo",
]
