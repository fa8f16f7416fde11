"""Schemas for the application."""

from .git import (
    ChangeItem,
    CommitRequest,
    DispatchResponse,
    HistoryResponse,
    NotificationsResponse,
    PathsRequest,
    ScanRequest,
    StatusResponse,
    TargetsRequest,
)

__all__ = [
    "ChangeItem",
    "CommitRequest",
    "DispatchResponse",
    "HistoryResponse",
    "NotificationsResponse",
    "PathsRequest",
    "ScanRequest",
    "StatusResponse",
    "TargetsRequest",
]
