from typing import List, Optional

from pydantic import BaseModel, Field

from ..models import AssetInfo, Notification, OperationKind
from ..services.asset_types import AssetTypeFilter
from ..services.operation_scheduler import DispatchStatus


class TargetsRequest(BaseModel):
    """Project-relative paths of the current selection."""

    paths: List[str] = Field(default_factory=list)


class PathsRequest(BaseModel):
    paths: List[str]


class ScanRequest(BaseModel):
    clear: bool = False


class CommitRequest(BaseModel):
    message: str
    push: bool = False


class DispatchResponse(BaseModel):
    status: DispatchStatus


class ChangeItem(AssetInfo):
    """An AssetInfo as listed by the API, with its classified asset type."""

    asset_type: AssetTypeFilter = AssetTypeFilter.UNKNOWN


class StatusResponse(BaseModel):
    repository_root: Optional[str] = None
    status_message: str = ""
    busy: bool = False
    operation: Optional[OperationKind] = None
    staged_count: int = 0
    unstaged_count: int = 0
    has_preexisting_staged: bool = False
    targets: List[str] = Field(default_factory=list)


class NotificationsResponse(BaseModel):
    notifications: List[Notification] = Field(default_factory=list)
    pending_confirmation: Optional[Notification] = None


class HistoryResponse(BaseModel):
    messages: List[str] = Field(default_factory=list)
