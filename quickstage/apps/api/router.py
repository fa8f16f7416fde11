import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...config.settings import Settings, get_settings
from ...dependencies import create_staging_session
from ...models import ChangeKind
from ...schemas import (
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
from ...services.asset_types import AssetTypeFilter
from ...services.staging_session import StagingSession

router = APIRouter(prefix="/quickstage", tags=["quickstage"])

# Global staging session instance
_staging_session: Optional[StagingSession] = None


async def get_staging_session(settings: Settings = Depends(get_settings)) -> StagingSession:
    """Get or create the staging session on the event loop that will drive it."""
    global _staging_session
    if _staging_session is None:
        session = None
        try:
            session = create_staging_session(settings)
            session.open()
        except Exception as e:
            if session is not None:
                session.close()
            raise HTTPException(
                status_code=500,
                detail=f"Failed to initialize staging session: {str(e)}",
            )
        _staging_session = session
    return _staging_session


def close_staging_session() -> None:
    global _staging_session
    if _staging_session is not None:
        _staging_session.close()
        _staging_session = None


@router.get("/status", response_model=StatusResponse)
async def get_status(session: StagingSession = Depends(get_staging_session)):
    """Repository root, counts and the current status message."""
    info = session.status_info
    return StatusResponse(
        repository_root=session.repository_root,
        status_message=session.status_message,
        busy=session.is_busy,
        operation=session.current_operation,
        staged_count=info.staged_count,
        unstaged_count=info.unstaged_count,
        has_preexisting_staged=session.has_preexisting_staged,
        targets=session.targets,
    )


@router.get("/changes", response_model=List[ChangeItem])
async def list_changes(
    staged: Optional[bool] = Query(None, description="Only staged (true) or unstaged (false) items"),
    asset_type: AssetTypeFilter = Query(AssetTypeFilter.ALL),
    change_kind: Optional[ChangeKind] = Query(None),
    session: StagingSession = Depends(get_staging_session),
):
    """Changes relevant to the current selection."""
    return [
        ChangeItem(**info.model_dump(), asset_type=session.asset_type(info))
        for info in session.visible_assets(staged, asset_type, change_kind)
    ]


@router.post("/targets", response_model=DispatchResponse)
async def set_targets(
    request: TargetsRequest, session: StagingSession = Depends(get_staging_session)
):
    """Replace the selection and rescan."""
    return DispatchResponse(status=session.set_targets(request.paths))


@router.post("/scan", response_model=DispatchResponse)
async def scan(
    request: Optional[ScanRequest] = None,
    session: StagingSession = Depends(get_staging_session),
):
    clear = request.clear if request is not None else False
    return DispatchResponse(status=session.request_scan(clear_ui=clear))


@router.post("/stage", response_model=DispatchResponse)
async def stage(request: PathsRequest, session: StagingSession = Depends(get_staging_session)):
    return DispatchResponse(status=session.stage(request.paths))


@router.post("/unstage", response_model=DispatchResponse)
async def unstage(request: PathsRequest, session: StagingSession = Depends(get_staging_session)):
    return DispatchResponse(status=session.unstage(request.paths))


@router.post("/discard", response_model=DispatchResponse)
async def discard(request: PathsRequest, session: StagingSession = Depends(get_staging_session)):
    """Revert changes. The client is expected to have asked the user to confirm."""
    return DispatchResponse(status=session.discard(request.paths))


@router.post("/commit", response_model=DispatchResponse)
async def commit(request: CommitRequest, session: StagingSession = Depends(get_staging_session)):
    """Commit the staged changes, optionally pushing afterwards."""
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="Commit message cannot be empty")
    return DispatchResponse(status=session.commit(request.message, push=request.push))


@router.get("/notifications", response_model=NotificationsResponse)
async def get_notifications(session: StagingSession = Depends(get_staging_session)):
    """Drain transient notifications; the pending confirmation stays until acknowledged."""
    return NotificationsResponse(
        notifications=session.drain_notifications(),
        pending_confirmation=session.pending_confirmation,
    )


@router.post("/notifications/ack", response_model=NotificationsResponse)
async def acknowledge_notification(session: StagingSession = Depends(get_staging_session)):
    confirmed = session.acknowledge()
    return NotificationsResponse(pending_confirmation=confirmed)


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    include_log: bool = Query(False, description="Append the current user's recent commit subjects"),
    session: StagingSession = Depends(get_staging_session),
):
    """Recently used commit messages."""
    try:
        messages = await asyncio.to_thread(session.commit_history, include_log)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to read history: {str(e)}")
    return HistoryResponse(messages=messages)
