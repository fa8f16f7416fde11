import os
import shutil
import time
from unittest.mock import Mock

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

import quickstage.apps.api.router as router_module
from quickstage.config.settings import Settings, get_settings
from quickstage.main import app
from quickstage.models import AssetInfo, ChangeKind, Notification, OperationKind, RepositoryStatusInfo
from quickstage.services.asset_types import AssetTypeFilter
from quickstage.services.git_runner import GitRunner
from quickstage.services.operation_scheduler import DispatchStatus
from quickstage.services.staging_session import StagingSession


@pytest.fixture
def session():
    mock = Mock(spec=StagingSession)
    mock.repository_root = "/repo"
    mock.status_message = ""
    mock.targets = ["Assets/a.cs"]
    mock.pending_confirmation = None
    mock.is_busy = True
    mock.current_operation = OperationKind.COMMIT
    mock.has_preexisting_staged = True
    mock.status_info = RepositoryStatusInfo(staged_count=1, unstaged_count=2)
    mock.asset_type.return_value = AssetTypeFilter.SCRIPT
    mock.drain_notifications.return_value = []
    app.dependency_overrides[router_module.get_staging_session] = lambda: mock
    yield mock
    app.dependency_overrides.clear()


client = TestClient(app)


def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_status(session):
    response = client.get("/api/quickstage/status")
    assert response.status_code == 200
    data = response.json()
    assert data["repository_root"] == "/repo"
    assert data["staged_count"] == 1
    assert data["unstaged_count"] == 2
    assert data["has_preexisting_staged"] is True
    assert data["targets"] == ["Assets/a.cs"]
    assert data["busy"] is True
    assert data["operation"] == "Commit"


def test_changes(session):
    session.visible_assets.return_value = [
        AssetInfo(asset_path="Assets/a.cs", change_kind=ChangeKind.MODIFIED, is_unstaged=True)
    ]

    response = client.get("/api/quickstage/changes", params={"staged": "false"})

    assert response.status_code == 200
    data = response.json()
    assert data[0]["asset_path"] == "Assets/a.cs"
    assert data[0]["change_kind"] == "Modified"
    assert data[0]["asset_type"] == "Script"
    session.visible_assets.assert_called_once_with(False, AssetTypeFilter.ALL, None)


def test_targets(session):
    session.set_targets.return_value = DispatchStatus.STARTED

    response = client.post("/api/quickstage/targets", json={"paths": ["Assets/a.cs"]})

    assert response.json() == {"status": "started"}
    session.set_targets.assert_called_once_with(["Assets/a.cs"])


def test_scan_without_body(session):
    session.request_scan.return_value = DispatchStatus.QUEUED

    response = client.post("/api/quickstage/scan")

    assert response.status_code == 200
    assert response.json() == {"status": "queued"}
    session.request_scan.assert_called_once_with(clear_ui=False)


@pytest.mark.parametrize("endpoint,method_name", [("stage", "stage"), ("unstage", "unstage"), ("discard", "discard")])
def test_path_operations(session, endpoint, method_name):
    getattr(session, method_name).return_value = DispatchStatus.COALESCED

    response = client.post(f"/api/quickstage/{endpoint}", json={"paths": ["a.txt"]})

    assert response.status_code == 200
    assert response.json() == {"status": "coalesced"}
    getattr(session, method_name).assert_called_once_with(["a.txt"])


def test_path_operations_require_paths(session):
    response = client.post("/api/quickstage/stage", json={})
    assert response.status_code == 422


def test_commit(session):
    session.commit.return_value = DispatchStatus.STARTED

    response = client.post("/api/quickstage/commit", json={"message": "Fix jump", "push": True})

    assert response.json() == {"status": "started"}
    session.commit.assert_called_once_with("Fix jump", push=True)


def test_commit_blank_message(session):
    response = client.post("/api/quickstage/commit", json={"message": "   "})
    assert response.status_code == 400
    session.commit.assert_not_called()


def test_notifications_and_acknowledge(session):
    pending = Notification(message="Commit successful.", blocking=True)
    session.pending_confirmation = pending
    session.drain_notifications.return_value = [Notification(message="Staged 1/1 items.")]
    session.acknowledge.return_value = pending

    response = client.get("/api/quickstage/notifications")
    data = response.json()
    assert [n["message"] for n in data["notifications"]] == ["Staged 1/1 items."]
    assert data["pending_confirmation"]["message"] == "Commit successful."

    response = client.post("/api/quickstage/notifications/ack")
    assert response.json()["pending_confirmation"]["blocking"] is True
    session.acknowledge.assert_called_once_with()


def test_history(session):
    session.commit_history.return_value = ["Fix jump", "Add enemy"]

    response = client.get("/api/quickstage/history", params={"include_log": "true"})

    assert response.json() == {"messages": ["Fix jump", "Add enemy"]}
    session.commit_history.assert_called_once_with(True)


@pytest.mark.asyncio
async def test_session_initialization_failure(monkeypatch):
    def broken(settings):
        raise RuntimeError("bad project root")

    monkeypatch.setattr(router_module, "create_staging_session", broken)
    monkeypatch.setattr(router_module, "_staging_session", None)

    with pytest.raises(HTTPException) as exc_info:
        await router_module.get_staging_session(Settings())

    assert exc_info.value.status_code == 500
    assert "bad project root" in exc_info.value.detail
    assert router_module._staging_session is None


@pytest.fixture
def git_project(tmp_path, monkeypatch):
    """A committed repository with one modified file, served by a real session."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    root = tmp_path / "project"
    root.mkdir()
    runner = GitRunner()
    for args in (
        ["init"],
        ["config", "user.email", "dev@example.com"],
        ["config", "user.name", "Dev"],
        ["config", "commit.gpgsign", "false"],
    ):
        runner.run(args, str(root)).raise_for_status()
    (root / "tracked.txt").write_text("original\n")
    runner.run(["add", "tracked.txt"], str(root)).raise_for_status()
    runner.run(["commit", "-m", "Initial commit"], str(root)).raise_for_status()
    (root / "tracked.txt").write_text("changed\n")

    settings = Settings(
        PROJECT_ROOT=str(root),
        DATA_DIR=str(tmp_path / "data"),
        REFRESH_DEBOUNCE_SECONDS=0.01,
    )
    monkeypatch.setattr(router_module, "_staging_session", None)
    app.dependency_overrides[get_settings] = lambda: settings
    yield root
    app.dependency_overrides.clear()
    router_module.close_staging_session()


def wait_for_status(live_client, predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while True:
        data = live_client.get("/api/quickstage/status").json()
        if predicate(data):
            return data
        if time.monotonic() >= deadline:
            raise AssertionError(f"Status did not settle: {data}")
        time.sleep(0.05)


def test_real_session_scans_and_stages(git_project):
    with TestClient(app) as live_client:
        response = live_client.get("/api/quickstage/status")
        assert response.status_code == 200

        status = wait_for_status(live_client, lambda d: not d["busy"] and d["repository_root"])
        assert os.path.samefile(status["repository_root"], git_project)
        assert status["unstaged_count"] == 1

        changes = live_client.get("/api/quickstage/changes").json()
        assert [c["asset_path"] for c in changes] == ["tracked.txt"]

        response = live_client.post("/api/quickstage/stage", json={"paths": ["tracked.txt"]})
        assert response.status_code == 200
        assert response.json()["status"] in ("started", "queued")

        status = wait_for_status(
            live_client, lambda d: not d["busy"] and d["staged_count"] == 1
        )
        assert status["unstaged_count"] == 0
