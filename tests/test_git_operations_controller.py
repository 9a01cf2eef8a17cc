from __future__ import annotations

import pytest

from gitea_desktop.git.auth_bridge import GitCommandError
from gitea_desktop.git.git_service import (
    CloneRepoInput,
    CloneRepoResult,
    GitOperationProgress,
    PublishFolderInput,
    RepoStatus,
)
from gitea_desktop.ui.controllers.git_operations_controller import GitOperationsController

from .conftest import wait_until


class FakeGitService:
    def __init__(self) -> None:
        self.fail_publish = False

    def publish_folder(self, req: PublishFolderInput, on_progress) -> None:
        for phase in ("prepare", "remote", "stage", "commit", "push"):
            on_progress(GitOperationProgress(req.op_id, phase, phase))
        if self.fail_publish:
            on_progress(GitOperationProgress(req.op_id, "error", "push rejected"))
            raise GitCommandError("push rejected", exit_code=1, output="push rejected")
        on_progress(GitOperationProgress(req.op_id, "done", "done"))

    def clone_repo(self, req: CloneRepoInput) -> CloneRepoResult:
        return CloneRepoResult(repo_path=f"{req.parent_path}/{req.folder_name}")

    def get_repo_status(self, repo_path: str) -> RepoStatus:
        return RepoStatus(branch="main", changed=[])


@pytest.fixture
def controller(qapp):
    ctrl = GitOperationsController(FakeGitService())
    yield ctrl
    ctrl.shutdown()


def _collect(ctrl: GitOperationsController) -> dict[str, list]:
    seen: dict[str, list] = {"progress": [], "finished": [], "failed": []}
    ctrl.operationProgress.connect(lambda event: seen["progress"].append(event))
    ctrl.operationFinished.connect(lambda op_id, result: seen["finished"].append((op_id, result)))
    ctrl.operationFailed.connect(lambda op_id, message: seen["failed"].append((op_id, message)))
    return seen


def test_publish_progress_is_relayed_in_order(controller) -> None:
    seen = _collect(controller)

    op_id = controller.publish_folder(PublishFolderInput("/tmp/x", "https://h/a/b.git", op_id="pub-1"))

    assert op_id == "pub-1"
    assert wait_until(lambda: bool(seen["finished"]))
    assert [e.phase for e in seen["progress"]] == ["prepare", "remote", "stage", "commit", "push", "done"]
    assert seen["finished"] == [("pub-1", None)]
    assert wait_until(lambda: not controller.result_pump.isActive())


def test_publish_failure_is_reported(controller) -> None:
    controller.git_service.fail_publish = True
    seen = _collect(controller)

    controller.publish_folder(PublishFolderInput("/tmp/x", "https://h/a/b.git"))

    assert wait_until(lambda: bool(seen["failed"]))
    assert seen["failed"] == [("publish", "push rejected")]
    assert seen["progress"][-1].phase == "error"
    assert seen["finished"] == []


def test_clone_and_status_results(controller) -> None:
    seen = _collect(controller)

    controller.clone_repo(CloneRepoInput("https://h/a/b.git", "/tmp/parent", "b"), op_id="clone-1")
    controller.read_status("/tmp/parent/b")

    assert wait_until(lambda: len(seen["finished"]) == 2)
    results = dict(seen["finished"])
    assert results["clone-1"] == CloneRepoResult(repo_path="/tmp/parent/b")
    assert results["status"].branch == "main"
