from __future__ import annotations

import gc
import os
import threading

import pytest

from gitea_desktop.git.git_service import RepoStatus
from gitea_desktop.ui.controllers.status_watch_controller import StatusWatchController, _desired_watch_paths

from .conftest import wait_until


class FakeGitService:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.error: Exception | None = None
        self.gate: threading.Event | None = None
        self.branches: list[str] = []

    def get_repo_status(self, repo_path: str) -> RepoStatus:
        self.calls.append(repo_path)
        branch = self.branches.pop(0) if self.branches else "main"
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return RepoStatus(branch=branch, changed=[])


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "repo"
    (root / ".git" / "refs" / "heads").mkdir(parents=True)
    (root / ".git" / "objects" / "ab").mkdir(parents=True)
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    (root / ".git" / "index").write_bytes(b"")
    (root / "src" / "pkg").mkdir(parents=True)
    (root / "node_modules" / "lib").mkdir(parents=True)
    return root


@pytest.fixture
def controller(qapp):
    service = FakeGitService()
    ctrl = StatusWatchController(service, debounce_ms=50)
    yield ctrl
    ctrl.shutdown()


def _collect(ctrl: StatusWatchController) -> tuple[list, list]:
    changed: list = []
    errors: list = []
    ctrl.statusChanged.connect(lambda path, status: changed.append((path, status)))
    ctrl.statusError.connect(lambda path, message: errors.append((path, message)))
    return changed, errors


def test_watch_set_skips_git_internals_and_node_modules(repo) -> None:
    dirs, files = _desired_watch_paths(str(repo))

    assert os.path.normpath(str(repo / "src" / "pkg")) in dirs
    assert os.path.normpath(str(repo / ".git" / "refs" / "heads")) in dirs
    assert not any("node_modules" in d for d in dirs)
    assert os.path.normpath(str(repo / ".git" / "objects")) not in dirs
    assert files == {
        os.path.normpath(str(repo / ".git" / "HEAD")),
        os.path.normpath(str(repo / ".git" / "index")),
    }


def test_arming_schedules_initial_refresh(controller, repo) -> None:
    changed, errors = _collect(controller)

    controller.watch(str(repo))

    assert wait_until(lambda: len(changed) == 1)
    path, status = changed[0]
    assert path == str(repo)
    assert status.branch == "main"
    assert errors == []


def test_burst_of_events_produces_one_recompute(controller, repo) -> None:
    changed, _errors = _collect(controller)
    controller.watch(str(repo))
    assert wait_until(lambda: len(changed) == 1)

    entry = controller._watches[str(repo)]
    for _ in range(10):
        controller._on_fs_event(str(repo), entry.generation, str(repo / "src"))

    assert wait_until(lambda: len(changed) == 2)
    assert not wait_until(lambda: len(changed) > 2, timeout_ms=300)
    assert len(controller.git_service.calls) == 2


def test_file_change_triggers_refresh(controller, repo) -> None:
    changed, _errors = _collect(controller)
    controller.watch(str(repo))
    assert wait_until(lambda: len(changed) == 1)

    (repo / "src" / "pkg" / "module.py").write_text("x = 1\n", encoding="utf-8")

    assert wait_until(lambda: len(changed) >= 2, timeout_ms=5000)


def test_reader_failure_is_reported(controller, repo) -> None:
    changed, errors = _collect(controller)
    controller.git_service.error = RuntimeError("not a git repository")

    controller.watch(str(repo))

    assert wait_until(lambda: len(errors) == 1)
    assert errors[0] == (str(repo), "not a git repository")
    assert changed == []


def test_unwatch_cancels_pending_refresh(controller, repo) -> None:
    controller.watch(str(repo))
    controller.unwatch(str(repo))

    assert not wait_until(lambda: bool(controller.git_service.calls), timeout_ms=300)
    assert controller.watched_paths() == []


def test_result_for_unwatched_path_is_discarded(controller, repo) -> None:
    changed, _errors = _collect(controller)
    controller.git_service.gate = threading.Event()

    controller.watch(str(repo))
    assert wait_until(lambda: bool(controller.git_service.calls))
    controller.unwatch(str(repo))
    controller.git_service.gate.set()

    assert not wait_until(lambda: bool(changed), timeout_ms=300)


def test_rewatch_replaces_existing_watch(controller, repo) -> None:
    controller.watch(str(repo))
    first = controller._watches[str(repo)]
    controller.watch(str(repo))

    assert controller.watched_paths() == [str(repo)]
    assert controller._watches[str(repo)].generation != first.generation


def test_event_during_refresh_reruns_after_it_finishes(controller, repo) -> None:
    changed, _errors = _collect(controller)
    service = controller.git_service
    service.gate = threading.Event()
    service.branches = ["old", "new"]

    controller.watch(str(repo))
    assert wait_until(lambda: len(service.calls) == 1)
    entry = controller._watches[str(repo)]
    controller._on_fs_event(str(repo), entry.generation, str(repo / "src"))

    assert not wait_until(lambda: len(service.calls) > 1, timeout_ms=300)
    service.gate.set()

    assert wait_until(lambda: len(changed) == 2)
    assert [status.branch for _path, status in changed] == ["old", "new"]
    assert len(service.calls) == 2


def test_event_loop_survives_controller_teardown(qapp, repo) -> None:
    changed: list[str] = []
    ctrl = StatusWatchController(FakeGitService(), debounce_ms=10)
    ctrl.statusChanged.connect(lambda path, _status: changed.append(path))
    ctrl.watch(str(repo))
    assert wait_until(lambda: bool(changed))
    ctrl.watch(str(repo))

    ctrl.shutdown()
    del ctrl
    gc.collect()

    assert not wait_until(lambda: False, timeout_ms=200)
