"""Qt-aware controller that keeps repository status fresh from filesystem events."""

from __future__ import annotations

import concurrent.futures
import logging
import os
from dataclasses import dataclass

from PySide6.QtCore import QFileSystemWatcher, QObject, QTimer, Signal

from gitea_desktop.core.best_effort import ignore_failure
from gitea_desktop.git.git_service import GitService, RepoStatus

logger = logging.getLogger(__name__)

DEBOUNCE_MS = 250
SKIPPED_DIR_NAMES = {".git", "node_modules"}
GIT_METADATA_FILES = ("HEAD", "index")


@dataclass(slots=True)
class _RepoWatch:
    path: str
    watcher: QFileSystemWatcher
    timer: QTimer
    generation: int


class StatusWatchController(QObject):
    statusChanged = Signal(str, object)
    statusError = Signal(str, str)

    def __init__(self, git_service: GitService, parent=None, *, debounce_ms: int = DEBOUNCE_MS):
        super().__init__(parent)
        self.git_service = git_service
        self._debounce_ms = max(0, int(debounce_ms))

        self._watches: dict[str, _RepoWatch] = {}
        self._generation = 0

        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="gitea-status")
        self._pending: dict[concurrent.futures.Future, tuple[str, int]] = {}
        # One refresh per path at a time; events during it mark the path for a rerun.
        self._in_flight: dict[str, concurrent.futures.Future] = {}
        self._rerun: set[str] = set()

        self._result_pump = QTimer(self)
        self._result_pump.setInterval(40)
        self._result_pump.timeout.connect(self._drain_status_tasks)

    @property
    def result_pump(self) -> QTimer:
        return self._result_pump

    def watched_paths(self) -> list[str]:
        return sorted(self._watches)

    # ---------- Public API ----------

    def watch(self, repo_path: str) -> None:
        path = os.path.abspath(str(repo_path or "").strip())
        self.unwatch(path)

        self._generation += 1
        generation = self._generation

        watcher = QFileSystemWatcher(self)
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.setInterval(self._debounce_ms)
        timer.timeout.connect(lambda p=path, g=generation: self._request_refresh(p, g))

        entry = _RepoWatch(path=path, watcher=watcher, timer=timer, generation=generation)
        watcher.directoryChanged.connect(lambda changed, p=path, g=generation: self._on_fs_event(p, g, changed))
        watcher.fileChanged.connect(lambda changed, p=path, g=generation: self._on_fs_event(p, g, changed))
        self._watches[path] = entry

        self._sync_watches(entry)
        timer.start()

    def unwatch(self, repo_path: str) -> None:
        path = os.path.abspath(str(repo_path or "").strip())
        self._rerun.discard(path)
        entry = self._watches.pop(path, None)
        if entry is None:
            return
        ignore_failure(entry.timer.stop, description="stopping a debounce timer")
        ignore_failure(lambda: _clear_watcher(entry.watcher), description="closing a file watcher")

    def shutdown(self) -> None:
        for path in list(self._watches):
            self.unwatch(path)
        self._result_pump.stop()
        for future in list(self._pending):
            future.cancel()
        self._pending.clear()
        self._in_flight.clear()
        self._rerun.clear()
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ---------- Events ----------

    def _on_fs_event(self, repo_path: str, generation: int, _changed_path: str) -> None:
        entry = self._current(repo_path, generation)
        if entry is None:
            return
        self._sync_watches(entry)
        entry.timer.start()

    def _request_refresh(self, repo_path: str, generation: int) -> None:
        if self._current(repo_path, generation) is None:
            return
        if repo_path in self._in_flight:
            self._rerun.add(repo_path)
            return
        try:
            future = self._executor.submit(self.git_service.get_repo_status, repo_path)
        except RuntimeError as exc:
            logger.warning("Status refresh for %s could not start: %s", repo_path, exc)
            return
        self._pending[future] = (repo_path, generation)
        self._in_flight[repo_path] = future
        if not self._result_pump.isActive():
            self._result_pump.start()

    def _drain_status_tasks(self) -> None:
        done: list[concurrent.futures.Future] = []
        for future, (repo_path, generation) in list(self._pending.items()):
            if not future.done():
                continue
            done.append(future)
            if self._in_flight.get(repo_path) is future:
                del self._in_flight[repo_path]
            # Drop results for paths that were unwatched or re-armed meanwhile.
            if self._current(repo_path, generation) is None:
                continue
            try:
                status = future.result()
            except Exception as exc:
                logger.warning("Status refresh failed for %s: %s", repo_path, exc)
                self.statusError.emit(repo_path, str(exc) or type(exc).__name__)
                continue
            if isinstance(status, RepoStatus):
                self.statusChanged.emit(repo_path, status)

        for future in done:
            self._pending.pop(future, None)

        for repo_path in [p for p in self._rerun if p not in self._in_flight]:
            self._rerun.discard(repo_path)
            entry = self._watches.get(repo_path)
            if entry is not None:
                self._request_refresh(repo_path, entry.generation)

        if not self._pending:
            self._result_pump.stop()

    # ---------- Watch set ----------

    def _current(self, repo_path: str, generation: int) -> _RepoWatch | None:
        entry = self._watches.get(repo_path)
        if entry is None or entry.generation != generation:
            return None
        return entry

    def _sync_watches(self, entry: _RepoWatch) -> None:
        desired_dirs, desired_files = _desired_watch_paths(entry.path)
        watcher = entry.watcher

        current_dirs = {os.path.normpath(p) for p in watcher.directories()}
        current_files = {os.path.normpath(p) for p in watcher.files()}

        stale = sorted((current_dirs - desired_dirs) | (current_files - desired_files))
        if stale:
            watcher.removePaths(stale)
        # git replaces .git/index atomically, which silently drops the file watch.
        missing = sorted((desired_dirs - current_dirs) | (desired_files - current_files))
        if missing:
            watcher.addPaths(missing)


def _desired_watch_paths(repo_path: str) -> tuple[set[str], set[str]]:
    dirs: set[str] = set()
    files: set[str] = set()
    if not os.path.isdir(repo_path):
        return dirs, files

    for root, subdirs, _files in os.walk(repo_path):
        subdirs[:] = [name for name in subdirs if name not in SKIPPED_DIR_NAMES]
        dirs.add(os.path.normpath(root))

    git_dir = os.path.join(repo_path, ".git")
    for name in GIT_METADATA_FILES:
        candidate = os.path.join(git_dir, name)
        if os.path.isfile(candidate):
            files.add(os.path.normpath(candidate))
    refs_dir = os.path.join(git_dir, "refs")
    if os.path.isdir(refs_dir):
        for root, _subdirs, _files in os.walk(refs_dir):
            dirs.add(os.path.normpath(root))
    return dirs, files


def _clear_watcher(watcher: QFileSystemWatcher) -> None:
    paths = list(watcher.directories()) + list(watcher.files())
    if paths:
        watcher.removePaths(paths)
