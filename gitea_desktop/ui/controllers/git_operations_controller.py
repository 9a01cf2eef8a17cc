"""Runs long git operations off the GUI thread and relays their progress."""

from __future__ import annotations

import concurrent.futures
import logging
import queue
from typing import Callable

from PySide6.QtCore import QObject, QTimer, Signal

from gitea_desktop.git.git_service import (
    CloneRepoInput,
    GitOperationProgress,
    GitService,
    PublishFolderInput,
)

logger = logging.getLogger(__name__)


class GitOperationsController(QObject):
    operationProgress = Signal(object)
    operationFinished = Signal(str, object)
    operationFailed = Signal(str, str)

    def __init__(self, git_service: GitService, parent=None):
        super().__init__(parent)
        self.git_service = git_service

        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="gitea-git-ops")
        self._active_futures: set[concurrent.futures.Future] = set()
        # Worker threads only enqueue; the pump emits signals on the GUI thread.
        self._events: queue.Queue[tuple[str, object]] = queue.Queue()

        self._result_pump = QTimer(self)
        self._result_pump.setInterval(35)
        self._result_pump.timeout.connect(self._drain_events)

    @property
    def result_pump(self) -> QTimer:
        return self._result_pump

    def publish_folder(self, req: PublishFolderInput) -> str:
        op_id = str(req.op_id or "publish")

        def _run() -> None:
            self.git_service.publish_folder(req, self._events_progress_sink)

        self._submit(op_id, _run)
        return op_id

    def clone_repo(self, req: CloneRepoInput, *, op_id: str = "clone") -> str:
        self._submit(op_id, lambda: self.git_service.clone_repo(req))
        return op_id

    def read_status(self, repo_path: str, *, op_id: str = "status") -> str:
        self._submit(op_id, lambda: self.git_service.get_repo_status(repo_path))
        return op_id

    def shutdown(self) -> None:
        self._result_pump.stop()
        for future in list(self._active_futures):
            future.cancel()
        self._active_futures.clear()
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ---------- Internals ----------

    def _events_progress_sink(self, event: GitOperationProgress) -> None:
        self._events.put(("progress", event))

    def _submit(self, op_id: str, fn: Callable[[], object]) -> None:
        try:
            future = self._executor.submit(fn)
        except RuntimeError as exc:
            self.operationFailed.emit(op_id, f"Git task failed to start: {exc}")
            return
        self._active_futures.add(future)
        future.add_done_callback(lambda fut, op=op_id: self._queue_future_result(op, fut))
        if not self._result_pump.isActive():
            self._result_pump.start()

    def _queue_future_result(self, op_id: str, future: concurrent.futures.Future) -> None:
        if future.cancelled():
            self._active_futures.discard(future)
            return
        error = future.exception()
        if error is None:
            self._events.put(("finished", (op_id, future.result())))
        else:
            self._events.put(("failed", (op_id, str(error) or type(error).__name__)))
        self._active_futures.discard(future)

    def _drain_events(self) -> None:
        while True:
            try:
                kind, payload = self._events.get_nowait()
            except queue.Empty:
                break
            if kind == "progress":
                self.operationProgress.emit(payload)
            elif kind == "finished":
                op_id, result = payload
                self.operationFinished.emit(op_id, result)
            else:
                op_id, message = payload
                logger.warning("Git operation %s failed: %s", op_id, message)
                self.operationFailed.emit(op_id, message)

        if not self._active_futures and self._events.empty():
            self._result_pump.stop()
