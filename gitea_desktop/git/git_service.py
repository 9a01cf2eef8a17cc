from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from gitea_desktop.core.fallback import first_success
from gitea_desktop.git.auth_bridge import (
    GitAuthBridge,
    GitCommandError,
    GitCommandRunner,
    GitRunResult,
    sanitize_git_text,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RepoChange:
    path: str
    index_status: str
    worktree_status: str


@dataclass(slots=True)
class RepoStatus:
    branch: str | None
    changed: list[RepoChange] = field(default_factory=list)


@dataclass(slots=True)
class GitOperationProgress:
    op_id: str
    phase: str  # prepare | remote | stage | commit | push | done | error
    message: str
    file_count: int | None = None


@dataclass(slots=True)
class PublishFolderInput:
    folder_path: str
    remote_url: str
    branch: str = "main"
    initial_commit_message: str = "Initial commit"
    op_id: str = "publish"


@dataclass(slots=True)
class CloneRepoInput:
    remote_url: str
    parent_path: str
    folder_name: str
    branch: str | None = None


@dataclass(slots=True)
class CloneRepoResult:
    repo_path: str


ProgressCallback = Callable[[GitOperationProgress], None]

# Fields before the path in porcelain v2 records ("1", "2", "u").
_FIELDS_BEFORE_PATH = {"1": 8, "2": 9, "u": 10}


def parse_porcelain_v2(text: str) -> RepoStatus:
    branch: str | None = None
    changed: list[RepoChange] = []

    for line in str(text or "").splitlines():
        if not line:
            continue
        if line.startswith("# branch.head "):
            head = line[len("# branch.head "):].strip()
            branch = None if head == "(detached)" else head
            continue

        code = line[0]
        if code in _FIELDS_BEFORE_PATH:
            parts = line.split(" ", _FIELDS_BEFORE_PATH[code])
            xy = parts[1] if len(parts) > 1 else ""
            path = parts[-1]
            if code == "2":
                # rename/copy records end with "<path>\t<origPath>"
                path = path.split("\t", 1)[0]
            changed.append(
                RepoChange(
                    path=path,
                    index_status=xy[0] if len(xy) > 0 else "?",
                    worktree_status=xy[1] if len(xy) > 1 else "?",
                )
            )
            continue

        if line.startswith("? "):
            path = line[2:].strip()
            # tolerate an echoed "?" status column before the path
            if path.startswith("? "):
                path = path[2:].strip()
            changed.append(RepoChange(path=path, index_status="?", worktree_status="?"))

    return RepoStatus(branch=branch, changed=changed)


class GitService:
    """Local git operations: init, remote setup, publish, clone and status."""

    def __init__(
        self,
        *,
        runner: GitCommandRunner | None = None,
        auth_bridge: GitAuthBridge | None = None,
    ) -> None:
        self._runner = runner or GitCommandRunner()
        self._auth_bridge = auth_bridge

    # ---------- Repository setup ----------

    def ensure_repo_initialized(self, repo_path: str, default_branch: str = "main") -> None:
        if os.path.exists(os.path.join(repo_path, ".git")):
            return
        self._run_git(repo_path, ["init"])
        first_success(
            [
                lambda: self._run_git(repo_path, ["checkout", "-b", default_branch]),
                lambda: self._run_git(repo_path, ["branch", "-M", default_branch]),
            ],
            catch=(GitCommandError,),
            describe="initial branch setup",
        )

    def configure_origin(self, repo_path: str, remote_url: str) -> str:
        """Point ``origin`` at ``remote_url``; returns ``added`` or ``updated``."""
        remotes = self._run_git(repo_path, ["remote"]).stdout
        has_origin = any(line.strip() == "origin" for line in remotes.splitlines())
        if has_origin:
            self._run_git(repo_path, ["remote", "set-url", "origin", remote_url])
            return "updated"
        self._run_git(repo_path, ["remote", "add", "origin", remote_url])
        return "added"

    # ---------- Publish / Clone ----------

    def publish_folder(self, req: PublishFolderInput, on_progress: ProgressCallback | None = None) -> None:
        op_id = str(req.op_id or "publish")
        branch = str(req.branch or "main")

        def emit(phase: str, message: str, file_count: int | None = None) -> None:
            if on_progress is not None:
                on_progress(GitOperationProgress(op_id=op_id, phase=phase, message=message, file_count=file_count))

        try:
            emit("prepare", "Preparing local repository…")
            Path(req.folder_path).mkdir(parents=True, exist_ok=True)
            self.ensure_repo_initialized(req.folder_path, branch)
            push_env = self._credential_env(req.remote_url)

            emit("remote", "Configuring remote…")
            self.configure_origin(req.folder_path, req.remote_url)

            emit("stage", "Staging files…")
            self._run_git(req.folder_path, ["add", "-A"])
            porcelain = self._run_git(req.folder_path, ["status", "--porcelain"]).stdout
            changed_files = len([line for line in porcelain.splitlines() if line.strip()])

            if changed_files > 0:
                emit("commit", "Creating commit…", changed_files)
                message = str(req.initial_commit_message or "Initial commit")
                self._run_git(req.folder_path, ["commit", "-m", message])
            else:
                emit("commit", "No local changes to commit.", 0)

            emit("push", "Pushing to remote…")
            self._push(req.folder_path, branch, push_env)

            emit("done", "Publish complete.")
        except Exception as exc:
            emit("error", _failure_message(exc))
            raise

    def clone_repo(self, req: CloneRepoInput) -> CloneRepoResult:
        destination = os.path.join(req.parent_path, req.folder_name)
        Path(req.parent_path).mkdir(parents=True, exist_ok=True)

        branch = str(req.branch or "").strip()
        if branch:
            args = ["clone", "--branch", branch, "--single-branch", req.remote_url, destination]
        else:
            args = ["clone", req.remote_url, destination]
        self._run_git(req.parent_path, args, env=self._credential_env(req.remote_url))
        return CloneRepoResult(repo_path=destination)

    # ---------- Status ----------

    def get_repo_status(self, repo_path: str) -> RepoStatus:
        result = self._run_git(repo_path, ["status", "--porcelain=v2", "--branch"])
        return parse_porcelain_v2(result.stdout)

    # ---------- Internals ----------

    def _push(self, repo_path: str, branch: str, env: dict[str, str]) -> None:
        def push_refspec() -> GitRunResult:
            return self._run_git(repo_path, ["push", "-u", "origin", f"HEAD:{branch}"], env=env)

        def push_branch() -> GitRunResult:
            logger.debug("Push of HEAD:%s failed; retrying with the branch name", branch)
            return self._run_git(repo_path, ["push", "-u", "origin", branch], env=env)

        first_success([push_refspec, push_branch], catch=(GitCommandError,), describe="push")

    def _credential_env(self, remote_url: str) -> dict[str, str]:
        if self._auth_bridge is None:
            return {}
        return self._auth_bridge.env_for_remote(remote_url)

    def _run_git(self, cwd: str, args: list[str], *, env: dict[str, str] | None = None) -> GitRunResult:
        return self._runner.run(args, cwd=cwd, env=env)


def _failure_message(exc: BaseException) -> str:
    text = sanitize_git_text(str(exc)).strip()
    return text or "Git operation failed."
