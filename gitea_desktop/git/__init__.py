from .auth_bridge import GitAuthBridge, GitCommandError, GitCommandRunner, GitRunError, GitRunResult, sanitize_git_text
from .git_service import (
    CloneRepoInput,
    CloneRepoResult,
    GitOperationProgress,
    GitService,
    PublishFolderInput,
    RepoChange,
    RepoStatus,
    parse_porcelain_v2,
)

__all__ = [
    "GitAuthBridge",
    "GitCommandError",
    "GitCommandRunner",
    "GitRunError",
    "GitRunResult",
    "sanitize_git_text",
    "CloneRepoInput",
    "CloneRepoResult",
    "GitOperationProgress",
    "GitService",
    "PublishFolderInput",
    "RepoChange",
    "RepoStatus",
    "parse_porcelain_v2",
]
