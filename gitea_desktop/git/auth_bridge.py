from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess
import sys
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from gitea_desktop.gitea.account_store import Account

logger = logging.getLogger(__name__)

USERNAME_ENV = "GITEA_DESKTOP_GIT_USERNAME"
PASSWORD_ENV = "GITEA_DESKTOP_GIT_PASSWORD"

_ASKPASS_HELPER = """import os
import sys

prompt = " ".join(sys.argv[1:])
if "username" in prompt.lower():
    value = os.environ.get("{username_env}", "")
else:
    value = os.environ.get("{password_env}", "")
sys.stdout.write(value + "\\n")
""".format(username_env=USERNAME_ENV, password_env=PASSWORD_ENV)


@dataclass(slots=True)
class GitRunResult:
    returncode: int
    stdout: str
    stderr: str


class GitRunError(RuntimeError):
    """git could not be run at all (missing binary, timeout)."""

    def __init__(
        self,
        message: str,
        *,
        kind: str = "git_error",
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.stdout = sanitize_git_text(stdout)
        self.stderr = sanitize_git_text(stderr)


class GitCommandError(RuntimeError):
    """git ran and exited non-zero."""

    def __init__(self, message: str, *, exit_code: int, output: str) -> None:
        super().__init__(message)
        self.kind = "git_error"
        self.exit_code = int(exit_code)
        self.output = output


class GitCommandRunner:
    def __init__(self, *, default_timeout_seconds: int = 300) -> None:
        self._default_timeout_seconds = max(10, int(default_timeout_seconds))

    def run(
        self,
        args: list[str],
        *,
        cwd: str | Path,
        env: dict[str, str] | None = None,
        timeout_seconds: int | None = None,
        check: bool = True,
    ) -> GitRunResult:
        git_bin = shutil.which("git")
        if not git_bin:
            raise GitRunError("Git is not installed or not in PATH.", kind="git_not_installed")

        command = [git_bin, *[str(arg) for arg in args]]
        merged_env = os.environ.copy()
        merged_env["GIT_TERMINAL_PROMPT"] = "0"
        if env:
            merged_env.update(env)

        timeout = max(10, int(timeout_seconds or self._default_timeout_seconds))
        try:
            proc = subprocess.run(
                command,
                cwd=str(cwd),
                env=merged_env,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitRunError(
                "Git command timed out.",
                kind="timeout",
                stdout=_to_text(exc.stdout),
                stderr=_to_text(exc.stderr),
            ) from exc
        except OSError as exc:
            raise GitRunError("Could not start git.", kind="git_not_installed") from exc

        result = GitRunResult(
            returncode=int(proc.returncode),
            stdout=str(proc.stdout or ""),
            stderr=sanitize_git_text(proc.stderr),
        )
        if check and result.returncode != 0:
            output = (result.stderr or sanitize_git_text(result.stdout)).strip()
            described = sanitize_git_text(" ".join(str(arg) for arg in args))
            raise GitCommandError(
                f"git {described} failed ({result.returncode}): {output}",
                exit_code=result.returncode,
                output=output,
            )
        return result


class GitAuthBridge:
    """
    Supplies HTTPS credentials to git through an askpass helper.

    The helper reads the username and password from environment variables set
    only on the git child process, so the token never appears in a remote URL,
    an argument list or git config. Credentials are only handed out for remotes
    on the same host as the active account.
    """

    def __init__(
        self,
        app_dir: str | Path,
        *,
        account_provider: Callable[[], Account | None] | None = None,
        python_executable: str | None = None,
    ) -> None:
        self._askpass_dir = Path(app_dir).expanduser() / "askpass"
        self._account_provider = account_provider or (lambda: None)
        self._python = python_executable or sys.executable

    @property
    def askpass_dir(self) -> Path:
        return self._askpass_dir

    def env_for_remote(self, remote_url: str | None) -> dict[str, str]:
        remote_host = _http_host(remote_url)
        if not remote_host:
            return {}
        try:
            account = self._account_provider()
        except Exception as exc:
            logger.debug("No credentials for git: active account unavailable (%s)", type(exc).__name__)
            return {}
        if account is None or not account.token:
            return {}
        if _http_host(account.base_url) != remote_host:
            return {}
        return self.credential_env(account.login, account.token)

    def credential_env(self, username: str, password: str) -> dict[str, str]:
        launcher = self.ensure_askpass_helper()
        return {
            "GIT_ASKPASS": str(launcher),
            "GIT_TERMINAL_PROMPT": "0",
            "GCM_INTERACTIVE": "Never",
            USERNAME_ENV: str(username),
            PASSWORD_ENV: str(password),
        }

    def ensure_askpass_helper(self) -> Path:
        """Write the helper and its launcher once; later calls reuse them."""
        self._askpass_dir.mkdir(parents=True, exist_ok=True)
        helper = self._askpass_dir / "askpass.py"
        _write_if_changed(helper, _ASKPASS_HELPER)

        if os.name == "nt":
            launcher = self._askpass_dir / "askpass.cmd"
            script = "\r\n".join(["@echo off", f'"{self._python}" "%~dp0askpass.py" %*', ""])
            _write_if_changed(launcher, script)
            return launcher

        launcher = self._askpass_dir / "askpass.sh"
        script = "\n".join(
            [
                "#!/bin/sh",
                'DIR="$(CDPATH= cd -- "$(dirname -- "$0")" && pwd)"',
                f'exec {shlex.quote(self._python)} "$DIR/askpass.py" "$@"',
                "",
            ]
        )
        _write_if_changed(launcher, script)
        if not os.access(launcher, os.X_OK):
            os.chmod(launcher, 0o755)
        return launcher


def _write_if_changed(path: Path, content: str) -> None:
    try:
        if path.read_text(encoding="utf-8") == content:
            return
    except OSError:
        pass
    path.write_text(content, encoding="utf-8", newline="")


def _http_host(url: str | None) -> str:
    text = str(url or "").strip()
    if not text:
        return ""
    try:
        parsed = urllib.parse.urlsplit(text)
        port = parsed.port
    except ValueError:
        return ""
    if parsed.scheme.lower() not in {"http", "https"}:
        return ""
    host = str(parsed.hostname or "").lower()
    if not host:
        return ""
    return f"{host}:{port}" if port else host


_URL_CRED_RE = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)(?P<cred>[^/\s@]+)@(?P<rest>[^\s]+)", re.IGNORECASE)


def sanitize_git_text(text: str | bytes | None) -> str:
    raw = _to_text(text)
    if not raw:
        return ""
    return _URL_CRED_RE.sub(lambda m: f"{m.group('scheme')}***@{m.group('rest')}", raw)


def _to_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
