"""Qt-aware controller for sign-in flows and account switching."""

from __future__ import annotations

import concurrent.futures
import logging
from typing import Callable

from PySide6.QtCore import QObject, QTimer, Signal

from gitea_desktop.gitea.gitea_auth import GiteaAccountService
from gitea_desktop.gitea.gitea_oauth import BrowserSurface, OAuthPkceAuthenticator
from gitea_desktop.settings_store import AppSettingsStore

logger = logging.getLogger(__name__)


class AccountController(QObject):
    loginSucceeded = Signal(object)
    loginFailed = Signal(str)
    accountsChanged = Signal(object)

    def __init__(
        self,
        account_service: GiteaAccountService,
        settings_store: AppSettingsStore,
        parent=None,
        *,
        browser: BrowserSurface | None = None,
        authenticator_factory: Callable[[BrowserSurface], OAuthPkceAuthenticator] = OAuthPkceAuthenticator,
    ):
        super().__init__(parent)
        self.account_service = account_service
        self.settings_store = settings_store
        self._browser = browser
        self._authenticator_factory = authenticator_factory

        # One worker: logins are serialized and the OAuth port is fixed.
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="gitea-login")
        self._pending: dict[concurrent.futures.Future, str] = {}

        self._result_pump = QTimer(self)
        self._result_pump.setInterval(40)
        self._result_pump.timeout.connect(self._drain_tasks)

    @property
    def result_pump(self) -> QTimer:
        return self._result_pump

    # ---------- Sign in ----------

    def login_with_token(self, base_url: str, token: str) -> None:
        self._submit("login", lambda: self.account_service.login_with_token(base_url, token))

    def login_with_password(self, base_url: str, username: str, password: str) -> None:
        self._submit("login", lambda: self.account_service.login_with_password(base_url, username, password))

    def login_with_oauth(self, base_url: str, client_id: str | None = None, client_secret: str | None = None) -> None:
        settings = self.settings_store.get_settings()
        resolved_id = str(client_id or "").strip() or settings.oauth_client_id
        resolved_secret = str(client_secret or "").strip() or settings.oauth_client_secret
        authenticator = self._authenticator_factory(self._browser_surface())

        def _run():
            return self.account_service.login_with_oauth(base_url, resolved_id, resolved_secret, authenticator)

        self._submit("login", _run)

    # ---------- Accounts ----------

    def logout(self, account_id: str) -> None:
        self.account_service.logout(account_id)
        self.accountsChanged.emit(self.account_service.get_accounts())

    def set_active_account(self, account_id: str | None) -> None:
        self.account_service.set_active_account(account_id)
        self.accountsChanged.emit(self.account_service.get_accounts())

    def shutdown(self) -> None:
        self._result_pump.stop()
        for future in list(self._pending):
            future.cancel()
        self._pending.clear()
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ---------- Internals ----------

    def _browser_surface(self) -> BrowserSurface:
        if self._browser is None:
            from gitea_desktop.ui.oauth_browser_window import QtOAuthBrowserSurface

            self._browser = QtOAuthBrowserSurface(parent=self)
        return self._browser

    def _submit(self, kind: str, fn: Callable[[], object]) -> None:
        try:
            future = self._executor.submit(fn)
        except RuntimeError as exc:
            self.loginFailed.emit(f"Sign-in failed to start: {exc}")
            return
        self._pending[future] = kind
        if not self._result_pump.isActive():
            self._result_pump.start()

    def _drain_tasks(self) -> None:
        done: list[concurrent.futures.Future] = []
        for future, kind in list(self._pending.items()):
            if not future.done():
                continue
            done.append(future)
            try:
                result = future.result()
            except Exception as exc:
                logger.warning("Sign-in failed: %s", exc)
                self.loginFailed.emit(str(exc) or type(exc).__name__)
                continue
            if kind == "login":
                self.loginSucceeded.emit(result)
                self.accountsChanged.emit(self.account_service.get_accounts())

        for future in done:
            self._pending.pop(future, None)

        if not self._pending:
            self._result_pump.stop()
