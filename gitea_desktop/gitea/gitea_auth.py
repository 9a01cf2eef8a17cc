from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Callable

from gitea_desktop.gitea.account_store import Account, AccountStore, AccountSummary
from gitea_desktop.gitea.gitea_client import (
    CreateBranchInput,
    CreateRepoInput,
    GiteaApiError,
    GiteaClient,
    GiteaClientError,
    GiteaOwner,
    GiteaRepo,
    RepoOpenCounts,
)
from gitea_desktop.gitea.gitea_oauth import OAuthPkceAuthenticator

logger = logging.getLogger(__name__)

TOKEN_NAME = "Gitea Desktop"


class NotSignedInError(RuntimeError):
    def __init__(self, message: str = "Not signed in.") -> None:
        super().__init__(message)
        self.kind = "not_signed_in"


def account_id_for(base_url: str, user_id: object) -> str:
    """Stable identity key, so signing in again replaces the same record."""
    return hashlib.sha256(f"{base_url}|{user_id}".encode("utf-8")).hexdigest()


class GiteaAccountService:
    """Login flows and operations scoped to the active account."""

    def __init__(
        self,
        store: AccountStore,
        *,
        client_factory: Callable[[str, str], GiteaClient] = GiteaClient,
    ) -> None:
        self._store = store
        self._client_factory = client_factory

    # ---------- Accounts ----------

    def create_account_from_token(self, base_url: str, token: str) -> Account:
        trimmed = str(token or "").strip()
        client = self._client_factory(base_url, trimmed)
        user = client.get_current_user()
        clean_base = str(base_url or "").strip().rstrip("/")
        login = str(user.get("login") or "")
        return Account(
            id=account_id_for(clean_base, user.get("id")),
            base_url=clean_base,
            login=login,
            display_name=str(user.get("full_name") or "") or login,
            token=trimmed,
        )

    def create_account_from_password(self, base_url: str, username: str, password: str) -> Account:
        user = str(username or "").strip()
        if not user or not password:
            raise GiteaClientError("Username and password are required.", kind="validation")
        try:
            token = GiteaClient.create_access_token(base_url, user, password, name=TOKEN_NAME)
        except GiteaApiError as exc:
            # Token names are unique per user; an earlier sign-in may own this one.
            logger.debug("Token creation rejected (%s); retrying with a unique name", exc.status)
            stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
            token = GiteaClient.create_access_token(base_url, user, password, name=f"{TOKEN_NAME} {stamp}")
        return self.create_account_from_token(base_url, token)

    def login_with_token(self, base_url: str, token: str) -> AccountSummary:
        return self._activate(self.create_account_from_token(base_url, token))

    def login_with_password(self, base_url: str, username: str, password: str) -> AccountSummary:
        return self._activate(self.create_account_from_password(base_url, username, password))

    def login_with_oauth(
        self,
        base_url: str,
        client_id: str,
        client_secret: str | None,
        authenticator: OAuthPkceAuthenticator,
    ) -> AccountSummary:
        token = authenticator.login(base_url, client_id, client_secret)
        return self._activate(self.create_account_from_token(base_url, token))

    def logout(self, account_id: str) -> None:
        self._store.delete_account(account_id)

    def get_accounts(self) -> list[AccountSummary]:
        return self._store.get_accounts()

    def get_active_account(self) -> AccountSummary | None:
        account = self._store.get_active_account()
        return account.summary() if account is not None else None

    def set_active_account(self, account_id: str | None) -> None:
        self._store.set_active_account_id(account_id)

    def _activate(self, account: Account) -> AccountSummary:
        self._store.upsert_account(account)
        self._store.set_active_account_id(account.id)
        return account.summary()

    # ---------- Active-account operations ----------

    def list_repos(self) -> list[GiteaRepo]:
        account = self._store.get_active_account()
        if account is None:
            return []
        return self._client(account).list_repos()

    def list_owners(self) -> list[GiteaOwner]:
        account = self._store.get_active_account()
        if account is None:
            return []
        try:
            orgs = self._client(account).list_orgs()
        except GiteaClientError as exc:
            logger.warning("Could not list organizations: %s", exc)
            orgs = []

        owners = [GiteaOwner(name=account.login, display_name=account.login, type="user")]
        for org in orgs:
            name = str(org.get("username") or "").strip()
            if not name:
                continue
            full_name = str(org.get("full_name") or "").strip()
            owners.append(
                GiteaOwner(
                    name=name,
                    display_name=f"{full_name} ({name})" if full_name else name,
                    type="org",
                )
            )
        return owners

    def list_branches(self, owner: str, repo: str) -> list[str]:
        account = self._store.get_active_account()
        if account is None:
            return []
        return self._client(account).list_branches(owner, repo)

    def get_repo_open_counts(self, owner: str, repo: str) -> RepoOpenCounts:
        account = self._store.get_active_account()
        if account is None:
            return RepoOpenCounts(open_issues=None, open_pulls=None)
        return self._client(account).get_repo_open_counts(owner, repo)

    def create_repo(self, req: CreateRepoInput) -> GiteaRepo:
        account = self._require_account()
        owner = "" if req.owner == account.login else req.owner
        scoped = CreateRepoInput(
            owner=owner,
            name=req.name,
            private=req.private,
            description=req.description,
            auto_init=req.auto_init,
            default_branch=req.default_branch,
            gitignore_template=req.gitignore_template,
            license_template=req.license_template,
        )
        return self._client(account).create_repo(scoped)

    def create_branch(self, req: CreateBranchInput) -> None:
        account = self._require_account()
        self._client(account).create_branch(req)

    def _require_account(self) -> Account:
        account = self._store.get_active_account()
        if account is None:
            raise NotSignedInError()
        return account

    def _client(self, account: Account) -> GiteaClient:
        return self._client_factory(account.base_url, account.token)
