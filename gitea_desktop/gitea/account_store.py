from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gitea_desktop.gitea.credential_vault import CredentialVault

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AccountSummary:
    id: str
    base_url: str
    login: str
    display_name: str


@dataclass(slots=True)
class Account:
    id: str
    base_url: str
    login: str
    display_name: str
    token: str

    def summary(self) -> AccountSummary:
        return AccountSummary(
            id=self.id,
            base_url=self.base_url,
            login=self.login,
            display_name=self.display_name,
        )


@dataclass(slots=True)
class StoredAccount:
    id: str
    base_url: str
    login: str
    display_name: str
    token_encrypted: str

    def to_json(self) -> dict[str, str]:
        return {
            "id": self.id,
            "baseUrl": self.base_url,
            "login": self.login,
            "displayName": self.display_name,
            "tokenEncrypted": self.token_encrypted,
        }

    @classmethod
    def from_json(cls, raw: object) -> "StoredAccount | None":
        if not isinstance(raw, dict):
            return None
        account_id = str(raw.get("id") or "").strip()
        if not account_id:
            return None
        return cls(
            id=account_id,
            base_url=str(raw.get("baseUrl") or ""),
            login=str(raw.get("login") or ""),
            display_name=str(raw.get("displayName") or ""),
            token_encrypted=str(raw.get("tokenEncrypted") or ""),
        )


@dataclass(slots=True)
class AccountStoreFile:
    active_account_id: str | None = None
    accounts: list[StoredAccount] = field(default_factory=list)


class AccountStoreError(RuntimeError):
    def __init__(self, message: str, *, kind: str = "store_error") -> None:
        super().__init__(message)
        self.kind = kind


class AccountStore:
    """
    Persisted identity list plus the active-identity pointer.

    Tokens are sealed with :class:`CredentialVault` before they reach disk.
    Read-modify-write cycles are not locked; callers serialize mutations.
    """

    FILENAME = "accounts.json"

    def __init__(self, app_dir: str | Path, *, vault: CredentialVault | None = None) -> None:
        self._app_dir = Path(app_dir).expanduser()
        self._path = self._app_dir / self.FILENAME
        self._vault = vault or CredentialVault(self._app_dir)

    @property
    def path(self) -> Path:
        return self._path

    # ---------- Persistence boundary ----------

    def read_all(self) -> AccountStoreFile:
        if not self._path.is_file():
            return AccountStoreFile()
        try:
            payload: Any = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable accounts file %s: %s", self._path, exc)
            return AccountStoreFile()
        if not isinstance(payload, dict):
            return AccountStoreFile()

        accounts: list[StoredAccount] = []
        raw_accounts = payload.get("accounts")
        if isinstance(raw_accounts, list):
            for raw in raw_accounts:
                stored = StoredAccount.from_json(raw)
                if stored is not None:
                    accounts.append(stored)
        active = payload.get("activeAccountId")
        active_id = str(active).strip() if isinstance(active, str) and active.strip() else None
        return AccountStoreFile(active_account_id=active_id, accounts=accounts)

    def write_all(self, file: AccountStoreFile) -> None:
        payload = {
            "activeAccountId": file.active_account_id,
            "accounts": [item.to_json() for item in file.accounts],
        }
        try:
            self._app_dir.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise AccountStoreError(f"Could not write accounts file '{self._path}'.") from exc

    # ---------- Identities ----------

    def get_accounts(self) -> list[AccountSummary]:
        file = self.read_all()
        return [
            AccountSummary(
                id=item.id,
                base_url=item.base_url,
                login=item.login,
                display_name=item.display_name,
            )
            for item in file.accounts
        ]

    def get_account(self, account_id: str) -> Account | None:
        file = self.read_all()
        stored = _find(file, account_id)
        if stored is None:
            return None
        return self._unseal(stored)

    def get_active_account(self) -> Account | None:
        file = self.read_all()
        if not file.active_account_id:
            return None
        stored = _find(file, file.active_account_id)
        if stored is None:
            return None
        return self._unseal(stored)

    def get_active_account_id(self) -> str | None:
        file = self.read_all()
        if file.active_account_id and _find(file, file.active_account_id) is not None:
            return file.active_account_id
        return None

    def set_active_account_id(self, account_id: str | None) -> None:
        file = self.read_all()
        target = str(account_id or "").strip() or None
        if target is not None and _find(file, target) is None:
            raise AccountStoreError("Account does not exist.", kind="unknown_account")
        file.active_account_id = target
        self.write_all(file)

    def upsert_account(self, account: Account) -> None:
        file = self.read_all()
        stored = StoredAccount(
            id=account.id,
            base_url=account.base_url,
            login=account.login,
            display_name=account.display_name,
            token_encrypted=self._vault.encrypt(account.token),
        )
        for idx, item in enumerate(file.accounts):
            if item.id == account.id:
                file.accounts[idx] = stored
                break
        else:
            file.accounts.append(stored)
        self.write_all(file)

    def delete_account(self, account_id: str) -> None:
        file = self.read_all()
        file.accounts = [item for item in file.accounts if item.id != account_id]
        if file.active_account_id and _find(file, file.active_account_id) is None:
            file.active_account_id = file.accounts[0].id if file.accounts else None
        self.write_all(file)

    def _unseal(self, stored: StoredAccount) -> Account:
        token = self._vault.decrypt(stored.token_encrypted)
        return Account(
            id=stored.id,
            base_url=stored.base_url,
            login=stored.login,
            display_name=stored.display_name,
            token=token,
        )


def _find(file: AccountStoreFile, account_id: str) -> StoredAccount | None:
    for item in file.accounts:
        if item.id == account_id:
            return item
    return None
