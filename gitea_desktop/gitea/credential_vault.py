from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
from pathlib import Path

import keyring
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

KEYRING_PREFIX = "k1:"
FALLBACK_PREFIX = "v1:"
_NONCE_BYTES = 12


class CredentialVaultError(RuntimeError):
    """Raised when a value cannot be sealed or unsealed."""

    def __init__(self, message: str, *, kind: str = "vault_error") -> None:
        super().__init__(message)
        self.kind = kind


class CredentialVault:
    """
    Encrypts tokens at rest.

    Prefers a master key held in the OS keyring. When no keyring backend is
    usable, falls back to AES-GCM keyed by a hash of the app directory path,
    which only deters casual reading of the accounts file. Every blob carries
    its scheme prefix, so values written under either scheme stay readable.
    """

    def __init__(
        self,
        app_dir: str | Path,
        *,
        service_name: str = "gitea-desktop",
        key_account: str = "vault-master-key",
    ) -> None:
        self._app_dir = Path(app_dir).expanduser()
        self._service_name = str(service_name)
        self._key_account = str(key_account)
        self._master_key: bytes | None = None

    def is_secure_storage_available(self) -> bool:
        """True when values are sealed under the keyring. Never creates the master key."""
        if self._keyring_master_key(create=False) is not None:
            return True
        try:
            keyring.get_password(self._service_name, self._key_account)
        except Exception as exc:
            logger.debug("Keyring unavailable: %s", type(exc).__name__)
            return False
        return True

    def encrypt(self, plaintext: str) -> str:
        data = str(plaintext).encode("utf-8")
        key = self._keyring_master_key(create=True)
        prefix = KEYRING_PREFIX
        if key is None:
            key = self._fallback_key()
            prefix = FALLBACK_PREFIX
        nonce = os.urandom(_NONCE_BYTES)
        sealed = AESGCM(key).encrypt(nonce, data, None)
        return prefix + base64.urlsafe_b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, blob: str) -> str:
        text = str(blob or "")
        if text.startswith(KEYRING_PREFIX):
            key = self._keyring_master_key(create=False)
            if key is None:
                raise CredentialVaultError(
                    "Secure storage key is not available to decrypt this value.",
                    kind="key_unavailable",
                )
            payload = text[len(KEYRING_PREFIX):]
        elif text.startswith(FALLBACK_PREFIX):
            key = self._fallback_key()
            payload = text[len(FALLBACK_PREFIX):]
        else:
            raise CredentialVaultError("Unknown encryption scheme.", kind="unknown_scheme")

        try:
            raw = base64.urlsafe_b64decode(payload.encode("ascii"))
        except (binascii.Error, ValueError) as exc:
            raise CredentialVaultError("Encrypted value is corrupt.", kind="corrupt") from exc
        if len(raw) <= _NONCE_BYTES:
            raise CredentialVaultError("Encrypted value is corrupt.", kind="corrupt")

        nonce, sealed = raw[:_NONCE_BYTES], raw[_NONCE_BYTES:]
        try:
            data = AESGCM(key).decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise CredentialVaultError("Could not decrypt value.", kind="decrypt_failed") from exc
        return data.decode("utf-8")

    def _fallback_key(self) -> bytes:
        return hashlib.sha256(str(self._app_dir).encode("utf-8")).digest()

    def _keyring_master_key(self, *, create: bool) -> bytes | None:
        if self._master_key is not None:
            return self._master_key
        try:
            stored = keyring.get_password(self._service_name, self._key_account)
        except Exception as exc:
            logger.debug("Keyring unavailable: %s", type(exc).__name__)
            return None

        text = str(stored or "").strip()
        if text:
            try:
                key = base64.urlsafe_b64decode(text.encode("ascii"))
            except (binascii.Error, ValueError):
                key = b""
            if len(key) == 32:
                self._master_key = key
                return key
            logger.warning("Ignoring malformed vault key in keyring.")
            if not create:
                return None

        if not create:
            return None
        key = AESGCM.generate_key(bit_length=256)
        try:
            keyring.set_password(
                self._service_name,
                self._key_account,
                base64.urlsafe_b64encode(key).decode("ascii"),
            )
        except Exception as exc:
            logger.debug("Could not store vault key in keyring: %s", type(exc).__name__)
            return None
        self._master_key = key
        return key
