"""
Secure Credential Store.

Key/value secret persistence for the session core.  One interface,
three backends:

- ``KeyringCredentialStore``: the OS credential manager (macOS
  Keychain, Windows Credential Manager, Secret Service) via ``keyring``.
- ``EncryptedFileCredentialStore``: an AES-256-GCM encrypted JSON file
  for machines without a usable OS credential manager.
- ``InMemoryCredentialStore``: process-lifetime storage for tests and
  throwaway runs.

Every backend is scoped to one service namespace so entries cannot
collide with unrelated applications.

Contract
--------
- ``set`` overwrites by deleting the existing entry and adding a new
  one.  The two steps are not atomic from the backend's point of view;
  the session core never writes one key concurrently, which is what
  makes that acceptable.
- ``get`` returns ``None`` when the key is absent.
- ``delete`` on an absent key succeeds.
- Empty keys or values raise ``InvalidInput``.

Backends are not safe for concurrent use; the session core only calls
them from its own event loop.
"""

from __future__ import annotations

import base64
import binascii
import getpass
import json
import os
import socket
import stat
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import keyring
from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from keyring.backend import KeyringBackend
from keyring.errors import InitError, KeyringError, KeyringLocked, NoKeyringError

from grana.config import AppConfig
from grana.logger import StructuredLogger
from grana.services.credential_errors import (
    CredentialStoreError,
    DecodingFailed,
    DeletionFailed,
    InvalidInput,
    RetrievalFailed,
    SaveFailed,
    StoreStatus,
)


class CredentialStore(ABC):
    """Namespaced secret store with typed failures.

    Subclasses implement the three primitive operations; this base class
    enforces input validation and the delete-then-add overwrite.

    Parameters
    ----------
    service:
        Namespace that scopes every key (``KEYCHAIN_SERVICE``).
    logger:
        A ``StructuredLogger`` for backend diagnostics.
    """

    def __init__(self, service: str, logger: StructuredLogger) -> None:
        if not service:
            raise InvalidInput()
        self._service: str = service
        self._logger: StructuredLogger = logger

    @property
    def service(self) -> str:
        return self._service

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any existing entry.

        Raises:
            InvalidInput: If *key* or *value* is empty.
            SaveFailed: If the backend rejects the write.
        """
        _require(key)
        _require(value)
        try:
            self._remove(key)
        except CredentialStoreError as exc:
            raise SaveFailed(exc.status) from exc
        self._add(key, value)

    def get(self, key: str) -> Optional[str]:
        """Return the value stored under *key*, or ``None`` if absent.

        Raises:
            InvalidInput: If *key* is empty.
            RetrievalFailed: If the backend cannot be read.
            DecodingFailed: If the stored bytes are not UTF-8 text.
        """
        _require(key)
        return self._read(key)

    def delete(self, key: str) -> None:
        """Remove *key*.  Removing an absent key is not an error.

        Raises:
            InvalidInput: If *key* is empty.
            DeletionFailed: If the backend rejects the delete.
        """
        _require(key)
        self._remove(key)

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _add(self, key: str, value: str) -> None:
        """Add a new entry.  Raises ``SaveFailed``."""

    @abstractmethod
    def _read(self, key: str) -> Optional[str]:
        """Read an entry.  Raises ``RetrievalFailed`` / ``DecodingFailed``."""

    @abstractmethod
    def _remove(self, key: str) -> None:
        """Delete an entry if present.  Raises ``DeletionFailed``."""


def _require(value: str) -> None:
    if not value:
        raise InvalidInput()


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class InMemoryCredentialStore(CredentialStore):
    """Dict-backed store.  Values are kept as UTF-8 bytes, like a keychain item."""

    def __init__(self, service: str, logger: StructuredLogger) -> None:
        super().__init__(service, logger)
        self._items: dict[tuple[str, str], bytes] = {}

    def _add(self, key: str, value: str) -> None:
        item_key = (self._service, key)
        if item_key in self._items:
            raise SaveFailed(StoreStatus.DUPLICATE_ITEM)
        self._items[item_key] = value.encode("utf-8")

    def _read(self, key: str) -> Optional[str]:
        data = self._items.get((self._service, key))
        if data is None:
            return None
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodingFailed() from exc

    def _remove(self, key: str) -> None:
        self._items.pop((self._service, key), None)


# ---------------------------------------------------------------------------
# OS credential manager backend
# ---------------------------------------------------------------------------

def _keyring_status(exc: Exception) -> StoreStatus:
    """Map a ``keyring`` exception onto a store status code."""
    if isinstance(exc, NoKeyringError):
        return StoreStatus.UNIMPLEMENTED
    if isinstance(exc, (KeyringLocked, InitError)):
        return StoreStatus.INTERACTION_NOT_ALLOWED
    return StoreStatus.IO


class KeyringCredentialStore(CredentialStore):
    """Store backed by the OS credential manager.

    The namespace is the keyring *service name* and each key is the
    *username*.  Pass *backend* to pin a specific ``KeyringBackend``;
    otherwise ``keyring`` picks the platform default.
    """

    def __init__(
        self,
        service: str,
        logger: StructuredLogger,
        backend: Optional[KeyringBackend] = None,
    ) -> None:
        super().__init__(service, logger)
        self._backend: Optional[KeyringBackend] = backend

    def _add(self, key: str, value: str) -> None:
        try:
            if self._backend is not None:
                self._backend.set_password(self._service, key, value)
            else:
                keyring.set_password(self._service, key, value)
        except (KeyringError, OSError) as exc:
            self._logger.debug("keyring set_password failed for %s: %s", key, exc)
            raise SaveFailed(_keyring_status(exc)) from exc

    def _read(self, key: str) -> Optional[str]:
        try:
            if self._backend is not None:
                return self._backend.get_password(self._service, key)
            return keyring.get_password(self._service, key)
        except (KeyringError, OSError) as exc:
            self._logger.debug("keyring get_password failed for %s: %s", key, exc)
            raise RetrievalFailed(_keyring_status(exc)) from exc

    def _remove(self, key: str) -> None:
        try:
            existing = self._read(key)
        except CredentialStoreError as exc:
            raise DeletionFailed(exc.status) from exc
        if existing is None:
            return

        try:
            if self._backend is not None:
                self._backend.delete_password(self._service, key)
            else:
                keyring.delete_password(self._service, key)
        except (KeyringError, OSError) as exc:
            self._logger.debug("keyring delete_password failed for %s: %s", key, exc)
            raise DeletionFailed(_keyring_status(exc)) from exc


# ---------------------------------------------------------------------------
# Encrypted file backend
# ---------------------------------------------------------------------------

class EncryptedFileCredentialStore(CredentialStore):
    """AES-256-GCM encrypted JSON file.

    Document layout::

        {
          "version": 1,
          "entries": {
            "<service>": {
              "<key>": {"nonce": "<b64>", "tag": "<b64>", "ciphertext": "<b64>"}
            }
          }
        }

    Each entry is encrypted separately with the ``service:key`` pair as
    associated data, so an entry copied under another key fails
    authentication.

    Security model
    --------------
    The AES key is derived at runtime with PBKDF2-HMAC-SHA256 from
    ``hostname:user:service`` and a per-installation random salt stored
    next to the document with owner-only permissions.  The key is never
    written to disk.  A copied credentials file is useless on another
    machine or under another OS account.  This protects tokens against
    casual disk access, not against an attacker who controls the OS
    account.

    Parameters
    ----------
    path:
        Location of the JSON document.  Parent directories are created.
    salt_path:
        Location of the 32-byte salt file.
    pbkdf2_iterations:
        PBKDF2 work factor.  Tests pass a small value.
    """

    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32
    _DOCUMENT_VERSION: int = 1

    def __init__(
        self,
        service: str,
        logger: StructuredLogger,
        path: Path,
        salt_path: Path,
        pbkdf2_iterations: int = 600_000,
    ) -> None:
        super().__init__(service, logger)
        self._path: Path = path
        self._salt_path: Path = salt_path
        self._iterations: int = pbkdf2_iterations
        self._key: Optional[bytes] = None

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    def _add(self, key: str, value: str) -> None:
        try:
            document = self._load_document()
            aes_key = self._derive_key()
        except (OSError, ValueError) as exc:
            self._logger.warning("Cannot prepare credential file for write: %s", exc)
            raise SaveFailed(StoreStatus.IO) from exc

        entries = document.setdefault("entries", {}).setdefault(self._service, {})
        if key in entries:
            raise SaveFailed(StoreStatus.DUPLICATE_ITEM)

        cipher = AES.new(aes_key, AES.MODE_GCM)
        cipher.update(self._associated_data(key))
        ciphertext, tag = cipher.encrypt_and_digest(value.encode("utf-8"))
        entries[key] = {
            "nonce": _b64(cipher.nonce),
            "tag": _b64(tag),
            "ciphertext": _b64(ciphertext),
        }

        try:
            self._write_document(document)
        except OSError as exc:
            self._logger.warning("Failed to write credential file: %s", exc)
            raise SaveFailed(StoreStatus.IO) from exc

    def _read(self, key: str) -> Optional[str]:
        try:
            document = self._load_document()
        except (OSError, ValueError) as exc:
            self._logger.warning("Failed to read credential file: %s", exc)
            raise RetrievalFailed(StoreStatus.IO) from exc

        entry = document.get("entries", {}).get(self._service, {}).get(key)
        if entry is None:
            return None
        if not isinstance(entry, dict):
            raise RetrievalFailed(StoreStatus.DECODE)

        try:
            nonce = base64.b64decode(entry["nonce"], validate=True)
            tag = base64.b64decode(entry["tag"], validate=True)
            ciphertext = base64.b64decode(entry["ciphertext"], validate=True)
        except (KeyError, TypeError, binascii.Error) as exc:
            raise RetrievalFailed(StoreStatus.DECODE) from exc

        try:
            aes_key = self._derive_key()
        except OSError as exc:
            raise RetrievalFailed(StoreStatus.IO) from exc

        try:
            cipher = AES.new(aes_key, AES.MODE_GCM, nonce=nonce)
            cipher.update(self._associated_data(key))
            plaintext = cipher.decrypt_and_verify(ciphertext, tag)
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Credential entry %s failed authentication (corrupted data "
                "or machine identity changed).",
                key,
            )
            raise RetrievalFailed(StoreStatus.AUTH_FAILED) from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodingFailed() from exc

    def _remove(self, key: str) -> None:
        try:
            document = self._load_document()
        except (OSError, ValueError) as exc:
            raise DeletionFailed(StoreStatus.IO) from exc

        entries = document.get("entries", {}).get(self._service, {})
        if key not in entries:
            return
        del entries[key]

        try:
            self._write_document(document)
        except OSError as exc:
            self._logger.warning("Failed to write credential file: %s", exc)
            raise DeletionFailed(StoreStatus.IO) from exc

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def _load_document(self) -> dict:
        """Return the parsed document, or an empty one if the file is missing.

        Raises:
            OSError: If the file exists but cannot be read.
            ValueError: If the file is not a JSON object, or its entry
                maps are not objects.
        """
        if not self._path.exists():
            return {"version": self._DOCUMENT_VERSION, "entries": {}}
        document = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(document, dict):
            raise ValueError("credential file is not a JSON object")
        services = document.get("entries", {})
        if not isinstance(services, dict):
            raise ValueError("credential file entries are not a JSON object")
        if not all(isinstance(entries, dict) for entries in services.values()):
            raise ValueError("credential file service entries are not JSON objects")
        return document

    def _write_document(self, document: dict) -> None:
        """Atomically replace the document, readable by the owner only."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(json.dumps(document, ensure_ascii=False), encoding="utf-8")
        tmp_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        os.replace(tmp_path, self._path)

    # ------------------------------------------------------------------
    # Key derivation
    # ------------------------------------------------------------------

    def _associated_data(self, key: str) -> bytes:
        return f"{self._service}:{key}".encode("utf-8")

    def _derive_key(self) -> bytes:
        """Derive (once) the 256-bit AES key from machine identity.

        Raises:
            OSError: If the salt file cannot be created or read.
        """
        if self._key is None:
            password = f"{socket.gethostname()}:{getpass.getuser()}:{self._service}"
            self._key = PBKDF2(
                password=password,
                salt=self._get_or_create_salt(),
                dkLen=self._KEY_LENGTH,
                count=self._iterations,
                hmac_hash_module=SHA256,
            )
        return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-installation salt, creating it on first use.

        A salt file of the wrong length is treated as unreadable rather
        than silently regenerated, which would orphan every stored entry.
        """
        if self._salt_path.exists():
            salt = self._salt_path.read_bytes()
            if len(salt) != self._SALT_LENGTH:
                raise OSError(f"salt file '{self._salt_path}' is corrupted")
            return salt

        salt = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)
        self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600
        self._logger.info("Credential salt created at %s.", self._salt_path)
        return salt


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_credential_store(config: AppConfig, logger: StructuredLogger) -> CredentialStore:
    """Build the backend selected by ``CREDENTIAL_BACKEND``."""
    backend = config.CREDENTIAL_BACKEND
    if backend == "encrypted_file":
        return EncryptedFileCredentialStore(
            service=config.KEYCHAIN_SERVICE,
            logger=logger,
            path=config.CREDENTIAL_FILE,
            salt_path=config.CREDENTIAL_SALT_FILE,
        )
    if backend == "memory":
        return InMemoryCredentialStore(service=config.KEYCHAIN_SERVICE, logger=logger)
    return KeyringCredentialStore(service=config.KEYCHAIN_SERVICE, logger=logger)
