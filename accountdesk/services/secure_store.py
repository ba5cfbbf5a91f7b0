"""
Encrypted Secure Store.

Key → bytes store for per-account session material.  Every value is
encrypted with AES-256-GCM before it is written to the ``secure_items``
table in the local SQLite database.

Security model
--------------
- The encryption key is derived at runtime from machine-specific
  characteristics (hostname + OS username) via PBKDF2-HMAC-SHA256 with
  a per-machine random salt.  The key is **never** persisted to disk;
  it is derived once per store instance and kept in memory.
- AES-256-GCM provides both confidentiality and integrity, so a
  tampered or foreign row fails to decrypt instead of yielding garbage.
- The item key is authenticated as associated data, so a row copied
  under another key fails to decrypt.
- Items are never deleted by this store; unreferenced items are inert.

Storage layout::

    secure_items
    ├── key               TEXT PRIMARY KEY   (account id)
    ├── encrypted_payload BLOB
    ├── nonce             BLOB
    ├── tag               BLOB
    └── updated_at        TIMESTAMP
"""

from __future__ import annotations

import getpass
import os
import platform
import socket
import stat
import subprocess
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from accountdesk.database import DatabaseManager
from accountdesk.exceptions import StoreKeyNotFound, StoreReadError, StoreWriteError
from accountdesk.logger import StructuredLogger


@runtime_checkable
class SecureStore(Protocol):
    """Persistent key → bytes store.

    Implementations must be safe for concurrent access to disjoint keys.
    """

    def load(self, key: str) -> bytes:
        """Return the bytes stored under *key*.

        Raises ``StoreKeyNotFound`` when nothing is stored under *key*.
        """
        ...

    def store(self, key: str, value: bytes) -> None:
        """Write *value* under *key*, replacing any previous value.

        Raises ``StoreWriteError`` when the write fails.
        """
        ...


class EncryptedSecureStore:
    """AES-256-GCM encrypted ``SecureStore`` backed by local SQLite.

    Parameters
    ----------
    db:
        An initialised ``DatabaseManager``.  The ``secure_items`` table is
        created by ``initialize_schema``.
    logger:
        A ``StructuredLogger`` instance.
    salt_path:
        Location of the per-machine random salt file.
    kdf_iterations:
        PBKDF2 iteration count.
    """

    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        salt_path: Path,
        kdf_iterations: int = 600_000,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._salt_path: Path = salt_path
        self._kdf_iterations: int = kdf_iterations
        self._key: Optional[bytes] = None

    def warm_up(self) -> None:
        """Derive the encryption key now, creating the salt file if needed.

        ``create_managers`` calls this before any event loop work, so
        later ``load``/``store`` calls reuse the cached key.

        Raises
        ------
        StoreWriteError
            If the salt file cannot be created or read.
        """
        try:
            self._derive_key()
        except OSError as exc:
            raise StoreWriteError(
                "Secure store key could not be derived.", original_error=exc,
            ) from exc
        self._logger.debug("Secure store key ready.")

    # ------------------------------------------------------------------
    # SecureStore API
    # ------------------------------------------------------------------

    def load(self, key: str) -> bytes:
        """Read and decrypt the item stored under *key*.

        Raises
        ------
        StoreKeyNotFound
            No row exists for *key*.
        StoreReadError
            The row could not be read or failed authentication
            (corrupted data or machine identity changed).
        """
        try:
            row = self._db.sqlite.execute(
                "SELECT encrypted_payload, nonce, tag FROM secure_items WHERE key = ?",
                (key,),
            ).fetchone()
        except Exception as exc:
            raise StoreReadError(
                f"Failed to read secure item {key!r}.", original_error=exc,
            ) from exc

        if row is None:
            raise StoreKeyNotFound(key)

        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=row["nonce"])  # type: ignore[attr-defined]
            cipher.update(key.encode("utf-8"))
            return cipher.decrypt_and_verify(row["encrypted_payload"], row["tag"])
        except (ValueError, KeyError) as exc:
            raise StoreReadError(
                f"Decryption of secure item {key!r} failed (corrupted data "
                "or machine identity changed).",
                original_error=exc,
            ) from exc
        except OSError as exc:
            raise StoreReadError(
                "Secure store key could not be derived.", original_error=exc,
            ) from exc

    def store(self, key: str, value: bytes) -> None:
        """Encrypt *value* and upsert it under *key*.

        Raises
        ------
        StoreWriteError
            Encryption (including key derivation) or the database write
            failed.
        """
        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM)  # type: ignore[attr-defined]
            cipher.update(key.encode("utf-8"))
            ciphertext, tag = cipher.encrypt_and_digest(value)
            nonce: bytes = cipher.nonce
        except (OSError, ValueError) as exc:
            raise StoreWriteError(
                f"Failed to encrypt secure item {key!r}.", original_error=exc,
            ) from exc

        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO secure_items (key, encrypted_payload, nonce, tag)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        encrypted_payload = excluded.encrypted_payload,
                        nonce             = excluded.nonce,
                        tag               = excluded.tag,
                        updated_at        = CURRENT_TIMESTAMP
                    """,
                    (key, ciphertext, nonce, tag),
                )
                self._db.sqlite.commit()
        except Exception as exc:
            raise StoreWriteError(
                f"Failed to write secure item {key!r}.", original_error=exc,
            ) from exc
        self._logger.debug("Secure item %s written.", key)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _derive_key(self) -> bytes:
        """Derive (once) the 256-bit AES key from machine identity.

        ``hostname:username`` binds the key to this machine and OS
        account, so a copied database file is useless elsewhere.  The
        real entropy comes from the per-machine random salt.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        if self._key is None:
            password: str = f"{socket.gethostname()}:{getpass.getuser()}"
            self._key = PBKDF2(
                password=password,
                salt=self._get_or_create_salt(),
                dkLen=self._KEY_LENGTH,
                count=self._kdf_iterations,
                hmac_hash_module=SHA256,
            )
        return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine random salt, creating it on first run.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.  Callers refuse
            to encrypt rather than fall back to a static salt.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.",
                len(data),
            )
        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)

        if platform.system() == "Windows":
            self._restrict_windows_acl(self._salt_path)
        else:
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine store salt created at %s.", self._salt_path)
        return salt

    def _restrict_windows_acl(self, file_path: Path) -> None:
        """Restrict NTFS ACLs on *file_path* to the current user via ``icacls``.

        A failure is logged; the salt file stays usable without it.
        """
        try:
            username: str = getpass.getuser()
            result: subprocess.CompletedProcess[bytes] = subprocess.run(
                ["icacls", str(file_path), "/inheritance:r", "/grant:r", f"{username}:F"],
                capture_output=True,
                check=False,
                timeout=10,
            )
            if result.returncode != 0:
                self._logger.warning(
                    "icacls returned non-zero exit code %d for '%s': %s",
                    result.returncode,
                    file_path,
                    result.stderr.decode("utf-8", errors="replace").strip(),
                )
        except (OSError, subprocess.SubprocessError) as exc:
            self._logger.warning(
                "Failed to set Windows ACLs on '%s': %s", file_path, exc,
            )
