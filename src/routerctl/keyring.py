"""Encrypted credential keyring used to store router account passwords.

The keyring file is a small JSON envelope::

    {"version": 1, "kdf": "scrypt", "salt": "<base64>", "payload": "<fernet token>"}

The payload decrypts to ``{username: {attribute: secret}}``. The Fernet key is
derived from the master key with Scrypt using the per-file salt, so the same
master key can protect several keyrings. A master key is either typed by the
operator or read from a *master key file* holding a random key.
"""
from __future__ import annotations

import base64
import binascii
import json
import os
import secrets
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

KEYRING_FORMAT_VERSION = 1
SALT_LENGTH = 16
MASTER_KEY_BYTES = 32


class KeyringError(RuntimeError):
    """Raised when the keyring cannot be read, decrypted, or written."""


def derive_fernet_key(master_key: str, salt: bytes) -> bytes:
    """Return a Fernet key derived from *master_key* and *salt*."""
    kdf = Scrypt(salt=salt, length=32, n=2**14, r=8, p=1)
    return base64.urlsafe_b64encode(kdf.derive(master_key.encode("utf-8")))


@dataclass(slots=True)
class Keyring:
    """In-memory view of an encrypted keyring file."""

    path: Path
    master_key: str = field(repr=False)
    salt: bytes = field(default_factory=lambda: secrets.token_bytes(SALT_LENGTH), repr=False)
    entries: dict[str, dict[str, str]] = field(default_factory=dict, repr=False)

    def store(self, username: str, attribute: str, secret: str) -> None:
        """Set *attribute* of *username* to *secret* (in memory until flushed)."""
        self.entries.setdefault(username, {})[attribute] = secret

    def fetch(self, username: str, attribute: str) -> str:
        """Return the stored secret or raise :class:`KeyringError`."""
        try:
            return self.entries[username][attribute]
        except KeyError as exc:
            raise KeyringError(
                f"Keyring {self.path} has no '{attribute}' entry for '{username}'."
            ) from exc

    def lookup(self, username: str, attribute: str) -> str | None:
        """Return the stored secret, or ``None`` when absent."""
        return self.entries.get(username, {}).get(attribute)

    def remove(self, username: str, attribute: str | None = None) -> None:
        """Remove one attribute of *username*, or the whole user entry."""
        if attribute is None:
            self.entries.pop(username, None)
            return
        attributes = self.entries.get(username)
        if attributes is None:
            return
        attributes.pop(attribute, None)
        if not attributes:
            self.entries.pop(username, None)

    def flush(self) -> None:
        """Encrypt the entries and atomically write the keyring file."""
        fernet = Fernet(derive_fernet_key(self.master_key, self.salt))
        token = fernet.encrypt(json.dumps(self.entries, sort_keys=True).encode("utf-8"))
        envelope = {
            "version": KEYRING_FORMAT_VERSION,
            "kdf": "scrypt",
            "salt": base64.b64encode(self.salt).decode("ascii"),
            "payload": token.decode("ascii"),
        }
        _write_private(self.path, json.dumps(envelope, indent=2) + "\n")


def open_keyring(path: Path, master_key: str, *, create_if_missing: bool) -> Keyring:
    """Open the keyring at *path* with *master_key*.

    A missing file yields an empty keyring when *create_if_missing* is set; it
    is written on the first :meth:`Keyring.flush`.
    """
    if not master_key:
        raise KeyringError("Keyring master key must not be empty.")
    if not path.exists():
        if not create_if_missing:
            raise KeyringError(f"Keyring file {path} does not exist.")
        return Keyring(path=path, master_key=master_key)

    try:
        envelope = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise KeyringError(f"Could not read keyring file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise KeyringError(f"Keyring file {path} is corrupted: {exc}") from exc
    if not isinstance(envelope, Mapping) or envelope.get("version") != KEYRING_FORMAT_VERSION:
        raise KeyringError(f"Keyring file {path} has an unsupported format.")

    try:
        salt = base64.b64decode(str(envelope["salt"]), validate=True)
        token = str(envelope["payload"]).encode("ascii")
    except (KeyError, binascii.Error, UnicodeEncodeError) as exc:
        raise KeyringError(f"Keyring file {path} is corrupted.") from exc

    try:
        plaintext = Fernet(derive_fernet_key(master_key, salt)).decrypt(token)
    except InvalidToken as exc:
        raise KeyringError(f"Invalid master key for keyring file {path}.") from exc

    raw_entries = json.loads(plaintext.decode("utf-8"))
    entries: dict[str, dict[str, str]] = {}
    if isinstance(raw_entries, Mapping):
        for username, attributes in raw_entries.items():
            if isinstance(attributes, Mapping):
                entries[str(username)] = {str(k): str(v) for k, v in attributes.items()}
    return Keyring(path=path, master_key=master_key, salt=salt, entries=entries)


def read_master_key_file(path: Path, *, create_if_missing: bool) -> str:
    """Return the master key stored in *path*, generating one when allowed."""
    if path.exists():
        try:
            key = path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise KeyringError(f"Could not read master key file {path}: {exc}") from exc
        if not key:
            raise KeyringError(f"Master key file {path} is empty.")
        return key
    if not create_if_missing:
        raise KeyringError(f"Master key file {path} does not exist.")
    key = secrets.token_urlsafe(MASTER_KEY_BYTES)
    _write_private(path, key + "\n")
    return key


def init_keyring(keyring_path: Path, master_key_file: Path, *, create_if_missing: bool) -> Keyring:
    """Open a keyring whose master key lives in *master_key_file*."""
    master_key = read_master_key_file(master_key_file, create_if_missing=create_if_missing)
    return open_keyring(keyring_path, master_key, create_if_missing=create_if_missing)


def init_keyring_with_key(keyring_path: Path, master_key: str, *, create_if_missing: bool) -> Keyring:
    """Open a keyring protected by an operator supplied *master_key*."""
    return open_keyring(keyring_path, master_key, create_if_missing=create_if_missing)


def _write_private(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    except OSError as exc:
        raise KeyringError(f"Could not open {path} for writing: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise KeyringError(f"Could not write {path}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)


__all__ = [
    "Keyring",
    "KeyringError",
    "derive_fernet_key",
    "init_keyring",
    "init_keyring_with_key",
    "open_keyring",
    "read_master_key_file",
]
