"""Obtain the keyring master key and open the keyring for a bootstrap."""
from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from pathlib import Path

from ..keyring import Keyring, KeyringError, init_keyring, init_keyring_with_key
from .errors import BootstrapIOError
from .ledger import CompensatingLedger

LOGGER = logging.getLogger(__name__)

Prompter = Callable[[str], str]
Notifier = Callable[[str], None]

NEW_KEY_NOTICE = (
    "MySQL Router needs to create a InnoDB cluster metadata client account.\n"
    "To allow secure storage of its password, please provide an encryption key.\n"
    "To generate a random encryption key to be stored in a local obscured file,\n"
    "and allow the router to start without interaction, press Return to cancel\n"
    "and use the --master-key-path option to specify a file location.\n"
)
MISMATCH_NOTICE = "Entered keys do not match. Please try again."


def prompt_new_master_key(prompt: Prompter, notify: Notifier) -> str | None:
    """Ask for a new key twice until both entries match.

    An empty first entry returns ``None``, meaning the operator cancelled.
    """
    while True:
        key = prompt("Please provide an encryption key")
        if not key:
            return None
        confirm = prompt("Please confirm encryption key")
        if confirm == key:
            return key
        notify(MISMATCH_NOTICE)


def open_keyring_for_bootstrap(
    keyring_path: Path,
    master_key_file: Path | None,
    *,
    prompt: Prompter,
    notify: Notifier,
) -> Keyring | None:
    """Open (or start) the keyring, returning ``None`` when the operator cancels."""
    if master_key_file is not None:
        try:
            return init_keyring(keyring_path, master_key_file, create_if_missing=True)
        except KeyringError as exc:
            raise BootstrapIOError(str(exc)) from exc

    if keyring_path.exists():
        key: str | None = prompt(
            f"Please provide the encryption key for key file at {keyring_path}"
        )
    else:
        notify(NEW_KEY_NOTICE)
        key = prompt_new_master_key(prompt, notify)
    if not key:
        LOGGER.info("Master key entry cancelled")
        return None
    try:
        return init_keyring_with_key(keyring_path, key, create_if_missing=True)
    except KeyringError as exc:
        raise BootstrapIOError(str(exc)) from exc


def stage_master_key_file(path: Path, ledger: CompensatingLedger) -> Path:
    """Create ``<path>.tmp`` (a copy of *path* when it exists) and return it."""
    tmp = path.with_name(path.name + ".tmp")
    ledger.record_file(tmp)
    try:
        tmp.unlink(missing_ok=True)
        if path.exists():
            shutil.copyfile(path, tmp)
            os.chmod(tmp, 0o600)
    except OSError as exc:
        raise BootstrapIOError(
            f"Could not stage master key file {tmp}: {exc.strerror or exc}"
        ) from exc
    return tmp


def install_master_key_file(tmp: Path, final: Path, ledger: CompensatingLedger) -> None:
    """Rename the staged key file into place."""
    try:
        os.replace(tmp, final)
    except OSError as exc:
        raise BootstrapIOError(
            f"Could not move keyring file '{tmp}' to its final location: "
            f"{exc.strerror or exc}"
        ) from exc
    ledger.forget(tmp)


__all__ = [
    "Notifier",
    "Prompter",
    "install_master_key_file",
    "open_keyring_for_bootstrap",
    "prompt_new_master_key",
    "stage_master_key_file",
]
